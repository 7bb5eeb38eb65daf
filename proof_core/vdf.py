"""
vdf.py — Sequential Transform Engine
======================================
Slow, non-parallelizable per-chunk transform, chained across chunks.

State machine per chunk: INITIALIZED -> RUNNING -> COMPLETED.

    initial = H( chunk_data || server_binding || key_binding || previous_final )
    state   <- mix( state, SHA-256(state) )        # repeated `iterations` times

Iteration k consumes the output of iteration k - 1, so no amount of
parallel hardware shortens the wall-clock time of a chunk. Chunk 0
starts from a seed derived from the node's key, location and copy
index; chunk i > 0 starts from chunk i - 1's final state, which makes
a whole copy one sequential chain.

Every ``checkpoint_interval`` iterations the state is recorded. A
verifier can recompute any single segment between two checkpoints
instead of replaying the whole chain. This is spot-checking only:
verification cost grows with the number of sampled segments, there
is no succinct proof.
"""

import hashlib
import logging
import secrets
import threading
import time
from typing import Callable, Iterable, List, Optional

from Crypto.PublicKey import ECC

from proof_core.errors import (
    CheckpointMismatchError,
    InsufficientIterationsError,
    TransformCancelledError,
)
from proof_core.hashing import DIGEST_SIZE, canonical_int, tagged_hash
from proof_core.models import (
    DEFAULT_CHECKPOINT_INTERVAL,
    DEFAULT_MIN_ITERATIONS,
    ChunkBinding,
    NetworkLocation,
    TransformState,
    TransformStatus,
    VDFResult,
)
from proof_core.signing import check_signature, sign

logger = logging.getLogger(__name__)

CHAIN_SEED_TAG = "pous/chain-seed/v1"
INITIAL_STATE_TAG = "pous/initial-state/v1"

# Segments recomputed by a verifier when none are named explicitly
DEFAULT_SPOT_CHECKS = 2


def mix(state: bytes, digest: bytes) -> bytes:
    """Bytewise XOR of two 32-byte values."""
    return (int.from_bytes(state, "big") ^ int.from_bytes(digest, "big")).to_bytes(
        DIGEST_SIZE, "big"
    )


def iterate(state: bytes, count: int) -> bytes:
    """Apply ``count`` sequential steps of ``state <- mix(state, H(state))``."""
    sha256 = hashlib.sha256
    from_bytes = int.from_bytes
    for _ in range(count):
        state = (
            from_bytes(state, "big") ^ from_bytes(sha256(state).digest(), "big")
        ).to_bytes(DIGEST_SIZE, "big")
    return state


def chain_seed(public_key: bytes, location: NetworkLocation, copy_index: int) -> bytes:
    """Previous-state value used for chunk 0 of a copy."""
    return tagged_hash(
        CHAIN_SEED_TAG,
        public_key,
        location.canonical_bytes(),
        canonical_int(copy_index, 4),
    )


def derive_initial_state(
    chunk_data: bytes, binding: ChunkBinding, previous_final_state: bytes
) -> bytes:
    return tagged_hash(
        INITIAL_STATE_TAG,
        chunk_data,
        binding.server_binding,
        binding.key_binding,
        previous_final_state,
    )


def expected_checkpoint_count(iterations: int, checkpoint_interval: int) -> int:
    """Checkpoints are taken after every full interval; partial tails are not."""
    return iterations // checkpoint_interval


class VDFEngine:
    """
    Runs the sequential transform for one chunk at a time.

    The engine refuses to run a state that is already RUNNING, so a
    single chunk's iterations can never be split across workers.
    """

    def __init__(
        self,
        min_iterations: int = DEFAULT_MIN_ITERATIONS,
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ):
        self.min_iterations = min_iterations
        self.checkpoint_interval = checkpoint_interval
        self.progress_callback = progress_callback

    def initialize(
        self,
        chunk_index: int,
        chunk_data: bytes,
        binding: ChunkBinding,
        previous_final_state: bytes,
    ) -> TransformState:
        initial = derive_initial_state(chunk_data, binding, previous_final_state)
        return TransformState(chunk_index=chunk_index, initial_state=initial, state=initial)

    def run(
        self,
        state: TransformState,
        cancel_event: Optional[threading.Event] = None,
        iterations: Optional[int] = None,
    ) -> TransformState:
        """
        Drive ``state`` to COMPLETED.

        Cancellation is checked at every checkpoint boundary.

        Raises:
            InsufficientIterationsError: If fewer than min_iterations are requested.
            TransformCancelledError: If ``cancel_event`` is set mid-run.
        """
        target = self.min_iterations if iterations is None else iterations
        if target < self.min_iterations:
            raise InsufficientIterationsError(
                f"Requested {target} iterations, minimum is {self.min_iterations}"
            )
        if state.status is not TransformStatus.INITIALIZED:
            raise RuntimeError(
                f"Chunk {state.chunk_index} transform is {state.status.value}"
            )

        state.status = TransformStatus.RUNNING
        interval = self.checkpoint_interval
        started = time.monotonic()

        while state.iteration < target:
            step = min(interval - state.iteration % interval, target - state.iteration)
            state.state = iterate(state.state, step)
            state.iteration += step
            if state.iteration % interval == 0:
                state.checkpoints.append(state.state)

            if cancel_event is not None and cancel_event.is_set():
                state.status = TransformStatus.CANCELLED
                logger.warning(
                    "Transform of chunk %d cancelled at iteration %d/%d",
                    state.chunk_index,
                    state.iteration,
                    target,
                )
                raise TransformCancelledError(
                    f"Transform of chunk {state.chunk_index} was cancelled"
                )
            if self.progress_callback is not None:
                self.progress_callback(state.iteration, target)

        state.status = TransformStatus.COMPLETED
        logger.debug(
            "Chunk %d: %d iterations in %.3fs, %d checkpoints",
            state.chunk_index,
            state.iteration,
            time.monotonic() - started,
            len(state.checkpoints),
        )
        return state

    def finalize(self, state: TransformState, private_key: ECC.EccKey) -> VDFResult:
        """Sign the final state and emit the result."""
        if state.status is not TransformStatus.COMPLETED:
            raise RuntimeError(
                f"Cannot finalize chunk {state.chunk_index} in state {state.status.value}"
            )
        return VDFResult(
            final_state=state.state,
            checkpoints=tuple(state.checkpoints),
            iterations=state.iteration,
            signature=sign(private_key, state.state),
            initial_state=state.initial_state,
            checkpoint_interval=self.checkpoint_interval,
        )


# ── Verification ─────────────────────────────────────────


def verify_segment(result: VDFResult, segment: int) -> None:
    """
    Recompute one segment of the chain.

    Segment j < len(checkpoints) runs from checkpoint j - 1 (or the
    initial state) to checkpoint j. The last segment runs from the
    last checkpoint to the final state and may be empty.

    Raises:
        CheckpointMismatchError: If the recomputed state differs.
    """
    count = len(result.checkpoints)
    if not 0 <= segment <= count:
        raise CheckpointMismatchError(f"Segment {segment} out of range 0..{count}")

    start = result.initial_state if segment == 0 else result.checkpoints[segment - 1]
    if segment < count:
        steps = result.checkpoint_interval
        expected = result.checkpoints[segment]
    else:
        steps = result.iterations - count * result.checkpoint_interval
        expected = result.final_state

    if iterate(start, steps) != expected:
        raise CheckpointMismatchError(
            f"Segment {segment} does not reproduce its claimed end state"
        )


def verify_vdf_result(
    result: VDFResult,
    public_key: bytes,
    min_iterations: int = DEFAULT_MIN_ITERATIONS,
    checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
    segments: Optional[Iterable[int]] = None,
    sample_count: int = DEFAULT_SPOT_CHECKS,
) -> None:
    """
    Check a transform result without replaying the full chain.

    Args:
        result: The claimed result.
        public_key: Raw public key of the node that produced it.
        min_iterations: Configured per-chunk minimum.
        checkpoint_interval: Configured checkpoint stride.
        segments: Segment indices to recompute; sampled at random if None.
        sample_count: Number of random segments when ``segments`` is None.

    Raises:
        InsufficientIterationsError, CheckpointMismatchError,
        SignatureInvalidError.
    """
    if result.iterations < min_iterations:
        raise InsufficientIterationsError(
            f"Proof claims {result.iterations} iterations, minimum is {min_iterations}"
        )
    if result.checkpoint_interval != checkpoint_interval:
        raise CheckpointMismatchError(
            f"Checkpoint interval {result.checkpoint_interval} != {checkpoint_interval}"
        )
    expected = expected_checkpoint_count(result.iterations, checkpoint_interval)
    if len(result.checkpoints) != expected:
        raise CheckpointMismatchError(
            f"Expected {expected} checkpoints, got {len(result.checkpoints)}"
        )

    check_signature(public_key, result.final_state, result.signature)

    if segments is None:
        population = range(len(result.checkpoints) + 1)
        rng = secrets.SystemRandom()
        segments = rng.sample(population, min(sample_count, len(population)))

    checked: List[int] = []
    for segment in segments:
        verify_segment(result, segment)
        checked.append(segment)
    logger.debug("VDF result verified (segments=%s)", checked)


def calibrate_min_iterations(
    target_total_time: float,
    chunk_count: int,
    checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
    sample_iterations: int = 20_000,
) -> int:
    """
    Measure local iteration throughput and derive the per-chunk minimum
    so that ``chunk_count`` chunks take about ``target_total_time``
    seconds. Rounded down to whole checkpoint intervals, at least one.
    """
    started = time.perf_counter()
    iterate(b"\x00" * DIGEST_SIZE, sample_iterations)
    elapsed = max(time.perf_counter() - started, 1e-9)

    rate = sample_iterations / elapsed
    per_chunk = int(rate * target_total_time / chunk_count)
    per_chunk = max(checkpoint_interval, per_chunk - per_chunk % checkpoint_interval)
    logger.info(
        "Calibrated %.0f iterations/s -> %d iterations per chunk (%d chunks, %.1fs)",
        rate,
        per_chunk,
        chunk_count,
        target_total_time,
    )
    return per_chunk
