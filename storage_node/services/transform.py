"""
transform.py — Write Path Pipeline
====================================
Runs once per (file, copy, node identity):

    plan -> bind -> sequential transform -> reversal key -> store

Chunks are processed strictly in order because each chunk's initial
state depends on the previous chunk's final state. Independent copies
(different identities or copy indices) share nothing and may run as
separate jobs in parallel.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional

from proof_core.binding import create_chunk_bindings
from proof_core.chunker import plan_chunks, split_file
from proof_core.models import NodeIdentity, ProtocolConfig, TransformedChunk
from proof_core.reversal import apply_transform, generate_reversal_key
from proof_core.vdf import VDFEngine, chain_seed
from storage_node.services.chunk_store import ChunkStore

logger = logging.getLogger(__name__)


class TransformPipeline:
    """Transforms whole files for one node identity."""

    def __init__(
        self,
        identity: NodeIdentity,
        config: ProtocolConfig,
        store: Optional[ChunkStore] = None,
    ):
        self.identity = identity
        self.config = config
        self.store = store

    def transform_file(
        self,
        data: bytes,
        copy_index: int = 0,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> List[TransformedChunk]:
        """
        Transform ``data`` into its chain of mutated chunks.

        Args:
            data: Original file content.
            copy_index: Which copy of the file this node claims.
            cancel_event: Set to abort. Chunks this run already stored
                are discarded, so the copy can be transformed again.
            progress_callback: Called as (chunks_done, chunk_count).

        Returns:
            Transformed chunks in chunk order.

        Raises:
            ChunkPlanError: If data is empty.
            TransformCancelledError: If cancelled mid-run.
            StorageConflictError: If a chunk slot is already written.
        """
        plan = plan_chunks(len(data), self.config)
        pieces = split_file(data, plan)
        engine = VDFEngine(
            min_iterations=self.config.min_iterations,
            checkpoint_interval=self.config.checkpoint_interval,
        )

        logger.info(
            "Transforming %d bytes as copy %d for node %s (%d chunks x %d iterations)",
            len(data),
            copy_index,
            self.identity.node_id[:16],
            len(plan),
            self.config.min_iterations,
        )
        started = time.monotonic()
        previous = chain_seed(self.identity.public_key, self.identity.location, copy_index)
        results = []
        stored: List[int] = []

        try:
            for chunk_def, chunk_data in zip(plan, pieces):
                binding = create_chunk_bindings(chunk_data, self.identity)
                state = engine.initialize(chunk_def.index, chunk_data, binding, previous)
                engine.run(state, cancel_event=cancel_event)

                proof = engine.finalize(state, self.identity.private_key)
                reversal_key = generate_reversal_key(chunk_data, state)
                chunk = TransformedChunk(
                    chunk_index=chunk_def.index,
                    mutated_data=apply_transform(chunk_data, reversal_key),
                    reversal_key=reversal_key,
                    proof=proof,
                    binding=binding,
                )
                previous = proof.final_state
                if self.store is not None:
                    self.store.store(self.identity.node_id, chunk)
                    stored.append(chunk.chunk_index)
                results.append(chunk)

                if progress_callback is not None:
                    progress_callback(len(results), len(plan))
        except Exception:
            self._discard(stored)
            raise

        logger.info(
            "Transform of copy %d complete in %.2fs", copy_index, time.monotonic() - started
        )
        return results

    def _discard(self, chunk_indices: List[int]) -> None:
        """Free the slots an unfinished run wrote."""
        for index in chunk_indices:
            self.store.discard(self.identity.node_id, index)
        if chunk_indices:
            logger.warning(
                "Discarded %d partial chunk(s) of node %s",
                len(chunk_indices),
                self.identity.node_id[:16],
            )


class TransformJob:
    """
    A pipeline run on a background thread.

    ``result()`` is the completion signal and ``cancel()`` the
    cancellation handle. A cancelled job never yields a result.
    """

    def __init__(self, pipeline: TransformPipeline, data: bytes, copy_index: int = 0):
        self.job_id = uuid.uuid4().hex
        self.copy_index = copy_index
        self.chunks_done = 0
        self.chunk_count = pipeline.config.standard_chunk_count
        self._cancel_event = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="transform")
        self._future: Future = self._executor.submit(
            pipeline.transform_file,
            data,
            copy_index,
            self._cancel_event,
            self._on_progress,
        )
        self._executor.shutdown(wait=False)
        logger.info("Started transform job %s (copy %d)", self.job_id, copy_index)

    def _on_progress(self, done: int, total: int) -> None:
        self.chunks_done = done
        self.chunk_count = total

    def cancel(self) -> None:
        self._cancel_event.set()
        logger.info("Cancellation requested for transform job %s", self.job_id)

    def done(self) -> bool:
        return self._future.done()

    @property
    def status(self) -> str:
        if not self._future.done():
            return "cancelling" if self._cancel_event.is_set() else "running"
        if self._future.exception() is not None:
            return "cancelled" if self._cancel_event.is_set() else "failed"
        return "completed"

    def result(self, timeout: Optional[float] = None) -> List[TransformedChunk]:
        """Block until completion; re-raises the pipeline's error if any."""
        return self._future.result(timeout=timeout)
