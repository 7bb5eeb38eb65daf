"""
challenge.py — Challenge-Response Validator
=============================================
Issues storage challenges, enforces their deadlines, and judges the
responses.

State machine per challenge:

    ISSUED -> AWAITING_RESPONSE -> VERIFIED | TIMED_OUT | FAILED

A response is accepted only if ALL of these hold:
    (a) it arrived within ``timeout_ms`` of the challenge timestamp,
        measured on the validator's clock;
    (b) the server binding recomputed over the served bytes and the
        claimed location matches, and that location is the one on
        file in the key-location registry;
    (c) the node's signature over the served bytes verifies;
    (d) the served bytes are the ones this node answered with the last
        time the same (copy, chunk) verified, and are not bytes it
        already answered with for a different (copy, chunk).

Record (d) is pinned on a node's first verified answer per slot.
Challenges left ISSUED past their deadline are swept as TIMED_OUT
whenever a new challenge is issued or a pending one is looked up.

The deadline is what makes cheating infeasible: a node that did not
keep its transformed chunk must redo the whole sequential transform,
which takes far longer than the timeout.
"""

import logging
import secrets
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from Crypto.PublicKey import ECC

from proof_core.errors import (
    BindingMismatchError,
    ChallengeReplayError,
    ProofOfStorageError,
    SignatureInvalidError,
    TimingViolationError,
)
from proof_core.hashing import sha256_digest
from proof_core.models import (
    DEFAULT_CHALLENGE_TIMEOUT_MS,
    DEFAULT_CHECKPOINT_INTERVAL,
    DEFAULT_MIN_ITERATIONS,
    ChallengeResponse,
    NetworkLocation,
    StorageChallenge,
    VDFResult,
    current_time_ms,
)
from proof_core.proofs import UniqueContentProof, check_proof
from proof_core.signing import public_key_bytes, sign, verify_signature
from proof_core.vdf import DEFAULT_SPOT_CHECKS, verify_vdf_result
from validator.services.ledger import ChallengeLedger, LedgerEntry
from validator.services.registry import KeyLocationRegistry

logger = logging.getLogger(__name__)

NONCE_SIZE = 16


class ChallengeStatus(Enum):
    ISSUED = "issued"
    AWAITING_RESPONSE = "awaiting_response"
    VERIFIED = "verified"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass
class ChallengeRecord:
    challenge: StorageChallenge
    node: Optional[str] = None  # public key hex, when issued for a specific node
    status: ChallengeStatus = ChallengeStatus.ISSUED
    elapsed_ms: Optional[int] = None
    reason: str = ""

    @property
    def verified(self) -> bool:
        return self.status is ChallengeStatus.VERIFIED


@dataclass(frozen=True)
class ValidationContext:
    """Everything needed to judge one response."""

    challenge: StorageChallenge
    response: ChallengeResponse
    public_key: bytes
    expected_location: NetworkLocation


class ChallengeValidator:
    """
    Issues and resolves challenges, recording every outcome in its ledger.

    Challenges are single-use: resolving removes the nonce, so a replayed
    response is rejected with ChallengeReplayError.
    """

    def __init__(
        self,
        private_key: ECC.EccKey,
        registry: KeyLocationRegistry,
        ledger: Optional[ChallengeLedger] = None,
        timeout_ms: int = DEFAULT_CHALLENGE_TIMEOUT_MS,
        clock: Callable[[], int] = current_time_ms,
    ):
        self.private_key = private_key
        self.registry = registry
        self.ledger = ledger if ledger is not None else ChallengeLedger()
        self.timeout_ms = timeout_ms
        self.clock = clock
        self._rng = secrets.SystemRandom()
        self._pending: Dict[bytes, ChallengeRecord] = {}
        # (node, copy, chunk) -> digest of the mutated bytes that verified
        self._served: Dict[Tuple[str, int, int], bytes] = {}
        self._served_slot: Dict[Tuple[str, bytes], Tuple[int, int]] = {}
        self._lock = threading.Lock()

    @property
    def public_key(self) -> bytes:
        return public_key_bytes(self.private_key)

    # ── Issuing ───────────────────────────────────────────

    def issue_challenge(
        self,
        total_copies: int,
        chunks_per_copy: int,
        node: Optional[bytes] = None,
    ) -> StorageChallenge:
        """
        Issue a signed challenge for a uniformly random (copy, chunk).

        Args:
            total_copies: Number of copies in the network.
            chunks_per_copy: Number of challengeable chunks per copy.
            node: Public key of the node this challenge targets, if known.

        Raises:
            ValueError: If either count is not positive.
        """
        if total_copies <= 0 or chunks_per_copy <= 0:
            raise ValueError("total_copies and chunks_per_copy must be positive")
        self._expire_overdue()

        unsigned = StorageChallenge(
            copy_index=self._rng.randrange(total_copies),
            chunk_index=self._rng.randrange(chunks_per_copy),
            challenge_nonce=secrets.token_bytes(NONCE_SIZE),
            timestamp=self.clock(),
            timeout_ms=self.timeout_ms,
        )
        challenge = replace(
            unsigned, validator_signature=sign(self.private_key, unsigned.signing_payload())
        )
        with self._lock:
            self._pending[challenge.challenge_nonce] = ChallengeRecord(
                challenge=challenge, node=node.hex() if node is not None else None
            )
        logger.info(
            "Issued challenge %s: copy %d chunk %d (timeout %dms)",
            challenge.challenge_nonce.hex()[:16],
            challenge.copy_index,
            challenge.chunk_index,
            challenge.timeout_ms,
        )
        return challenge

    def verify_challenge_signature(self, challenge: StorageChallenge) -> bool:
        return verify_signature(
            self.public_key, challenge.signing_payload(), challenge.validator_signature
        )

    def pending(self, challenge_nonce: bytes) -> Optional[ChallengeRecord]:
        self._expire_overdue()
        with self._lock:
            return self._pending.get(challenge_nonce)

    def mark_awaiting(self, challenge_nonce: bytes) -> ChallengeRecord:
        self._expire_overdue()
        with self._lock:
            record = self._pending.get(challenge_nonce)
            if record is None:
                raise ChallengeReplayError("Unknown or already resolved challenge")
            record.status = ChallengeStatus.AWAITING_RESPONSE
        return record

    # ── Judging ───────────────────────────────────────────

    def check_response(self, context: ValidationContext) -> None:
        """Raise the first failing check (a), (b) or (c)."""
        check_proof(
            UniqueContentProof(
                challenge=context.challenge,
                response=context.response,
                public_key=context.public_key,
                expected_location=context.expected_location,
            ),
            epoch=self.registry.epoch,
            prefix=self.registry.prefix,
        )

    def validate_challenge_response(self, context: ValidationContext) -> bool:
        """All-or-nothing judgement of one response; never raises."""
        try:
            self.check_response(context)
        except ProofOfStorageError as e:
            logger.warning(
                "Rejected response to %s: %s",
                context.challenge.challenge_nonce.hex()[:16],
                e,
            )
            return False
        return True

    def resolve(
        self,
        challenge_nonce: bytes,
        response: ChallengeResponse,
        public_key: bytes,
        received_at: Optional[int] = None,
    ) -> ChallengeRecord:
        """
        Judge a response and close its challenge.

        ``responded_at`` is overwritten with the validator's receipt time;
        the node's own clock has no say in the deadline.

        Raises:
            ChallengeReplayError: If the nonce is unknown or already resolved.
        """
        record = self._take(challenge_nonce)
        challenge = record.challenge
        node = public_key.hex()
        received_at = self.clock() if received_at is None else received_at
        response = replace(response, responded_at=received_at)

        try:
            if record.node is not None and record.node != node:
                raise SignatureInvalidError("Challenge was issued to a different node key")
            context = ValidationContext(
                challenge=challenge,
                response=response,
                public_key=public_key,
                expected_location=self.registry.expected_location(public_key),
            )
            self.check_response(context)
            self._pin_served(node, challenge, response.mutated_data)
        except TimingViolationError as e:
            return self._close(record, node, ChallengeStatus.TIMED_OUT, received_at, str(e))
        except ProofOfStorageError as e:
            return self._close(record, node, ChallengeStatus.FAILED, received_at, str(e))
        return self._close(record, node, ChallengeStatus.VERIFIED, received_at)

    def time_out(self, challenge_nonce: bytes, public_key: bytes, reason: str = "no response") -> ChallengeRecord:
        """Close a challenge that never received a response."""
        record = self._take(challenge_nonce)
        return self._close(record, public_key.hex(), ChallengeStatus.TIMED_OUT, self.clock(), reason)

    def fail(self, challenge_nonce: bytes, public_key: bytes, reason: str) -> ChallengeRecord:
        """Close a challenge whose node reported an error or an unreadable answer."""
        record = self._take(challenge_nonce)
        return self._close(record, public_key.hex(), ChallengeStatus.FAILED, self.clock(), reason)

    def run_challenge(
        self,
        challenge: StorageChallenge,
        public_key: bytes,
        responder: Callable[[StorageChallenge], ChallengeResponse],
    ) -> ChallengeRecord:
        """
        Drive one challenge through its full state machine.

        ``responder`` carries the challenge to the node and returns its
        response. A TimeoutError from the transport resolves as TIMED_OUT;
        a protocol error reported by the node, or any other failure to
        obtain a response, resolves as FAILED.
        """
        self.mark_awaiting(challenge.challenge_nonce)
        try:
            response = responder(challenge)
        except TimeoutError as e:
            return self.time_out(challenge.challenge_nonce, public_key, str(e) or "no response")
        except ProofOfStorageError as e:
            return self.fail(challenge.challenge_nonce, public_key, str(e))
        except Exception as e:
            logger.exception("Responder for %s failed", challenge.challenge_nonce.hex()[:16])
            return self.fail(challenge.challenge_nonce, public_key, f"unreadable response: {e!r}")
        return self.resolve(challenge.challenge_nonce, response, public_key)

    async def run_challenge_async(
        self,
        challenge: StorageChallenge,
        public_key: bytes,
        responder: Callable[[StorageChallenge], Awaitable[ChallengeResponse]],
    ) -> ChallengeRecord:
        """Same as ``run_challenge`` for an async transport."""
        self.mark_awaiting(challenge.challenge_nonce)
        try:
            response = await responder(challenge)
        except TimeoutError as e:
            return self.time_out(challenge.challenge_nonce, public_key, str(e) or "no response")
        except ProofOfStorageError as e:
            return self.fail(challenge.challenge_nonce, public_key, str(e))
        except Exception as e:
            logger.exception("Responder for %s failed", challenge.challenge_nonce.hex()[:16])
            return self.fail(challenge.challenge_nonce, public_key, f"unreadable response: {e!r}")
        return self.resolve(challenge.challenge_nonce, response, public_key)

    def audit_transform_proof(
        self,
        public_key: bytes,
        result: VDFResult,
        min_iterations: int = DEFAULT_MIN_ITERATIONS,
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
        sample_count: int = DEFAULT_SPOT_CHECKS,
    ) -> None:
        """
        Spot-check a node's transform result.

        The key must hold a current key-location registration before any
        transform proof from it is trusted.

        Raises:
            StaleRegistrationError, InsufficientIterationsError,
            CheckpointMismatchError, SignatureInvalidError.
        """
        self.registry.expected_location(public_key)
        verify_vdf_result(
            result,
            public_key,
            min_iterations=min_iterations,
            checkpoint_interval=checkpoint_interval,
            sample_count=sample_count,
        )
        logger.info("Transform proof of %s passed spot-check", public_key.hex()[:16])

    # ── Internals ─────────────────────────────────────────

    def _take(self, challenge_nonce: bytes) -> ChallengeRecord:
        with self._lock:
            record = self._pending.pop(challenge_nonce, None)
        if record is None:
            raise ChallengeReplayError(
                f"Challenge {challenge_nonce.hex()[:16]} is unknown or already resolved"
            )
        return record

    def _expire_overdue(self) -> None:
        """Close every still-ISSUED challenge whose deadline has passed."""
        now = self.clock()
        with self._lock:
            overdue: List[ChallengeRecord] = [
                record
                for record in self._pending.values()
                if record.status is ChallengeStatus.ISSUED and record.challenge.deadline < now
            ]
            for record in overdue:
                del self._pending[record.challenge.challenge_nonce]
        for record in overdue:
            self._close(
                record, record.node, ChallengeStatus.TIMED_OUT, now, "no response before deadline"
            )

    def _pin_served(self, node: str, challenge: StorageChallenge, mutated_data: bytes) -> None:
        """
        Tie the served bytes to the challenged (copy, chunk) of ``node``.

        Raises:
            BindingMismatchError: If the slot verified with other bytes
                before, or these bytes already answered another slot.
        """
        slot = (challenge.copy_index, challenge.chunk_index)
        digest = sha256_digest(mutated_data)
        with self._lock:
            pinned = self._served.get((node, *slot))
            if pinned is not None and pinned != digest:
                raise BindingMismatchError(
                    f"Served bytes differ from those verified for copy {slot[0]} chunk {slot[1]}"
                )
            owner = self._served_slot.get((node, digest))
            if owner is not None and owner != slot and mutated_data:
                raise BindingMismatchError(
                    f"Served bytes belong to copy {owner[0]} chunk {owner[1]}, "
                    f"not copy {slot[0]} chunk {slot[1]}"
                )
            self._served[(node, *slot)] = digest
            self._served_slot[(node, digest)] = slot

    def _close(
        self,
        record: ChallengeRecord,
        node: Optional[str],
        status: ChallengeStatus,
        received_at: int,
        reason: str = "",
    ) -> ChallengeRecord:
        record.status = status
        record.elapsed_ms = received_at - record.challenge.timestamp
        record.reason = reason
        # an untargeted challenge that expires unanswered has no node to charge
        if node is not None:
            self.ledger.record(
                node,
                LedgerEntry(
                    challenge_nonce=record.challenge.challenge_nonce.hex(),
                    outcome=status.value,
                    verified=record.verified,
                    elapsed_ms=record.elapsed_ms,
                    recorded_at=received_at,
                    reason=reason,
                ),
            )
        log = logger.info if record.verified else logger.warning
        log(
            "Challenge %s %s after %dms%s",
            record.challenge.challenge_nonce.hex()[:16],
            status.value,
            record.elapsed_ms,
            f": {reason}" if reason else "",
        )
        return record
