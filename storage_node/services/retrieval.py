"""
retrieval.py — Retrieval Service and Challenge Responder
==========================================================
Answers data requests and storage challenges from stored artifacts.

This path never runs the sequential transform: serving a chunk is one
reversal plus a checksum, answering a challenge is one binding hash
and one signature. A node that does not hold the transformed chunk
cannot answer in time, which is the point of the protocol.
"""

import logging
from typing import Callable, Optional

from proof_core.binding import bind_to_location
from proof_core.errors import ChunkNotStoredError, SignatureInvalidError
from proof_core.models import (
    ChallengeResponse,
    NodeIdentity,
    StorageChallenge,
    StorageProof,
    TransformedChunk,
    current_time_ms,
)
from proof_core.reversal import restore_original_data
from proof_core.signing import check_signature, sign
from storage_node.services.chunk_store import ChunkStore

logger = logging.getLogger(__name__)


class RetrievalService:
    """Serves one node identity's stored chunks."""

    def __init__(
        self,
        identity: NodeIdentity,
        store: ChunkStore,
        validator_public_key: Optional[bytes] = None,
        clock: Callable[[], int] = current_time_ms,
    ):
        """
        Args:
            identity: The node identity whose artifacts are served.
            store: Chunk store holding the artifacts.
            validator_public_key: When set, challenges must be signed by it.
            clock: Millisecond clock used for ``responded_at``.
        """
        self.identity = identity
        self.store = store
        self.validator_public_key = validator_public_key
        self.clock = clock

    def _load(self, chunk_index: int) -> TransformedChunk:
        chunk = self.store.retrieve(self.identity.node_id, chunk_index)
        if chunk is None:
            raise ChunkNotStoredError(f"Chunk {chunk_index} is not stored on this node")
        return chunk

    def serve_chunk(self, chunk_index: int) -> bytes:
        """
        Return the original bytes of a chunk via fast reversal.

        Raises:
            ChunkNotStoredError: If the chunk was never transformed here.
            RestorationVerificationError: If the stored artifact is corrupt.
        """
        chunk = self._load(chunk_index)
        data = restore_original_data(chunk.mutated_data, chunk.reversal_key)
        logger.debug("Served chunk %d (%d bytes)", chunk_index, len(data))
        return data

    def respond_to_challenge(self, challenge: StorageChallenge) -> ChallengeResponse:
        """
        Build a challenge response from the stored mutated chunk.

        The chunk is restored and checksum-verified first, so a corrupt
        artifact aborts the response instead of being vouched for.

        Raises:
            SignatureInvalidError: If the challenge is not signed by the
                configured validator.
            ChunkNotStoredError, RestorationVerificationError.
        """
        if self.validator_public_key is not None:
            try:
                check_signature(
                    self.validator_public_key,
                    challenge.signing_payload(),
                    challenge.validator_signature,
                )
            except SignatureInvalidError:
                logger.warning(
                    "Rejected challenge %s: bad validator signature",
                    challenge.challenge_nonce.hex()[:16],
                )
                raise

        chunk = self._load(challenge.chunk_index)
        restore_original_data(chunk.mutated_data, chunk.reversal_key)

        location = self.identity.location
        proof = StorageProof(
            server_binding=bind_to_location(chunk.mutated_data, location),
            key_signature=sign(self.identity.private_key, chunk.mutated_data),
            current_location=location,
        )
        response = ChallengeResponse(
            mutated_data=chunk.mutated_data,
            proof=proof,
            responded_at=self.clock(),
        )
        logger.info(
            "Answered challenge %s for chunk %d",
            challenge.challenge_nonce.hex()[:16],
            challenge.chunk_index,
        )
        return response
