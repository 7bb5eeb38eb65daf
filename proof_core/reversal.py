"""
reversal.py — Reversal Key Generator
======================================
Produces the "fast inverse" material for a transformed chunk.

The hash chain in ``vdf.py`` has no efficient inverse, so the chunk is
not stored as chain output. Instead the completed chain keys an
invertible mutation of the chunk:

    transform_key   = H("transform-key" || final_state)
    reversal_matrix = H("permutation"   || final_state || checkpoints...)
    nonce           = H("nonce"         || initial_state)[:8]

    mutated = AES-256-CTR(transform_key, nonce)( permute(reversal_matrix, chunk) )

Producing the mutated bytes requires the final state, i.e. the whole
slow chain. Undoing the mutation needs only the reversal key and costs
one CTR pass plus one permutation, independent of the iteration count.
Restored bytes are always checked against ``original_checksum``; a
mismatch is fatal and nothing is returned.

Uses PyCryptodome for the AES keystream.
"""

import logging
from typing import List

from Crypto.Cipher import AES

from proof_core.errors import RestorationVerificationError
from proof_core.hashing import sha256_digest, tagged_hash
from proof_core.models import (
    ReversalKey,
    ReversalParameters,
    TransformState,
    TransformStatus,
)

logger = logging.getLogger(__name__)

TRANSFORM_KEY_TAG = "pous/transform-key/v1"
PERMUTATION_TAG = "pous/permutation/v1"
NONCE_TAG = "pous/nonce/v1"

# CTR nonce size in bytes; the remaining 8 bytes of the block are the counter
NONCE_SIZE = 8


def generate_reversal_key(original_chunk: bytes, transform_state: TransformState) -> ReversalKey:
    """
    Harvest reversal material from a completed transform.

    Raises:
        ValueError: If the transform has not completed.
    """
    if transform_state.status is not TransformStatus.COMPLETED:
        raise ValueError(
            f"Transform of chunk {transform_state.chunk_index} is "
            f"{transform_state.status.value}, not completed"
        )

    final_state = transform_state.state
    key = ReversalKey(
        transform_key=tagged_hash(TRANSFORM_KEY_TAG, final_state),
        reversal_matrix=tagged_hash(
            PERMUTATION_TAG, final_state, *transform_state.checkpoints
        ),
        original_checksum=sha256_digest(original_chunk),
        parameters=ReversalParameters(
            iterations=transform_state.iteration,
            seed=transform_state.initial_state,
            nonce=tagged_hash(NONCE_TAG, transform_state.initial_state)[:NONCE_SIZE],
        ),
    )
    logger.debug(
        "Reversal key for chunk %d: %d bytes for %d data bytes",
        transform_state.chunk_index,
        key.size_bytes,
        len(original_chunk),
    )
    return key


def _permutation(seed: bytes, length: int) -> List[int]:
    """Fisher-Yates shuffle of range(length) driven by an AES-CTR stream."""
    order = list(range(length))
    if length < 2:
        return order

    stream = AES.new(seed, AES.MODE_CTR, nonce=bytes(NONCE_SIZE)).encrypt(bytes(4 * length))
    for i in range(length - 1, 0, -1):
        word = int.from_bytes(stream[4 * i : 4 * i + 4], "big")
        j = word % (i + 1)
        order[i], order[j] = order[j], order[i]
    return order


def _keystream_cipher(reversal_key: ReversalKey):
    return AES.new(
        reversal_key.transform_key,
        AES.MODE_CTR,
        nonce=reversal_key.parameters.nonce,
    )


def apply_transform(original_chunk: bytes, reversal_key: ReversalKey) -> bytes:
    """Mutate ``original_chunk``; only callable once the chain has finished."""
    order = _permutation(reversal_key.reversal_matrix, len(original_chunk))
    permuted = bytes(original_chunk[src] for src in order)
    return _keystream_cipher(reversal_key).encrypt(permuted)


def restore_original_data(mutated_data: bytes, reversal_key: ReversalKey) -> bytes:
    """
    Recover the original chunk from its mutated form.

    Raises:
        RestorationVerificationError: If the restored bytes do not hash
            to the recorded checksum. Nothing is returned in that case.
    """
    permuted = _keystream_cipher(reversal_key).decrypt(mutated_data)
    order = _permutation(reversal_key.reversal_matrix, len(permuted))

    restored = bytearray(len(permuted))
    for position, src in enumerate(order):
        restored[src] = permuted[position]

    if sha256_digest(restored) != reversal_key.original_checksum:
        logger.error(
            "Restoration checksum mismatch (expected %s...)",
            reversal_key.original_checksum.hex()[:16],
        )
        raise RestorationVerificationError(
            "Restored data does not match the original checksum"
        )
    return bytes(restored)
