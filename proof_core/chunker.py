"""
chunker.py — Fixed-Count Chunk Planner
========================================
Partitions a file into a fixed number of chunks regardless of its
size. Because the sequential transform runs a calibrated number of
iterations per chunk, a fixed chunk count keeps the total transform
time constant for small and large files alike.

Partition policy:
    q, r = divmod(file_size, N)
    the first r chunks get q + 1 bytes (the ceiling size),
    the remaining N - r chunks get q bytes.

When file_size < N, q is 0: the first file_size chunks hold one byte
each and the trailing chunks are empty. Empty chunks still take part
in the transform chain, but they are never challenged; see
``effective_chunk_count``.
"""

import logging
from typing import List

from proof_core.errors import ChunkPlanError
from proof_core.models import ChunkDefinition, ProtocolConfig

logger = logging.getLogger(__name__)


def plan_chunks(file_size: int, config: ProtocolConfig) -> List[ChunkDefinition]:
    """
    Plan exactly ``config.standard_chunk_count`` chunks covering a file.

    Args:
        file_size: Size of the original file in bytes.
        config: Protocol configuration.

    Returns:
        Ordered chunk definitions whose lengths sum to ``file_size``.

    Raises:
        ChunkPlanError: If file_size is not positive.
    """
    if file_size <= 0:
        raise ChunkPlanError("Cannot plan chunks for an empty file")

    count = config.standard_chunk_count
    base, remainder = divmod(file_size, count)

    chunks = []
    offset = 0
    for index in range(count):
        length = base + 1 if index < remainder else base
        chunks.append(ChunkDefinition(index=index, start_offset=offset, length=length))
        offset += length

    logger.info(
        "Planned %d bytes into %d chunks (chunk_size=%d, empty=%d)",
        file_size,
        count,
        base + (1 if remainder else 0),
        count - effective_chunk_count(chunks),
    )
    return chunks


def effective_chunk_count(plan: List[ChunkDefinition]) -> int:
    """Number of non-empty chunks; challenges are drawn from this range."""
    return sum(1 for chunk in plan if chunk.length > 0)


def split_file(data: bytes, plan: List[ChunkDefinition]) -> List[bytes]:
    """
    Slice file content according to a chunk plan.

    Raises:
        ChunkPlanError: If the plan does not cover the data exactly.
    """
    covered = sum(chunk.length for chunk in plan)
    if covered != len(data):
        raise ChunkPlanError(
            f"Chunk plan covers {covered} bytes but data has {len(data)}"
        )
    return [chunk.slice(data) for chunk in plan]


def reassemble_file(chunks: List[bytes]) -> bytes:
    """
    Reassemble file chunks back into the original file content.

    Raises:
        ValueError: If the chunks list is empty.
    """
    if not chunks:
        raise ValueError("Cannot reassemble from empty chunk list")

    data = b"".join(chunks)
    logger.info("Reassembled %d chunks into %d bytes", len(chunks), len(data))
    return data
