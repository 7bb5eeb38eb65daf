"""
chunk_store.py — Transformed Chunk Storage Manager
=====================================================
Persists transformed chunks on the local filesystem, keyed by
(node_id, chunk_index). Each chunk is two files:

    <data_dir>/<node_id>/<index>.chunk   mutated bytes
    <data_dir>/<node_id>/<index>.json    reversal key, VDF proof, binding

Slots are write-once until discarded. Readers need no locking: files
are written to a temporary name and renamed into place, so a reader
sees either nothing or a complete artifact.
"""

import json
import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional

from proof_core.errors import StorageConflictError
from proof_core.models import TransformedChunk

logger = logging.getLogger(__name__)


class ChunkStore:
    """
    Manages local filesystem storage of transformed chunks.

    One directory per node identity, so re-binding a node to a new
    key or location never mixes artifacts of the two identities.
    """

    def __init__(self, data_dir: str):
        """
        Initialize the chunk store.

        Args:
            data_dir: Directory path where chunks will be stored.
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        logger.info("ChunkStore initialized at %s", self.data_dir)

    def _node_dir(self, node_id: str) -> Path:
        return self.data_dir / node_id

    def _chunk_paths(self, node_id: str, chunk_index: int):
        """Get the payload and metadata paths for a chunk."""
        base = self._node_dir(node_id) / f"{chunk_index:05d}"
        return base.with_suffix(".chunk"), base.with_suffix(".json")

    @staticmethod
    def _write_atomic(path: Path, data: bytes) -> None:
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)

    def store(self, node_id: str, chunk: TransformedChunk) -> None:
        """
        Store a transformed chunk.

        Raises:
            StorageConflictError: If the slot is already written.
        """
        payload_path, meta_path = self._chunk_paths(node_id, chunk.chunk_index)
        if meta_path.exists():
            raise StorageConflictError(
                f"Chunk {chunk.chunk_index} of node {node_id[:16]} is already stored"
            )

        payload_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_atomic(payload_path, chunk.mutated_data)
        # Metadata last: its presence marks the slot as complete
        self._write_atomic(
            meta_path, json.dumps(chunk.metadata_dict(), sort_keys=True).encode("utf-8")
        )
        logger.info(
            "Stored chunk %d for node %s (%d bytes)",
            chunk.chunk_index,
            node_id[:16],
            len(chunk.mutated_data),
        )

    def retrieve(self, node_id: str, chunk_index: int) -> Optional[TransformedChunk]:
        """
        Retrieve a transformed chunk.

        Returns:
            The chunk, or None if not stored.
        """
        payload_path, meta_path = self._chunk_paths(node_id, chunk_index)
        if not meta_path.exists():
            logger.warning("Chunk %d of node %s not found", chunk_index, node_id[:16])
            return None

        metadata = json.loads(meta_path.read_text(encoding="utf-8"))
        chunk = TransformedChunk.from_parts(metadata, payload_path.read_bytes())
        logger.debug("Retrieved chunk %d of node %s", chunk_index, node_id[:16])
        return chunk

    def exists(self, node_id: str, chunk_index: int) -> bool:
        """Check if a chunk exists in the store."""
        return self._chunk_paths(node_id, chunk_index)[1].exists()

    def list_chunks(self, node_id: str) -> List[int]:
        """Sorted chunk indices stored for a node."""
        node_dir = self._node_dir(node_id)
        if not node_dir.is_dir():
            return []
        return sorted(int(f.stem) for f in node_dir.glob("*.json"))

    def discard(self, node_id: str, chunk_index: int) -> bool:
        """
        Free one slot so it can be written again.

        Returns:
            True if the slot held a chunk.
        """
        payload_path, meta_path = self._chunk_paths(node_id, chunk_index)
        existed = meta_path.exists()
        # Metadata first: the slot reads as empty before the payload goes
        meta_path.unlink(missing_ok=True)
        payload_path.unlink(missing_ok=True)
        if existed:
            logger.info("Discarded chunk %d of node %s", chunk_index, node_id[:16])
        return existed

    def invalidate_node(self, node_id: str) -> bool:
        """
        Drop every artifact of a node identity.

        Used when the node's key or location changes: old artifacts can
        never verify again and must be recomputed from original data.

        Returns:
            True if anything was deleted.
        """
        node_dir = self._node_dir(node_id)
        if not node_dir.exists():
            return False
        shutil.rmtree(node_dir)
        logger.info("Invalidated all chunks of node %s", node_id[:16])
        return True

    @property
    def total_size(self) -> int:
        """Total size of all stored files in bytes."""
        return sum(f.stat().st_size for f in self.data_dir.rglob("*") if f.is_file())

    def chunk_count(self, node_id: str) -> int:
        """Number of chunks currently stored for a node."""
        return len(self.list_chunks(node_id))
