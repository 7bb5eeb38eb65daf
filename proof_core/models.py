"""
models.py — Protocol Data Model
=================================
Data structures shared by storage nodes and validators.

Persisted and wire-facing records provide ``to_dict`` / ``from_dict``
with bytes encoded as hex (or base64 for chunk payloads), so they can
be written to disk as JSON and carried over HTTP unchanged.
"""

import base64
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from Crypto.PublicKey import ECC

from proof_core.errors import ChunkPlanError
from proof_core.hashing import canonical_int, canonical_str, sha256_hash
from proof_core.signing import generate_private_key, public_key_bytes

# Protocol defaults
DEFAULT_STANDARD_CHUNK_COUNT = 60
DEFAULT_TARGET_TOTAL_TIME = 60.0  # seconds
DEFAULT_MIN_ITERATIONS = 100_000
DEFAULT_CHECKPOINT_INTERVAL = 10_000
DEFAULT_CHALLENGE_TIMEOUT_MS = 5000


def current_time_ms() -> int:
    """Wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ProtocolConfig:
    """Parameters every participant of one network must agree on."""

    standard_chunk_count: int = DEFAULT_STANDARD_CHUNK_COUNT
    target_total_time: float = DEFAULT_TARGET_TOTAL_TIME
    min_iterations: int = DEFAULT_MIN_ITERATIONS
    checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL
    challenge_timeout_ms: int = DEFAULT_CHALLENGE_TIMEOUT_MS

    def __post_init__(self):
        if self.standard_chunk_count <= 0:
            raise ChunkPlanError("standard_chunk_count must be a positive integer")
        if self.checkpoint_interval <= 0:
            raise ChunkPlanError("checkpoint_interval must be a positive integer")
        if self.min_iterations < self.checkpoint_interval:
            raise ChunkPlanError(
                "min_iterations must be at least one checkpoint interval"
            )
        if self.challenge_timeout_ms <= 0:
            raise ChunkPlanError("challenge_timeout_ms must be positive")


# ── Identity ──────────────────────────────────────────────


@dataclass(frozen=True)
class NetworkLocation:
    """Where a node serves from."""

    ip: str
    port: int
    hostname: Optional[str] = None

    def canonical_bytes(self) -> bytes:
        """Unambiguous encoding used inside bindings."""
        return (
            canonical_str(self.ip)
            + canonical_int(self.port, 2)
            + canonical_str(self.hostname or "")
        )

    def to_host(self) -> str:
        """``[hostname@]ip:port`` form used in key-location records."""
        host = f"{self.ip}:{self.port}"
        if self.hostname:
            host = f"{self.hostname}@{host}"
        return host

    @classmethod
    def from_host(cls, host: str) -> "NetworkLocation":
        hostname = None
        if "@" in host:
            hostname, host = host.split("@", 1)
        ip, _, port = host.rpartition(":")
        ip = ip.strip("[]")
        if not ip or not port.isdigit():
            raise ValueError(f"Malformed host string: {host!r}")
        return cls(ip=ip, port=int(port), hostname=hostname)

    @property
    def base_url(self) -> str:
        host = self.hostname or self.ip
        if ":" in host:
            host = f"[{host}]"  # IPv6 literal
        return f"http://{host}:{self.port}"

    def to_dict(self) -> dict:
        return {"ip": self.ip, "port": self.port, "hostname": self.hostname}

    @classmethod
    def from_dict(cls, d: dict) -> "NetworkLocation":
        return cls(ip=d["ip"], port=int(d["port"]), hostname=d.get("hostname"))


@dataclass
class NodeIdentity:
    """
    A storage node's long-lived identity.

    The private key never leaves the node. Rotating either the key or
    the location means re-registering and re-running the full transform.
    """

    private_key: ECC.EccKey
    location: NetworkLocation

    @classmethod
    def generate(cls, location: NetworkLocation) -> "NodeIdentity":
        return cls(private_key=generate_private_key(), location=location)

    @property
    def public_key(self) -> bytes:
        return public_key_bytes(self.private_key)

    @property
    def node_id(self) -> str:
        """Stable identifier of this (key, location) combination."""
        return sha256_hash(self.public_key + self.location.canonical_bytes())[:32]


# ── Write path ─────────────────────────────────────────────


@dataclass(frozen=True)
class ChunkDefinition:
    """A byte range of the original file. Insertion order = byte order."""

    index: int
    start_offset: int
    length: int

    @property
    def end_offset(self) -> int:
        return self.start_offset + self.length

    def slice(self, data: bytes) -> bytes:
        return data[self.start_offset : self.end_offset]


@dataclass(frozen=True)
class ChunkBinding:
    """Ties chunk bytes to a node's location and private key."""

    server_binding: bytes
    key_binding: bytes
    final_binding: bytes

    def to_dict(self) -> dict:
        return {
            "server_binding": self.server_binding.hex(),
            "key_binding": self.key_binding.hex(),
            "final_binding": self.final_binding.hex(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ChunkBinding":
        return cls(
            server_binding=bytes.fromhex(d["server_binding"]),
            key_binding=bytes.fromhex(d["key_binding"]),
            final_binding=bytes.fromhex(d["final_binding"]),
        )


class TransformStatus(Enum):
    INITIALIZED = "initialized"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class TransformState:
    """Per-chunk working state, owned by the computing node."""

    chunk_index: int
    initial_state: bytes
    state: bytes
    iteration: int = 0
    checkpoints: List[bytes] = field(default_factory=list)
    status: TransformStatus = TransformStatus.INITIALIZED


@dataclass(frozen=True)
class VDFResult:
    """Outcome of one chunk's sequential transform."""

    final_state: bytes
    checkpoints: Tuple[bytes, ...]
    iterations: int
    signature: bytes
    initial_state: bytes
    checkpoint_interval: int

    def to_dict(self) -> dict:
        return {
            "final_state": self.final_state.hex(),
            "checkpoints": [c.hex() for c in self.checkpoints],
            "iterations": self.iterations,
            "signature": self.signature.hex(),
            "initial_state": self.initial_state.hex(),
            "checkpoint_interval": self.checkpoint_interval,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "VDFResult":
        return cls(
            final_state=bytes.fromhex(d["final_state"]),
            checkpoints=tuple(bytes.fromhex(c) for c in d["checkpoints"]),
            iterations=int(d["iterations"]),
            signature=bytes.fromhex(d["signature"]),
            initial_state=bytes.fromhex(d["initial_state"]),
            checkpoint_interval=int(d["checkpoint_interval"]),
        )


@dataclass(frozen=True)
class ReversalParameters:
    iterations: int
    seed: bytes
    nonce: bytes


@dataclass(frozen=True)
class ReversalKey:
    """Material that undoes the mutation of one chunk in O(chunk size)."""

    transform_key: bytes
    reversal_matrix: bytes
    original_checksum: bytes
    parameters: ReversalParameters

    @property
    def size_bytes(self) -> int:
        return (
            len(self.transform_key)
            + len(self.reversal_matrix)
            + len(self.original_checksum)
            + len(self.parameters.seed)
            + len(self.parameters.nonce)
            + 8
        )

    def to_dict(self) -> dict:
        return {
            "transform_key": self.transform_key.hex(),
            "reversal_matrix": self.reversal_matrix.hex(),
            "original_checksum": self.original_checksum.hex(),
            "parameters": {
                "iterations": self.parameters.iterations,
                "seed": self.parameters.seed.hex(),
                "nonce": self.parameters.nonce.hex(),
            },
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ReversalKey":
        params = d["parameters"]
        return cls(
            transform_key=bytes.fromhex(d["transform_key"]),
            reversal_matrix=bytes.fromhex(d["reversal_matrix"]),
            original_checksum=bytes.fromhex(d["original_checksum"]),
            parameters=ReversalParameters(
                iterations=int(params["iterations"]),
                seed=bytes.fromhex(params["seed"]),
                nonce=bytes.fromhex(params["nonce"]),
            ),
        )


@dataclass(frozen=True)
class TransformedChunk:
    """Persisted artifact: one per (node, chunk index). Read-only after write."""

    chunk_index: int
    mutated_data: bytes
    reversal_key: ReversalKey
    proof: VDFResult
    binding: ChunkBinding

    def metadata_dict(self) -> dict:
        """Everything except the mutated payload."""
        return {
            "chunk_index": self.chunk_index,
            "reversal_key": self.reversal_key.to_dict(),
            "proof": self.proof.to_dict(),
            "binding": self.binding.to_dict(),
        }

    @classmethod
    def from_parts(cls, metadata: dict, mutated_data: bytes) -> "TransformedChunk":
        return cls(
            chunk_index=int(metadata["chunk_index"]),
            mutated_data=mutated_data,
            reversal_key=ReversalKey.from_dict(metadata["reversal_key"]),
            proof=VDFResult.from_dict(metadata["proof"]),
            binding=ChunkBinding.from_dict(metadata["binding"]),
        )


# ── Verification path ──────────────────────────────────────


@dataclass(frozen=True)
class StorageChallenge:
    """Single-use challenge; the nonce prevents replay."""

    copy_index: int
    chunk_index: int
    challenge_nonce: bytes
    timestamp: int  # ms
    timeout_ms: int = DEFAULT_CHALLENGE_TIMEOUT_MS
    validator_signature: bytes = b""

    @property
    def deadline(self) -> int:
        return self.timestamp + self.timeout_ms

    def signing_payload(self) -> bytes:
        return (
            canonical_str("storage-challenge")
            + canonical_int(self.copy_index, 4)
            + canonical_int(self.chunk_index, 4)
            + self.challenge_nonce
            + canonical_int(self.timestamp)
            + canonical_int(self.timeout_ms, 4)
        )

    def to_dict(self) -> dict:
        return {
            "copy_index": self.copy_index,
            "chunk_index": self.chunk_index,
            "challenge_nonce": self.challenge_nonce.hex(),
            "timestamp": self.timestamp,
            "timeout_ms": self.timeout_ms,
            "validator_signature": self.validator_signature.hex(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "StorageChallenge":
        return cls(
            copy_index=int(d["copy_index"]),
            chunk_index=int(d["chunk_index"]),
            challenge_nonce=bytes.fromhex(d["challenge_nonce"]),
            timestamp=int(d["timestamp"]),
            timeout_ms=int(d["timeout_ms"]),
            validator_signature=bytes.fromhex(d.get("validator_signature", "")),
        )


@dataclass(frozen=True)
class StorageProof:
    server_binding: bytes
    key_signature: bytes
    current_location: NetworkLocation

    def to_dict(self) -> dict:
        return {
            "server_binding": self.server_binding.hex(),
            "key_signature": self.key_signature.hex(),
            "current_location": self.current_location.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "StorageProof":
        return cls(
            server_binding=bytes.fromhex(d["server_binding"]),
            key_signature=bytes.fromhex(d["key_signature"]),
            current_location=NetworkLocation.from_dict(d["current_location"]),
        )


@dataclass(frozen=True)
class ChallengeResponse:
    mutated_data: bytes
    proof: StorageProof
    responded_at: int  # ms

    def to_dict(self) -> dict:
        return {
            "mutated_data": base64.b64encode(self.mutated_data).decode("utf-8"),
            "proof": self.proof.to_dict(),
            "responded_at": self.responded_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ChallengeResponse":
        return cls(
            mutated_data=base64.b64decode(d["mutated_data"]),
            proof=StorageProof.from_dict(d["proof"]),
            responded_at=int(d["responded_at"]),
        )
