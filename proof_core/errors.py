"""
errors.py — Proof of Unique Storage Error Taxonomy
=====================================================
Every failure the protocol can detect has its own exception class so
that verifiers can report *why* a proof was rejected. Validators
collapse all of them into a single failed challenge outcome; nodes
surface them instead of serving unverified data.
"""


class ProofOfStorageError(Exception):
    """Base class for all proof-of-unique-storage failures."""


class ChunkPlanError(ProofOfStorageError, ValueError):
    """Invalid file size or chunk planner configuration."""


class InsufficientIterationsError(ProofOfStorageError):
    """A transform result claims fewer iterations than the configured minimum."""


class CheckpointMismatchError(ProofOfStorageError):
    """A recomputed checkpoint segment does not match the claimed state."""


class BindingMismatchError(ProofOfStorageError):
    """A recomputed binding differs from the claimed binding."""


class SignatureInvalidError(ProofOfStorageError):
    """A signature failed verification under the claimed public key."""


class TimingViolationError(ProofOfStorageError):
    """A challenge response arrived after its deadline."""


class RestorationVerificationError(ProofOfStorageError):
    """Restored chunk bytes do not hash to the original checksum."""


class LocationMismatchError(ProofOfStorageError):
    """A response was served from a location other than the one on file."""


class TransformCancelledError(ProofOfStorageError):
    """The sequential transform was cancelled before completion."""


class ChunkNotStoredError(ProofOfStorageError, LookupError):
    """The node holds no transformed chunk for the requested index."""


class ChallengeReplayError(ProofOfStorageError):
    """The challenge nonce is unknown or was already resolved."""


class StaleRegistrationError(ProofOfStorageError):
    """No key-location registration is valid for the current epoch."""


class StorageConflictError(ProofOfStorageError):
    """A write-once storage slot was written twice."""
