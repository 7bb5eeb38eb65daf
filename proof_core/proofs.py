"""
proofs.py — Proof Kinds and Their Checks
==========================================
Two kinds of proof exist, and verification is exhaustive over them:

    KeyLocationProof   — a node's signed ServerCoinMemo binding its
                         wallet key to a host for one epoch.
    UniqueContentProof — a challenge response showing the node serves
                         mutated chunk bytes bound to its location and key.

A key-location registration must be accepted before any content proof
from that (key, host) pair is trusted.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Union

from proof_core.binding import bind_to_location
from proof_core.errors import (
    BindingMismatchError,
    LocationMismatchError,
    StaleRegistrationError,
    TimingViolationError,
)
from proof_core.hashing import canonical_int, canonical_str
from proof_core.models import (
    ChallengeResponse,
    NetworkLocation,
    NodeIdentity,
    StorageChallenge,
)
from proof_core.signing import check_signature, sign

logger = logging.getLogger(__name__)

# Domain separation for key-location signatures
PROTOCOL_PREFIX = "PoUS-KeyLocation-v1"
DEFAULT_EPOCH_SECONDS = 86400


def current_epoch(now_seconds: float, epoch_seconds: int = DEFAULT_EPOCH_SECONDS) -> int:
    return int(now_seconds // epoch_seconds)


# ── Key-location registration ─────────────────────────────


@dataclass(frozen=True)
class ServerCoinMemo:
    host: str
    wallet_public_key: bytes
    epoch: int
    signature: bytes = b""

    @property
    def location(self) -> NetworkLocation:
        return NetworkLocation.from_host(self.host)

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "wallet_public_key": self.wallet_public_key.hex(),
            "epoch": self.epoch,
            "signature": self.signature.hex(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ServerCoinMemo":
        return cls(
            host=d["host"],
            wallet_public_key=bytes.fromhex(d["wallet_public_key"]),
            epoch=int(d["epoch"]),
            signature=bytes.fromhex(d["signature"]),
        )


def memo_signing_payload(
    public_key: bytes, host: str, epoch: int, prefix: str = PROTOCOL_PREFIX
) -> bytes:
    """publicKey || host || epoch || protocolPrefix, canonically encoded."""
    return public_key + canonical_str(host) + canonical_int(epoch) + canonical_str(prefix)


def create_server_coin_memo(
    identity: NodeIdentity, epoch: int, prefix: str = PROTOCOL_PREFIX
) -> ServerCoinMemo:
    host = identity.location.to_host()
    payload = memo_signing_payload(identity.public_key, host, epoch, prefix)
    return ServerCoinMemo(
        host=host,
        wallet_public_key=identity.public_key,
        epoch=epoch,
        signature=sign(identity.private_key, payload),
    )


def check_server_coin_memo(
    memo: ServerCoinMemo, epoch: int, prefix: str = PROTOCOL_PREFIX
) -> None:
    """
    Raises:
        StaleRegistrationError: If the memo is not for ``epoch``.
        SignatureInvalidError: If the signature does not verify.
    """
    if memo.epoch != epoch:
        raise StaleRegistrationError(
            f"Registration is for epoch {memo.epoch}, current epoch is {epoch}"
        )
    payload = memo_signing_payload(memo.wallet_public_key, memo.host, memo.epoch, prefix)
    check_signature(memo.wallet_public_key, payload, memo.signature)


# ── Challenge responses ───────────────────────────────────


def check_challenge_timing(challenge: StorageChallenge, response: ChallengeResponse) -> None:
    elapsed = response.responded_at - challenge.timestamp
    if elapsed > challenge.timeout_ms:
        raise TimingViolationError(
            f"Response took {elapsed}ms, deadline is {challenge.timeout_ms}ms"
        )


def check_response_binding(
    response: ChallengeResponse, public_key: bytes, expected_location: NetworkLocation
) -> None:
    """
    Location and key checks of a challenge response.

    Raises:
        BindingMismatchError, LocationMismatchError, SignatureInvalidError.
    """
    proof = response.proof
    if bind_to_location(response.mutated_data, proof.current_location) != proof.server_binding:
        raise BindingMismatchError("Server binding does not match served data and location")
    if proof.current_location != expected_location:
        raise LocationMismatchError(
            f"Served from {proof.current_location.to_host()}, "
            f"expected {expected_location.to_host()}"
        )
    check_signature(public_key, response.mutated_data, proof.key_signature)


# ── Proof union ───────────────────────────────────────────


class ProofKind(Enum):
    KEY_LOCATION = "key_location"
    UNIQUE_CONTENT = "unique_content"


@dataclass(frozen=True)
class KeyLocationProof:
    memo: ServerCoinMemo
    kind: ProofKind = ProofKind.KEY_LOCATION


@dataclass(frozen=True)
class UniqueContentProof:
    challenge: StorageChallenge
    response: ChallengeResponse
    public_key: bytes
    expected_location: NetworkLocation
    kind: ProofKind = ProofKind.UNIQUE_CONTENT


Proof = Union[KeyLocationProof, UniqueContentProof]


def check_proof(proof: Proof, epoch: int, prefix: str = PROTOCOL_PREFIX) -> None:
    """Verify any proof kind; raises a ProofOfStorageError subclass on failure."""
    if proof.kind is ProofKind.KEY_LOCATION:
        check_server_coin_memo(proof.memo, epoch, prefix)
    elif proof.kind is ProofKind.UNIQUE_CONTENT:
        check_challenge_timing(proof.challenge, proof.response)
        check_response_binding(proof.response, proof.public_key, proof.expected_location)
    else:
        raise TypeError(f"Unknown proof kind: {proof.kind!r}")
