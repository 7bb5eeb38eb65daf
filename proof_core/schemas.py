"""
schemas.py — Wire Records
===========================
Pydantic models for the records exchanged between nodes and
validators. Field sets mirror the ``to_dict`` forms in ``models.py``;
``to_domain`` / ``from_domain`` convert in both directions.
"""

from typing import Optional

from pydantic import BaseModel

from proof_core.models import ChallengeResponse, StorageChallenge
from proof_core.proofs import ServerCoinMemo


class LocationModel(BaseModel):
    ip: str
    port: int
    hostname: Optional[str] = None


class StorageChallengeModel(BaseModel):
    """Challenge issued by a validator (hex-encoded bytes)."""

    copy_index: int
    chunk_index: int
    challenge_nonce: str
    timestamp: int
    timeout_ms: int
    validator_signature: str = ""

    def to_domain(self) -> StorageChallenge:
        return StorageChallenge.from_dict(self.model_dump())

    @classmethod
    def from_domain(cls, challenge: StorageChallenge) -> "StorageChallengeModel":
        return cls(**challenge.to_dict())


class StorageProofModel(BaseModel):
    server_binding: str
    key_signature: str
    current_location: LocationModel


class ChallengeResponseModel(BaseModel):
    """Node's answer to a challenge (mutated data is base64)."""

    mutated_data: str
    proof: StorageProofModel
    responded_at: int

    def to_domain(self) -> ChallengeResponse:
        return ChallengeResponse.from_dict(self.model_dump())

    @classmethod
    def from_domain(cls, response: ChallengeResponse) -> "ChallengeResponseModel":
        return cls(**response.to_dict())


class ServerCoinMemoModel(BaseModel):
    """Signed key-location registration for one epoch."""

    host: str
    wallet_public_key: str
    epoch: int
    signature: str

    def to_domain(self) -> ServerCoinMemo:
        return ServerCoinMemo.from_dict(self.model_dump())

    @classmethod
    def from_domain(cls, memo: ServerCoinMemo) -> "ServerCoinMemoModel":
        return cls(**memo.to_dict())

