"""
schemas.py — Pydantic Request/Response Models
=================================================
Data models for the Validator REST API. Shared wire records live in
``proof_core.schemas``.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from proof_core.schemas import ChallengeResponseModel


class RegistrationResponse(BaseModel):
    """Result of accepting a key-location registration."""

    wallet_public_key: str
    host: str
    epoch: int
    status: str = "registered"


class FetchRegistrationRequest(BaseModel):
    """Where to pull a node's key-location record from."""

    node_url: str = Field(..., min_length=1)


class IssueChallengeRequest(BaseModel):
    """Request to issue a challenge."""

    total_copies: int = Field(..., gt=0)
    chunks_per_copy: int = Field(..., gt=0)
    public_key: Optional[str] = None  # target node, hex


class AuditRequest(BaseModel):
    """Request to challenge a registered node end to end."""

    total_copies: int = Field(1, gt=0)
    chunks_per_copy: int = Field(..., gt=0)


class VerifyRequest(BaseModel):
    """A node's response submitted for judgement."""

    public_key: str
    challenge_nonce: str
    response: ChallengeResponseModel


class ChallengeOutcomeResponse(BaseModel):
    """Outcome of one challenge, as exposed to reward accounting."""

    challenge_nonce: str
    public_key: str
    status: str
    verified: bool
    elapsed_ms: Optional[int]
    reason: str = ""


class ProofAuditResponse(BaseModel):
    public_key: str
    chunk_index: int
    valid: bool
    reason: str = ""


class LedgerEntryModel(BaseModel):
    challenge_nonce: str
    outcome: str
    verified: bool
    elapsed_ms: Optional[int]
    recorded_at: int
    reason: str = ""


class NodeLedgerResponse(BaseModel):
    """Rolling outcome history of one node."""

    public_key: str
    success_rate: float
    mean_response_ms: Optional[float]
    history: List[LedgerEntryModel]


class HealthResponse(BaseModel):
    """Validator health check response."""

    status: str
    service: str
    validator_public_key: str
    registered_nodes: int
    epoch: int
    ledger: Dict[str, dict]
