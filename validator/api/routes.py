"""
routes.py — Validator REST API Endpoints
==========================================
Registration, challenge issuing and judging, and the outcome ledger.

Endpoints:
    POST /registrations                       — Accept a ServerCoinMemo
    POST /registrations/fetch                 — Pull and accept a node's own record
    GET  /registrations                       — Registrations of the current epoch
    POST /challenges                          — Issue a signed challenge
    POST /challenges/verify                   — Judge a submitted response
    POST /nodes/{public_key}/audit            — Challenge a registered node live
    POST /nodes/{public_key}/proofs/{index}   — Spot-check a node's transform proof
    GET  /ledger                              — Per-node outcome summary
    GET  /ledger/{public_key}                 — One node's rolling history
    GET  /health                              — Health check
"""

import logging
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool

from proof_core.errors import (
    ChallengeReplayError,
    ProofOfStorageError,
    SignatureInvalidError,
    StaleRegistrationError,
)
from proof_core.proofs import ServerCoinMemo
from proof_core.schemas import ServerCoinMemoModel, StorageChallengeModel
from proof_core.signing import load_or_create_key
from validator.api.schemas import (
    AuditRequest,
    ChallengeOutcomeResponse,
    FetchRegistrationRequest,
    HealthResponse,
    IssueChallengeRequest,
    LedgerEntryModel,
    NodeLedgerResponse,
    ProofAuditResponse,
    RegistrationResponse,
    VerifyRequest,
)
from validator.config import settings
from validator.services.challenge import ChallengeRecord, ChallengeValidator
from validator.services.ledger import ChallengeLedger
from validator.services.node_client import NodeClient
from validator.services.registry import KeyLocationRegistry

logger = logging.getLogger(__name__)

router = APIRouter()

# ── Service Instances (initialized lazily) ─────────────
_validator: Optional[ChallengeValidator] = None


def get_validator() -> ChallengeValidator:
    """Get or create the challenge validator singleton."""
    global _validator
    if _validator is None:
        _validator = ChallengeValidator(
            private_key=load_or_create_key(settings.KEY_FILE),
            registry=KeyLocationRegistry(
                epoch_seconds=settings.EPOCH_SECONDS, prefix=settings.PROTOCOL_PREFIX
            ),
            ledger=ChallengeLedger(window=settings.HISTORY_WINDOW),
            timeout_ms=settings.CHALLENGE_TIMEOUT_MS,
        )
    return _validator


def get_node_client_factory() -> Callable[[str], NodeClient]:
    return NodeClient


def _parse_key(hex_key: str) -> bytes:
    try:
        return bytes.fromhex(hex_key)
    except ValueError:
        raise HTTPException(status_code=400, detail="Public key must be hex")


def _outcome(record: ChallengeRecord, public_key: bytes) -> ChallengeOutcomeResponse:
    return ChallengeOutcomeResponse(
        challenge_nonce=record.challenge.challenge_nonce.hex(),
        public_key=public_key.hex(),
        status=record.status.value,
        verified=record.verified,
        elapsed_ms=record.elapsed_ms,
        reason=record.reason,
    )


# ── Registration ───────────────────────────────────────


def _accept(validator: ChallengeValidator, memo: ServerCoinMemo) -> RegistrationResponse:
    try:
        validator.registry.register(memo)
    except StaleRegistrationError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SignatureInvalidError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Malformed registration: {e}")

    return RegistrationResponse(
        wallet_public_key=memo.wallet_public_key.hex(), host=memo.host, epoch=memo.epoch
    )


@router.post("/registrations", response_model=RegistrationResponse)
async def register(
    request: ServerCoinMemoModel,
    validator: ChallengeValidator = Depends(get_validator),
):
    """Accept a node's key-location record for the current epoch."""
    try:
        memo = request.to_domain()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Malformed registration: {e}")
    return _accept(validator, memo)


@router.post("/registrations/fetch", response_model=RegistrationResponse)
async def fetch_registration(
    request: FetchRegistrationRequest,
    validator: ChallengeValidator = Depends(get_validator),
    client_factory: Callable[[str], NodeClient] = Depends(get_node_client_factory),
):
    """
    Pull a node's key-location record from the node itself and accept it.

    The record is judged exactly like a pushed one; the URL only says
    where to fetch it from.
    """
    try:
        memo = await client_factory(request.node_url).fetch_registration()
    except ProofOfStorageError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return _accept(validator, memo)


@router.get("/registrations", response_model=List[ServerCoinMemoModel])
async def list_registrations(validator: ChallengeValidator = Depends(get_validator)):
    return [ServerCoinMemoModel.from_domain(m) for m in validator.registry.registrations()]


# ── Challenges ─────────────────────────────────────────


@router.post("/challenges", response_model=StorageChallengeModel)
async def issue_challenge(
    request: IssueChallengeRequest,
    validator: ChallengeValidator = Depends(get_validator),
):
    """Issue a signed challenge for a random (copy, chunk)."""
    node = _parse_key(request.public_key) if request.public_key else None
    challenge = validator.issue_challenge(
        request.total_copies, request.chunks_per_copy, node=node
    )
    return StorageChallengeModel.from_domain(challenge)


@router.post("/challenges/verify", response_model=ChallengeOutcomeResponse)
async def verify_response(
    request: VerifyRequest,
    validator: ChallengeValidator = Depends(get_validator),
):
    """
    Judge a response that was relayed to the validator.

    The receipt time at this endpoint is the response time.
    """
    public_key = _parse_key(request.public_key)
    try:
        nonce = bytes.fromhex(request.challenge_nonce)
        response = request.response.to_domain()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Malformed response: {e}")

    try:
        record = validator.resolve(nonce, response, public_key)
    except ChallengeReplayError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _outcome(record, public_key)


@router.post("/nodes/{public_key}/audit", response_model=ChallengeOutcomeResponse)
async def audit_node(
    public_key: str,
    request: AuditRequest,
    validator: ChallengeValidator = Depends(get_validator),
    client_factory: Callable[[str], NodeClient] = Depends(get_node_client_factory),
):
    """
    Challenge a registered node over HTTP and judge its answer.

    The node is reached at the location on file, never at an address
    it supplies itself.
    """
    key = _parse_key(public_key)
    try:
        location = validator.registry.expected_location(key)
    except StaleRegistrationError as e:
        raise HTTPException(status_code=404, detail=str(e))

    client = client_factory(location.base_url)
    challenge = validator.issue_challenge(request.total_copies, request.chunks_per_copy, node=key)
    record = await validator.run_challenge_async(challenge, key, client.send_challenge)
    return _outcome(record, key)


@router.post("/nodes/{public_key}/proofs/{chunk_index}", response_model=ProofAuditResponse)
async def audit_transform_proof(
    public_key: str,
    chunk_index: int,
    validator: ChallengeValidator = Depends(get_validator),
    client_factory: Callable[[str], NodeClient] = Depends(get_node_client_factory),
):
    """Fetch a node's transform result for a chunk and spot-check it."""
    key = _parse_key(public_key)
    try:
        location = validator.registry.expected_location(key)
    except StaleRegistrationError as e:
        raise HTTPException(status_code=404, detail=str(e))

    try:
        result = await client_factory(location.base_url).fetch_transform_proof(chunk_index)
        await run_in_threadpool(
            validator.audit_transform_proof,
            key,
            result,
            min_iterations=settings.MIN_ITERATIONS,
            checkpoint_interval=settings.CHECKPOINT_INTERVAL,
            sample_count=settings.SPOT_CHECK_SEGMENTS,
        )
    except ProofOfStorageError as e:
        logger.warning("Transform proof of %s rejected: %s", public_key[:16], e)
        return ProofAuditResponse(
            public_key=public_key, chunk_index=chunk_index, valid=False, reason=str(e)
        )
    return ProofAuditResponse(public_key=public_key, chunk_index=chunk_index, valid=True)


# ── Ledger ─────────────────────────────────────────────


@router.get("/ledger")
async def ledger_snapshot(validator: ChallengeValidator = Depends(get_validator)):
    """Per-node outcome summary for reward accounting."""
    return validator.ledger.snapshot()


@router.get("/ledger/{public_key}", response_model=NodeLedgerResponse)
async def node_ledger(public_key: str, validator: ChallengeValidator = Depends(get_validator)):
    ledger = validator.ledger
    return NodeLedgerResponse(
        public_key=public_key,
        success_rate=ledger.success_rate(public_key),
        mean_response_ms=ledger.mean_response_ms(public_key),
        history=[LedgerEntryModel(**e.to_dict()) for e in ledger.history(public_key)],
    )


# ── Health Check ───────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check(validator: ChallengeValidator = Depends(get_validator)):
    registry = validator.registry
    return HealthResponse(
        status="healthy",
        service="validator",
        validator_public_key=validator.public_key.hex(),
        registered_nodes=len(registry.registrations()),
        epoch=registry.epoch,
        ledger=validator.ledger.snapshot(),
    )
