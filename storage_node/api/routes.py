"""
routes.py — Storage Node API Endpoints
========================================
Transport adapter for the node: the write path runs as background
transform jobs, the read path serves chunks and challenges from
stored artifacts only.

Endpoints:
    POST   /transform               — Start transforming an uploaded file
    GET    /transform/{job_id}      — Transform job status
    DELETE /transform/{job_id}      — Cancel a transform job
    GET    /chunks                  — List stored chunk indices
    GET    /chunks/{index}          — Serve original chunk bytes (fast reversal)
    GET    /chunks/{index}/proof    — Transform result of a stored chunk
    POST   /challenge               — Respond to a storage challenge
    GET    /registration            — Key-location record for the current epoch
    GET    /health                  — Health check
"""

import logging
import time
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile
from pydantic import BaseModel

from proof_core.errors import (
    ChunkNotStoredError,
    RestorationVerificationError,
    SignatureInvalidError,
)
from proof_core.models import NodeIdentity
from proof_core.proofs import create_server_coin_memo, current_epoch
from proof_core.schemas import (
    ChallengeResponseModel,
    ServerCoinMemoModel,
    StorageChallengeModel,
)
from proof_core.signing import load_or_create_key
from storage_node.config import settings
from storage_node.services.chunk_store import ChunkStore
from storage_node.services.retrieval import RetrievalService
from storage_node.services.transform import TransformJob, TransformPipeline

logger = logging.getLogger(__name__)

router = APIRouter()

# ── Service Instances (initialized lazily) ─────────────
_identity: Optional[NodeIdentity] = None
_store: Optional[ChunkStore] = None
_jobs: Dict[str, TransformJob] = {}


def get_identity() -> NodeIdentity:
    """Get or create the node identity singleton."""
    global _identity
    if _identity is None:
        _identity = NodeIdentity(
            private_key=load_or_create_key(settings.KEY_FILE),
            location=settings.location,
        )
    return _identity


def get_store() -> ChunkStore:
    """Get or create the chunk store singleton."""
    global _store
    if _store is None:
        _store = ChunkStore(data_dir=settings.DATA_DIR)
    return _store


def get_retrieval(
    identity: NodeIdentity = Depends(get_identity),
    store: ChunkStore = Depends(get_store),
) -> RetrievalService:
    validator_key = (
        bytes.fromhex(settings.VALIDATOR_PUBLIC_KEY) if settings.VALIDATOR_PUBLIC_KEY else None
    )
    return RetrievalService(identity, store, validator_public_key=validator_key)


def get_pipeline(
    identity: NodeIdentity = Depends(get_identity),
    store: ChunkStore = Depends(get_store),
) -> TransformPipeline:
    return TransformPipeline(identity, settings.protocol, store=store)


# ── Request / Response Models ──────────────────────────────


class TransformJobResponse(BaseModel):
    job_id: str
    copy_index: int
    status: str
    chunks_done: int
    chunk_count: int


class ChunkListResponse(BaseModel):
    """Response for listing stored chunks."""

    node_id: str
    chunks: List[int]
    total_count: int
    total_size_bytes: int


def _job_response(job: TransformJob) -> TransformJobResponse:
    return TransformJobResponse(
        job_id=job.job_id,
        copy_index=job.copy_index,
        status=job.status,
        chunks_done=job.chunks_done,
        chunk_count=job.chunk_count,
    )


# ── Write path ─────────────────────────────────────────────


@router.post("/transform", response_model=TransformJobResponse, status_code=202)
async def start_transform(
    file: UploadFile = File(...),
    copy_index: int = Query(0, ge=0),
    pipeline: TransformPipeline = Depends(get_pipeline),
):
    """
    Start the slow transform of an uploaded file.

    Returns immediately; poll ``GET /transform/{job_id}`` for completion.
    """
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty file")

    job = TransformJob(pipeline, content, copy_index=copy_index)
    _jobs[job.job_id] = job
    return _job_response(job)


@router.get("/transform/{job_id}", response_model=TransformJobResponse)
async def transform_status(job_id: str):
    job = _jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_response(job)


@router.delete("/transform/{job_id}", response_model=TransformJobResponse)
async def cancel_transform(job_id: str):
    job = _jobs.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    job.cancel()
    return _job_response(job)


# ── Read path ──────────────────────────────────────────────


@router.get("/chunks", response_model=ChunkListResponse)
async def list_chunks(
    identity: NodeIdentity = Depends(get_identity),
    store: ChunkStore = Depends(get_store),
):
    """List all chunks stored for this node identity."""
    chunks = store.list_chunks(identity.node_id)
    return ChunkListResponse(
        node_id=identity.node_id,
        chunks=chunks,
        total_count=len(chunks),
        total_size_bytes=store.total_size,
    )


@router.get("/chunks/{chunk_index}")
def serve_chunk(chunk_index: int, retrieval: RetrievalService = Depends(get_retrieval)):
    """
    Serve the original bytes of a chunk by fast reversal.

    Returns the raw chunk data as application/octet-stream.
    """
    try:
        data = retrieval.serve_chunk(chunk_index)
    except ChunkNotStoredError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RestorationVerificationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={"X-Chunk-Index": str(chunk_index)},
    )


@router.get("/chunks/{chunk_index}/proof")
async def chunk_proof(
    chunk_index: int,
    identity: NodeIdentity = Depends(get_identity),
    store: ChunkStore = Depends(get_store),
):
    """Transform result (checkpoints, signature) of a stored chunk."""
    chunk = store.retrieve(identity.node_id, chunk_index)
    if chunk is None:
        raise HTTPException(status_code=404, detail="Chunk not found")
    return chunk.proof.to_dict()


@router.post("/challenge", response_model=ChallengeResponseModel)
def respond_to_challenge(
    request: StorageChallengeModel,
    retrieval: RetrievalService = Depends(get_retrieval),
):
    """Respond to a storage challenge from stored artifacts."""
    try:
        challenge = request.to_domain()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Malformed challenge: {e}")

    try:
        response = retrieval.respond_to_challenge(challenge)
    except SignatureInvalidError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ChunkNotStoredError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RestorationVerificationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return ChallengeResponseModel.from_domain(response)


@router.get("/registration", response_model=ServerCoinMemoModel)
async def registration(identity: NodeIdentity = Depends(get_identity)):
    """Signed key-location record for the current epoch."""
    epoch = current_epoch(time.time(), settings.EPOCH_SECONDS)
    return ServerCoinMemoModel.from_domain(create_server_coin_memo(identity, epoch))


@router.get("/health")
async def health_check(
    identity: NodeIdentity = Depends(get_identity),
    store: ChunkStore = Depends(get_store),
):
    """Health check endpoint for the storage node."""
    return {
        "status": "healthy",
        "service": "storage-node",
        "node_id": identity.node_id,
        "public_key": identity.public_key.hex(),
        "location": identity.location.to_host(),
        "stored_chunks": store.chunk_count(identity.node_id),
        "running_jobs": sum(1 for job in _jobs.values() if not job.done()),
    }
