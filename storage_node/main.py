"""
main.py — Storage Node Service Entrypoint
============================================
Runs a storage node that transforms files into location- and
key-bound chunks, serves them by fast reversal, answers storage
challenges, and periodically publishes its key-location record to
the validator.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from proof_core.proofs import create_server_coin_memo, current_epoch
from storage_node.api.routes import get_identity, router
from storage_node.config import settings

# ── Logging Configuration ─────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("storage-node")

# seconds to wait past an epoch boundary before re-publishing
ROLLOVER_GRACE = 1.0


async def register_with_validator():
    """Publish this node's key-location record for the current epoch."""
    identity = get_identity()
    epoch = current_epoch(time.time(), settings.EPOCH_SECONDS)
    memo = create_server_coin_memo(identity, epoch)
    try:
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.post(
                f"{settings.VALIDATOR_URL}/registrations", json=memo.to_dict()
            )
            response.raise_for_status()
            logger.info(
                "Registered %s at %s for epoch %d",
                identity.public_key.hex()[:16],
                memo.host,
                epoch,
            )
    except httpx.HTTPError as e:
        logger.error("Failed to register with validator: %s", e)


def seconds_until_next_registration(now: float, interval: float, epoch_seconds: int) -> float:
    """
    Delay before the next re-publish.

    Never longer than ``interval``, and never more than
    ``ROLLOVER_GRACE`` seconds past the start of the next epoch, so the
    record on file is replaced right after it goes stale.
    """
    next_epoch_start = (current_epoch(now, epoch_seconds) + 1) * epoch_seconds
    return min(interval, next_epoch_start - now + ROLLOVER_GRACE)


async def registration_loop():
    """Re-publish the registration so it never goes stale across epochs."""
    while True:
        try:
            await asyncio.sleep(
                seconds_until_next_registration(
                    time.time(), settings.REGISTRATION_INTERVAL, settings.EPOCH_SECONDS
                )
            )
            await register_with_validator()
        except asyncio.CancelledError:
            break


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: register with the validator and keep it fresh."""
    identity = get_identity()
    logger.info(
        "Storage Node %s starting at %s (data_dir=%s)",
        identity.node_id[:16],
        identity.location.to_host(),
        settings.DATA_DIR,
    )
    logger.info(
        "Protocol: %d chunks, %d iterations/chunk, checkpoint every %d",
        settings.STANDARD_CHUNK_COUNT,
        settings.MIN_ITERATIONS,
        settings.CHECKPOINT_INTERVAL,
    )

    registration_task = None
    if settings.VALIDATOR_URL:
        await register_with_validator()
        registration_task = asyncio.create_task(registration_loop())

    yield

    if registration_task is not None:
        registration_task.cancel()
        try:
            await registration_task
        except asyncio.CancelledError:
            pass
    logger.info("Storage Node %s shutting down", identity.node_id[:16])


# ── FastAPI Application ───────────────────────────────────
app = FastAPI(
    title="Proof of Unique Storage — Storage Node",
    description=(
        "Storage node holding location- and key-bound transformed chunks.\n\n"
        "**Write:** file → plan → bind → sequential transform → reversal key → store\n\n"
        "**Read:** stored chunk → fast reversal → checksum → serve"
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)
