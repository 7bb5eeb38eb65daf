"""
main.py — Validator Service Entrypoint
=========================================
Runs the validator: accepts key-location registrations, issues signed
storage challenges, judges responses against the deadline and the
registered location, and keeps the per-node outcome ledger.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from validator.api.routes import get_validator, router
from validator.config import settings

# ── Logging Configuration ─────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("validator")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: load the signing key before serving."""
    validator = get_validator()
    logger.info(
        "Validator %s starting on %s:%d",
        validator.public_key.hex()[:16],
        settings.HOST,
        settings.PORT,
    )
    logger.info(
        "Challenge timeout %dms, min iterations %d, epoch length %ds",
        settings.CHALLENGE_TIMEOUT_MS,
        settings.MIN_ITERATIONS,
        settings.EPOCH_SECONDS,
    )
    yield
    logger.info("Validator shutting down")


# ── FastAPI Application ───────────────────────────────────
app = FastAPI(
    title="Proof of Unique Storage — Validator",
    description=(
        "Challenge-response validator for uniquely stored copies.\n\n"
        "**Register:** node → signed key-location memo → registry\n\n"
        "**Challenge:** random (copy, chunk) → node → deadline, binding and signature checks → ledger"
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)
