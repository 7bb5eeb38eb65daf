"""
config.py — Validator Configuration
=====================================
"""

import os

from proof_core.proofs import PROTOCOL_PREFIX


class Settings:
    """Validator configuration from environment."""

    HOST: str = os.getenv("VALIDATOR_HOST", "0.0.0.0")
    PORT: int = int(os.getenv("VALIDATOR_PORT", "8000"))
    KEY_FILE: str = os.getenv("VALIDATOR_KEY_FILE", "/data/keys/validator.pem")
    CHALLENGE_TIMEOUT_MS: int = int(os.getenv("CHALLENGE_TIMEOUT_MS", "5000"))
    MIN_ITERATIONS: int = int(os.getenv("MIN_ITERATIONS", "100000"))
    CHECKPOINT_INTERVAL: int = int(os.getenv("CHECKPOINT_INTERVAL", "10000"))
    EPOCH_SECONDS: int = int(os.getenv("EPOCH_SECONDS", "86400"))
    PROTOCOL_PREFIX: str = os.getenv("PROTOCOL_PREFIX", PROTOCOL_PREFIX)
    HISTORY_WINDOW: int = int(os.getenv("HISTORY_WINDOW", "100"))
    SPOT_CHECK_SEGMENTS: int = int(os.getenv("SPOT_CHECK_SEGMENTS", "2"))


settings = Settings()
