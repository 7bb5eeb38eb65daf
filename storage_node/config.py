"""
config.py — Storage Node Configuration
========================================
"""

import os
from typing import Optional

from proof_core.models import NetworkLocation, ProtocolConfig


class Settings:
    """Storage Node configuration from environment."""

    HOST: str = os.getenv("NODE_HOST", "127.0.0.1")
    PORT: int = int(os.getenv("NODE_PORT", "9000"))
    HOSTNAME: Optional[str] = os.getenv("NODE_HOSTNAME") or None
    DATA_DIR: str = os.getenv("STORAGE_DATA_DIR", "/data/transformed")
    KEY_FILE: str = os.getenv("NODE_KEY_FILE", "/data/keys/node.pem")
    STANDARD_CHUNK_COUNT: int = int(os.getenv("STANDARD_CHUNK_COUNT", "60"))
    TARGET_TOTAL_TIME: float = float(os.getenv("TARGET_TOTAL_TIME", "60"))
    MIN_ITERATIONS: int = int(os.getenv("MIN_ITERATIONS", "100000"))
    CHECKPOINT_INTERVAL: int = int(os.getenv("CHECKPOINT_INTERVAL", "10000"))
    EPOCH_SECONDS: int = int(os.getenv("EPOCH_SECONDS", "86400"))
    VALIDATOR_PUBLIC_KEY: str = os.getenv("VALIDATOR_PUBLIC_KEY", "")
    VALIDATOR_URL: str = os.getenv("VALIDATOR_URL", "")
    REGISTRATION_INTERVAL: int = int(os.getenv("REGISTRATION_INTERVAL", "3600"))

    @property
    def location(self) -> NetworkLocation:
        return NetworkLocation(ip=self.HOST, port=self.PORT, hostname=self.HOSTNAME)

    @property
    def protocol(self) -> ProtocolConfig:
        return ProtocolConfig(
            standard_chunk_count=self.STANDARD_CHUNK_COUNT,
            target_total_time=self.TARGET_TOTAL_TIME,
            min_iterations=self.MIN_ITERATIONS,
            checkpoint_interval=self.CHECKPOINT_INTERVAL,
        )


settings = Settings()
