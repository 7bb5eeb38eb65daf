"""
registry.py — Key-Location Registry
=====================================
Holds the accepted ServerCoinMemo of every node for the current
epoch. The location on file here is the ``expected_location`` that
challenge responses are checked against.
"""

import logging
import threading
import time
from typing import Callable, Dict, List

from proof_core.errors import StaleRegistrationError
from proof_core.models import NetworkLocation
from proof_core.proofs import (
    DEFAULT_EPOCH_SECONDS,
    PROTOCOL_PREFIX,
    KeyLocationProof,
    ServerCoinMemo,
    check_proof,
    current_epoch,
)

logger = logging.getLogger(__name__)


class KeyLocationRegistry:
    """Registrations keyed by wallet public key (hex)."""

    def __init__(
        self,
        epoch_seconds: int = DEFAULT_EPOCH_SECONDS,
        prefix: str = PROTOCOL_PREFIX,
        clock: Callable[[], float] = time.time,
    ):
        self.epoch_seconds = epoch_seconds
        self.prefix = prefix
        self.clock = clock
        self._memos: Dict[str, ServerCoinMemo] = {}
        self._lock = threading.Lock()

    @property
    def epoch(self) -> int:
        return current_epoch(self.clock(), self.epoch_seconds)

    def register(self, memo: ServerCoinMemo) -> None:
        """
        Accept a registration for the current epoch.

        Raises:
            StaleRegistrationError: If the memo is for another epoch.
            SignatureInvalidError: If the memo signature does not verify.
            ValueError: If the host string is malformed.
        """
        check_proof(KeyLocationProof(memo=memo), self.epoch, self.prefix)
        NetworkLocation.from_host(memo.host)
        with self._lock:
            self._memos[memo.wallet_public_key.hex()] = memo
        logger.info(
            "Registered key %s at %s (epoch %d)",
            memo.wallet_public_key.hex()[:16],
            memo.host,
            memo.epoch,
        )

    def expected_location(self, public_key: bytes) -> NetworkLocation:
        """
        Location on file for ``public_key``.

        Raises:
            StaleRegistrationError: If the key has no registration for
                the current epoch.
        """
        with self._lock:
            memo = self._memos.get(public_key.hex())
        if memo is None:
            raise StaleRegistrationError(f"Key {public_key.hex()[:16]} is not registered")
        if memo.epoch != self.epoch:
            raise StaleRegistrationError(
                f"Registration of key {public_key.hex()[:16]} expired with epoch {memo.epoch}"
            )
        return memo.location

    def registrations(self) -> List[ServerCoinMemo]:
        epoch = self.epoch
        with self._lock:
            return [m for m in self._memos.values() if m.epoch == epoch]
