"""
ledger.py — Challenge Outcome Ledger
======================================
Rolling per-node history of challenge outcomes.

The ledger is owned by the validator and handed to whoever needs the
numbers (reward accounting, dashboards); it is never process-global.
It reports outcomes, timings and success rates only, payouts are
computed elsewhere.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 100


@dataclass(frozen=True)
class LedgerEntry:
    challenge_nonce: str
    outcome: str
    verified: bool
    elapsed_ms: Optional[int]
    recorded_at: int
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "challenge_nonce": self.challenge_nonce,
            "outcome": self.outcome,
            "verified": self.verified,
            "elapsed_ms": self.elapsed_ms,
            "recorded_at": self.recorded_at,
            "reason": self.reason,
        }


class ChallengeLedger:
    """Thread-safe rolling outcome history keyed by node public key (hex)."""

    def __init__(self, window: int = DEFAULT_WINDOW):
        """
        Args:
            window: Number of most recent outcomes kept per node.
        """
        self.window = window
        self._entries: Dict[str, Deque[LedgerEntry]] = {}
        self._lock = threading.Lock()

    def record(self, node: str, entry: LedgerEntry) -> None:
        with self._lock:
            history = self._entries.setdefault(node, deque(maxlen=self.window))
            history.append(entry)
        logger.debug("Ledger %s: %s (%s)", node[:16], entry.outcome, entry.reason or "ok")

    def history(self, node: str) -> List[LedgerEntry]:
        with self._lock:
            return list(self._entries.get(node, ()))

    def success_rate(self, node: str) -> float:
        """Fraction of verified outcomes in the window; 0.0 with no history."""
        history = self.history(node)
        if not history:
            return 0.0
        return sum(1 for e in history if e.verified) / len(history)

    def mean_response_ms(self, node: str) -> Optional[float]:
        timings = [e.elapsed_ms for e in self.history(node) if e.elapsed_ms is not None]
        if not timings:
            return None
        return sum(timings) / len(timings)

    def nodes(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def snapshot(self) -> Dict[str, dict]:
        """Per-node summary for reward accounting."""
        summary = {}
        for node in self.nodes():
            history = self.history(node)
            summary[node] = {
                "challenges": len(history),
                "verified": sum(1 for e in history if e.verified),
                "success_rate": self.success_rate(node),
                "mean_response_ms": self.mean_response_ms(node),
            }
        return summary
