"""
test_ledger.py — Unit Tests for the Challenge Outcome Ledger
==============================================================
"""

from validator.services.ledger import ChallengeLedger, LedgerEntry


def entry(verified, elapsed=100, nonce="n"):
    return LedgerEntry(
        challenge_nonce=nonce,
        outcome="verified" if verified else "failed",
        verified=verified,
        elapsed_ms=elapsed,
        recorded_at=0,
    )


class TestChallengeLedger:
    """Tests for the rolling outcome ledger."""

    def test_empty_history(self):
        ledger = ChallengeLedger()
        assert ledger.history("node") == []
        assert ledger.success_rate("node") == 0.0
        assert ledger.mean_response_ms("node") is None

    def test_success_rate(self):
        ledger = ChallengeLedger()
        for verified in (True, True, False, True):
            ledger.record("node", entry(verified))
        assert ledger.success_rate("node") == 0.75

    def test_mean_response(self):
        ledger = ChallengeLedger()
        ledger.record("node", entry(True, elapsed=100))
        ledger.record("node", entry(True, elapsed=300))
        assert ledger.mean_response_ms("node") == 200

    def test_window_is_rolling(self):
        ledger = ChallengeLedger(window=3)
        for i in range(5):
            ledger.record("node", entry(i >= 2, nonce=str(i)))
        history = ledger.history("node")
        assert [e.challenge_nonce for e in history] == ["2", "3", "4"]
        assert ledger.success_rate("node") == 1.0

    def test_snapshot(self):
        ledger = ChallengeLedger()
        ledger.record("a", entry(True))
        ledger.record("b", entry(False))
        snapshot = ledger.snapshot()
        assert ledger.nodes() == ["a", "b"]
        assert snapshot["a"]["verified"] == 1
        assert snapshot["b"]["success_rate"] == 0.0
