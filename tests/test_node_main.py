"""
test_node_main.py — Unit Tests for the Storage Node's Registration Schedule
=============================================================================
"""

from storage_node.main import ROLLOVER_GRACE, seconds_until_next_registration

DAY = 86400


class TestRegistrationSchedule:
    """Tests for when the node re-publishes its key-location record."""

    def test_mid_epoch_uses_interval(self):
        """Far from a boundary the regular interval applies."""
        assert seconds_until_next_registration(10 * DAY + 100, 3600, DAY) == 3600

    def test_wakes_right_after_epoch_boundary(self):
        """Ten minutes before rollover, the next publish is just past it."""
        now = 11 * DAY - 600
        delay = seconds_until_next_registration(now, 3600, DAY)
        assert delay == 600 + ROLLOVER_GRACE
        assert int((now + delay) // DAY) == 11

    def test_at_boundary_waits_only_the_grace(self):
        assert seconds_until_next_registration(11 * DAY - 0.5, 3600, DAY) == 0.5 + ROLLOVER_GRACE

    def test_short_epochs(self):
        """Epochs shorter than the interval are followed one by one."""
        assert seconds_until_next_registration(120, 3600, 60) == 60 + ROLLOVER_GRACE
