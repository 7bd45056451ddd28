"""Tests for procdash data models."""

from datetime import datetime

from procdash.models import AttemptStatus, ProcessRecord, Snapshot, TerminationAttempt


def test_process_record_creation():
    """Test ProcessRecord dataclass creation."""
    record = ProcessRecord(
        pid=123,
        name="test_process",
        user="testuser",
        state="R",
        cpu_percent=50.0,
        mem_percent=25.0,
        vmrss_kb=1000,
        vmsize_kb=4000,
    )

    assert record.pid == 123
    assert record.name == "test_process"
    assert record.user == "testuser"
    assert record.state == "R"
    assert record.cpu_percent == 50.0
    assert record.mem_percent == 25.0
    assert record.vmrss_kb == 1000
    assert record.vmsize_kb == 4000


def test_process_record_is_frozen():
    """Test that ProcessRecord is immutable (frozen)."""
    record = ProcessRecord(
        pid=1,
        name="init",
        user="root",
        state="S",
        cpu_percent=0.1,
        mem_percent=0.5,
        vmrss_kb=500,
        vmsize_kb=None,
    )

    try:
        record.pid = 999
        raise AssertionError("Should have raised FrozenInstanceError")
    except AttributeError:
        pass  # Expected behavior for frozen dataclass


def test_process_record_uses_slots():
    """Test that ProcessRecord uses __slots__ for memory efficiency."""
    record = ProcessRecord(
        pid=1,
        name="init",
        user=None,
        state="S",
        cpu_percent=None,
        mem_percent=None,
        vmrss_kb=None,
        vmsize_kb=None,
    )

    assert not hasattr(record, "__dict__")


class TestSnapshot:
    """Tests for Snapshot."""

    def test_empty_user_means_unknown(self):
        """Test an empty current user is normalised to None."""
        snapshot = Snapshot(processes=(), current_user="")
        assert snapshot.current_user is None

    def test_user_is_kept(self):
        """Test a real user name is kept as-is."""
        snapshot = Snapshot(processes=(), current_user="Alice")
        assert snapshot.current_user == "Alice"

    def test_fetched_at_defaults_to_now(self):
        """Test fetched_at is populated automatically."""
        snapshot = Snapshot(processes=())
        assert snapshot.fetched_at > 0


class TestTerminationAttempt:
    """Tests for TerminationAttempt."""

    def test_pending_flag(self):
        """Test is_pending reflects the status."""
        attempt = TerminationAttempt(
            id=1,
            pid=10,
            name="sleep",
            status=AttemptStatus.PENDING,
            message="Sending SIGTERM...",
            created_at=datetime(2024, 1, 1, 9, 5, 7),
        )
        assert attempt.is_pending
        assert attempt.time_label == "09:05:07"

    def test_resolved_is_not_pending(self):
        """Test a resolved attempt is no longer pending."""
        attempt = TerminationAttempt(
            id=1,
            pid=10,
            name="sleep",
            status=AttemptStatus.ERROR,
            message="denied",
            created_at=datetime.now(),
        )
        assert not attempt.is_pending

    def test_status_values(self):
        """Test AttemptStatus values match the log vocabulary."""
        assert [s.value for s in AttemptStatus] == ["pending", "success", "error"]
