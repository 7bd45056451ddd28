"""Tests for the HTTP backend client."""

import json
from unittest.mock import Mock

import pytest
import requests

from procdash.backend import (
    FETCH_FAILED,
    KILL_FAILED,
    MALFORMED_RESPONSE,
    BackendError,
    HttpBackend,
    describe_kill_failure,
    parse_process,
)


def make_response(status: int, body=None, raw: bytes | None = None) -> requests.Response:
    """Build a real requests.Response with a JSON or raw body."""
    response = requests.Response()
    response.status_code = status
    response._content = raw if raw is not None else json.dumps(body).encode()
    return response


@pytest.fixture
def session() -> Mock:
    return Mock(spec=requests.Session)


@pytest.fixture
def client(session) -> HttpBackend:
    return HttpBackend("http://localhost:8080/", timeout=2.0, session=session)


PROCESS_JSON = {
    "pid": 1,
    "name": "init",
    "user": "root",
    "state": "S",
    "vmsize_kb": 2000,
    "vmrss_kb": 500,
    "cpu_percent": 0.1,
    "mem_percent": 0.2,
}


class TestDescribeKillFailure:
    """Tests for kill failure messages."""

    def test_full_detail(self):
        """Test error, message and errno are combined."""
        body = {"error": "denied", "message": "not permitted", "errno": 1}
        assert describe_kill_failure(body) == "denied: not permitted (errno 1)"

    def test_error_and_message(self):
        """Test errno is omitted when absent."""
        assert describe_kill_failure({"error": "denied", "message": "nope"}) == "denied: nope"

    def test_error_only(self):
        """Test a bare error is used as-is."""
        assert describe_kill_failure({"error": "Invalid PID"}) == "Invalid PID"

    def test_empty_body(self):
        """Test a missing body gives the generic message."""
        assert describe_kill_failure(None) == KILL_FAILED
        assert describe_kill_failure({}) == KILL_FAILED


class TestParseProcess:
    """Tests for process record parsing."""

    def test_parse_full_record(self):
        """Test every field is mapped."""
        record = parse_process(PROCESS_JSON)
        assert record.pid == 1
        assert record.name == "init"
        assert record.user == "root"
        assert record.state == "S"
        assert record.vmrss_kb == 500
        assert record.vmsize_kb == 2000
        assert record.cpu_percent == 0.1
        assert record.mem_percent == 0.2

    def test_optional_fields(self):
        """Test missing optional fields become None."""
        record = parse_process({"pid": 5, "name": "x", "state": "Q"})
        assert record.user is None
        assert record.cpu_percent is None
        assert record.vmrss_kb is None
        assert record.state == "Q"

    @pytest.mark.parametrize(
        "data",
        [
            {"pid": 0, "name": "x"},
            {"pid": "1", "name": "x"},
            {"pid": 1, "name": ""},
            {"pid": 1, "name": "x", "cpu_percent": "high"},
            ["not", "an", "object"],
        ],
    )
    def test_invalid_records(self, data):
        """Test malformed records raise ValueError."""
        with pytest.raises(ValueError):
            parse_process(data)


class TestFetchSnapshot:
    """Tests for GET /api/processes."""

    def test_success(self, client, session):
        """Test a successful response becomes a snapshot."""
        session.get.return_value = make_response(200, {"processes": [PROCESS_JSON], "current_user": "root"})

        snapshot = client.fetch_snapshot()

        session.get.assert_called_once_with("http://localhost:8080/api/processes", timeout=2.0)
        assert [p.pid for p in snapshot.processes] == [1]
        assert snapshot.current_user == "root"

    def test_empty_user_is_unknown(self, client, session):
        """Test an empty current_user is treated as unknown."""
        session.get.return_value = make_response(200, {"processes": [], "current_user": ""})
        assert client.fetch_snapshot().current_user is None

    def test_error_status_uses_error_field(self, client, session):
        """Test the server's error text is surfaced."""
        session.get.return_value = make_response(500, {"error": "Failed to read process list"})

        with pytest.raises(BackendError, match="Failed to read process list"):
            client.fetch_snapshot()

    def test_error_status_without_body(self, client, session):
        """Test a non-JSON error body gives the generic message."""
        session.get.return_value = make_response(502, raw=b"<html>bad gateway</html>")

        with pytest.raises(BackendError, match=FETCH_FAILED):
            client.fetch_snapshot()

    def test_malformed_json(self, client, session):
        """Test a non-JSON success body is a failure."""
        session.get.return_value = make_response(200, raw=b"not json")

        with pytest.raises(BackendError, match=MALFORMED_RESPONSE):
            client.fetch_snapshot()

    def test_malformed_record(self, client, session):
        """Test one bad record fails the whole fetch."""
        session.get.return_value = make_response(200, {"processes": [PROCESS_JSON, {"pid": -3}]})

        with pytest.raises(BackendError, match=MALFORMED_RESPONSE):
            client.fetch_snapshot()

    def test_unexpected_shape(self, client, session):
        """Test a JSON list instead of an object is a failure."""
        session.get.return_value = make_response(200, [PROCESS_JSON])

        with pytest.raises(BackendError, match=MALFORMED_RESPONSE):
            client.fetch_snapshot()

    def test_transport_failure(self, client, session):
        """Test connection errors become BackendError."""
        session.get.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(BackendError, match="connection refused"):
            client.fetch_snapshot()


class TestKill:
    """Tests for POST /api/kill."""

    def test_success(self, client, session):
        """Test a successful kill posts the pid."""
        session.post.return_value = make_response(200, {"status": "terminated", "pid": 42})

        assert client.kill(42) == "terminated"
        session.post.assert_called_once_with("http://localhost:8080/api/kill", json={"pid": 42}, timeout=2.0)

    def test_success_without_body(self, client, session):
        """Test an empty success body is fine."""
        session.post.return_value = make_response(200, raw=b"")
        assert client.kill(42) is None

    def test_failure_detail(self, client, session):
        """Test the error body is turned into the attempt message."""
        session.post.return_value = make_response(
            500, {"error": "kill failed", "errno": 1, "message": "Operation not permitted"}
        )

        with pytest.raises(BackendError) as excinfo:
            client.kill(1)
        assert str(excinfo.value) == "kill failed: Operation not permitted (errno 1)"

    def test_failure_without_body(self, client, session):
        """Test an unreadable error body gives the generic message."""
        session.post.return_value = make_response(500, raw=b"oops")

        with pytest.raises(BackendError, match=KILL_FAILED):
            client.kill(1)

    def test_transport_failure(self, client, session):
        """Test a dropped connection uses the generic message."""
        session.post.side_effect = requests.Timeout("timed out")

        with pytest.raises(BackendError, match=KILL_FAILED):
            client.kill(1)


def test_base_url_trailing_slash_stripped(client):
    """Test the base URL is normalised."""
    assert client.base_url == "http://localhost:8080"
