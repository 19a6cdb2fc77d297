import json

from bond.services.events import client_ip, log_activity, record_activity


class FakeDB:
    def __init__(self):
        self.calls = []
        self.commits = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, stmt, params):
        self.calls.append((str(stmt), params))

    def commit(self):
        self.commits += 1


class FakeRequest:
    def __init__(self, headers=None, host="10.0.0.7"):
        self.headers = headers or {}
        self.client = type("Client", (), {"host": host})()


def test_log_activity_inserts_expected_payload_shape():
    db = FakeDB()
    log_activity(
        db=db,
        action="crush_added",
        user_id="00000000-0000-0000-0000-000000000123",
        details={"crush_user_id": "00000000-0000-0000-0000-000000000456", "is_mutual": False},
        ip_address="10.0.0.7",
        user_agent="pytest",
    )
    assert len(db.calls) == 1
    sql, params = db.calls[0]
    assert "INSERT INTO audit_log" in sql
    assert params["action"] == "crush_added"
    assert params["user_id"] == "00000000-0000-0000-0000-000000000123"
    assert json.loads(params["details"])["is_mutual"] is False


def test_record_activity_commits_with_request_context():
    db = FakeDB()
    request = FakeRequest(headers={"x-forwarded-for": "203.0.113.9, 10.0.0.1", "user-agent": "pytest"})

    record_activity(lambda: db, request, action="users_viewed", user_id="u1", details={"users_count": 3})

    assert db.commits == 1
    _, params = db.calls[0]
    assert params["ip_address"] == "203.0.113.9"
    assert params["user_agent"] == "pytest"


def test_record_activity_swallows_storage_errors(caplog):
    from sqlalchemy.exc import OperationalError

    class BrokenDB(FakeDB):
        def execute(self, stmt, params):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

    record_activity(lambda: BrokenDB(), FakeRequest(), action="crush_added", user_id="u1")

    assert "failed to log activity" in caplog.text


def test_client_ip_falls_back_to_peer_address():
    assert client_ip(FakeRequest()) == "10.0.0.7"
    assert client_ip(FakeRequest(host=None)) == "unknown"
