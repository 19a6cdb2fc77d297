import pytest

pytest.importorskip("fastapi")

from sqlalchemy import text

from bond.routes import crushes as crush_routes


def _audit_actions(session_factory, user_id):
    with session_factory() as db:
        rows = db.execute(
            text("SELECT action FROM audit_log WHERE user_id=:user_id ORDER BY created_at ASC"),
            {"user_id": user_id},
        ).all()
    return [r[0] for r in rows]


def test_crush_flow_ends_in_match_and_notifications(client, make_user, auth_headers, session_factory):
    alice = make_user("alice@campus.edu", name="Alice")
    bob = make_user("bob@campus.edu", name="Bob")

    res = client.post("/crushes", json={"crush_user_id": bob.id}, headers=auth_headers(alice))
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["is_match"] is False
    assert body["outcome"] == "no_match"
    assert body["message"] == "Crush added successfully"
    assert body["crush"]["crush_user_id"] == bob.id

    res = client.post("/crushes", json={"crushUserId": alice.id}, headers=auth_headers(bob))
    assert res.status_code == 200, res.text
    assert res.json()["is_match"] is True
    assert res.json()["outcome"] == "match_created"
    assert res.json()["message"].startswith("It's a match!")

    res = client.get("/matches", headers=auth_headers(alice))
    assert res.status_code == 200
    assert [m["id"] for m in res.json()["matches"]] == [bob.id]

    res = client.get(f"/matches/{alice.id}", headers=auth_headers(bob))
    assert res.json() == {"user_id": alice.id, "matched": True, "state": "matched"}

    # TestClient runs background tasks before returning.
    res = client.get("/notifications", headers=auth_headers(alice))
    assert res.status_code == 200
    notes = res.json()["notifications"]
    assert len(notes) == 1
    assert notes[0]["payload"]["message"] == "Bob has chosen you as their crush too!"

    assert "crush_added" in _audit_actions(session_factory, alice.id)
    assert "matches_viewed" in _audit_actions(session_factory, alice.id)


def test_list_crushes_reports_cap_and_remaining(client, make_user, auth_headers):
    alice = make_user("alice@campus.edu")
    bob = make_user("bob@campus.edu", name="Bob")
    client.post("/crushes", json={"crush_user_id": bob.id}, headers=auth_headers(alice))

    res = client.get("/crushes", headers=auth_headers(alice))

    assert res.status_code == 200
    body = res.json()
    assert body["count"] == 1
    assert body["cap"] == 4
    assert body["remaining"] == 3
    assert body["crushes"][0]["name"] == "Bob"


def test_repeat_crush_is_idempotent(client, make_user, auth_headers):
    alice = make_user("alice@campus.edu")
    bob = make_user("bob@campus.edu")
    client.post("/crushes", json={"crush_user_id": bob.id}, headers=auth_headers(alice))

    res = client.post("/crushes", json={"crush_user_id": bob.id}, headers=auth_headers(alice))

    assert res.status_code == 200
    assert res.json()["already_exists"] is True
    assert client.get("/crushes", headers=auth_headers(alice)).json()["count"] == 1


def test_self_crush_is_bad_request(client, make_user, auth_headers):
    alice = make_user("alice@campus.edu")
    res = client.post("/crushes", json={"crush_user_id": alice.id}, headers=auth_headers(alice))
    assert res.status_code == 400
    assert res.json()["detail"] == "You cannot add yourself as a crush"


def test_missing_target_is_bad_request(client, make_user, auth_headers):
    alice = make_user("alice@campus.edu")
    res = client.post("/crushes", json={}, headers=auth_headers(alice))
    assert res.status_code == 400
    assert res.json()["detail"] == "crush_user_id is required"


def test_unknown_target_is_not_found(client, make_user, auth_headers):
    alice = make_user("alice@campus.edu")
    res = client.post(
        "/crushes",
        json={"crush_user_id": "00000000-0000-0000-0000-000000000000"},
        headers=auth_headers(alice),
    )
    assert res.status_code == 404


def test_cap_exceeded_is_bad_request(client, make_user, auth_headers):
    alice = make_user("alice@campus.edu")
    others = [make_user(f"user{i}@campus.edu") for i in range(5)]
    for other in others[:4]:
        assert client.post("/crushes", json={"crush_user_id": other.id}, headers=auth_headers(alice)).status_code == 200

    res = client.post("/crushes", json={"crush_user_id": others[4].id}, headers=auth_headers(alice))

    assert res.status_code == 400
    assert res.json()["detail"] == "You can only have up to 4 crushes at a time"


def test_unverified_user_cannot_crush(client, make_user, auth_headers):
    pending = make_user("pending@campus.edu", verified=False)
    bob = make_user("bob@campus.edu")
    res = client.post("/crushes", json={"crush_user_id": bob.id}, headers=auth_headers(pending))
    assert res.status_code == 403


def test_delete_by_path_and_query(client, make_user, auth_headers, session_factory):
    alice = make_user("alice@campus.edu")
    bob = make_user("bob@campus.edu")
    carol = make_user("carol@campus.edu")
    for other in (bob, carol):
        client.post("/crushes", json={"crush_user_id": other.id}, headers=auth_headers(alice))

    res = client.delete(f"/crushes/{bob.id}", headers=auth_headers(alice))
    assert res.status_code == 200
    assert res.json()["removed"] is True

    res = client.delete("/crushes", params={"crush_user_id": carol.id}, headers=auth_headers(alice))
    assert res.status_code == 200
    assert res.json()["removed"] is True

    res = client.delete("/crushes", params={"crush_user_id": carol.id}, headers=auth_headers(alice))
    assert res.json()["removed"] is False

    assert client.get("/crushes", headers=auth_headers(alice)).json()["count"] == 0
    assert "crush_removed" in _audit_actions(session_factory, alice.id)


def test_delete_without_target_is_bad_request(client, make_user, auth_headers):
    alice = make_user("alice@campus.edu")
    assert client.delete("/crushes", headers=auth_headers(alice)).status_code == 400


def test_match_persists_after_withdrawal(client, make_user, auth_headers):
    alice = make_user("alice@campus.edu")
    bob = make_user("bob@campus.edu")
    client.post("/crushes", json={"crush_user_id": bob.id}, headers=auth_headers(alice))
    client.post("/crushes", json={"crush_user_id": alice.id}, headers=auth_headers(bob))

    client.delete(f"/crushes/{bob.id}", headers=auth_headers(alice))

    assert [m["id"] for m in client.get("/matches", headers=auth_headers(alice)).json()["matches"]] == [bob.id]


def test_match_status_one_sided(client, make_user, auth_headers):
    alice = make_user("alice@campus.edu")
    bob = make_user("bob@campus.edu")
    client.post("/crushes", json={"crush_user_id": bob.id}, headers=auth_headers(alice))

    res = client.get(f"/matches/{bob.id}", headers=auth_headers(alice))

    assert res.json() == {"user_id": bob.id, "matched": False, "state": "one_sided"}


def test_storage_failure_is_opaque_500(client, make_user, auth_headers, monkeypatch):
    from sqlalchemy.exc import OperationalError

    alice = make_user("alice@campus.edu")
    bob = make_user("bob@campus.edu")

    def _fail(self, user_id, target_id):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(crush_routes.CrushService, "declare", _fail)
    res = client.post("/crushes", json={"crush_user_id": bob.id}, headers=auth_headers(alice))

    assert res.status_code == 500
    assert res.json()["detail"] == "Failed to add crush"


def test_users_lists_verified_organization_members(client, make_user, auth_headers, session_factory):
    alice = make_user("alice@campus.edu")
    bob = make_user("bob@campus.edu", name="Bob")
    make_user("pending@campus.edu", verified=False)
    make_user("carol@other.edu")
    client.post("/crushes", json={"crush_user_id": bob.id}, headers=auth_headers(alice))

    res = client.get("/users", headers=auth_headers(alice))

    assert res.status_code == 200
    users = res.json()["users"]
    assert [u["id"] for u in users] == [bob.id]
    assert users[0]["has_crush"] is True
    assert "users_viewed" in _audit_actions(session_factory, alice.id)


def test_crush_routes_require_auth(client):
    assert client.get("/crushes").status_code == 401
    assert client.post("/crushes", json={"crush_user_id": "x"}).status_code == 401
    assert client.get("/matches").status_code == 401


def test_notification_transport_failure_keeps_match(client, make_user, auth_headers, session_factory):
    import bond.main as m
    from bond.deps import get_notification_dispatcher
    from bond.services.notifications import NotificationDispatcher

    def _refused(db, row):
        raise OSError("connection refused")

    m.app.dependency_overrides[get_notification_dispatcher] = lambda: NotificationDispatcher(
        session_factory, deliver=_refused
    )
    alice = make_user("alice@campus.edu")
    bob = make_user("bob@campus.edu")
    client.post("/crushes", json={"crush_user_id": bob.id}, headers=auth_headers(alice))

    res = client.post("/crushes", json={"crush_user_id": alice.id}, headers=auth_headers(bob))

    assert res.status_code == 200
    assert res.json()["outcome"] == "match_created"
    with session_factory() as db:
        rows = db.execute(text("SELECT status, attempt_count FROM notifications_outbox")).all()
    assert [(r[0], r[1]) for r in rows] == [("pending", 1), ("pending", 1)]
    assert client.get("/notifications", headers=auth_headers(alice)).json()["notifications"] == []


def test_delete_accepts_camel_case_query(client, make_user, auth_headers):
    alice = make_user("alice@campus.edu")
    bob = make_user("bob@campus.edu")
    client.post("/crushes", json={"crush_user_id": bob.id}, headers=auth_headers(alice))

    res = client.delete("/crushes", params={"crushUserId": bob.id}, headers=auth_headers(alice))

    assert res.status_code == 200
    assert res.json()["removed"] is True
