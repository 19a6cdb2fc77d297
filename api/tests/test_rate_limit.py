from bond.services.rate_limit import SlidingWindowLimiter


def test_limiter_blocks_after_limit_and_reports_retry():
    limiter = SlidingWindowLimiter()
    assert limiter.check("k", limit=2, window_seconds=60).allowed
    assert limiter.check("k", limit=2, window_seconds=60).allowed

    decision = limiter.check("k", limit=2, window_seconds=60)
    assert decision.allowed is False
    assert 1 <= decision.retry_after_seconds <= 60


def test_limiter_keys_are_independent_and_resettable():
    limiter = SlidingWindowLimiter()
    assert limiter.check("a", limit=1, window_seconds=60).allowed
    assert limiter.check("b", limit=1, window_seconds=60).allowed
    assert not limiter.check("a", limit=1, window_seconds=60).allowed

    limiter.reset()
    assert limiter.check("a", limit=1, window_seconds=60).allowed


def test_crush_add_rate_limited_per_session(client, make_user, auth_headers, monkeypatch):
    from bond.services import rate_limit

    alice = make_user("alice@campus.edu")
    bob = make_user("bob@campus.edu")
    monkeypatch.setattr(rate_limit.limiter, "check", lambda key, limit, window_seconds: rate_limit.RateDecision(False, 30))

    res = client.post("/crushes", json={"crush_user_id": bob.id}, headers=auth_headers(alice))

    assert res.status_code == 429
    assert res.headers["Retry-After"] == "30"
