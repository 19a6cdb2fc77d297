import warnings

import pytest

pytest.importorskip("fastapi")

import bond.main as m


def _openapi_schema() -> dict:
    m.app.openapi_schema = None
    return m.app.openapi()


def _iter_http_routes():
    for path, operations in _openapi_schema()["paths"].items():
        for method in sorted(operations):
            yield method.upper(), path


def test_no_duplicate_http_method_path_pairs():
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        _openapi_schema()
    assert [str(w.message) for w in caught if "Duplicate Operation ID" in str(w.message)] == []


def test_public_route_contract():
    routes = set(_iter_http_routes())
    expected = {
        ("POST", "/auth/register"),
        ("POST", "/auth/verify-email"),
        ("POST", "/auth/verify-email/resend"),
        ("POST", "/auth/login"),
        ("POST", "/auth/logout"),
        ("GET", "/auth/me"),
        ("GET", "/users"),
        ("GET", "/crushes"),
        ("POST", "/crushes"),
        ("DELETE", "/crushes"),
        ("DELETE", "/crushes/{crush_user_id}"),
        ("GET", "/matches"),
        ("GET", "/matches/{other_user_id}"),
        ("GET", "/notifications"),
        ("GET", "/health"),
    }
    assert expected <= routes


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
