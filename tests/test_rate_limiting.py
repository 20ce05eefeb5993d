"""Tests for per-IP rate limiting of the API."""

import pytest
from fastapi.testclient import TestClient

from admin_recovery.rate_limiting import rate_limiter


@pytest.fixture(name="limited")
def limited_fixture():
    """Enable rate limiting with small limits for the duration of a test."""
    rate_limiter.enable()
    rate_limiter.reset()
    original_limits = rate_limiter.set_limits_for_testing(read=3, claim=2)
    yield rate_limiter
    rate_limiter.restore_limits(original_limits)
    rate_limiter.reset()


def _submit(client: TestClient, user_id: str = "alice", **headers: str):
    return client.post(
        f"/api/v1/users/{user_id}/claims",
        json={"family_id": "fam", "claim_type": "endorsement"},
        headers=headers,
    )


def test_claim_submission_is_rate_limited(client: TestClient, orphaned_family, limited):
    """Requirements:
    - Claim submission is limited per IP, rejected attempts included
    - Over the limit the API answers 429 with Retry-After
    """
    assert _submit(client, "alice").status_code == 201
    assert _submit(client, "alice").status_code == 409

    response = _submit(client, "bob")

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "60"
    problem = response.json()
    assert problem["type"] == "/problems/rate-limit-exceeded"
    assert problem["code"] == "rate_limit_exceeded"
    assert problem["instance"] == "/api/v1/users/bob/claims"


def test_limits_are_per_client_ip(client: TestClient, orphaned_family, limited):
    _submit(client, "alice", **{"X-Forwarded-For": "10.0.0.1"})
    _submit(client, "bob", **{"X-Forwarded-For": "10.0.0.1"})

    response = _submit(client, "carol", **{"X-Forwarded-For": "10.0.0.2"})

    assert response.status_code == 201
    assert limited.get_request_count("10.0.0.1", "claim") == 2
    assert limited.get_request_count("10.0.0.2", "claim") == 1


def test_read_bucket_and_headers(client: TestClient, limited):
    responses = [client.get("/api/v1/claims/missing") for _ in range(4)]

    assert [r.status_code for r in responses] == [404, 404, 404, 429]
    assert responses[0].headers["X-RateLimit-Limit"] == "3"
    assert responses[0].headers["X-RateLimit-Remaining"] == "2"
    assert responses[2].headers["X-RateLimit-Remaining"] == "0"


def test_claim_bucket_does_not_consume_reads(
    client: TestClient, orphaned_family, limited
):
    _submit(client, "alice")
    _submit(client, "bob")

    assert client.get("/api/v1/families/fam/claims/alice").status_code == 200


def test_non_api_paths_are_not_limited(client: TestClient, limited):
    for _ in range(5):
        client.get("/docs")

    assert limited.get_request_count("testclient", "read") == 0


def test_disabled_limiter_lets_everything_through(client: TestClient, orphaned_family):
    original_limits = rate_limiter.set_limits_for_testing(claim=1)
    try:
        assert _submit(client, "alice").status_code == 201
        assert _submit(client, "bob").status_code == 201
    finally:
        rate_limiter.restore_limits(original_limits)
