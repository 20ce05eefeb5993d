"""End-to-end tests of the recovery API and its Problem Details errors."""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from admin_recovery.domain.exceptions import (
    CoolingOffActiveError,
    TransientStoreError,
)
from admin_recovery.presentation.error_handlers import problem_for_domain_error


def _open_claim(client: TestClient, user_id: str = "alice", **body) -> dict:
    payload = {"family_id": "fam", "claim_type": "endorsement", **body}
    response = client.post(f"/api/v1/users/{user_id}/claims", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def _endorse(client: TestClient, claim_id: str, user_id: str, vote: str = "support"):
    return client.post(
        f"/api/v1/users/{user_id}/claims/{claim_id}/endorsements",
        json={"endorsement_type": vote},
    )


def test_endorsement_recovery_flow(client: TestClient, orphaned_family, clock):
    """Requirements:
    - Two support votes approve an endorsement claim
    - The grant is refused during cooling-off and succeeds afterwards
    """
    claim = _open_claim(client, reason="Our admin left")
    assert claim["status"] == "pending"
    assert claim["endorsements_required"] == 2
    assert claim["grantable"] is False

    assert _endorse(client, claim["id"], "bob").json()["endorsements_received"] == 1
    approved = _endorse(client, claim["id"], "carol")
    assert approved.status_code == 201
    body = approved.json()
    assert body["status"] == "approved"
    assert body["cooling_off_remaining_seconds"] == 7 * 24 * 3600

    early = client.post(f"/api/v1/users/alice/claims/{claim['id']}/grant")
    assert early.status_code == 409
    problem = early.json()
    assert problem["code"] == "cooling_off_active"
    assert problem["type"] == "/problems/cooling-off-active"
    assert datetime.fromisoformat(problem["cooling_off_until"]) == (
        clock() + timedelta(days=7)
    )

    clock.advance(days=7)
    granted = client.post(f"/api/v1/users/alice/claims/{claim['id']}/grant")
    assert granted.status_code == 200
    assert granted.json()["status"] == "completed"

    again = client.post(f"/api/v1/users/alice/claims/{claim['id']}/grant")
    assert again.status_code == 409
    assert again.json()["code"] == "not_approved"


def test_email_challenge_flow(client: TestClient, orphaned_family, read_token):
    claim = _open_claim(
        client, claim_type="email_challenge", owner_email="owner@example.com"
    )

    wrong = client.post(
        f"/api/v1/claims/{claim['id']}/challenge/verify", json={"token": "nope"}
    )
    assert wrong.status_code == 400
    assert wrong.json()["code"] == "challenge_invalid_or_expired"

    verified = client.get(
        f"/api/v1/claims/{claim['id']}/challenge/verify",
        params={"token": read_token()},
    )
    assert verified.status_code == 200
    assert verified.json()["status"] == "approved"


def test_reissue_too_soon_is_rate_limited(client: TestClient, orphaned_family):
    claim = _open_claim(
        client, claim_type="email_challenge", owner_email="owner@example.com"
    )

    response = client.post(
        f"/api/v1/users/alice/claims/{claim['id']}/challenge/reissue"
    )

    assert response.status_code == 429
    assert response.json()["code"] == "challenge_rate_limited"


def test_duplicate_claim_conflict(client: TestClient, orphaned_family):
    first = _open_claim(client)

    response = client.post(
        "/api/v1/users/alice/claims",
        json={"family_id": "fam", "claim_type": "endorsement"},
    )

    assert response.status_code == 409
    problem = response.json()
    assert problem["code"] == "duplicate_active_claim"
    assert problem["existing_claim_id"] == first["id"]
    assert problem["instance"] == "/api/v1/users/alice/claims"


def test_family_with_admin_conflict(client: TestClient, session, seed_family):
    seed_family(session, "fam", ["alice"], admins=["zoe"])

    response = client.post(
        "/api/v1/users/alice/claims",
        json={"family_id": "fam", "claim_type": "endorsement"},
    )

    assert response.status_code == 409
    assert response.json()["code"] == "not_orphaned"


@pytest.mark.parametrize(
    ("user_id", "code"),
    [("alice", "self_endorsement"), ("mallory", "not_a_member")],
)
def test_forbidden_endorsements(client: TestClient, orphaned_family, user_id, code):
    claim = _open_claim(client)

    response = _endorse(client, claim["id"], user_id)

    assert response.status_code == 403
    assert response.json()["code"] == code


def test_duplicate_endorsement_conflict(client: TestClient, orphaned_family):
    claim = _open_claim(client)
    _endorse(client, claim["id"], "bob")

    response = _endorse(client, claim["id"], "bob")

    assert response.status_code == 409
    assert response.json()["code"] == "duplicate_endorsement"


def test_change_endorsement(client: TestClient, orphaned_family):
    claim = _open_claim(client)
    _endorse(client, claim["id"], "bob", "oppose")

    response = client.put(
        f"/api/v1/users/bob/claims/{claim['id']}/endorsements",
        json={"endorsement_type": "support"},
    )

    assert response.status_code == 200
    assert response.json()["endorsements_received"] == 1
    votes = client.get(f"/api/v1/claims/{claim['id']}/endorsements").json()
    assert [v["endorsement_type"] for v in votes["endorsements"]] == ["support"]


def test_request_validation_problem(client: TestClient, orphaned_family):
    response = client.post(
        "/api/v1/users/alice/claims",
        json={"family_id": "fam", "claim_type": "telepathy"},
    )

    assert response.status_code == 400
    problem = response.json()
    assert problem["type"] == "/problems/validation-failed"
    assert problem["title"] == "Validation Failed"
    assert [e["field"] for e in problem["errors"]] == ["claim_type"]


def test_domain_validation_problem(client: TestClient, orphaned_family):
    response = client.post(
        "/api/v1/users/alice/claims",
        json={"family_id": "fam", "claim_type": "email_challenge"},
    )

    assert response.status_code == 400
    problem = response.json()
    assert problem["code"] == "validation_failed"
    assert problem["errors"][0]["field"] == "owner_email"
    assert problem["errors"][0]["code"] == "field_required"


def test_claim_not_found(client: TestClient):
    response = client.get("/api/v1/claims/missing")

    assert response.status_code == 404
    problem = response.json()
    assert problem["type"] == "/problems/resource-not-found"
    assert problem["title"] == "Claim Not Found"
    assert problem["code"] == "claim_not_found"


def test_queries(client: TestClient, orphaned_family, clock):
    alice = _open_claim(client)
    clock.advance(minutes=1)
    _open_claim(client, "bob")

    current = client.get("/api/v1/families/fam/claims/alice")
    assert current.status_code == 200
    assert current.json()["id"] == alice["id"]

    pending = client.get(
        "/api/v1/families/fam/pending-endorsement-claims",
        params={"excluding": "bob"},
    ).json()
    assert [c["id"] for c in pending["claims"]] == [alice["id"]]

    trail = client.get(f"/api/v1/claims/{alice['id']}/audit").json()["entries"]
    assert [e["reason_code"] for e in trail] == ["claim_submitted"]
    assert trail[0]["to_status"] == "pending"


def test_overdue_claim_reads_as_expired(client: TestClient, orphaned_family, clock):
    claim = _open_claim(client)
    clock.advance(days=8)

    response = client.get(f"/api/v1/claims/{claim['id']}")

    assert response.json()["status"] == "expired"


def test_withdraw(client: TestClient, orphaned_family):
    claim = _open_claim(client)

    forbidden = client.post(f"/api/v1/users/bob/claims/{claim['id']}/withdraw")
    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "not_claimant"

    response = client.post(f"/api/v1/users/alice/claims/{claim['id']}/withdraw")
    assert response.status_code == 200
    assert response.json()["status"] == "denied"


def test_notifications(client: TestClient, orphaned_family):
    claim = _open_claim(client)

    listed = client.get("/api/v1/users/bob/notifications").json()["notifications"]
    assert [n["claim_id"] for n in listed] == [claim["id"]]
    assert listed[0]["read"] is False

    marked = client.post(f"/api/v1/users/bob/notifications/{listed[0]['id']}/read")
    assert marked.status_code == 200
    unread = client.get(
        "/api/v1/users/bob/notifications", params={"unread_only": True}
    ).json()
    assert unread["notifications"] == []

    # Someone else's notification is not found for carol
    missing = client.post(f"/api/v1/users/carol/notifications/{listed[0]['id']}/read")
    assert missing.status_code == 404

    read_all = client.post("/api/v1/users/carol/notifications/read-all")
    assert read_all.json() == {"success": True, "message": "1 notifications marked read"}


def test_transient_store_error_maps_to_503():
    problem = problem_for_domain_error(
        TransientStoreError("submit_claim failed after 5 attempts"), "/api/v1/x"
    )

    assert problem.status == 503
    assert problem.code == "transient_store_error"
    # Internal detail is not leaked to clients
    assert "attempts" not in (problem.detail or "")


def test_cooling_off_problem_carries_deadline():
    until = datetime(2025, 3, 8, 12, 0, 0, tzinfo=UTC)

    problem = problem_for_domain_error(
        CoolingOffActiveError("Cooling-off period active", until), "/api/v1/x"
    )

    assert problem.status == 409
    dumped = problem.model_dump(mode="json", exclude_none=True)
    assert dumped["cooling_off_until"] == "2025-03-08T12:00:00Z"
