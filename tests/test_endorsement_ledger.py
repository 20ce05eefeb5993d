"""Tests for peer endorsements, quorum and opposition."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlmodel import Session

from admin_recovery.domain.constants import (
    AuditOutcome,
    ClaimStatus,
    EndorsementType,
    ReasonCode,
)
from admin_recovery.domain.exceptions import (
    ClaimNotPendingError,
    DuplicateEndorsementError,
    EndorsementNotFoundError,
    NotAMemberError,
    SelfEndorsementError,
    ValidationError,
)


@pytest.fixture(name="claim")
def claim_fixture(services, orphaned_family):
    return services.registry.submit_claim(orphaned_family, "alice", "endorsement")


def test_single_support_keeps_claim_pending(services, claim):
    updated = services.ledger.submit_endorsement(claim.id, "bob")

    assert updated.status == ClaimStatus.PENDING
    assert updated.endorsements_received == 1
    entry = services.registry.get_audit_trail(claim.id)[-1]
    assert entry.reason_code == ReasonCode.ENDORSEMENT_RECORDED
    assert entry.from_status == entry.to_status == ClaimStatus.PENDING


def test_quorum_approves_with_cooling_off(services, claim, clock):
    services.ledger.submit_endorsement(claim.id, "bob")
    approved = services.ledger.submit_endorsement(claim.id, "carol", "support")

    assert approved.status == ClaimStatus.APPROVED
    assert approved.endorsements_received == 2
    assert approved.cooling_off_until == clock() + timedelta(days=7)
    assert approved.expires_at == clock() + timedelta(days=14)
    assert services.registry.get_audit_trail(claim.id)[-1].reason_code == (
        ReasonCode.QUORUM_REACHED
    )
    assert [n.title for n in services.notifications.list_for("alice")] == [
        "Admin Claim Approved"
    ]


def test_opposition_threshold_denies(services, claim):
    services.ledger.submit_endorsement(claim.id, "bob", EndorsementType.OPPOSE)
    denied = services.ledger.submit_endorsement(claim.id, "carol", "oppose")

    assert denied.status == ClaimStatus.DENIED
    assert denied.opposition_received == 2
    assert denied.endorsements_received == 0
    assert services.registry.get_audit_trail(claim.id)[-1].reason_code == (
        ReasonCode.OPPOSITION_THRESHOLD
    )


def test_oppose_votes_do_not_count_toward_quorum(services, claim):
    services.ledger.submit_endorsement(claim.id, "bob", "support")
    updated = services.ledger.submit_endorsement(claim.id, "carol", "oppose")

    assert updated.status == ClaimStatus.PENDING
    assert updated.endorsements_received == 1
    assert updated.opposition_received == 1


def test_self_endorsement_rejected(services, claim):
    with pytest.raises(SelfEndorsementError):
        services.ledger.submit_endorsement(claim.id, "alice")

    entry = services.registry.get_audit_trail(claim.id)[-1]
    assert entry.outcome == AuditOutcome.REJECTED
    assert entry.reason_code == "self_endorsement"


def test_duplicate_endorsement_leaves_count_unchanged(services, claim):
    services.ledger.submit_endorsement(claim.id, "bob")

    with pytest.raises(DuplicateEndorsementError):
        services.ledger.submit_endorsement(claim.id, "bob")
    with pytest.raises(DuplicateEndorsementError):
        services.ledger.submit_endorsement(claim.id, "bob", "oppose")

    current = services.registry.get_claim_by_id(claim.id)
    assert current.endorsements_received == 1
    assert current.opposition_received == 0
    assert len(services.ledger.list_endorsements(claim.id)) == 1


def test_non_member_cannot_endorse(services, claim):
    with pytest.raises(NotAMemberError):
        services.ledger.submit_endorsement(claim.id, "mallory")


def test_email_challenge_claim_takes_no_endorsements(services, orphaned_family):
    claim = services.registry.submit_claim(
        orphaned_family, "alice", "email_challenge", owner_email="owner@x.com"
    )

    with pytest.raises(ClaimNotPendingError):
        services.ledger.submit_endorsement(claim.id, "bob")


def test_endorsing_overdue_claim_expires_it(services, claim, clock):
    clock.advance(days=7, seconds=1)

    with pytest.raises(ClaimNotPendingError):
        services.ledger.submit_endorsement(claim.id, "bob")

    stored = services.registry.claims.get(claim.id)
    assert stored.status == ClaimStatus.EXPIRED
    assert services.ledger.list_endorsements(claim.id) == []


def test_endorsing_approved_claim_fails(services, claim):
    services.ledger.submit_endorsement(claim.id, "bob")
    services.ledger.submit_endorsement(claim.id, "carol")

    with pytest.raises(ClaimNotPendingError):
        services.ledger.submit_endorsement(claim.id, "dave")


def test_invalid_endorsement_type(services, claim):
    with pytest.raises(ValidationError):
        services.ledger.submit_endorsement(claim.id, "bob", "maybe")


def test_change_endorsement_recounts(services, claim):
    services.ledger.submit_endorsement(claim.id, "bob", "oppose")

    changed = services.ledger.change_endorsement(claim.id, "bob", "support")

    assert changed.endorsements_received == 1
    assert changed.opposition_received == 0
    assert services.registry.get_audit_trail(claim.id)[-1].reason_code == (
        ReasonCode.ENDORSEMENT_CHANGED
    )
    [vote] = services.ledger.list_endorsements(claim.id)
    assert vote.endorsement_type == EndorsementType.SUPPORT
    assert vote.updated_at is not None


def test_change_endorsement_can_complete_quorum(services, claim):
    services.ledger.submit_endorsement(claim.id, "bob", "support")
    services.ledger.submit_endorsement(claim.id, "carol", "oppose")

    approved = services.ledger.change_endorsement(claim.id, "carol", "support")

    assert approved.status == ClaimStatus.APPROVED


def test_change_requires_existing_vote(services, claim):
    with pytest.raises(EndorsementNotFoundError):
        services.ledger.change_endorsement(claim.id, "bob", "support")


def test_simultaneous_endorsements_approve_exactly_once(
    file_engine, make_services, seed_family
):
    with Session(file_engine) as session:
        seed_family(session, "fam", ["alice", "bob", "carol", "dave"])
        claim = make_services(session).registry.submit_claim(
            "fam", "alice", "endorsement"
        )

    barrier = threading.Barrier(2)

    def endorse(endorser_id: str):
        with Session(file_engine) as session:
            ledger = make_services(session).ledger
            barrier.wait()
            return ledger.submit_endorsement(claim.id, endorser_id)

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(endorse, ["bob", "carol"]))

    assert {r.endorsements_received for r in results} == {1, 2}

    with Session(file_engine) as session:
        registry = make_services(session).registry
        final = registry.get_claim_by_id(claim.id)
        approvals = [
            e
            for e in registry.get_audit_trail(claim.id)
            if e.to_status == ClaimStatus.APPROVED
            and e.from_status == ClaimStatus.PENDING
        ]

    assert final.status == ClaimStatus.APPROVED
    assert final.endorsements_received == 2
    assert len(approvals) == 1
