"""Tests for the final admin grant."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlmodel import Session, select

from admin_recovery.domain.constants import (
    AuditOutcome,
    ClaimStatus,
    MemberRole,
    ReasonCode,
)
from admin_recovery.domain.exceptions import (
    CoolingOffActiveError,
    NotApprovedError,
    NotClaimantError,
    TransientStoreError,
)
from admin_recovery.infrastructure.database.models import MembershipRecord
from admin_recovery.infrastructure.membership import SqlMembershipOracle


@pytest.fixture(name="approved_claim")
def approved_claim_fixture(services, orphaned_family):
    claim = services.registry.submit_claim(orphaned_family, "alice", "endorsement")
    services.ledger.submit_endorsement(claim.id, "bob")
    return services.ledger.submit_endorsement(claim.id, "carol")


def test_endorsed_claim_is_granted_after_cooling_off(
    services, approved_claim, clock, session
):
    assert approved_claim.status == ClaimStatus.APPROVED

    with pytest.raises(CoolingOffActiveError) as exc_info:
        services.grants.grant_admin_rights(approved_claim.id, "alice")
    assert exc_info.value.cooling_off_until == approved_claim.cooling_off_until

    clock.advance(days=7)
    completed = services.grants.grant_admin_rights(approved_claim.id, "alice")

    assert completed.status == ClaimStatus.COMPLETED
    assert completed.claimed_at == clock()
    oracle = SqlMembershipOracle(session)
    assert oracle.has_active_admin("fam")
    trail = services.registry.get_audit_trail(approved_claim.id)
    assert [e.reason_code for e in trail if e.to_status != e.from_status] == [
        ReasonCode.CLAIM_SUBMITTED,
        ReasonCode.QUORUM_REACHED,
        ReasonCode.ADMIN_GRANTED,
    ]


def test_grant_is_not_applied_twice(services, approved_claim, clock):
    clock.advance(days=7)
    services.grants.grant_admin_rights(approved_claim.id, "alice")

    with pytest.raises(NotApprovedError):
        services.grants.grant_admin_rights(approved_claim.id, "alice")

    completions = [
        e
        for e in services.registry.get_audit_trail(approved_claim.id)
        if e.to_status == ClaimStatus.COMPLETED and e.from_status == ClaimStatus.APPROVED
    ]
    assert len(completions) == 1


def test_only_claimant_can_grant(services, approved_claim, clock):
    clock.advance(days=7)

    with pytest.raises(NotClaimantError):
        services.grants.grant_admin_rights(approved_claim.id, "bob")

    assert services.registry.get_claim_by_id(approved_claim.id).status == (
        ClaimStatus.APPROVED
    )


def test_pending_claim_cannot_be_granted(services, orphaned_family):
    claim = services.registry.submit_claim(orphaned_family, "alice", "endorsement")

    with pytest.raises(NotApprovedError):
        services.grants.grant_admin_rights(claim.id, "alice")


def test_grant_after_deadline_expires_claim(services, approved_claim, clock, session):
    clock.advance(days=15)

    with pytest.raises(NotApprovedError):
        services.grants.grant_admin_rights(approved_claim.id, "alice")

    stored = services.registry.claims.get(approved_claim.id)
    assert stored.status == ClaimStatus.EXPIRED
    assert not SqlMembershipOracle(session).has_active_admin("fam")


def test_family_with_new_admin_denies_claim(
    services, approved_claim, clock, session, seed_family
):
    seed_family(session, "fam", [], admins=["zoe"])
    clock.advance(days=7)

    with pytest.raises(NotApprovedError):
        services.grants.grant_admin_rights(approved_claim.id, "alice")

    stored = services.registry.claims.get(approved_claim.id)
    assert stored.status == ClaimStatus.DENIED
    denial = [
        e
        for e in services.registry.get_audit_trail(approved_claim.id)
        if e.to_status == ClaimStatus.DENIED
    ][0]
    assert denial.reason_code == ReasonCode.FAMILY_HAS_ADMIN
    assert not _is_admin(session, "alice")


class FailingGrantOracle(SqlMembershipOracle):
    def grant_role(self, family_id, user_id, role):
        raise TransientStoreError("membership store unavailable")


def test_failed_role_grant_leaves_claim_approved(
    session, make_services, orphaned_family, clock
):
    services = make_services(session, membership=FailingGrantOracle(session, clock))
    claim = services.registry.submit_claim(orphaned_family, "alice", "endorsement")
    services.ledger.submit_endorsement(claim.id, "bob")
    services.ledger.submit_endorsement(claim.id, "carol")
    clock.advance(days=7)

    with pytest.raises(TransientStoreError):
        services.grants.grant_admin_rights(claim.id, "alice")

    assert services.registry.get_claim_by_id(claim.id).status == ClaimStatus.APPROVED
    assert not _is_admin(session, "alice")
    last = services.registry.get_audit_trail(claim.id)[-1]
    assert last.outcome == AuditOutcome.REJECTED
    assert last.reason_code == "transient_store_error"
    assert last.detail["attempted"] == "grant_admin_rights"


def _approve(services, claimant_id: str) -> str:
    claim = services.registry.submit_claim("fam", claimant_id, "endorsement")
    services.ledger.submit_endorsement(claim.id, "carol")
    services.ledger.submit_endorsement(claim.id, "dave")
    return claim.id


def test_concurrent_grants_in_one_family_make_one_admin(
    file_engine, make_services, seed_family, clock
):
    with Session(file_engine) as session:
        seed_family(session, "fam", ["alice", "bob", "carol", "dave"])
        services = make_services(session)
        claim_ids = {user: _approve(services, user) for user in ("alice", "bob")}
    clock.advance(days=7)

    barrier = threading.Barrier(2)

    def grant(user_id: str):
        with Session(file_engine) as session:
            grants = make_services(session).grants
            barrier.wait()
            try:
                return grants.grant_admin_rights(claim_ids[user_id], user_id).status
            except NotApprovedError as e:
                return e

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(grant, ["alice", "bob"]))

    assert outcomes.count(ClaimStatus.COMPLETED) == 1
    assert sum(isinstance(o, NotApprovedError) for o in outcomes) == 1

    with Session(file_engine) as session:
        admins = session.exec(
            select(MembershipRecord).where(
                MembershipRecord.family_id == "fam",
                MembershipRecord.role == MemberRole.ADMIN.value,
            )
        ).all()
        assert len(admins) == 1
        registry = make_services(session).registry
        loser = "bob" if admins[0].user_id == "alice" else "alice"
        denied = registry.get_claim_by_id(claim_ids[loser])
        assert denied.status == ClaimStatus.DENIED
        [denial] = [
            e
            for e in registry.get_audit_trail(denied.id)
            if e.to_status == ClaimStatus.DENIED and e.outcome == AuditOutcome.APPLIED
        ]
        assert denial.reason_code == ReasonCode.FAMILY_HAS_ADMIN


def test_grant_racing_expiry_sweep_applies_one_outcome(
    file_engine, make_services, seed_family, clock
):
    with Session(file_engine) as session:
        seed_family(session, "fam", ["alice", "bob", "carol", "dave"])
        claim_id = _approve(make_services(session), "alice")
        deadline = make_services(session).registry.claims.get(claim_id).expires_at
    # Inside the grant window; the sweep is told it is already past the deadline
    clock.now = deadline - timedelta(minutes=1)

    barrier = threading.Barrier(2)

    def grant():
        with Session(file_engine) as session:
            grants = make_services(session).grants
            barrier.wait()
            try:
                return grants.grant_admin_rights(claim_id, "alice").status
            except NotApprovedError as e:
                return e

    def sweep():
        with Session(file_engine) as session:
            scheduler = make_services(session).scheduler
            barrier.wait()
            return scheduler.sweep(now=deadline + timedelta(seconds=1))

    with ThreadPoolExecutor(max_workers=2) as pool:
        granted = pool.submit(grant)
        swept = pool.submit(sweep)
        outcome, report = granted.result(), swept.result()

    with Session(file_engine) as session:
        registry = make_services(session).registry
        final = registry.claims.get(claim_id)
        terminal = [
            e
            for e in registry.get_audit_trail(claim_id)
            if e.from_status == ClaimStatus.APPROVED
            and e.to_status != ClaimStatus.APPROVED
        ]
        assert len(terminal) == 1
        if final.status == ClaimStatus.COMPLETED:
            assert outcome == ClaimStatus.COMPLETED
            assert report.expired == 0
            assert _is_admin(session, "alice")
        else:
            assert final.status == ClaimStatus.EXPIRED
            assert isinstance(outcome, NotApprovedError)
            assert report.expired_approved == 1
            assert not _is_admin(session, "alice")


def _is_admin(session, user_id: str) -> bool:
    record = session.get(MembershipRecord, ("fam", user_id), populate_existing=True)
    return record is not None and record.role == MemberRole.ADMIN.value
