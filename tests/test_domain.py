"""Tests for the pure domain rules: policy, derived claim state and validation."""

from datetime import UTC, datetime, timedelta

import pytest

from admin_recovery.domain.constants import ClaimStatus, ClaimType
from admin_recovery.domain.entities import (
    Claim,
    ClaimPolicy,
    OppositionPolicy,
    validate_owner_email,
    validate_reason,
)
from admin_recovery.domain.exceptions import ValidationError

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)


def make_claim(**overrides) -> Claim:
    values = {
        "id": "c1",
        "family_id": "fam",
        "claimant_id": "alice",
        "claim_type": ClaimType.ENDORSEMENT,
        "status": ClaimStatus.PENDING,
        "endorsements_required": 2,
        "expires_at": NOW + timedelta(days=7),
        "created_at": NOW,
    }
    values.update(overrides)
    return Claim(**values)


def test_quorum_approves_only_at_required_support():
    policy = ClaimPolicy()

    assert policy.evaluate_votes(1, 0) is None
    assert policy.evaluate_votes(2, 0) == ClaimStatus.APPROVED
    assert policy.evaluate_votes(3, 1) == ClaimStatus.APPROVED


def test_claim_quorum_overrides_policy_quorum():
    policy = ClaimPolicy(endorsements_required=2)

    assert policy.evaluate_votes(2, 0, required=3) is None
    assert policy.evaluate_votes(3, 0, required=3) == ClaimStatus.APPROVED


def test_denial_wins_when_both_thresholds_reached():
    policy = ClaimPolicy(opposition=OppositionPolicy("count", threshold=2))

    assert policy.evaluate_votes(2, 2) == ClaimStatus.DENIED


@pytest.mark.parametrize(
    ("support", "oppose", "reached"),
    [(0, 0, False), (2, 1, False), (1, 1, True), (0, 1, True), (3, 3, True)],
)
def test_majority_opposition(support, oppose, reached):
    assert OppositionPolicy("majority").is_reached(support, oppose) is reached


def test_approval_window_keeps_grace_after_cooling_off():
    policy = ClaimPolicy(cooling_off=timedelta(days=7), grant_grace=timedelta(days=7))

    cooling_off_until, expires_at = policy.approval_window(NOW, NOW + timedelta(days=1))

    assert cooling_off_until == NOW + timedelta(days=7)
    assert expires_at == NOW + timedelta(days=14)


def test_approval_window_never_moves_deadline_earlier():
    policy = ClaimPolicy(cooling_off=timedelta(days=1), grant_grace=timedelta(days=1))
    late = NOW + timedelta(days=30)

    _, expires_at = policy.approval_window(NOW, late)

    assert expires_at == late


def test_overdue_active_claim_reads_as_expired():
    claim = make_claim()

    assert claim.effective_status(NOW) == ClaimStatus.PENDING
    assert claim.effective_status(NOW + timedelta(days=8)) == ClaimStatus.EXPIRED
    # Terminal claims are reported as stored
    denied = make_claim(status=ClaimStatus.DENIED)
    assert denied.effective_status(NOW + timedelta(days=8)) == ClaimStatus.DENIED


def test_grantable_window():
    claim = make_claim(
        status=ClaimStatus.APPROVED,
        cooling_off_until=NOW + timedelta(days=7),
        expires_at=NOW + timedelta(days=14),
    )

    assert claim.is_cooling_off(NOW)
    assert not claim.is_grantable(NOW)
    assert claim.cooling_off_remaining(NOW) == timedelta(days=7)
    assert claim.is_grantable(NOW + timedelta(days=7))
    assert claim.cooling_off_remaining(NOW + timedelta(days=7)) is None
    assert not claim.is_grantable(NOW + timedelta(days=15))


def test_pending_claim_is_never_grantable():
    assert not make_claim().is_grantable(NOW)


def test_claim_without_cooling_off_has_no_remaining_time():
    assert make_claim().cooling_off_remaining(NOW) is None
    approved = make_claim(status=ClaimStatus.APPROVED, cooling_off_until=None)
    assert approved.cooling_off_remaining(NOW) is None


def test_validate_reason():
    validate_reason(None)
    validate_reason("Our admin moved away.\nI organise the family tree now.")

    with pytest.raises(ValidationError, match="longer"):
        validate_reason("x" * 1001)
    with pytest.raises(ValidationError, match="control characters"):
        validate_reason("bad\x00reason")


def test_validate_owner_email():
    assert validate_owner_email("  owner@x.com ") == "owner@x.com"

    with pytest.raises(ValidationError, match="required"):
        validate_owner_email(None)
    with pytest.raises(ValidationError, match="required"):
        validate_owner_email("   ")
    for bad in ["owner", "owner@", "@x.com", "owner@x", "owner@.com", "ow ner@x.com"]:
        with pytest.raises(ValidationError):
            validate_owner_email(bad)


def test_policy_from_settings(test_settings):
    policy = ClaimPolicy.from_settings(test_settings)

    assert policy.endorsements_required == 2
    assert policy.claim_ttl == timedelta(days=7)
    assert policy.cooling_off == timedelta(days=7)
    assert policy.opposition == OppositionPolicy("count", 2)
    assert policy.challenge_ttl == timedelta(hours=24)
