from datetime import datetime
from typing import Final, Literal

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from pydantic import BaseModel, Field

from ..application.services import RecoveryServices
from ..domain.constants import MAX_EMAIL_LENGTH, MAX_REASON_LENGTH
from ..domain.entities import AuditEntry, Claim, Endorsement, Notification
from .dependencies import get_services

api_router: Final = APIRouter(
    prefix="/api/v1",
    tags=["claims"],
    responses={
        400: {"description": "Bad Request - Invalid input or challenge"},
        403: {"description": "Forbidden - Caller may not perform this action"},
        404: {"description": "Not Found - Claim does not exist"},
        409: {"description": "Conflict - Claim is not in the required state"},
        429: {"description": "Too Many Requests - Rate limit reached"},
        503: {"description": "Service Unavailable - Retry the request"},
    },
)


# Request Models
class ClaimCreate(BaseModel):
    """Request model for opening an admin claim."""

    family_id: str = Field(..., min_length=1, description="Family to recover")
    claim_type: Literal["endorsement", "email_challenge"] = Field(
        ..., description="How the claim will be verified"
    )
    reason: str | None = Field(
        None,
        max_length=MAX_REASON_LENGTH,
        description="Why the claimant should become admin",
        examples=["The previous admin left the family"],
    )
    owner_email: str | None = Field(
        None,
        max_length=MAX_EMAIL_LENGTH,
        description="Original owner's email, required for email challenges",
        examples=["owner@example.com"],
    )


class EndorsementCreate(BaseModel):
    """Request model for casting or changing a vote."""

    endorsement_type: Literal["support", "oppose"] = Field(
        "support", description="Vote on the claim"
    )
    reason: str | None = Field(None, max_length=MAX_REASON_LENGTH)


class ChallengeVerify(BaseModel):
    token: str = Field(..., min_length=1, description="Token from the challenge email")


# Response Models
class ClaimResponse(BaseModel):
    """Claim as seen by clients, with derived grant information."""

    id: str
    family_id: str
    claimant_id: str
    claim_type: str
    status: str
    reason: str | None
    endorsements_required: int
    endorsements_received: int
    opposition_received: int
    cooling_off_until: datetime | None
    expires_at: datetime
    claimed_at: datetime | None
    created_at: datetime
    updated_at: datetime | None
    grantable: bool = Field(description="Whether grant_admin_rights would succeed now")
    cooling_off_remaining_seconds: int | None = Field(
        description="Seconds until the claim becomes grantable, while cooling off"
    )

    @classmethod
    def from_claim(cls, claim: Claim, now: datetime) -> "ClaimResponse":
        remaining = claim.cooling_off_remaining(now)
        return cls(
            id=claim.id,
            family_id=claim.family_id,
            claimant_id=claim.claimant_id,
            claim_type=claim.claim_type.value,
            status=claim.effective_status(now).value,
            reason=claim.reason,
            endorsements_required=claim.endorsements_required,
            endorsements_received=claim.endorsements_received,
            opposition_received=claim.opposition_received,
            cooling_off_until=claim.cooling_off_until,
            expires_at=claim.expires_at,
            claimed_at=claim.claimed_at,
            created_at=claim.created_at,
            updated_at=claim.updated_at,
            grantable=claim.is_grantable(now),
            cooling_off_remaining_seconds=(
                int(remaining.total_seconds()) if remaining is not None else None
            ),
        )


class ClaimListResponse(BaseModel):
    claims: list[ClaimResponse]


class EndorsementResponse(BaseModel):
    id: str
    claim_id: str
    endorser_id: str
    endorsement_type: str
    reason: str | None
    created_at: datetime
    updated_at: datetime | None

    @classmethod
    def from_endorsement(cls, endorsement: Endorsement) -> "EndorsementResponse":
        return cls(
            id=endorsement.id,
            claim_id=endorsement.claim_id,
            endorser_id=endorsement.endorser_id,
            endorsement_type=endorsement.endorsement_type.value,
            reason=endorsement.reason,
            created_at=endorsement.created_at,
            updated_at=endorsement.updated_at,
        )


class EndorsementListResponse(BaseModel):
    endorsements: list[EndorsementResponse]


class AuditEntryResponse(BaseModel):
    id: int | None
    claim_id: str
    from_status: str | None
    to_status: str | None
    actor_id: str
    timestamp: datetime
    reason_code: str
    outcome: str
    detail: dict

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            id=entry.id,
            claim_id=entry.claim_id,
            from_status=entry.from_status.value if entry.from_status else None,
            to_status=entry.to_status.value if entry.to_status else None,
            actor_id=entry.actor_id,
            timestamp=entry.timestamp,
            reason_code=entry.reason_code,
            outcome=entry.outcome.value,
            detail=entry.detail,
        )


class AuditTrailResponse(BaseModel):
    entries: list[AuditEntryResponse]


class NotificationResponse(BaseModel):
    id: str
    claim_id: str
    notification_type: str
    title: str
    message: str
    created_at: datetime
    read: bool

    @classmethod
    def from_notification(cls, notification: Notification) -> "NotificationResponse":
        return cls(
            id=notification.id,
            claim_id=notification.claim_id,
            notification_type=notification.notification_type.value,
            title=notification.title,
            message=notification.message,
            created_at=notification.created_at,
            read=notification.is_read(),
        )


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]


class ActionResponse(BaseModel):
    success: bool
    message: str


def _claim_response(services: RecoveryServices, claim: Claim) -> ClaimResponse:
    return ClaimResponse.from_claim(claim, services.registry.clock())


# Handlers are plain functions: the use cases block on the database and may
# back off between retries, so they run in the threadpool.


@api_router.post(
    "/users/{user_id}/claims",
    response_model=ClaimResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open an admin claim",
    description="""
    Claim admin rights for a family that has no admin left.

    **endorsement** claims are approved by other family members;
    **email_challenge** claims are approved by the original owner following the
    link sent to `owner_email`. Either way an approved claim has to wait out a
    cooling-off period before it can be granted.
    """,
)
def api_submit_claim(
    *,
    services: RecoveryServices = Depends(get_services),
    user_id: str = Path(description="Id of the claimant"),
    claim: ClaimCreate,
) -> ClaimResponse:
    created = services.registry.submit_claim(
        claim.family_id,
        user_id,
        claim.claim_type,
        reason=claim.reason,
        owner_email=claim.owner_email,
    )
    return _claim_response(services, created)


@api_router.post(
    "/users/{user_id}/claims/{claim_id}/endorsements",
    response_model=ClaimResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Endorse or oppose a claim",
)
def api_submit_endorsement(
    *,
    services: RecoveryServices = Depends(get_services),
    user_id: str = Path(description="Id of the endorsing family member"),
    claim_id: str = Path(description="Claim to vote on"),
    endorsement: EndorsementCreate,
) -> ClaimResponse:
    claim = services.ledger.submit_endorsement(
        claim_id, user_id, endorsement.endorsement_type, endorsement.reason
    )
    return _claim_response(services, claim)


@api_router.put(
    "/users/{user_id}/claims/{claim_id}/endorsements",
    response_model=ClaimResponse,
    summary="Change an existing vote",
)
def api_change_endorsement(
    *,
    services: RecoveryServices = Depends(get_services),
    user_id: str = Path(description="Id of the endorsing family member"),
    claim_id: str = Path(description="Claim to vote on"),
    endorsement: EndorsementCreate,
) -> ClaimResponse:
    claim = services.ledger.change_endorsement(
        claim_id, user_id, endorsement.endorsement_type, endorsement.reason
    )
    return _claim_response(services, claim)


@api_router.post(
    "/claims/{claim_id}/challenge/verify",
    response_model=ClaimResponse,
    summary="Verify an email challenge",
)
def api_verify_challenge(
    *,
    services: RecoveryServices = Depends(get_services),
    claim_id: str = Path(description="Claim the token was issued for"),
    challenge: ChallengeVerify,
) -> ClaimResponse:
    claim = services.registry.verify_challenge(claim_id, challenge.token)
    return _claim_response(services, claim)


@api_router.get(
    "/claims/{claim_id}/challenge/verify",
    response_model=ClaimResponse,
    summary="Verify an email challenge from the emailed link",
)
def api_verify_challenge_link(
    *,
    services: RecoveryServices = Depends(get_services),
    claim_id: str = Path(description="Claim the token was issued for"),
    token: str = Query(..., min_length=1),
) -> ClaimResponse:
    claim = services.registry.verify_challenge(claim_id, token)
    return _claim_response(services, claim)


@api_router.post(
    "/users/{user_id}/claims/{claim_id}/challenge/reissue",
    response_model=ClaimResponse,
    summary="Send a new challenge email",
)
def api_reissue_challenge(
    *,
    services: RecoveryServices = Depends(get_services),
    user_id: str = Path(description="Id of the claimant"),
    claim_id: str = Path(description="Email-challenge claim"),
) -> ClaimResponse:
    claim = services.registry.reissue_challenge(claim_id, user_id)
    return _claim_response(services, claim)


@api_router.post(
    "/users/{user_id}/claims/{claim_id}/grant",
    response_model=ClaimResponse,
    summary="Take over admin rights",
    description="""
    Complete an approved claim once its cooling-off period has passed. The
    claimant becomes admin and the claim is closed as completed in the same
    transaction.
    """,
)
def api_grant_admin_rights(
    *,
    services: RecoveryServices = Depends(get_services),
    user_id: str = Path(description="Id of the claimant"),
    claim_id: str = Path(description="Approved claim"),
) -> ClaimResponse:
    claim = services.grants.grant_admin_rights(claim_id, user_id)
    return _claim_response(services, claim)


@api_router.post(
    "/users/{user_id}/claims/{claim_id}/withdraw",
    response_model=ClaimResponse,
    summary="Withdraw a pending claim",
)
def api_withdraw_claim(
    *,
    services: RecoveryServices = Depends(get_services),
    user_id: str = Path(description="Id of the claimant"),
    claim_id: str = Path(description="Pending claim"),
) -> ClaimResponse:
    claim = services.registry.withdraw_claim(claim_id, user_id)
    return _claim_response(services, claim)


@api_router.get(
    "/families/{family_id}/claims/{claimant_id}",
    response_model=ClaimResponse,
    summary="Current claim of a family member",
)
def api_get_claim(
    *,
    services: RecoveryServices = Depends(get_services),
    family_id: str,
    claimant_id: str,
) -> ClaimResponse:
    return _claim_response(services, services.registry.get_claim(family_id, claimant_id))


@api_router.get(
    "/families/{family_id}/pending-endorsement-claims",
    response_model=ClaimListResponse,
    summary="Claims waiting for endorsements",
)
def api_list_pending_endorsement_claims(
    *,
    services: RecoveryServices = Depends(get_services),
    family_id: str,
    excluding: str | None = Query(None, description="Leave out this user's claims"),
) -> ClaimListResponse:
    claims = services.registry.list_pending_endorsement_claims(family_id, excluding)
    return ClaimListResponse(
        claims=[_claim_response(services, claim) for claim in claims]
    )


@api_router.get("/claims/{claim_id}", response_model=ClaimResponse)
def api_get_claim_by_id(
    *, services: RecoveryServices = Depends(get_services), claim_id: str
) -> ClaimResponse:
    return _claim_response(services, services.registry.get_claim_by_id(claim_id))


@api_router.get(
    "/claims/{claim_id}/endorsements", response_model=EndorsementListResponse
)
def api_list_endorsements(
    *, services: RecoveryServices = Depends(get_services), claim_id: str
) -> EndorsementListResponse:
    return EndorsementListResponse(
        endorsements=[
            EndorsementResponse.from_endorsement(endorsement)
            for endorsement in services.ledger.list_endorsements(claim_id)
        ]
    )


@api_router.get("/claims/{claim_id}/audit", response_model=AuditTrailResponse)
def api_get_audit_trail(
    *, services: RecoveryServices = Depends(get_services), claim_id: str
) -> AuditTrailResponse:
    return AuditTrailResponse(
        entries=[
            AuditEntryResponse.from_entry(entry)
            for entry in services.registry.get_audit_trail(claim_id)
        ]
    )


@api_router.get(
    "/users/{user_id}/notifications",
    response_model=NotificationListResponse,
    tags=["notifications"],
)
def api_list_notifications(
    *,
    services: RecoveryServices = Depends(get_services),
    user_id: str,
    unread_only: bool = False,
) -> NotificationListResponse:
    return NotificationListResponse(
        notifications=[
            NotificationResponse.from_notification(notification)
            for notification in services.notifications.list_for(user_id, unread_only)
        ]
    )


@api_router.post(
    "/users/{user_id}/notifications/read-all",
    response_model=ActionResponse,
    tags=["notifications"],
)
def api_mark_all_notifications_read(
    *, services: RecoveryServices = Depends(get_services), user_id: str
) -> ActionResponse:
    count = services.notifications.mark_all_read(user_id)
    return ActionResponse(success=True, message=f"{count} notifications marked read")


@api_router.post(
    "/users/{user_id}/notifications/{notification_id}/read",
    response_model=ActionResponse,
    tags=["notifications"],
    responses={404: {"description": "Notification not found for this user"}},
)
def api_mark_notification_read(
    *,
    services: RecoveryServices = Depends(get_services),
    user_id: str,
    notification_id: str,
) -> ActionResponse:
    if not services.notifications.mark_read(user_id, notification_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification {notification_id} not found",
        )
    return ActionResponse(success=True, message="Notification marked read")
