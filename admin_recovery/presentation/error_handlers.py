"""Centralized error handling for the presentation layer."""

from fastapi import Request
from fastapi.responses import JSONResponse

from ..domain.exceptions import (
    ChallengeInvalidOrExpiredError,
    ChallengeRateLimitedError,
    ClaimNotFoundError,
    ClaimNotPendingError,
    CoolingOffActiveError,
    DomainError,
    DuplicateActiveClaimError,
    DuplicateEndorsementError,
    EndorsementNotFoundError,
    NotAMemberError,
    NotApprovedError,
    NotClaimantError,
    NotOrphanedError,
    SelfEndorsementError,
    TransientStoreError,
    ValidationError,
)
from .problem_details import (
    ConflictProblemDetail,
    ErrorCodes,
    ProblemDetail,
    ProblemDetailFactory,
    ValidationProblemDetail,
)

_FORBIDDEN_TITLES: dict[type[DomainError], str] = {
    SelfEndorsementError: "Self Endorsement",
    NotAMemberError: "Not A Family Member",
    NotClaimantError: "Not The Claimant",
}

_CONFLICT_TITLES: dict[type[DomainError], str] = {
    NotOrphanedError: "Family Not Orphaned",
    DuplicateActiveClaimError: "Active Claim Exists",
    DuplicateEndorsementError: "Already Endorsed",
    ClaimNotPendingError: "Claim Not Pending",
    NotApprovedError: "Claim Not Approved",
    CoolingOffActiveError: "Cooling-Off Active",
}


def problem_response(problem: ProblemDetail) -> JSONResponse:
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(mode="json", exclude_none=True),
    )


def problem_for_domain_error(error: DomainError, instance: str) -> ProblemDetail:
    """Map a domain error to its Problem Details document."""
    detail = str(error)
    problem: ProblemDetail | ValidationProblemDetail | ConflictProblemDetail

    if isinstance(error, ValidationError):
        problem = ProblemDetailFactory.validation_failed(
            detail=detail,
            instance=instance,
            field_errors=_extract_field_errors(error),
        )
    elif isinstance(error, ChallengeInvalidOrExpiredError):
        problem = ProblemDetailFactory.bad_request(
            title="Challenge Invalid Or Expired",
            detail=detail,
            code=error.code,
            instance=instance,
        )
    elif isinstance(error, ClaimNotFoundError):
        problem = ProblemDetailFactory.not_found(
            "claim", detail, error.code, instance
        )
    elif isinstance(error, EndorsementNotFoundError):
        problem = ProblemDetailFactory.not_found(
            "endorsement", detail, error.code, instance
        )
    elif type(error) in _FORBIDDEN_TITLES:
        problem = ProblemDetailFactory.forbidden(
            title=_FORBIDDEN_TITLES[type(error)],
            detail=detail,
            code=error.code,
            instance=instance,
        )
    elif isinstance(error, DuplicateActiveClaimError):
        problem = ProblemDetailFactory.conflict(
            title=_CONFLICT_TITLES[DuplicateActiveClaimError],
            detail=detail,
            code=error.code,
            instance=instance,
            resource_type="claim",
            existing_claim_id=error.existing_claim.id,
        )
    elif isinstance(error, CoolingOffActiveError):
        problem = ProblemDetailFactory.conflict(
            title=_CONFLICT_TITLES[CoolingOffActiveError],
            detail=detail,
            code=error.code,
            instance=instance,
            cooling_off_until=error.cooling_off_until,
        )
    elif type(error) in _CONFLICT_TITLES:
        problem = ProblemDetailFactory.conflict(
            title=_CONFLICT_TITLES[type(error)],
            detail=detail,
            code=error.code,
            instance=instance,
        )
    elif isinstance(error, ChallengeRateLimitedError):
        problem = ProblemDetailFactory.too_many_requests(
            detail=detail, code=error.code, instance=instance
        )
    elif isinstance(error, TransientStoreError):
        problem = ProblemDetailFactory.service_unavailable(
            detail="The claim is busy. Please try again.",
            code=error.code,
            instance=instance,
        )
    else:
        problem = ProblemDetailFactory.internal_server_error(
            detail="An unexpected error occurred. Please try again.",
            instance=instance,
        )
    return problem


def handle_domain_error(error: DomainError, request: Request) -> JSONResponse:
    """Convert domain errors to appropriate HTTP responses."""
    response = problem_response(
        problem_for_domain_error(error, str(request.url.path))
    )
    if isinstance(error, TransientStoreError):
        response.headers["Retry-After"] = "1"
    return response


def _extract_field_errors(error: ValidationError) -> list[dict[str, str]]:
    """Extract field-specific errors from ValidationError."""
    errors = []
    error_msg = str(error).lower()

    if "reason" in error_msg:
        if "longer" in error_msg:
            errors.append(
                {
                    "field": "reason",
                    "code": ErrorCodes.FIELD_TOO_LONG,
                    "message": "Reason is too long",
                }
            )
        elif "control characters" in error_msg:
            errors.append(
                {
                    "field": "reason",
                    "code": ErrorCodes.FIELD_INVALID_FORMAT,
                    "message": "Reason contains invalid characters",
                }
            )

    if "email" in error_msg:
        if "required" in error_msg:
            errors.append(
                {
                    "field": "owner_email",
                    "code": ErrorCodes.FIELD_REQUIRED,
                    "message": "Original owner email is required",
                }
            )
        else:
            errors.append(
                {
                    "field": "owner_email",
                    "code": ErrorCodes.FIELD_INVALID_FORMAT,
                    "message": "Original owner email is invalid",
                }
            )

    if "claim type" in error_msg:
        errors.append(
            {
                "field": "claim_type",
                "code": ErrorCodes.FIELD_INVALID_VALUE,
                "message": "Claim type must be 'endorsement' or 'email_challenge'",
            }
        )

    if "endorsement type" in error_msg:
        errors.append(
            {
                "field": "endorsement_type",
                "code": ErrorCodes.FIELD_INVALID_VALUE,
                "message": "Endorsement type must be 'support' or 'oppose'",
            }
        )

    return errors
