"""RFC 7807 Problem Details for HTTP APIs."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

PROBLEM_TYPE_BASE = "/problems"


class ErrorCodes:
    """Machine readable codes for field-level errors."""

    VALIDATION_FAILED = "validation_failed"
    FIELD_REQUIRED = "field_required"
    FIELD_TOO_LONG = "field_too_long"
    FIELD_INVALID_FORMAT = "field_invalid_format"
    FIELD_INVALID_VALUE = "field_invalid_value"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    INTERNAL_ERROR = "internal_error"


class ProblemDetail(BaseModel):
    type: str = Field(description="URI reference identifying the problem type")
    title: str = Field(description="Short summary of the problem type")
    status: int = Field(description="HTTP status code")
    detail: str | None = Field(default=None, description="Explanation of this case")
    instance: str | None = Field(default=None, description="Request path")
    code: str | None = Field(default=None, description="Stable domain error code")


class ValidationProblemDetail(ProblemDetail):
    errors: list[dict[str, str]] | None = None


class ConflictProblemDetail(ProblemDetail):
    resource_type: str | None = None
    existing_claim_id: str | None = None
    cooling_off_until: datetime | None = None


def _type_uri(slug: str) -> str:
    return f"{PROBLEM_TYPE_BASE}/{slug}"


class ProblemDetailFactory:
    """Builds the problem documents the API returns."""

    @staticmethod
    def validation_failed(
        detail: str,
        instance: str | None = None,
        field_errors: list[dict[str, str]] | None = None,
        code: str | None = ErrorCodes.VALIDATION_FAILED,
    ) -> ValidationProblemDetail:
        return ValidationProblemDetail(
            type=_type_uri("validation-failed"),
            title="Validation Failed",
            status=400,
            detail=detail,
            instance=instance,
            code=code,
            errors=field_errors or [],
        )

    @staticmethod
    def bad_request(
        title: str, detail: str, code: str, instance: str | None = None
    ) -> ProblemDetail:
        return ProblemDetail(
            type=_type_uri(code.replace("_", "-")),
            title=title,
            status=400,
            detail=detail,
            instance=instance,
            code=code,
        )

    @staticmethod
    def forbidden(
        title: str, detail: str, code: str, instance: str | None = None
    ) -> ProblemDetail:
        return ProblemDetail(
            type=_type_uri(code.replace("_", "-")),
            title=title,
            status=403,
            detail=detail,
            instance=instance,
            code=code,
        )

    @staticmethod
    def not_found(
        resource_type: str, detail: str, code: str, instance: str | None = None
    ) -> ProblemDetail:
        return ProblemDetail(
            type=_type_uri("resource-not-found"),
            title=f"{resource_type.capitalize()} Not Found",
            status=404,
            detail=detail,
            instance=instance,
            code=code,
        )

    @staticmethod
    def conflict(
        title: str,
        detail: str,
        code: str,
        instance: str | None = None,
        **extra: Any,
    ) -> ConflictProblemDetail:
        return ConflictProblemDetail(
            type=_type_uri(code.replace("_", "-")),
            title=title,
            status=409,
            detail=detail,
            instance=instance,
            code=code,
            **extra,
        )

    @staticmethod
    def too_many_requests(
        detail: str, code: str = ErrorCodes.RATE_LIMIT_EXCEEDED, instance: str | None = None
    ) -> ProblemDetail:
        return ProblemDetail(
            type=_type_uri("rate-limit-exceeded"),
            title="Too Many Requests",
            status=429,
            detail=detail,
            instance=instance,
            code=code,
        )

    @staticmethod
    def service_unavailable(
        detail: str, code: str, instance: str | None = None
    ) -> ProblemDetail:
        return ProblemDetail(
            type=_type_uri("service-unavailable"),
            title="Service Unavailable",
            status=503,
            detail=detail,
            instance=instance,
            code=code,
        )

    @staticmethod
    def internal_server_error(
        detail: str, instance: str | None = None
    ) -> ProblemDetail:
        return ProblemDetail(
            type=_type_uri("internal-server-error"),
            title="Internal Server Error",
            status=500,
            detail=detail,
            instance=instance,
            code=ErrorCodes.INTERNAL_ERROR,
        )
