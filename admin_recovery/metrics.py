"""Business metrics for the admin-claim recovery service."""

from opentelemetry import metrics

# Get meter for creating instruments
meter = metrics.get_meter(__name__)

# HTTP Request Metrics
http_request_duration = meter.create_histogram(
    name="http_request_duration_seconds",
    description="Duration of HTTP requests in seconds",
    unit="s",
)

http_requests_total = meter.create_counter(
    name="http_requests_total",
    description="Total number of HTTP requests",
)

http_request_errors = meter.create_counter(
    name="http_request_errors_total",
    description="Total number of HTTP request errors",
)

# Business Metrics
claims_submitted_total = meter.create_counter(
    name="admin_claims_submitted_total",
    description="Total number of admin claims created",
)

endorsements_recorded_total = meter.create_counter(
    name="admin_claim_endorsements_total",
    description="Total number of endorsement votes recorded or changed",
)

claim_transitions_total = meter.create_counter(
    name="admin_claim_transitions_total",
    description="Claim status changes by target status and reason",
)

claim_rejections_total = meter.create_counter(
    name="admin_claim_rejections_total",
    description="Rejected claim commands by error code",
)

admin_grants_total = meter.create_counter(
    name="admin_grants_total",
    description="Admin roles granted through recovery",
)

sweep_expired_total = meter.create_counter(
    name="admin_claim_sweep_expired_total",
    description="Claims expired by the background sweep",
)

transaction_retries_total = meter.create_counter(
    name="admin_claim_transaction_retries_total",
    description="Transactions retried after losing a race",
)


def record_http_request(method: str, endpoint: str, status_code: int, duration: float):
    """Record HTTP request metrics."""
    labels = {"method": method, "endpoint": endpoint, "status_code": str(status_code)}

    http_request_duration.record(duration, labels)
    http_requests_total.add(1, labels)

    if status_code >= 400:
        http_request_errors.add(1, labels)


def record_claim_submitted(claim_type: str):
    claims_submitted_total.add(1, {"claim_type": claim_type})


def record_endorsement(endorsement_type: str, changed: bool = False):
    endorsements_recorded_total.add(
        1, {"type": endorsement_type, "action": "change" if changed else "create"}
    )


def record_transition(to_status: str, reason_code: str):
    claim_transitions_total.add(1, {"to_status": to_status, "reason": reason_code})


def record_rejection(error_code: str):
    claim_rejections_total.add(1, {"code": error_code})


def record_grant():
    admin_grants_total.add(1)


def record_sweep(expired: int):
    if expired:
        sweep_expired_total.add(expired)


def record_retry(operation: str):
    transaction_retries_total.add(1, {"operation": operation})
