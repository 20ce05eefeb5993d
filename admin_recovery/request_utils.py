"""Utilities for handling FastAPI requests."""

from fastapi import Request


def get_client_ip(request: Request) -> str:
    """Extract client IP address with proxy support.

    Args:
        request: FastAPI request object

    Returns:
        Client IP address as string. Returns "unknown" if unable to determine.
    """
    # First entry of X-Forwarded-For is the original client
    forwarded_for: str | None = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        client_ip = forwarded_for.split(",")[0].strip()
        if client_ip:
            return client_ip

    real_ip: str | None = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return str(request.client.host)

    return "unknown"


def is_api_request(request: Request) -> bool:
    """Check if request is to an API endpoint."""
    return str(request.url.path).startswith("/api/")


def is_claim_request(request: Request) -> bool:
    """Claim submission and challenge re-issue: the endpoints that send mail."""
    path = str(request.url.path)
    return request.method == "POST" and (
        path.endswith("/claims") or path.endswith("/challenge/reissue")
    )
