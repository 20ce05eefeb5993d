import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response

from .logging_utils import log_api_request
from .metrics import record_http_request


async def log_requests_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log every HTTP request with timing information and record its metrics."""
    start_time = time.time()

    response = await call_next(request)

    duration = time.time() - start_time
    # Route template keeps claim ids out of metric labels
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    log_api_request(request, endpoint, response.status_code, duration * 1000)
    record_http_request(request.method, endpoint, response.status_code, duration)

    return response
