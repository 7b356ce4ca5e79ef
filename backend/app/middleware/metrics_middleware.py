"""
Prometheus Metrics Middleware.

Tracks HTTP request count, duration and status for the API endpoints.
"""

import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.core.metrics import track_http_request


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to track HTTP request metrics."""

    # Endpoints to exclude from metrics (to avoid recursion)
    EXCLUDED_PATHS = {"/metrics", "/health"}

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            track_http_request(
                method=request.method,
                endpoint=self._route_path(request),
                status_code=status_code,
                duration_seconds=time.perf_counter() - start_time,
            )

        return response

    def _route_path(self, request: Request) -> str:
        """
        Use the matched route template so label cardinality stays bounded.

        Unmatched paths are reported as "unmatched".
        """
        route = request.scope.get("route")
        path = getattr(route, "path", None)
        return path or "unmatched"
