"""
Rate limiting configuration for the public reference endpoints.

Uses slowapi to implement rate limiting on FastAPI endpoints.
"""

from typing import Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address


def get_real_client_ip(request: Request) -> str:
    """
    Get the real client IP address, handling proxies.

    Args:
        request: FastAPI request object

    Returns:
        str: Client IP address
    """
    # X-Forwarded-For can hold a proxy chain; the client is first
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


limiter = Limiter(key_func=get_real_client_ip)


RATE_LIMITS = {
    # Batch resolution fans out many lookups per request
    "resolve": "30/minute",

    # Single geo / median lookups
    "lookup": "120/minute",

    "default": "100/minute",
}


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """
    Custom handler for rate limit exceeded errors.

    Returns:
        JSONResponse: Error response with retry-after header
    """
    response = JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": f"Rate limit exceeded: {exc.detail}",
            "detail": "Too many requests. Please try again later.",
        },
    )

    if hasattr(exc, "retry_after"):
        response.headers["Retry-After"] = str(exc.retry_after)

    return response


def limit_resolve(func: Callable) -> Callable:
    """Apply batch resolution rate limit."""
    return limiter.limit(RATE_LIMITS["resolve"])(func)


def limit_lookup(func: Callable) -> Callable:
    """Apply single lookup rate limit."""
    return limiter.limit(RATE_LIMITS["lookup"])(func)


def limit_default(func: Callable) -> Callable:
    return limiter.limit(RATE_LIMITS["default"])(func)
