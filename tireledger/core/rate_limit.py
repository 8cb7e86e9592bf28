"""
Rate limiting

SlowAPI with in-memory storage; multi-instance deployments need a shared
storage_uri. Checkout is limited per customer when a bearer token is
present, so several customers behind one shop counter IP do not block each
other. Everything else is limited per client IP.
"""
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from tireledger.core.config import settings
from tireledger.core.security import decode_token

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Client IP, first hop of X-Forwarded-For when proxied."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def checkout_key(request: Request) -> str:
    """Customer id from a valid bearer token, else the client IP."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token:
        payload = decode_token(token)
        if payload and payload.get("sub"):
            return f"user:{payload['sub']}"
    return f"ip:{get_client_ip(request)}"


limiter = Limiter(
    key_func=get_client_ip,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the same {error, code, details} shape as domain errors."""
    logger.warning(f"Rate limit exceeded: {checkout_key(request)} on {request.method} {request.url.path}")

    limit = exc.detail or settings.RATE_LIMIT_DEFAULT
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests, slow down and retry shortly",
            "code": "RATE_LIMITED",
            "details": {"limit": limit},
        },
        headers={"Retry-After": "60"},
    )
