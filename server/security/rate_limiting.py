"""Rate limiting for the n8n-rag-sync API using slowapi."""

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)

TRIGGER_RATE = "10/minute"
SEARCH_RATE = "300/minute"


def get_client_ip(request: Request) -> str:
    """Extract client IP considering proxy headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=get_client_ip)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Custom handler for rate limit exceeded responses."""
    logger.warning(f"Rate limit exceeded for {get_client_ip(request)} on {request.url.path}")
    response = JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "detail": f"Rate limit exceeded: {exc.detail}"
        }
    )
    response.headers["Retry-After"] = "60"
    return response


def setup_rate_limiting(app: FastAPI) -> None:
    """Setup rate limiting for FastAPI application."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)


def trigger_rate_limit():
    """Strict rate limiting for sync triggers (10 requests per minute)."""
    return limiter.limit(TRIGGER_RATE)


def search_rate_limit():
    """Generous rate limiting for search endpoints (300 requests per minute)."""
    return limiter.limit(SEARCH_RATE)
