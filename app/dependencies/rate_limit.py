"""
Per-client request limiting for the notes API.
"""
from fastapi import HTTPException, Request

from app.logging_config import get_logger
from app.services.rate_limiter import rate_limiter

logger = get_logger(component="rate_limit")


def client_key(request: Request) -> str:
    # Behind a proxy the first X-Forwarded-For hop is the caller.
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def check_rate_limit(request: Request):
    """Raise 429 with Retry-After once the client exceeds its window."""
    client = client_key(request)
    allowed, retry_after = await rate_limiter.is_allowed(client)
    if not allowed:
        logger.warning("rate_limited", client=client, path=request.url.path, retry_after=retry_after)
        raise HTTPException(
            status_code=429,
            detail={"error": "Too many requests", "details": ["Rate limit exceeded. Please try again later."]},
            headers={"Retry-After": str(retry_after)},
        )
