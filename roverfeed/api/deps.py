"""API dependencies"""

import hashlib
import secrets
from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from roverfeed.core.config import settings
from roverfeed.core.db import SessionLocal
from roverfeed.core.logging import get_logger
from roverfeed.models.api_keys import ApiKey
from roverfeed.services.rate_limiter import RateLimitDecision, RateLimiter, build_rate_limiter
from roverfeed.services.scheduler import IncrementalScheduler

log = get_logger("api.deps")

_rate_limiter: Optional[RateLimiter] = None


def get_db() -> Generator[Session, None, None]:
    """Database session per request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_scheduler(db: Session = Depends(get_db)) -> IncrementalScheduler:
    return IncrementalScheduler(db)


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = build_rate_limiter()
    return _rate_limiter


def require_admin_key(x_admin_key: Optional[str] = Header(None)) -> None:
    """Scraper endpoints are open when ADMIN_API_KEY is unset (local development)."""
    if settings.ADMIN_API_KEY is None:
        return
    if x_admin_key is None or not secrets.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing X-Admin-Key")


class RateLimitExceeded(Exception):
    """Raised by the rate-limit dependency; rendered as 429 by the app exception handler."""

    def __init__(self, decision: RateLimitDecision):
        super().__init__("Rate limit exceeded")
        self.decision = decision


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": "Unauthorized", "message": message},
    )


def enforce_rate_limit(
    response: Response,
    x_api_key: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> RateLimitDecision:
    """Resolve X-API-Key to (identity, tier) and consume one request of quota.

    Rate-limit headers are attached to every authenticated response,
    allowed or not.
    """
    if not x_api_key:
        log.warning("API request without API key")
        raise _unauthorized("API key required. Provide via X-API-Key header.")

    stmt = select(ApiKey).where(ApiKey.key_hash == hash_api_key(x_api_key))
    api_key = db.execute(stmt).scalar_one_or_none()
    if api_key is None or not api_key.is_active:
        log.warning("API request with unknown or inactive API key")
        raise _unauthorized("Invalid or inactive API key")

    decision = limiter.check_and_consume(api_key.identity, api_key.tier)
    if not decision.allowed:
        raise RateLimitExceeded(decision)

    response.headers.update(decision.headers())
    return decision


def rate_limit_exceeded_response(exc: RateLimitExceeded) -> JSONResponse:
    d = exc.decision
    window = "hourly" if d.exceeded == "hour" else "daily"
    limit = d.hourly_limit if d.exceeded == "hour" else d.daily_limit
    reset_at = d.hourly_reset_at if d.exceeded == "hour" else d.daily_reset_at
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        headers=d.headers(),
        content={
            "error": "Too Many Requests",
            "message": (
                f"Rate limit exceeded: {d.tier} tier allows {d.hourly_limit} requests/hour "
                f"and {d.daily_limit} requests/day ({window} limit reached)"
            ),
            "limit": limit,
            "resetAt": reset_at,
            "tier": d.tier,
            "hourlyLimit": d.hourly_limit,
            "hourlyRemaining": d.hourly_remaining,
            "dailyLimit": d.daily_limit,
            "dailyRemaining": d.daily_remaining,
            "hourlyResetAt": d.hourly_reset_at,
            "dailyResetAt": d.daily_reset_at,
        },
    )
