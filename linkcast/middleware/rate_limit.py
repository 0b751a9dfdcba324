"""
Rate limiter — in-memory sliding window per client IP.

Applied to:
  - /r/{code}        redirect interstitial (every hit accrues revenue)
  - /v1/links*       link creation

Counts live in process memory and reset on restart; they only blunt
scripted click inflation from a single address.
"""

import time
from fastapi import HTTPException, Request
from linkcast.config import get_settings

import structlog

logger = structlog.get_logger()

_memory_store: dict[str, list[float]] = {}

_PRIVATE_PREFIXES = (
    "10.", "172.16.", "172.17.", "172.18.", "172.19.", "172.20.", "172.21.",
    "172.22.", "172.23.", "172.24.", "172.25.", "172.26.", "172.27.", "172.28.",
    "172.29.", "172.30.", "172.31.", "192.168.", "127.", "::1",
)


def _sliding_window_check(key: str, limit: int, window_seconds: int = 60) -> tuple[bool, int]:
    now = time.time()
    cutoff = now - window_seconds

    hits = [t for t in _memory_store.get(key, []) if t > cutoff]
    if len(hits) >= limit:
        _memory_store[key] = hits
        return False, 0

    hits.append(now)
    _memory_store[key] = hits
    return True, limit - len(hits)


def check_rate_limit(key: str, limit: int, window: int = 60) -> int:
    allowed, remaining = _sliding_window_check(key, limit, window)
    if not allowed:
        logger.info("rate_limited", key=key, limit=limit)
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Slow down.",
            headers={
                "Retry-After": str(window),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )
    return remaining


def get_real_ip(request: Request) -> str:
    """Extract real client IP from x-forwarded-for or request."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        # First public IP in the chain is the client
        ips = [ip.strip() for ip in forwarded.split(",")]
        for ip in ips:
            if not ip.startswith(_PRIVATE_PREFIXES):
                return ip
        return ips[0]
    return request.client.host if request.client else "unknown"


def rate_limit_ip(request: Request, limit: int | None = None) -> int:
    settings = get_settings()
    return check_rate_limit(
        f"ip:{get_real_ip(request)}",
        limit or settings.rate_limit_per_ip_per_minute,
    )
