# backend/bharatcrm/utils/rate_limit.py
"""
Rate limiting for public endpoints (slowapi).

The limiter is attached to app.state in main.py; endpoints decorated with one of
the helpers below must accept a `request: Request` argument.
"""

from typing import Callable

from slowapi import Limiter
from slowapi.util import get_remote_address

from bharatcrm.config import settings

# Shared limiter instance; disabled under tests so webhook replays are not throttled
limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.ENVIRONMENT != "test",
)

RATE_LIMITS = {
    "webhook": settings.WEBHOOK_RATE_LIMIT,   # Meta Lead Ads deliveries
    "expensive": "10/minute",                 # AI recording processing
}


def webhook_rate_limit() -> Callable:
    """Rate limit for external webhooks (Meta Lead Ads)."""
    return limiter.limit(RATE_LIMITS["webhook"])


def expensive_rate_limit() -> Callable:
    """Rate limit for expensive operations (AI analysis)."""
    return limiter.limit(RATE_LIMITS["expensive"])
