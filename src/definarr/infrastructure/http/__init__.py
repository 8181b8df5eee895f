"""Outbound HTTP: rate limiting, retries, anti-bot detection and failover."""

from .antibot import detect_captcha, detect_challenge
from .client import HttpResponse, IndexerHttpClient
from .rate_limiter import RateLimiterRegistry, SlidingWindowLimiter
from .retry import RetryDecision, RetryPolicy

__all__ = [
    "HttpResponse",
    "IndexerHttpClient",
    "RateLimiterRegistry",
    "RetryDecision",
    "RetryPolicy",
    "SlidingWindowLimiter",
    "detect_captcha",
    "detect_challenge",
]
