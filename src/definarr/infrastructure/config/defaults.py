"""Hardcoded default configuration values."""

from __future__ import annotations

from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "app_name": "definarr",
    "environment": "dev",
    "definitions": {
        "dir": "./definitions",
    },
    "http": {
        "timeout_seconds": 30.0,
        "rate_limit_requests": 30,
        "rate_limit_period_seconds": 60.0,
        "max_retries": 2,
        "initial_retry_delay_seconds": 1.0,
        "mirror_delay_seconds": 0.5,
    },
    "browser": {
        "enabled": True,
        "headless": True,
        "pool_size": 2,
        "solve_timeout_seconds": 60.0,
        "cookie_cache_ttl_seconds": 3600,
    },
    "cookies": {
        "default_expiry_days": 30.0,
        "warning_seconds": 300.0,
        "check_interval_seconds": 60.0,
    },
    "logging": {
        "level": "INFO",
        "format": None,  # Derived from environment in schema.py
    },
    "cache": {
        "backend": "diskcache",
        "dir": "./.cache/definarr",
    },
}
