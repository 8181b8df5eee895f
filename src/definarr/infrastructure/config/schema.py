"""Pydantic configuration models with validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    AliasPath,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["dev", "test", "prod"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

DEFAULT_MEANINGFUL_PARAMS: tuple[str, ...] = (
    "q",
    "query",
    "query_term",
    "name",
    "search",
    "nm",
    "mire",
    "imdb",
    "imdbid",
    "imdb_id",
    "tmdb",
    "tmdbid",
    "tmdb_id",
    "tvdb",
    "tvdbid",
    "tvdb_id",
    "tvmazeid",
    "rid",
    "season",
    "ep",
    "artist",
    "album",
    "author",
    "title",
)


def _normalize_path(value: Any) -> Path:
    """
    Normalize a path-like value without causing filesystem side-effects.

    This function MUST NOT create directories or files.
    """
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise TypeError(f"Expected path-like value, got: {type(value)!r}")


class HttpConfig(BaseModel):
    """Outbound HTTP behaviour shared by all indexers."""

    timeout_seconds: float = Field(default=30.0, description="Overall request timeout.")
    user_agent: str = Field(default=DEFAULT_USER_AGENT)
    rate_limit_requests: int = Field(
        default=30, description="Requests allowed per indexer within the rate period."
    )
    rate_limit_period_seconds: float = Field(default=60.0)
    host_rate_limit_requests: int = Field(
        default=60, description="Requests allowed per host within the rate period."
    )
    max_rate_limit_wait_seconds: float = Field(
        default=120.0, description="Longer waits raise RateLimitWaitExceeded."
    )
    max_retries: int = Field(default=2)
    initial_retry_delay_seconds: float = Field(default=1.0)
    max_backoff_seconds: float = Field(default=30.0)
    challenge_retry_delay_seconds: float = Field(default=3.0)
    mirror_delay_seconds: float = Field(default=0.5)

    @field_validator("timeout_seconds", "rate_limit_period_seconds")
    @classmethod
    def _validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("max_retries")
    @classmethod
    def _validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_retries must be >= 0")
        return v


class BrowserConfig(BaseModel):
    """Headless browser pool used for anti-bot challenges."""

    enabled: bool = True
    headless: bool = True
    pool_size: int = Field(default=2, ge=1)
    max_concurrent_solves: int = Field(default=3, ge=1)
    max_uses: int = Field(default=50, ge=1)
    max_age_seconds: float = Field(default=30 * 60)
    acquire_timeout_seconds: float = Field(default=30.0)
    solve_timeout_seconds: float = Field(default=60.0)
    cookie_cache_ttl_seconds: int = Field(default=3600)
    user_agent: str = Field(default=DEFAULT_USER_AGENT)


class SearchConfig(BaseModel):
    meaningful_params: tuple[str, ...] = Field(
        default=DEFAULT_MEANINGFUL_PARAMS,
        description="Request parameters that make a built search request worth sending.",
    )
    max_concurrent_indexers: int = Field(default=5, ge=1)
    indexer_timeout_seconds: float = Field(default=60.0)
    failure_threshold: int = Field(default=5, ge=1)
    failure_cooldown_seconds: float = Field(default=300.0)


class CookieConfig(BaseModel):
    default_expiry_days: float = Field(default=30.0)
    warning_seconds: float = Field(default=300.0)
    check_interval_seconds: float = Field(default=60.0)


class CacheConfig(BaseSettings):
    """Cache configuration (backend-agnostic)."""

    backend: Literal["diskcache", "redis"] = Field(
        default="diskcache",
        description="Cache backend: 'diskcache' (SQLite) or 'redis'",
    )
    directory: Path = Field(
        default=Path("./.cache/definarr"),
        alias="dir",
        description="Diskcache SQLite DB path",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (only when backend=redis)",
    )
    ttl_seconds: int = Field(
        default=30 * 24 * 3600,
        description="Default TTL for persisted records (seconds)",
    )
    max_concurrent: int = Field(default=10)

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
        populate_by_name=True,
    )


class AppConfig(BaseModel):
    """
    Canonical application configuration (validated, final).

    Note:
    - YAML is expected to be sectioned (definitions/http/browser/search/cookies/logging/cache).
    - Environment variables are handled by EnvOverrides(BaseSettings) to allow strict
      precedence control (defaults < YAML < ENV < CLI) in load.py.
    """

    app_name: str = Field(default="definarr")
    environment: Environment = Field(default="dev")

    definitions_dir: Path = Field(
        default=Path("./definitions"),
        validation_alias=AliasChoices(
            "definitions_dir",
            AliasPath("definitions", "dir"),
        ),
        description="Directory containing YAML indexer definitions.",
    )

    http: HttpConfig = Field(default_factory=HttpConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    cookies: CookieConfig = Field(default_factory=CookieConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    log_level: LogLevel = Field(
        default="INFO",
        validation_alias=AliasChoices(
            "log_level",
            AliasPath("logging", "level"),
        ),
    )
    log_format: Optional[LogFormat] = Field(
        default=None,
        validation_alias=AliasChoices(
            "log_format",
            AliasPath("logging", "format"),
        ),
        description="Log renderer format (console/json). If unset, derived from environment.",
    )

    @field_validator("definitions_dir", mode="before")
    @classmethod
    def _validate_paths(cls, v: Any) -> Path:
        return _normalize_path(v)

    @model_validator(mode="after")
    def _derive_defaults(self) -> "AppConfig":
        if self.log_format is None:
            self.log_format = "json" if self.environment == "prod" else "console"
        return self

    def to_sectioned_dict(self) -> dict[str, Any]:
        """Dump configuration in the sectioned shape used by config.yaml."""
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "definitions": {"dir": str(self.definitions_dir)},
            "http": self.http.model_dump(),
            "browser": self.browser.model_dump(),
            "search": self.search.model_dump(),
            "cookies": self.cookies.model_dump(),
            "logging": {"level": self.log_level, "format": self.log_format},
            "cache": {
                "backend": self.cache.backend,
                "dir": str(self.cache.directory),
                "redis_url": self.cache.redis_url,
                "ttl_seconds": self.cache.ttl_seconds,
            },
        }


class EnvOverrides(BaseSettings):
    """
    Environment-variable overrides (all optional).

    Supported env var examples (flat, explicit):
    - DEFINARR_DEFINITIONS_DIR
    - DEFINARR_HTTP_TIMEOUT_SECONDS
    - DEFINARR_BROWSER_ENABLED
    - DEFINARR_LOG_LEVEL
    """

    model_config = SettingsConfigDict(
        env_prefix="DEFINARR_",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: Optional[str] = None
    environment: Optional[Environment] = None

    definitions_dir: Optional[Path] = None

    http_timeout_seconds: Optional[float] = None
    http_user_agent: Optional[str] = None
    http_max_retries: Optional[int] = None

    browser_enabled: Optional[bool] = None
    browser_headless: Optional[bool] = None
    browser_pool_size: Optional[int] = None

    log_level: Optional[LogLevel] = None
    log_format: Optional[LogFormat] = None

    cache_backend: Optional[Literal["diskcache", "redis"]] = None
    cache_dir: Optional[Path] = None
    cache_redis_url: Optional[str] = None

    @field_validator("definitions_dir", "cache_dir", mode="before")
    @classmethod
    def _validate_paths(cls, v: Any) -> Any:
        if v is None:
            return None
        return _normalize_path(v)

    def to_update_dict(self) -> dict[str, Any]:
        """Return only values that were actually provided (non-None), for merging."""
        return self.model_dump(exclude_none=True)
