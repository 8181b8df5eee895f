"""Indexer engine exceptions."""

from __future__ import annotations

from collections.abc import Sequence


class DefinarrError(Exception):
    """Base class for all engine errors."""


# ------------------------------------------------------------------
# Definitions
# ------------------------------------------------------------------


class DefinitionError(DefinarrError):
    """Base class for definition loading problems."""


class DefinitionValidationError(DefinitionError):
    """Raised when a definition document fails schema validation.

    ``issues`` holds ``(field_path, message)`` pairs; the string form is
    ``"path.to.field: message; other.field: message"``.
    """

    def __init__(self, issues: Sequence[tuple[str, str]], *, source: str | None = None) -> None:
        self.issues = list(issues)
        self.source = source
        super().__init__(format_issues(self.issues))


class DefinitionNotFoundError(DefinitionError):
    """Raised when a definition id is not known to the loader."""


def format_issues(issues: Sequence[tuple[str, str]]) -> str:
    return "; ".join(f"{path}: {message}" if path else message for path, message in issues)


# ------------------------------------------------------------------
# Extraction
# ------------------------------------------------------------------


class SelectorError(DefinarrError):
    """Raised when a required selector block did not match."""

    def __init__(self, selector: str | None, message: str | None = None) -> None:
        self.selector = selector
        super().__init__(message or f"Selector did not match: {selector!r}")


class TemplateError(DefinarrError):
    """Raised for template problems callers must see (never for unknown filters)."""


# ------------------------------------------------------------------
# Authentication
# ------------------------------------------------------------------


class LoginError(DefinarrError):
    """Raised when a login attempt fails or a session cannot be re-established."""


# ------------------------------------------------------------------
# Network
# ------------------------------------------------------------------


class HttpError(DefinarrError):
    """Non-success HTTP status after retries were exhausted."""

    def __init__(
        self,
        status: int,
        url: str,
        message: str | None = None,
        *,
        retry_after: float | None = None,
    ) -> None:
        self.status = status
        self.url = url
        self.retry_after = retry_after
        super().__init__(message or f"HTTP {status}")


class AntiBotDetectedError(DefinarrError):
    """An anti-bot challenge page was returned instead of content."""

    def __init__(self, challenge_type: str = "unknown", message: str | None = None) -> None:
        self.challenge_type = challenge_type
        super().__init__(message or f"Anti-bot challenge detected ({challenge_type})")


class AntiBotBypassFailedError(AntiBotDetectedError):
    """No browser solver could clear the challenge; never retried."""


class RateLimitWaitExceeded(DefinarrError):
    """The rate limiter would have to wait longer than the allowed maximum."""

    def __init__(self, key: str, wait_seconds: float) -> None:
        self.key = key
        self.wait_seconds = wait_seconds
        super().__init__(f"Rate limit wait of {wait_seconds:.1f}s exceeds maximum for {key}")


class AllMirrorsFailedError(DefinarrError):
    """Every candidate URL (primary plus mirrors) failed."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        summary = "; ".join(str(e) for e in self.errors)
        super().__init__(f"All URLs failed: {summary}")

    @property
    def last_error(self) -> BaseException | None:
        return self.errors[-1] if self.errors else None


# ------------------------------------------------------------------
# Browser pool
# ------------------------------------------------------------------


class BrowserPoolExhaustedError(DefinarrError):
    """Waiting for a browser worker timed out."""


class BrowserPoolShutdownError(DefinarrError):
    """The pool is shutting down; pending and new acquisitions are rejected."""


# ------------------------------------------------------------------
# Indexer operations
# ------------------------------------------------------------------


class DownloadResolutionError(DefinarrError):
    """All download candidates (infohash block and selectors) were exhausted."""


class IndexerApiError(DefinarrError):
    """The indexer answered with an API error document (e.g. newznab ``<error code=...>``)."""

    def __init__(self, code: str, description: str | None = None) -> None:
        self.code = code
        self.description = description
        super().__init__(f"API error {code}: {description}" if description else f"API error {code}")


class SearchFailedError(DefinarrError):
    """Every request of a search batch failed."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        summary = "; ".join(str(e) for e in self.errors) or "no requests succeeded"
        super().__init__(f"All search requests failed: {summary}")


class IndexerTestError(DefinarrError):
    """User-facing connectivity test failure with a sanitized message."""
