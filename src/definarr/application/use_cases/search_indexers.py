"""Fan one search out over many indexers and rank the merged releases."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from definarr.domain.entities.criteria import SearchCriteria
from definarr.domain.entities.release import ReleaseResult
from definarr.infrastructure.circuit_breaker import IndexerCircuitBreaker
from definarr.infrastructure.protocols import handler_for
from definarr.infrastructure.runtime.errors import sanitize_error_message
from definarr.infrastructure.runtime.unified_indexer import UnifiedIndexer

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ScoredRelease:
    release: ReleaseResult
    score: int
    priority: int


@dataclass
class SearchOutcome:
    """Ranked releases plus what happened to each indexer."""

    releases: list[ScoredRelease] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)
    rejected: int = 0


class SearchIndexersUseCase:
    """Searches enabled indexers in parallel with bounded concurrency.

    Flow:
        1. Skip disabled indexers, open circuits and unsupported search types
        2. Search the rest (semaphore + per-indexer timeout)
        3. Drop releases the protocol handler invalidates or rejects
        4. Sort by protocol score adjustment, then indexer priority
    """

    def __init__(
        self,
        indexers: Sequence[UnifiedIndexer],
        *,
        circuit_breaker: IndexerCircuitBreaker | None = None,
        max_concurrent: int = 5,
        indexer_timeout: float = 60.0,
    ) -> None:
        self.indexers = list(indexers)
        self.circuit_breaker = circuit_breaker
        self._max_concurrent = max_concurrent
        self._indexer_timeout = indexer_timeout

    async def execute(self, criteria: SearchCriteria) -> SearchOutcome:
        outcome = SearchOutcome()
        runnable: list[UnifiedIndexer] = []
        for indexer in self.indexers:
            reason = await self._skip_reason(indexer, criteria)
            if reason is not None:
                outcome.skipped[indexer.id] = reason
                log.debug("indexer_skipped", indexer_id=indexer.id, reason=reason)
                continue
            runnable.append(indexer)

        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def _search_one(indexer: UnifiedIndexer) -> list[ReleaseResult] | BaseException:
            async with semaphore:
                try:
                    return await asyncio.wait_for(
                        indexer.search(criteria), timeout=self._indexer_timeout
                    )
                except asyncio.TimeoutError as e:
                    log.warning(
                        "indexer_search_timeout",
                        indexer_id=indexer.id,
                        timeout=self._indexer_timeout,
                    )
                    if self.circuit_breaker is not None:
                        await self.circuit_breaker.record_failure(indexer.id, "timeout")
                    return e
                except Exception as e:  # noqa: BLE001
                    return e

        results = await asyncio.gather(*(_search_one(i) for i in runnable))

        for indexer, result in zip(runnable, results):
            if isinstance(result, BaseException):
                outcome.errors[indexer.id] = sanitize_error_message(result)
                continue
            self._rank_into(outcome, indexer, result)

        outcome.releases.sort(key=lambda s: (-s.score, s.priority))
        log.info(
            "search_indexers_complete",
            indexers=len(runnable),
            releases=len(outcome.releases),
            rejected=outcome.rejected,
            errors=len(outcome.errors),
            skipped=len(outcome.skipped),
        )
        return outcome

    async def _skip_reason(self, indexer: UnifiedIndexer, criteria: SearchCriteria) -> str | None:
        if not indexer.record.enabled:
            return "disabled"
        if self.circuit_breaker is not None:
            await self.circuit_breaker.load(indexer.id)
            if not self.circuit_breaker.allow(indexer.id):
                return "circuit open"
        if not indexer.can_search(criteria):
            return f"{criteria.search_type} search not supported"
        return None

    def _rank_into(
        self, outcome: SearchOutcome, indexer: UnifiedIndexer, releases: list[ReleaseResult]
    ) -> None:
        for release in releases:
            handler = handler_for(release.protocol)
            if not handler.validate(release):
                outcome.rejected += 1
                continue
            reason = handler.should_reject(release, indexer.protocol_settings)
            if reason is not None:
                outcome.rejected += 1
                log.debug("release_rejected", indexer_id=indexer.id, title=release.title, reason=reason)
                continue
            outcome.releases.append(
                ScoredRelease(
                    release=release,
                    score=handler.score_adjustment(release, indexer.protocol_settings),
                    priority=indexer.record.priority,
                )
            )
