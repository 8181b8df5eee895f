"""Connectivity test for one indexer, reported with a user-safe message."""

from __future__ import annotations

import time
from dataclasses import dataclass

import structlog

from definarr.domain.exceptions import IndexerTestError
from definarr.infrastructure.runtime.unified_indexer import UnifiedIndexer

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TestResult:
    __test__ = False

    ok: bool
    message: str
    duration_ms: int = 0


class TestIndexerUseCase:
    __test__ = False

    def __init__(self, indexer: UnifiedIndexer) -> None:
        self.indexer = indexer

    async def execute(self) -> TestResult:
        started = time.monotonic()
        try:
            await self.indexer.test()
        except IndexerTestError as e:
            return TestResult(False, str(e), self._elapsed(started))
        log.info("indexer_test_passed", indexer_id=self.indexer.id)
        return TestResult(True, "Indexer is reachable", self._elapsed(started))

    @staticmethod
    def _elapsed(started: float) -> int:
        return round((time.monotonic() - started) * 1000)
