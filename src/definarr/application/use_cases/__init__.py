from .search_indexers import ScoredRelease, SearchIndexersUseCase, SearchOutcome
from .test_indexer import TestIndexerUseCase, TestResult

__all__ = [
    "ScoredRelease",
    "SearchIndexersUseCase",
    "SearchOutcome",
    "TestIndexerUseCase",
    "TestResult",
]
