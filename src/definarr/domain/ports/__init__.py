from .cache import CachePort
from .challenge_solver import ChallengeSolverPort, SolveResult
from .cookie_repository import CookieRepositoryPort
from .indexer import IndexerPort
from .status_repository import IndexerStatusRepositoryPort
from .streaming_catalog import StreamingCatalogPort

__all__ = [
    "CachePort",
    "ChallengeSolverPort",
    "CookieRepositoryPort",
    "IndexerPort",
    "IndexerStatusRepositoryPort",
    "SolveResult",
    "StreamingCatalogPort",
]
