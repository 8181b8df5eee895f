from .cookie_cache import CacheCookieRepository
from .status_cache import CacheIndexerStatusRepository

__all__ = ["CacheCookieRepository", "CacheIndexerStatusRepository"]
