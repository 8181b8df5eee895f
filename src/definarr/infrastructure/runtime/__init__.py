"""Per-indexer runtime: request building, response parsing, downloads and orchestration."""

from .category_mapper import CategoryMapper
from .download_handler import DownloadHandler, DownloadRequest
from .errors import sanitize_error_message
from .request_builder import HttpRequestDescriptor, RequestBuilder
from .response_parser import ParseOutcome, ResponseParser
from .unified_indexer import UnifiedIndexer

__all__ = [
    "CategoryMapper",
    "DownloadHandler",
    "DownloadRequest",
    "HttpRequestDescriptor",
    "ParseOutcome",
    "RequestBuilder",
    "ResponseParser",
    "UnifiedIndexer",
    "sanitize_error_message",
]
