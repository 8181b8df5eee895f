from .indexer_factory import IndexerFactory, record_for

__all__ = ["IndexerFactory", "record_for"]
