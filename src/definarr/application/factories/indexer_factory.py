"""Factory wiring a :class:`UnifiedIndexer` from a definition and an indexer record."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from definarr.domain.entities.definition import Definition
from definarr.domain.entities.session import IndexerRecord
from definarr.domain.ports.streaming_catalog import StreamingCatalogPort
from definarr.infrastructure.auth.auth_manager import AuthManager
from definarr.infrastructure.composition import EngineContext
from definarr.infrastructure.engine.selectors import SelectorEngine
from definarr.infrastructure.engine.template import TemplateEngine
from definarr.infrastructure.http.client import IndexerHttpClient
from definarr.infrastructure.protocols import handler_for
from definarr.infrastructure.runtime.download_handler import DownloadHandler
from definarr.infrastructure.runtime.request_builder import RequestBuilder
from definarr.infrastructure.runtime.response_parser import ResponseParser
from definarr.infrastructure.runtime.unified_indexer import UnifiedIndexer

log = structlog.get_logger(__name__)


def record_for(
    definition: Definition,
    settings: Mapping[str, Any] | None = None,
    *,
    indexer_id: str | None = None,
) -> IndexerRecord:
    """Ad-hoc indexer record for running a definition directly (CLI, tests)."""
    return IndexerRecord(
        id=indexer_id or definition.id,
        name=definition.name,
        definition_id=definition.id,
        settings=dict(settings or {}),
    )


class IndexerFactory:
    """Builds indexer instances from shared engine state.

    Every instance gets its own template store, HTTP client (sharing the
    process-wide connection pool), request builder, parser, auth manager and
    download handler. Rate limiters, cookie store, circuit breaker and the
    browser solver are shared through :class:`EngineContext`.
    """

    def __init__(self, ctx: EngineContext, *, catalog: StreamingCatalogPort | None = None) -> None:
        self.ctx = ctx
        self.catalog = catalog

    def create(self, record: IndexerRecord, definition: Definition | None = None) -> UnifiedIndexer:
        """Create the indexer for *record*.

        Raises:
            DefinitionNotFoundError: ``record.definition_id`` is unknown.
        """
        ctx = self.ctx
        definition = definition or ctx.definitions.get(record.definition_id)
        base_url = record.base_url or definition.primary_link
        alternate_urls = record.alternate_urls or definition.links[1:]

        templates = TemplateEngine()
        templates.set_site_link(base_url)
        templates.set_config_with_defaults(dict(record.settings), definition.settings)
        selectors = SelectorEngine(templates)

        if definition.request_delay:
            ctx.rate_limiters.for_indexer(record.id, requests=1, period=definition.request_delay)

        http = IndexerHttpClient(
            indexer_id=record.id,
            base_url=base_url,
            config=ctx.config.http,
            rate_limiters=ctx.rate_limiters,
            alternate_urls=tuple(alternate_urls),
            solver=ctx.solver,
            client=ctx.http_client,
            encoding=definition.encoding,
            solve_timeout=ctx.config.browser.solve_timeout_seconds,
        )
        requests = RequestBuilder(
            definition,
            templates,
            base_url=base_url,
            meaningful_params=ctx.config.search.meaningful_params,
        )
        parser = ResponseParser(
            definition,
            selectors,
            requests.categories,
            indexer_id=record.id,
            indexer_name=record.name,
        )
        auth = AuthManager(
            definition,
            http,
            selectors,
            ctx.cookie_store,
            indexer_id=record.id,
            base_url=base_url,
            settings=record.settings,
            cookie_expiry_days=ctx.config.cookies.default_expiry_days,
        )
        downloads = DownloadHandler(definition, http, selectors, base_url=base_url)

        indexer = UnifiedIndexer(
            record,
            definition,
            templates=templates,
            http=http,
            requests=requests,
            parser=parser,
            auth=auth,
            downloads=downloads,
            protocol_settings=handler_for(definition.protocol).parse_settings(record.protocol_settings),
            circuit_breaker=ctx.circuit_breaker,
            catalog=self.catalog,
        )
        log.debug(
            "indexer_created",
            indexer_id=record.id,
            definition_id=definition.id,
            protocol=definition.protocol,
            mirrors=len(alternate_urls),
        )
        return indexer
