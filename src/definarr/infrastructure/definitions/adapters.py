"""Adapters to convert Pydantic validation models to domain models."""

from __future__ import annotations

from definarr.domain.entities import definition as domain
from definarr.domain.entities.categories import resolve_category_id
from definarr.infrastructure.definitions import validation_schema as infra


def _method(value: str | None) -> str:
    return "post" if (value or "").lower() == "post" else "get"


def to_domain_filters(filters: list[infra.FilterBlockModel]) -> tuple[domain.FilterSpec, ...]:
    return tuple(domain.FilterSpec(name=f.name, args=tuple(f.args)) for f in filters)


def to_domain_selector(
    pydantic: infra.SelectorBlockModel | str,
) -> domain.SelectorBlock:
    """Convert a selector block; bare strings are CSS/JSON selectors."""
    if isinstance(pydantic, str):
        return domain.SelectorBlock(selector=pydantic)
    return domain.SelectorBlock(
        selector=pydantic.selector,
        attribute=pydantic.attribute,
        text=pydantic.text,
        remove=pydantic.remove,
        case=tuple(pydantic.case.items()),
        default=pydantic.default,
        optional=pydantic.optional,
        filters=to_domain_filters(pydantic.filters),
    )


def _selector_field(pydantic: infra.SelectorFieldModel | None) -> domain.SelectorBlock | None:
    if pydantic is None:
        return None
    return domain.SelectorBlock(
        selector=pydantic.selector,
        attribute=pydantic.attribute,
        filters=to_domain_filters(pydantic.filters),
    )


def to_domain_setting(pydantic: infra.SettingsFieldModel) -> domain.SettingField:
    raw_type = pydantic.type
    kind = raw_type if raw_type in ("text", "password", "checkbox", "select") else "info"
    return domain.SettingField(
        name=pydantic.name,
        type=kind,
        label=pydantic.label,
        default=pydantic.default,
        required=pydantic.required,
        options=dict(pydantic.options),
        raw_type=raw_type,
    )


def to_domain_caps(pydantic: infra.CapabilitiesModel) -> domain.Capabilities:
    mappings = tuple(
        domain.CategoryMapping(
            id=m.id,
            cat=m.cat,
            newznab_id=resolve_category_id(m.cat),
            desc=m.desc,
            default=m.default,
        )
        for m in pydantic.categorymappings
    )
    return domain.Capabilities(
        categories=dict(pydantic.categories),
        category_mappings=mappings,
        modes={mode: tuple(params) for mode, params in pydantic.modes.items()},
        allow_raw_search=pydantic.allowrawsearch,
    )


def _error_checks(errors: list[infra.ErrorBlockModel]) -> tuple[domain.LoginErrorCheck, ...]:
    return tuple(
        domain.LoginErrorCheck(
            selector=e.selector or "",
            path=e.path,
            message=to_domain_selector(e.message) if e.message else None,
        )
        for e in errors
        if e.selector
    )


def to_domain_login(pydantic: infra.LoginBlockModel) -> domain.LoginBlock:
    apikey = None
    if pydantic.apikey is not None:
        apikey = domain.ApiKeyConfig(
            location=pydantic.apikey.location,
            header_name=pydantic.apikey.header_name,
            query_param=pydantic.apikey.query_param,
            prefix=pydantic.apikey.prefix,
            source=pydantic.apikey.source or "apikey",
        )
    return domain.LoginBlock(
        method=pydantic.method,
        path=pydantic.path,
        submit_path=pydantic.submitpath,
        cookies=tuple(pydantic.cookies),
        form=pydantic.form,
        selectors=pydantic.selectors,
        inputs=dict(pydantic.inputs),
        selector_inputs={k: to_domain_selector(v) for k, v in pydantic.selectorinputs.items()},
        get_selector_inputs={
            k: to_domain_selector(v) for k, v in pydantic.getselectorinputs.items()
        },
        errors=_error_checks(pydantic.error),
        test=(
            domain.LoginTest(path=pydantic.test.path, selector=pydantic.test.selector)
            if pydantic.test
            else None
        ),
        headers={k: tuple(v) for k, v in pydantic.headers.items()},
        apikey=apikey,
        captcha=pydantic.captcha,
    )


def to_domain_search_path(pydantic: infra.SearchPathModel) -> domain.SearchPath:
    response = None
    if pydantic.response is not None:
        response = domain.ResponseConfig(
            type=pydantic.response.type,
            no_results_message=pydantic.response.no_results_message,
        )
    return domain.SearchPath(
        path=pydantic.path,
        method=_method(pydantic.method),
        inputs=dict(pydantic.inputs),
        query_separator=pydantic.queryseparator,
        categories=tuple(pydantic.categories),
        inherit_inputs=pydantic.inheritinputs,
        follow_redirect=pydantic.followredirect,
        response=response,
    )


def to_domain_rows(pydantic: infra.RowsBlockModel | None) -> domain.RowsBlock:
    if pydantic is None:
        return domain.RowsBlock(selector="")
    return domain.RowsBlock(
        selector=pydantic.selector or "",
        after=pydantic.after,
        date_headers=to_domain_selector(pydantic.dateheaders) if pydantic.dateheaders else None,
        count=to_domain_selector(pydantic.count) if pydantic.count else None,
        multiple=bool(pydantic.multiple),
        missing_attribute_equals_no_results=pydantic.missing_attribute_equals_no_results,
        filters=to_domain_filters(pydantic.filters),
    )


def to_domain_search(pydantic: infra.SearchBlockModel) -> domain.SearchBlock:
    return domain.SearchBlock(
        rows=to_domain_rows(pydantic.rows),
        fields={name: to_domain_selector(block) for name, block in pydantic.fields.items()},
        type=pydantic.type,
        path=pydantic.path,
        paths=tuple(to_domain_search_path(p) for p in pydantic.paths),
        headers={k: tuple(v) for k, v in pydantic.headers.items()},
        keywords_filters=to_domain_filters(pydantic.keywordsfilters),
        allow_empty_inputs=pydantic.allow_empty_inputs,
        inputs=dict(pydantic.inputs),
        errors=_error_checks(pydantic.error),
        preprocessing_filters=to_domain_filters(pydantic.preprocessingfilters),
    )


def to_domain_download(pydantic: infra.DownloadBlockModel) -> domain.DownloadBlock:
    before = None
    if pydantic.before is not None:
        before = domain.BeforeBlock(
            path=pydantic.before.path,
            method=_method(pydantic.before.method),
            inputs=dict(pydantic.before.inputs),
            path_selector=_selector_field(pydantic.before.pathselector),
        )
    infohash = None
    ih = pydantic.infohash
    if ih is not None and ih.hash is not None and ih.title is not None:
        infohash = domain.InfohashBlock(
            hash=_selector_field(ih.hash),  # type: ignore[arg-type]
            title=_selector_field(ih.title),  # type: ignore[arg-type]
            use_before_response=ih.usebeforeresponse,
        )
    return domain.DownloadBlock(
        selectors=tuple(
            domain.DownloadSelector(
                selector=s.selector or "",
                attribute=s.attribute,
                use_before_response=s.usebeforeresponse,
                filters=to_domain_filters(s.filters),
            )
            for s in pydantic.selectors
            if s.selector
        ),
        method=_method(pydantic.method),
        before=before,
        infohash=infohash,
        headers={k: tuple(v) for k, v in pydantic.headers.items()},
    )


def to_domain_protocol_config(
    pydantic: infra.ProtocolConfigModel | None,
) -> domain.ProtocolConfig:
    if pydantic is None:
        return domain.ProtocolConfig()
    torrent = usenet = streaming = None
    if pydantic.torrent is not None:
        torrent = domain.TorrentConfig(
            supports_magnet=pydantic.torrent.supports_magnet,
            supports_info_hash=pydantic.torrent.supports_info_hash,
            freeleech_patterns=tuple(pydantic.torrent.freeleech_patterns),
            internal_patterns=tuple(pydantic.torrent.internal_patterns),
        )
    if pydantic.usenet is not None:
        usenet = domain.UsenetConfig(
            api_type=pydantic.usenet.api_type,
            default_api_path=pydantic.usenet.default_api_path,
        )
    if pydantic.streaming is not None:
        streaming = domain.StreamingConfig(
            type=pydantic.streaming.type,
            data_source=pydantic.streaming.data_source,
            providers=tuple(p.id for p in pydantic.streaming.providers if p.enabled),
        )
    return domain.ProtocolConfig(torrent=torrent, usenet=usenet, streaming=streaming)


def to_domain_definition(
    pydantic: infra.DefinitionModel, *, source: str | None = None
) -> domain.Definition:
    """Convert a validated definition into the immutable domain model."""
    return domain.Definition(
        id=pydantic.id,
        name=pydantic.name,
        links=tuple(pydantic.links),
        caps=to_domain_caps(pydantic.caps),
        search=to_domain_search(pydantic.search),
        access_type=pydantic.type,
        protocol=pydantic.protocol,
        description=pydantic.description,
        language=pydantic.language,
        encoding=pydantic.encoding,
        request_delay=pydantic.requestdelay,
        legacy_links=tuple(pydantic.legacylinks),
        follow_redirect=pydantic.followredirect,
        test_link_torrent=pydantic.testlinktorrent,
        settings=tuple(to_domain_setting(s) for s in pydantic.settings),
        login=to_domain_login(pydantic.login) if pydantic.login else None,
        download=to_domain_download(pydantic.download) if pydantic.download else None,
        protocol_config=to_domain_protocol_config(pydantic.protocol_config),
        replaces=tuple(pydantic.replaces),
        source=source,
    )
