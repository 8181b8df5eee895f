"""Selector blocks evaluated against HTML/XML trees (bs4) or decoded JSON.

A block either reads a node (``selector`` + ``attribute`` / text), maps it
through ``case``, or produces a templated constant (``text``). Evaluation
returns a :class:`Selection`; :meth:`SelectorEngine.select` turns a miss
into :class:`SelectorError` only when the block is required, not optional
and has no default.
"""

from __future__ import annotations

import copy
from typing import Any

import structlog
from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from definarr.domain.entities.definition import SelectorBlock
from definarr.domain.entities.selection import Selection, SelectionResult
from definarr.domain.exceptions import SelectorError
from definarr.infrastructure.engine.filters import FilterEngine
from definarr.infrastructure.engine.json_path import json_scalar, select_json, select_json_all
from definarr.infrastructure.engine.template import TemplateEngine

log = structlog.get_logger(__name__)

_CSS_ERRORS = (SelectorSyntaxError, ValueError, NotImplementedError)


def parse_html(content: str) -> BeautifulSoup:
    return BeautifulSoup(content, "lxml")


def parse_xml(content: str) -> BeautifulSoup:
    return BeautifulSoup(content, "xml")


def is_json_container(container: Any) -> bool:
    return not isinstance(container, Tag)


def _css(selector: str) -> str:
    return selector.replace(":contains(", ":-soup-contains(")


def _top(node: Tag) -> Tag:
    while node.parent is not None:
        node = node.parent
    return node


def _match_self(node: Tag, selector: str) -> bool:
    if isinstance(node, BeautifulSoup):
        return False
    return bool(node.css.match(selector))


def find_node(container: Tag, selector: str) -> Tag | None:
    """First node matching *selector*: the container itself, else a descendant.

    A ``:root`` prefix starts the search at the document instead of the container.
    """
    scope = container
    if selector.startswith(":root"):
        scope = _top(container)
        selector = selector[len(":root") :].strip()
        if not selector:
            return scope
    selector = _css(selector)
    if _match_self(scope, selector):
        return scope
    return scope.select_one(selector)


class SelectorEngine:
    """Evaluates :class:`SelectorBlock` instances; templates expand ``text``, ``case`` and defaults."""

    def __init__(self, templates: TemplateEngine, filters: FilterEngine | None = None) -> None:
        self.templates = templates
        self.filters = filters or templates.filters

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def evaluate(self, container: Any, block: SelectorBlock) -> Selection:
        if block.text is not None:
            value = self.templates.expand(block.text)
            return Selection.ok(self.filters.apply(value, block.filters), optional=block.optional)
        if is_json_container(container):
            return self._evaluate_json(container, block)
        return self._evaluate_html(container, block)

    def select(self, container: Any, block: SelectorBlock, *, required: bool = True) -> SelectionResult:
        selection = self.evaluate(container, block)
        if selection.is_ok:
            return SelectionResult(selection.value, optional=block.optional)
        if required and not block.optional and block.default is None:
            raise SelectorError(block.selector, selection.reason)
        return SelectionResult(selection.value, optional=block.optional)

    def select_all(self, container: Any, selector: str) -> list[Any]:
        """Rows matched by *selector* (CSS for trees, JSON path for documents)."""
        selector = self.templates.expand(selector)
        if is_json_container(container):
            try:
                return select_json_all(container, selector)
            except ValueError as e:
                raise SelectorError(selector, f"Invalid JSON path {selector!r}: {e}") from e
        scope = container
        if selector.startswith(":root"):
            scope = _top(container)
            selector = selector[len(":root") :].strip() or "*"
        try:
            return list(scope.select(_css(selector)))
        except _CSS_ERRORS as e:
            raise SelectorError(selector, f"Invalid selector {selector!r}: {e}") from e

    def text_of(self, container: Any, selector: str) -> str | None:
        """Plain text of the first match, or ``None``; used by login and error checks."""
        result = self.select(container, SelectorBlock(selector=selector), required=False)
        return result.value

    def matches(self, container: Any, selector: str) -> bool:
        if is_json_container(container):
            try:
                return select_json(container, selector) is not None
            except ValueError:
                return False
        try:
            return find_node(container, self.templates.expand(selector)) is not None
        except _CSS_ERRORS:
            log.warning("selector_invalid", selector=selector)
            return False

    # ------------------------------------------------------------------
    # HTML / XML
    # ------------------------------------------------------------------

    def _default(self, block: SelectorBlock) -> str | None:
        return None if block.default is None else self.templates.expand(block.default)

    def _evaluate_html(self, container: Tag, block: SelectorBlock) -> Selection:
        node: Tag | None = container
        if block.selector:
            selector = self.templates.expand(block.selector)
            try:
                node = find_node(container, selector)
            except _CSS_ERRORS as e:
                log.warning("selector_invalid", selector=selector, error=str(e))
                return Selection.invalid(f"Invalid selector {selector!r}: {e}", optional=block.optional)
            if node is None:
                return Selection.missing(default=self._default(block), optional=block.optional)

        if block.remove:
            node = copy.copy(node)
            try:
                for unwanted in node.select(_css(block.remove)):
                    unwanted.decompose()
            except _CSS_ERRORS as e:
                log.warning("selector_remove_invalid", selector=block.remove, error=str(e))

        if block.case:
            return self._evaluate_html_case(node, block)

        if block.attribute:
            raw = node.get(block.attribute)
            # Only a missing node returns the raw default; a missing attribute is filtered.
            if raw is None and block.default is None:
                return Selection.missing(optional=block.optional)
            value = " ".join(raw) if isinstance(raw, list) else str(raw or "")
        else:
            value = node.get_text().strip()

        if not value and block.default is not None:
            value = self._default(block) or ""
        return Selection.ok(self.filters.apply(value, block.filters), optional=block.optional)

    def _evaluate_html_case(self, node: Tag, block: SelectorBlock) -> Selection:
        for case_selector, case_value in block.case:
            if case_selector != "*":
                try:
                    css = _css(case_selector)
                    hit = _match_self(node, css) or node.select_one(css) is not None
                except _CSS_ERRORS:
                    log.warning("selector_case_invalid", selector=case_selector)
                    continue
                if not hit:
                    continue
            value = self.templates.expand(case_value)
            return Selection.ok(self.filters.apply(value, block.filters), optional=block.optional)
        return Selection.missing(default=self._default(block), optional=block.optional)

    # ------------------------------------------------------------------
    # JSON
    # ------------------------------------------------------------------

    def _evaluate_json(self, container: Any, block: SelectorBlock) -> Selection:
        value: Any = container
        if block.selector:
            path = self.templates.expand(block.selector)
            try:
                value = select_json(container, path)
            except ValueError as e:
                return Selection.invalid(f"Invalid JSON path {path!r}: {e}", optional=block.optional)
            if value is None:
                return Selection.missing(default=self._default(block), optional=block.optional)
        elif block.attribute and isinstance(container, dict):
            value = container.get(block.attribute)
            if value is None and block.default is None:
                return Selection.missing(optional=block.optional)

        text = json_scalar(value) or ""
        if block.case:
            for key, case_value in block.case:
                if key == text or key == "*":
                    expanded = self.templates.expand(case_value)
                    return Selection.ok(self.filters.apply(expanded, block.filters), optional=block.optional)
            return Selection.missing(default=self._default(block), optional=block.optional)

        if not text and block.default is not None:
            text = self._default(block) or ""
        return Selection.ok(self.filters.apply(text, block.filters), optional=block.optional)
