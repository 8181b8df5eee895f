from __future__ import annotations

from .filters import FilterEngine, regex_replace, safe_compile
from .json_path import detect_response_type, select_json
from .selectors import SelectorEngine, parse_html, parse_xml
from .template import TemplateEngine, compile_template, is_truthy

__all__ = [
    "FilterEngine",
    "SelectorEngine",
    "TemplateEngine",
    "compile_template",
    "detect_response_type",
    "is_truthy",
    "parse_html",
    "parse_xml",
    "regex_replace",
    "safe_compile",
    "select_json",
]
