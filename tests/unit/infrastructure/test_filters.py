"""Tests for the named value filters."""

from __future__ import annotations

import pytest

from definarr.domain.entities.definition import FilterSpec
from definarr.infrastructure.engine.filters import (
    FilterEngine,
    convert_replacement,
    regex_replace,
    safe_compile,
)


@pytest.fixture()
def filters() -> FilterEngine:
    return FilterEngine()


class TestRegexFilters:
    def test_regexp_returns_first_group(self, filters: FilterEngine) -> None:
        assert filters.apply_one("id=12345&x=1", "regexp", ["id=(\\d+)"]) == "12345"

    def test_regexp_without_group_returns_match(self, filters: FilterEngine) -> None:
        assert filters.apply_one("size 12 GB", "regexp", ["\\d+"]) == "12"

    def test_regexp_no_match_is_empty(self, filters: FilterEngine) -> None:
        assert filters.apply_one("abc", "regexp", ["(\\d+)"]) == ""

    def test_re_replace_dollar_backrefs(self, filters: FilterEngine) -> None:
        assert filters.apply_one("2024-05-01", "re_replace", ["(\\d+)-(\\d+)-(\\d+)", "$3.$2.$1"]) == "01.05.2024"

    def test_convert_replacement(self) -> None:
        assert convert_replacement("${1}x$2") == "\\g<1>x\\g<2>"

    def test_unsafe_pattern_rejected(self) -> None:
        assert safe_compile("(a+)+") is None
        assert regex_replace("aaaa", "(a+)+", "b") == "aaaa"

    def test_invalid_pattern_rejected(self) -> None:
        assert safe_compile("(unclosed") is None


class TestStringFilters:
    @pytest.mark.parametrize(
        "value, name, args, expected",
        [
            ("a,b,c", "split", [",", "1"], "b"),
            ("a,b,c", "split", [",", "-1"], "c"),
            ("a,b", "split", [",", "5"], ""),
            ("foo bar", "replace", [" ", "."], "foo.bar"),
            ("  x  ", "trim", [], "x"),
            ("--x--", "trim", ["-"], "x"),
            ("prefix-x", "trimprefix", ["prefix-"], "x"),
            ("x.torrent", "trimsuffix", [".torrent"], "x"),
            ("x", "prepend", ["a"], "ax"),
            ("x", "append", ["a"], "xa"),
            ("AbC", "tolower", [], "abc"),
            ("AbC", "toupper", [], "ABC"),
            ("a%20b", "urldecode", [], "a b"),
            ("a b", "urlencode", [], "a+b"),
            ("&amp;", "htmldecode", [], "&"),
            ("abcdef", "slice", ["1", "3"], "bc"),
            ("abcdef", "substring", ["1", "3"], "bcd"),
            ("a, b", "join", ["|"], "a|b"),
            ("5", "printf", ["%s GB"], "5 GB"),
            ("", "default", ["n/a"], "n/a"),
            ("Crème Brûlée", "diacritics", [], "Creme Brulee"),
            ('a<b>:c?', "validfilename", [], "abc"),
            ("hd, sd, junk", "validate", ["hd,sd"], "hd,sd"),
        ],
    )
    def test_filter(self, filters: FilterEngine, value: str, name: str, args: list[str], expected: str) -> None:
        assert filters.apply_one(value, name, args) == expected

    def test_querystring(self, filters: FilterEngine) -> None:
        assert filters.apply_one("https://x/dl.php?id=7&hash=abc", "querystring", ["hash"]) == "abc"

    def test_jsonjoinarray(self, filters: FilterEngine) -> None:
        assert filters.apply_one('{"tags": ["a", "b"]}', "jsonjoinarray", ["tags", "|"]) == "a|b"


class TestDateFilters:
    def test_timeago_emits_rfc1123(self, filters: FilterEngine) -> None:
        out = filters.apply_one("2 hours ago", "timeago", [])
        assert out.endswith("+0000")

    def test_dateparse_go_layout(self, filters: FilterEngine) -> None:
        assert filters.apply_one("01 May 2024", "dateparse", ["02 Jan 2006"]) == "Wed, 01 May 2024 00:00:00 +0000"

    def test_dateparse_unparseable_passes_through(self, filters: FilterEngine) -> None:
        assert filters.apply_one("whenever", "dateparse", ["2006-01-02"]) == "whenever"


class TestFilterEngine:
    def test_unknown_filter_is_identity(self, filters: FilterEngine) -> None:
        assert filters.apply_one("x", "does-not-exist") == "x"
        assert filters.knows("does-not-exist") is False

    def test_case_insensitive_names(self, filters: FilterEngine) -> None:
        assert filters.apply_one("x", "ToUpper") == "X"

    def test_chain_applied_in_order(self, filters: FilterEngine) -> None:
        chain = [FilterSpec("replace", (" ", "_")), FilterSpec("toupper")]
        assert filters.apply("a b", chain) == "A_B"

    def test_extra_filters(self) -> None:
        engine = FilterEngine({"reverse": lambda v, a: v[::-1]})
        assert engine.apply_one("abc", "reverse") == "cba"
