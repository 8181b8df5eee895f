"""Tests for CategoryMapper."""

from __future__ import annotations

from definarr.domain.entities.categories import category_family
from definarr.domain.entities.definition import Capabilities, CategoryMapping
from definarr.infrastructure.runtime.category_mapper import CategoryMapper


def _make_mapper(*, with_default: bool = False) -> CategoryMapper:
    caps = Capabilities(
        categories={"10": "Movies", "99": "Not A Newznab Name"},
        category_mappings=(
            CategoryMapping(id="1", cat="Movies/HD", newznab_id=2040, desc="HD Movies"),
            CategoryMapping(id="2", cat="TV/HD", newznab_id=5040, desc="HD TV", default=with_default),
            CategoryMapping(id="3", cat="Movies/HD", newznab_id=2040, desc="1080p Movies"),
            CategoryMapping(id="4", cat="Audio", newznab_id=3000),
        ),
    )
    return CategoryMapper(caps)


class TestToTracker:
    def test_exact_mapping(self) -> None:
        assert _make_mapper().map_to_tracker([5040]) == ["2"]

    def test_many_native_ids_for_one_category(self) -> None:
        assert _make_mapper().map_to_tracker([2040]) == ["1", "3"]

    def test_parent_pulls_in_family(self) -> None:
        assert _make_mapper().map_to_tracker([2000]) == ["10", "1", "3"]

    def test_no_duplicates(self) -> None:
        assert _make_mapper().map_to_tracker([2040, 2000]) == ["1", "3", "10"]

    def test_unmapped_falls_back_to_defaults(self) -> None:
        assert _make_mapper(with_default=True).map_to_tracker([7000]) == ["2"]
        assert _make_mapper().map_to_tracker([7000]) == []


class TestFromTracker:
    def test_simple_categories_resolved_by_name(self) -> None:
        assert _make_mapper().map_from_tracker("10") == [2000]

    def test_unknown_names_are_not_mapped(self) -> None:
        assert _make_mapper().map_from_tracker("99") == []

    def test_description_lookup(self) -> None:
        assert _make_mapper().map_from_description("hd tv") == [5040]

    def test_normalize_union(self) -> None:
        assert _make_mapper().normalize(["1", "2", "3"]) == (2040, 5040)

    def test_normalize_unknown_uses_defaults_then_other(self) -> None:
        assert _make_mapper(with_default=True).normalize(["777"]) == (5040,)
        assert _make_mapper().normalize(["777"]) == (8000,)

    def test_roundtrip_keeps_family(self) -> None:
        mapper = _make_mapper()
        for newznab_id in (2000, 2040, 3000, 5040):
            back = mapper.normalize(mapper.map_to_tracker([newznab_id]))
            assert category_family(newznab_id) in {category_family(n) for n in back}

    def test_defaults_and_native_ids(self) -> None:
        mapper = _make_mapper(with_default=True)
        assert mapper.defaults == ["2"]
        assert set(mapper.native_ids) == {"10", "1", "2", "3", "4"}


class TestPathMatching:
    def test_unscoped_path_always_matches(self) -> None:
        assert _make_mapper().path_matches([], ["1"]) is True
        assert _make_mapper().path_matches(["1"], []) is True

    def test_native_id_match(self) -> None:
        assert _make_mapper().path_matches(["1", "3"], ["3"]) is True
        assert _make_mapper().path_matches(["1"], ["2"]) is False

    def test_exclusion_list(self) -> None:
        assert _make_mapper().path_matches(["!", "2"], ["1"]) is True
        assert _make_mapper().path_matches(["!", "2"], ["2"]) is False

    def test_family_name_match(self) -> None:
        mapper = _make_mapper()
        assert mapper.path_matches(["Movies"], ["3"]) is True
        assert mapper.path_matches(["TV"], ["3"]) is False

    def test_unmapped_numeric_native_id_read_as_newznab(self) -> None:
        assert _make_mapper().families_of("5030") == {5000}
        assert _make_mapper().families_of("abc") == set()
