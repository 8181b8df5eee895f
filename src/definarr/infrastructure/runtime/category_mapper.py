"""Translation between Newznab category ids and a site's native category ids."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from definarr.domain.entities.categories import (
    OTHER_CATEGORY,
    category_family,
    category_id_by_name,
)
from definarr.domain.entities.definition import Capabilities


class CategoryMapper:
    """Many-to-many map built from ``caps.categories`` and ``caps.categorymappings``.

    Unknown native ids never raise: :meth:`normalize` falls back to the
    categories of the declared defaults, then to ``Other``.
    """

    def __init__(self, caps: Capabilities) -> None:
        self._to_newznab: dict[str, list[int]] = {}
        self._to_tracker: dict[int, list[str]] = {}
        self._by_description: dict[str, list[int]] = {}
        self._defaults: list[str] = []

        for native_id, name in caps.categories.items():
            newznab_id = category_id_by_name(name)
            if newznab_id is not None:
                self._add(str(native_id), newznab_id)

        for mapping in caps.category_mappings:
            if mapping.cat:
                self._add(mapping.id, mapping.newznab_id)
                if mapping.desc:
                    self._by_description.setdefault(mapping.desc.strip().lower(), []).append(
                        mapping.newznab_id
                    )
            if mapping.default and mapping.id not in self._defaults:
                self._defaults.append(mapping.id)

    def _add(self, native_id: str, newznab_id: int) -> None:
        forward = self._to_newznab.setdefault(native_id, [])
        if newznab_id not in forward:
            forward.append(newznab_id)
        reverse = self._to_tracker.setdefault(newznab_id, [])
        if native_id not in reverse:
            reverse.append(native_id)

    @property
    def defaults(self) -> list[str]:
        return list(self._defaults)

    @property
    def native_ids(self) -> list[str]:
        return list(self._to_newznab)

    def map_to_tracker(self, newznab_ids: Iterable[int]) -> list[str]:
        """Native ids for *newznab_ids*; the declared defaults when nothing maps.

        A parent id (``2000``) also pulls in native ids mapped anywhere in its family.
        """
        result: list[str] = []
        for newznab_id in newznab_ids:
            candidates = list(self._to_tracker.get(newznab_id, ()))
            if newznab_id == category_family(newznab_id):
                for mapped_id, natives in self._to_tracker.items():
                    if category_family(mapped_id) == newznab_id:
                        candidates.extend(natives)
            for native_id in candidates:
                if native_id not in result:
                    result.append(native_id)
        return result or list(self._defaults)

    def map_from_tracker(self, native_id: str) -> list[int]:
        return list(self._to_newznab.get(str(native_id).strip(), ()))

    def map_from_description(self, description: str) -> list[int]:
        return list(self._by_description.get(description.strip().lower(), ()))

    def normalize(self, native_ids: Sequence[str]) -> tuple[int, ...]:
        """Union of mapped ids; falls back to the defaults' categories, then ``Other``."""
        result: list[int] = []
        for native_id in native_ids:
            for newznab_id in self.map_from_tracker(native_id):
                if newznab_id not in result:
                    result.append(newznab_id)
        if result:
            return tuple(result)
        for native_id in self._defaults:
            for newznab_id in self.map_from_tracker(native_id):
                if newznab_id not in result:
                    result.append(newznab_id)
        return tuple(result) or (OTHER_CATEGORY,)

    def families_of(self, native_id: str) -> set[int]:
        mapped = self.map_from_tracker(native_id)
        if mapped:
            return {category_family(n) for n in mapped}
        # Unmapped numeric ids are read as Newznab-style numbers.
        if native_id.isdigit():
            return {category_family(int(native_id))}
        return set()

    def matches_family(self, native_id: str, parent_id: int) -> bool:
        return category_family(parent_id) in self.families_of(native_id)

    def path_matches(self, path_categories: Sequence[str], native_ids: Sequence[str]) -> bool:
        """Whether a search path scoped to *path_categories* serves *native_ids*.

        Unscoped paths and empty requests always match. A leading ``"!"``
        turns the list into an exclusion list. Names such as ``"Movies"``
        match any native id whose mapped family coincides.
        """
        if not path_categories or not native_ids:
            return True
        if path_categories[0] == "!":
            return not self._any_match(path_categories[1:], native_ids)
        return self._any_match(path_categories, native_ids)

    def _any_match(self, path_categories: Sequence[str], native_ids: Sequence[str]) -> bool:
        for path_category in path_categories:
            if path_category in native_ids:
                return True
            if path_category.isdigit():
                continue
            parent_id = category_id_by_name(path_category)
            if parent_id is None:
                continue
            if any(self.matches_family(native_id, parent_id) for native_id in native_ids):
                return True
        return False
