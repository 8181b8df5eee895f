"""Tests for definition validation, conversion and directory loading."""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any

import pytest
import yaml

from definarr.domain.exceptions import (
    DefinitionError,
    DefinitionNotFoundError,
    DefinitionValidationError,
)
from definarr.infrastructure.definitions.loader import (
    DefinitionLoader,
    load_definition,
    parse_definition,
)


def _write(directory: Path, name: str, data: Any) -> Path:
    path = directory / name
    path.write_text(yaml.safe_dump(data) if not isinstance(data, str) else data, encoding="utf-8")
    return path


class TestParseDefinition:
    def test_valid_document(self, definition_data: dict[str, Any]) -> None:
        d = parse_definition(definition_data)
        assert d.id == "testsite"
        assert d.primary_link == "https://tracker.example/"
        assert d.protocol == "torrent"
        assert d.search.effective_paths()[0].path == "search.php"
        assert d.caps.category_mappings[0].newznab_id == 2040

    def test_empty_document(self) -> None:
        with pytest.raises(DefinitionValidationError, match="empty"):
            parse_definition(None)

    def test_non_mapping_root(self) -> None:
        with pytest.raises(DefinitionValidationError, match="mapping"):
            parse_definition(["a"])

    def test_missing_rows_selector(self, definition_data: dict[str, Any]) -> None:
        del definition_data["search"]["rows"]
        with pytest.raises(DefinitionValidationError) as exc_info:
            parse_definition(definition_data)
        assert "rows.selector" in str(exc_info.value)

    def test_bad_link(self, definition_data: dict[str, Any]) -> None:
        definition_data["links"] = ["ftp://tracker.example/"]
        with pytest.raises(DefinitionValidationError, match="http"):
            parse_definition(definition_data)

    def test_bad_id(self, definition_data: dict[str, Any]) -> None:
        definition_data["id"] = "Bad Id"
        with pytest.raises(DefinitionValidationError) as exc_info:
            parse_definition(definition_data)
        assert exc_info.value.issues[0][0] == "id"

    def test_numeric_scalars_coerced_to_text(self, definition_data: dict[str, Any]) -> None:
        definition_data["search"]["inputs"]["page"] = 0
        definition_data["search"]["fields"]["downloadvolumefactor"] = {"text": 1}
        d = parse_definition(definition_data)
        assert d.search.inputs["page"] == "0"
        assert d.search.fields["downloadvolumefactor"].text == "1"

    def test_string_field_is_selector(self, definition_data: dict[str, Any]) -> None:
        definition_data["search"]["fields"]["title"] = "a.title"
        d = parse_definition(definition_data)
        assert d.search.fields["title"].selector == "a.title"

    def test_legacy_single_path(self, definition_data: dict[str, Any]) -> None:
        del definition_data["search"]["paths"]
        definition_data["search"]["path"] = "browse.php"
        d = parse_definition(definition_data)
        assert [p.path for p in d.search.effective_paths()] == ["browse.php"]

    def test_database_search_needs_no_rows(self) -> None:
        d = parse_definition(
            {
                "id": "catalog",
                "name": "Catalog",
                "links": ["https://catalog.example/"],
                "protocol": "streaming",
                "search": {"type": "database"},
            }
        )
        assert d.uses_database_search is True

    def test_login_settings_synthesized_for_form_login(self, definition_data: dict[str, Any]) -> None:
        definition_data["login"] = {"path": "login.php", "method": "post"}
        d = parse_definition(definition_data)
        assert [s.name for s in d.settings] == ["username", "password"]
        assert d.setting("password").type == "password"

    def test_cookie_login_gets_cookie_setting(self, definition_data: dict[str, Any]) -> None:
        definition_data["login"] = {"method": "cookie"}
        d = parse_definition(definition_data)
        assert [s.name for s in d.settings] == ["cookie"]

    def test_declared_settings_are_kept(self, definition_data: dict[str, Any]) -> None:
        definition_data["login"] = {"method": "post", "path": "login.php"}
        definition_data["settings"] = [{"name": "passkey", "type": "text"}]
        d = parse_definition(definition_data)
        assert [s.name for s in d.settings] == ["passkey"]

    def test_info_setting_types_collapse(self, definition_data: dict[str, Any]) -> None:
        definition_data["settings"] = [{"name": "note", "type": "info_flaresolverr", "label": "x"}]
        d = parse_definition(definition_data)
        assert d.settings[0].type == "info"
        assert d.settings[0].raw_type == "info_flaresolverr"


class TestLoadDefinition:
    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "bad.yml", "id: [unclosed")
        with pytest.raises(DefinitionValidationError, match="invalid YAML"):
            load_definition(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(DefinitionError):
            load_definition(tmp_path / "nope.yml")

    def test_source_recorded(self, tmp_path: Path, definition_data: dict[str, Any]) -> None:
        path = _write(tmp_path, "site.yml", definition_data)
        assert load_definition(path).source == str(path)


class TestDefinitionLoader:
    def test_loads_directory(self, tmp_path: Path, definition_data: dict[str, Any]) -> None:
        other = deepcopy(definition_data)
        other["id"] = "othersite"
        _write(tmp_path, "a.yml", definition_data)
        (tmp_path / "sub").mkdir()
        _write(tmp_path / "sub", "b.yaml", other)
        _write(tmp_path, "notes.txt", "ignored")

        loader = DefinitionLoader(tmp_path)
        assert loader.list_ids() == ["othersite", "testsite"]
        assert loader.get("othersite").name == "Test Site"
        assert loader.errors == []

    def test_bad_files_recorded(self, tmp_path: Path, definition_data: dict[str, Any]) -> None:
        _write(tmp_path, "good.yml", definition_data)
        _write(tmp_path, "bad.yml", {"id": "bad"})
        loader = DefinitionLoader(tmp_path)
        assert loader.list_ids() == ["testsite"]
        assert len(loader.errors) == 1
        assert loader.errors[0].source.endswith("bad.yml")

    def test_duplicate_id_keeps_first(self, tmp_path: Path, definition_data: dict[str, Any]) -> None:
        second = deepcopy(definition_data)
        second["name"] = "Second"
        _write(tmp_path, "a.yml", definition_data)
        _write(tmp_path, "b.yml", second)
        loader = DefinitionLoader(tmp_path)
        assert loader.get("testsite").name == "Test Site"

    def test_unknown_id(self, tmp_path: Path) -> None:
        with pytest.raises(DefinitionNotFoundError):
            DefinitionLoader(tmp_path).get("nope")

    def test_missing_directory(self, tmp_path: Path) -> None:
        assert DefinitionLoader(tmp_path / "missing").list_ids() == []
