"""Definition loading: YAML file -> validated pydantic model -> domain Definition."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from definarr.domain.entities.definition import Definition, SettingField
from definarr.domain.exceptions import (
    DefinitionError,
    DefinitionNotFoundError,
    DefinitionValidationError,
)
from definarr.infrastructure.definitions.adapters import to_domain_definition
from definarr.infrastructure.definitions.validation_schema import DefinitionModel

log = structlog.get_logger(__name__)

DEFINITION_SUFFIXES = (".yml", ".yaml")


@dataclass(frozen=True)
class DefinitionLoadIssue:
    source: str
    error: str


def _issues_from_validation(e: ValidationError) -> list[tuple[str, str]]:
    return [(".".join(str(p) for p in err["loc"]), err["msg"]) for err in e.errors()]


def _synthesize_login_settings(definition: Definition) -> Definition:
    """Give login definitions without settings the fields their method needs."""
    if definition.login is None or definition.settings:
        return definition
    method = definition.login.method
    if method == "cookie":
        settings: tuple[SettingField, ...] = (SettingField(name="cookie", label="Cookie"),)
    elif method in ("oneurl", "none"):
        settings = ()
    elif method == "apikey":
        settings = (SettingField(name="apikey", type="password", label="API Key"),)
    else:
        settings = (
            SettingField(name="username", label="Username"),
            SettingField(name="password", type="password", label="Password"),
        )
    return replace(definition, settings=settings)


def parse_definition(data: Any, *, source: str | None = None) -> Definition:
    """Validate an already-parsed YAML mapping."""
    if data is None:
        raise DefinitionValidationError([("", "YAML file is empty")], source=source)
    if not isinstance(data, dict):
        raise DefinitionValidationError([("", "YAML root must be a mapping")], source=source)
    try:
        model = DefinitionModel.model_validate(data)
    except ValidationError as e:
        issues = _issues_from_validation(e)
        log.error("definition_validation_failed", source=source, issues=issues)
        raise DefinitionValidationError(issues, source=source) from e
    return _synthesize_login_settings(to_domain_definition(model, source=source))


def load_definition(path: Path) -> Definition:
    """Load and validate one definition file."""
    try:
        raw = path.read_text(encoding="utf-8")
        data = yaml.safe_load(raw)
    except (OSError, UnicodeDecodeError) as e:
        log.error("definition_load_failed", source=str(path), error=str(e))
        raise DefinitionError(f"{path}: {e}") from e
    except yaml.YAMLError as e:
        log.error("definition_yaml_invalid", source=str(path), error=str(e))
        raise DefinitionValidationError([("", f"invalid YAML: {e}")], source=str(path)) from e
    return parse_definition(data, source=str(path))


class DefinitionLoader:
    """Loads every definition below a directory.

    Bad files are recorded in :attr:`errors` and skipped; a second file
    claiming an already-loaded id is skipped as well.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self._definitions: dict[str, Definition] = {}
        self._errors: list[DefinitionLoadIssue] = []
        self._loaded = False

    def discover(self) -> list[Path]:
        if not self.directory.exists():
            log.warning("definitions_dir_missing", directory=str(self.directory))
            return []
        return sorted(
            p for p in self.directory.rglob("*") if p.is_file() and p.suffix in DEFINITION_SUFFIXES
        )

    def load(self) -> None:
        if self._loaded:
            return
        for path in self.discover():
            try:
                definition = load_definition(path)
            except DefinitionError as e:
                self._errors.append(DefinitionLoadIssue(source=str(path), error=str(e)))
                continue
            if definition.id in self._definitions:
                log.warning(
                    "definition_duplicate_skipped",
                    definition_id=definition.id,
                    source=str(path),
                    kept=self._definitions[definition.id].source,
                )
                continue
            self._definitions[definition.id] = definition

        self._loaded = True
        log.info(
            "definitions_loaded",
            directory=str(self.directory),
            count=len(self._definitions),
            errors=len(self._errors),
        )

    def get(self, definition_id: str) -> Definition:
        self.load()
        try:
            return self._definitions[definition_id]
        except KeyError:
            raise DefinitionNotFoundError(f"Unknown definition: {definition_id}") from None

    def list_ids(self) -> list[str]:
        self.load()
        return sorted(self._definitions)

    @property
    def errors(self) -> list[DefinitionLoadIssue]:
        self.load()
        return list(self._errors)
