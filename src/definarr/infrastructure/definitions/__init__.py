from .loader import DefinitionLoader, DefinitionLoadIssue, load_definition, parse_definition

__all__ = ["DefinitionLoadIssue", "DefinitionLoader", "load_definition", "parse_definition"]
