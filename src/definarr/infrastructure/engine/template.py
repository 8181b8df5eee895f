"""Go-style template interpreter for definition strings.

Templates such as ``{{ if .Query.IMDBID }}{{ .Query.IMDBID }}{{ else }}{{ .Keywords }}{{ end }}``
are tokenized into an AST once (cached per template string) and evaluated
against a flat variable store keyed by dotted path (``.Query.Season``).

Supported syntax:

- text and actions, with ``{{-`` / ``-}}`` whitespace trimming and ``{{/* */}}`` comments
- operands: ``.Dotted.Path``, ``.``, ``$var``, quoted or backtick strings, numbers,
  ``true`` / ``false`` / ``nil`` and parenthesised pipelines
- functions: ``and or not eq ne lt le gt ge index len printf join re_replace``
- pipelines: ``{{ .Keywords | replace " " "+" | tolower }}``; each stage after
  the first is a named filter that receives the piped value as its subject
- ``if`` / ``else if`` / ``else`` / ``end`` and ``range`` with optional
  ``$i, $e :=`` bindings

Evaluation is bounded by a step ceiling. A template that exceeds it logs a
warning and yields whatever output was produced up to that point.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Union

import structlog

from definarr.domain.entities.criteria import SearchCriteria
from definarr.domain.entities.definition import SettingField
from definarr.domain.exceptions import TemplateError
from definarr.infrastructure.engine.filters import FilterEngine, regex_replace

log = structlog.get_logger(__name__)

MAX_STEPS = 10_000

_FALSY_STRINGS = frozenset({"", ".False", "false", "False"})

_QUERY_VARIABLES = (
    "Q",
    "Keywords",
    "Type",
    "Categories",
    "Limit",
    "Offset",
    "Extended",
    "APIKey",
    "Genre",
    "Movie",
    "Year",
    "IMDBID",
    "IMDBIDShort",
    "TMDBID",
    "TraktID",
    "DoubanID",
    "Series",
    "Ep",
    "Season",
    "TVDBID",
    "TVRageID",
    "TVMazeID",
    "Episode",
    "Episode.Standard",
    "Episode.European",
    "Episode.Compact",
    "Album",
    "Artist",
    "Label",
    "Track",
    "Author",
    "Title",
    "Publisher",
)


class _StepLimitExceeded(Exception):
    pass


# ------------------------------------------------------------------
# Value semantics
# ------------------------------------------------------------------


def is_truthy(value: Any) -> bool:
    """Falsy: absent, empty string, ``.False``, ``false``/``False``, ``0``, empty list."""
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value not in _FALSY_STRINGS and value != "0"
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


def render_value(value: Any) -> str:
    if value is None or value is False:
        return ""
    if value is True:
        return "True"
    if isinstance(value, (list, tuple)):
        return ",".join(render_value(v) for v in value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _compare(op: str, left: Any, right: Any) -> bool:
    a, b = _as_number(left), _as_number(right)
    if a is None or b is None:
        a, b = render_value(left), render_value(right)  # type: ignore[assignment]
    if op == "lt":
        return a < b  # type: ignore[operator]
    if op == "le":
        return a <= b  # type: ignore[operator]
    if op == "gt":
        return a > b  # type: ignore[operator]
    return a >= b  # type: ignore[operator]


def _equal(left: Any, right: Any) -> bool:
    a, b = _as_number(left), _as_number(right)
    if a is not None and b is not None:
        return a == b
    return render_value(left) == render_value(right)


def go_printf(fmt: str, args: Sequence[Any]) -> str:
    """Subset of Go's fmt.Sprintf: ``%s %d %v %q %%`` and ``%0Nd``."""
    remaining = list(args)

    def _next() -> Any:
        return remaining.pop(0) if remaining else None

    def _sub(match: re.Match[str]) -> str:
        spec = match.group(0)
        if spec == "%%":
            return "%"
        verb = spec[-1]
        value = _next()
        if verb == "d":
            number = _as_number(value)
            text = str(int(number)) if number is not None else render_value(value)
            width = spec[1:-1]
            if width.startswith("0") and width[1:].isdigit():
                return text.rjust(int(width[1:]), "0")
            if width.isdigit():
                return text.rjust(int(width))
            return text
        if verb == "q":
            return '"' + render_value(value).replace('"', '\\"') + '"'
        return render_value(value)

    return re.sub(r"%%|%0?\d*[sdvq]", _sub, fmt)


# ------------------------------------------------------------------
# AST
# ------------------------------------------------------------------


@dataclass(frozen=True)
class Field:
    path: str  # ".Query.Q" or "." for the current element


@dataclass(frozen=True)
class Var:
    name: str  # "$e"


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Ident:
    name: str


@dataclass(frozen=True)
class Command:
    args: tuple["Operand", ...]


@dataclass(frozen=True)
class Pipeline:
    commands: tuple[Command, ...]


Operand = Union[Field, Var, Literal, Ident, Pipeline]


@dataclass(frozen=True)
class TextNode:
    text: str


@dataclass(frozen=True)
class ActionNode:
    pipeline: Pipeline


@dataclass(frozen=True)
class IfNode:
    condition: Pipeline
    then: tuple["Node", ...]
    otherwise: tuple["Node", ...] = ()


@dataclass(frozen=True)
class RangeNode:
    pipeline: Pipeline
    body: tuple["Node", ...]
    index_var: str | None = None
    element_var: str | None = None
    otherwise: tuple["Node", ...] = ()


Node = Union[TextNode, ActionNode, IfNode, RangeNode]


# ------------------------------------------------------------------
# Lexing
# ------------------------------------------------------------------


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<string>"(?:[^"\\]|\\.)*")
  | (?P<raw>`[^`]*`)
  | (?P<char>'(?:[^'\\]|\\.)')
  | (?P<assign>:=)
  | (?P<number>-?\d+(?:\.\d+)?(?![\w.]))
  | (?P<field>(?:\.[A-Za-z_][\w-]*)+|\.)
  | (?P<var>\$[A-Za-z_]\w*|\$)
  | (?P<ident>[A-Za-z_]\w*)
  | (?P<punct>[()|,=])
    """,
    re.VERBOSE,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\", "'": "'"}


def _unquote(text: str) -> str:
    body = text[1:-1]
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


def _lex(source: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    pos = 0
    while pos < len(source):
        match = _TOKEN_RE.match(source, pos)
        if not match:
            raise TemplateError(f"unexpected character {source[pos]!r} in action {source!r}")
        kind = match.lastgroup or ""
        if kind != "ws":
            tokens.append((kind, match.group(0)))
        pos = match.end()
    return tokens


def _split_actions(template: str) -> list[tuple[str, str]]:
    """Split into ``("text", s)`` / ``("action", s)`` chunks, applying trim markers."""
    chunks: list[tuple[str, str]] = []
    pos = 0
    while True:
        start = template.find("{{", pos)
        if start < 0:
            chunks.append(("text", template[pos:]))
            break
        text = template[pos:start]
        inner_start = start + 2
        if template.startswith("- ", inner_start) or template.startswith("-\t", inner_start):
            text = text.rstrip()
            inner_start += 1
        end = _find_action_end(template, inner_start)
        if end < 0:
            chunks.append(("text", template[pos:]))
            break
        inner_end = end
        trim_right = False
        if inner_end - 2 >= inner_start and template[inner_end - 1] == "-" and template[inner_end - 2].isspace():
            inner_end -= 1
            trim_right = True
        chunks.append(("text", text))
        chunks.append(("action", template[inner_start:inner_end].strip()))
        pos = end + 2
        if trim_right:
            while pos < len(template) and template[pos].isspace():
                pos += 1
    return [c for c in chunks if c[0] == "action" or c[1]]


def _find_action_end(template: str, pos: int) -> int:
    quote: str | None = None
    i = pos
    while i < len(template):
        ch = template[i]
        if quote:
            if ch == "\\" and quote != "`":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in "\"`":
            quote = ch
        elif template.startswith("}}", i):
            return i
        i += 1
    return -1


# ------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------


class _ExprParser:
    def __init__(self, tokens: list[tuple[str, str]]) -> None:
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> tuple[str, str] | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> tuple[str, str]:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def pipeline(self) -> Pipeline:
        commands = [self.command()]
        while (tok := self.peek()) is not None and tok == ("punct", "|"):
            self.take()
            commands.append(self.command())
        return Pipeline(tuple(commands))

    def command(self) -> Command:
        args: list[Operand] = []
        while (tok := self.peek()) is not None and tok not in (("punct", "|"), ("punct", ")")):
            args.append(self.operand())
        if not args:
            raise TemplateError("empty command")
        return Command(tuple(args))

    def operand(self) -> Operand:
        kind, text = self.take()
        if kind == "punct" and text == "(":
            inner = self.pipeline()
            if self.peek() != ("punct", ")"):
                raise TemplateError("unclosed parenthesis")
            self.take()
            return inner
        if kind == "string":
            return Literal(_unquote(text))
        if kind == "raw":
            return Literal(text[1:-1])
        if kind == "char":
            return Literal(_unquote(text))
        if kind == "number":
            return Literal(float(text) if "." in text else int(text))
        if kind == "field":
            return Field(text)
        if kind == "var":
            return Var(text)
        if kind == "ident":
            if text == "true":
                return Literal(True)
            if text == "false":
                return Literal(False)
            if text == "nil":
                return Literal(None)
            return Ident(text)
        raise TemplateError(f"unexpected token {text!r}")


def _parse_pipeline(source: str) -> Pipeline:
    parser = _ExprParser(_lex(source))
    result = parser.pipeline()
    if parser.peek() is not None:
        raise TemplateError(f"unexpected trailing tokens in {source!r}")
    return result


_RANGE_DECL_RE = re.compile(r"^(\$\w+)\s*(?:,\s*(\$\w+)\s*)?:=\s*(.+)$", re.DOTALL)


class _BlockParser:
    def __init__(self, chunks: list[tuple[str, str]]) -> None:
        self.chunks = chunks
        self.pos = 0

    def parse(self) -> tuple[Node, ...]:
        nodes, terminator = self._nodes()
        if terminator is not None:
            raise TemplateError(f"unexpected {{{{ {terminator} }}}}")
        return nodes

    def _nodes(self) -> tuple[tuple[Node, ...], str | None]:
        nodes: list[Node] = []
        while self.pos < len(self.chunks):
            kind, content = self.chunks[self.pos]
            self.pos += 1
            if kind == "text":
                nodes.append(TextNode(content))
                continue
            if content.startswith("/*"):
                continue
            keyword = content.split(None, 1)[0] if content else ""
            if keyword in ("end", "else"):
                return tuple(nodes), content
            if keyword == "if":
                nodes.append(self._if(content[2:].strip()))
            elif keyword == "range":
                nodes.append(self._range(content[5:].strip()))
            else:
                nodes.append(ActionNode(_parse_pipeline(content)))
        return tuple(nodes), None

    def _if(self, condition: str) -> IfNode:
        then, terminator = self._nodes()
        if terminator is None:
            raise TemplateError("unterminated if")
        if terminator == "end":
            return IfNode(_parse_pipeline(condition), then)
        rest = terminator[4:].strip()
        if rest.startswith("if "):
            nested = self._if(rest[3:].strip())
            return IfNode(_parse_pipeline(condition), then, (nested,))
        otherwise, terminator = self._nodes()
        if terminator != "end":
            raise TemplateError("unterminated else")
        return IfNode(_parse_pipeline(condition), then, otherwise)

    def _range(self, spec: str) -> RangeNode:
        index_var = element_var = None
        match = _RANGE_DECL_RE.match(spec)
        if match:
            if match.group(2):
                index_var, element_var = match.group(1), match.group(2)
            else:
                element_var = match.group(1)
            spec = match.group(3)
        body, terminator = self._nodes()
        otherwise: tuple[Node, ...] = ()
        if terminator is not None and terminator.startswith("else"):
            otherwise, terminator = self._nodes()
        if terminator != "end":
            raise TemplateError("unterminated range")
        return RangeNode(_parse_pipeline(spec), body, index_var, element_var, otherwise)


@lru_cache(maxsize=2048)
def compile_template(template: str) -> tuple[Node, ...]:
    """Parse *template* into an AST. Raises :class:`TemplateError` on syntax errors."""
    return _BlockParser(_split_actions(template)).parse()


# ------------------------------------------------------------------
# Evaluation
# ------------------------------------------------------------------


@dataclass
class _Scope:
    dot: Any = None
    locals: dict[str, Any] = field(default_factory=dict)


class _Evaluator:
    def __init__(
        self,
        variables: dict[str, Any],
        filters: FilterEngine,
        url_encode: Callable[[str], str] | None,
        max_steps: int,
    ) -> None:
        self.variables = variables
        self.filters = filters
        self.url_encode = url_encode
        self.max_steps = max_steps
        self.steps = 0
        self.out: list[str] = []

    def _tick(self) -> None:
        self.steps += 1
        if self.steps > self.max_steps:
            raise _StepLimitExceeded()

    def render(self, nodes: Sequence[Node], scope: _Scope) -> None:
        for node in nodes:
            self._tick()
            if isinstance(node, TextNode):
                self.out.append(node.text)
            elif isinstance(node, ActionNode):
                text = render_value(self.pipeline(node.pipeline, scope))
                self.out.append(self.url_encode(text) if self.url_encode and text else text)
            elif isinstance(node, IfNode):
                branch = node.then if is_truthy(self.pipeline(node.condition, scope)) else node.otherwise
                self.render(branch, scope)
            else:
                self._range(node, scope)

    def _range(self, node: RangeNode, scope: _Scope) -> None:
        collection = self.pipeline(node.pipeline, scope)
        if isinstance(collection, dict):
            items = list(collection.items())
        elif isinstance(collection, (list, tuple)):
            items = list(enumerate(collection))
        elif isinstance(collection, str) and collection:
            items = list(enumerate(collection.split(",")))
        else:
            items = []
        if not items:
            self.render(node.otherwise, scope)
            return
        for key, element in items:
            local_scope = _Scope(dot=element, locals=dict(scope.locals))
            if node.index_var:
                local_scope.locals[node.index_var] = key
            if node.element_var:
                local_scope.locals[node.element_var] = element
            self.render(node.body, local_scope)

    # --- expressions ---

    def pipeline(self, pipeline: Pipeline, scope: _Scope) -> Any:
        value = self.command(pipeline.commands[0], scope, piped=_NO_PIPE)
        for command in pipeline.commands[1:]:
            value = self.command(command, scope, piped=value)
        return value

    def command(self, command: Command, scope: _Scope, *, piped: Any) -> Any:
        self._tick()
        head = command.args[0]
        if isinstance(head, Ident):
            args = [self.operand(a, scope) for a in command.args[1:]]
            if head.name in _FUNCTIONS:
                if piped is not _NO_PIPE:
                    args.append(piped)
                return _FUNCTIONS[head.name](self, args)
            if piped is _NO_PIPE:
                log.warning("template_unknown_function", function=head.name)
                return None
            return self.filters.apply_one(render_value(piped), head.name, [render_value(a) for a in args])
        if len(command.args) > 1:
            raise TemplateError(f"cannot call non-function {head!r}")
        return self.operand(head, scope)

    def operand(self, operand: Operand, scope: _Scope) -> Any:
        if isinstance(operand, Literal):
            return operand.value
        if isinstance(operand, Field):
            return self.lookup(operand.path, scope)
        if isinstance(operand, Var):
            return scope.locals.get(operand.name, scope.dot if operand.name == "$" else None)
        if isinstance(operand, Pipeline):
            return self.pipeline(operand, scope)
        if operand.name in _FUNCTIONS:
            return _FUNCTIONS[operand.name](self, [])
        return None

    def lookup(self, path: str, scope: _Scope) -> Any:
        if path == ".":
            return scope.dot
        if path in self.variables:
            return self.variables[path]
        if isinstance(scope.dot, dict):
            current: Any = scope.dot
            for part in path.strip(".").split("."):
                if not isinstance(current, dict):
                    return None
                current = current.get(part)
            return current
        return None


_NO_PIPE = object()


def _fn_and(_: _Evaluator, args: list[Any]) -> Any:
    result: Any = None
    for arg in args:
        result = arg
        if not is_truthy(arg):
            return arg
    return result


def _fn_or(_: _Evaluator, args: list[Any]) -> Any:
    result: Any = None
    for arg in args:
        result = arg
        if is_truthy(arg):
            return arg
    return result


def _fn_not(_: _Evaluator, args: list[Any]) -> bool:
    return not is_truthy(args[0] if args else None)


def _fn_eq(_: _Evaluator, args: list[Any]) -> bool:
    if len(args) < 2:
        return False
    return any(_equal(args[0], other) for other in args[1:])


def _fn_ne(ev: _Evaluator, args: list[Any]) -> bool:
    return len(args) >= 2 and not _equal(args[0], args[1])


def _comparison(op: str) -> Callable[[_Evaluator, list[Any]], bool]:
    def _fn(_: _Evaluator, args: list[Any]) -> bool:
        return len(args) >= 2 and _compare(op, args[0], args[1])

    return _fn


def _fn_index(_: _Evaluator, args: list[Any]) -> Any:
    if len(args) < 2:
        return None
    current = args[0]
    for key in args[1:]:
        if isinstance(current, str):
            current = current.split(",")
        if isinstance(current, (list, tuple)):
            number = _as_number(key)
            if number is None or not 0 <= int(number) < len(current):
                return None
            current = current[int(number)]
        elif isinstance(current, dict):
            current = current.get(render_value(key))
        else:
            return None
    return current


def _fn_len(_: _Evaluator, args: list[Any]) -> int:
    value = args[0] if args else None
    if value is None:
        return 0
    if isinstance(value, (list, tuple, dict, str)):
        return len(value)
    return len(render_value(value))


def _fn_printf(_: _Evaluator, args: list[Any]) -> str:
    if not args:
        return ""
    return go_printf(render_value(args[0]), args[1:])


def _fn_join(_: _Evaluator, args: list[Any]) -> str:
    if not args:
        return ""
    values, separator = args[0], render_value(args[1]) if len(args) > 1 else ","
    if isinstance(values, (list, tuple)):
        return separator.join(render_value(v) for v in values)
    return render_value(values)


def _fn_re_replace(_: _Evaluator, args: list[Any]) -> str:
    # Direct form: re_replace .Var "pattern" "repl"; piped form appends the value last.
    if len(args) < 3:
        return render_value(args[0]) if args else ""
    if len(args) == 3 and isinstance(args[0], str) and not isinstance(args[2], str):
        value, pattern, replacement = args[2], args[0], args[1]
    else:
        value, pattern, replacement = args[0], args[1], args[2]
    return regex_replace(render_value(value), render_value(pattern), render_value(replacement))


_FUNCTIONS: dict[str, Callable[[_Evaluator, list[Any]], Any]] = {
    "and": _fn_and,
    "or": _fn_or,
    "not": _fn_not,
    "eq": _fn_eq,
    "ne": _fn_ne,
    "lt": _comparison("lt"),
    "le": _comparison("le"),
    "gt": _comparison("gt"),
    "ge": _comparison("ge"),
    "index": _fn_index,
    "len": _fn_len,
    "printf": _fn_printf,
    "join": _fn_join,
    "re_replace": _fn_re_replace,
}


# ------------------------------------------------------------------
# Episode tokens
# ------------------------------------------------------------------


def episode_token(season: int, episode: int | None, style: str = "standard") -> str:
    if episode is None:
        return f"S{season:02d}"
    if style == "european":
        return f"{season}x{episode:02d}"
    if style == "compact":
        return f"{season}{episode:02d}"
    return f"S{season:02d}E{episode:02d}"


# ------------------------------------------------------------------
# Public engine
# ------------------------------------------------------------------


class TemplateEngine:
    """Variable store plus :meth:`expand`.

    Long-lived variables (``.Config.*``, ``.Today.*``, the site link) survive
    across searches; ``.Query.*`` and ``.Keywords`` are reset by
    :meth:`set_query`.
    """

    def __init__(self, filters: FilterEngine | None = None, *, max_steps: int = MAX_STEPS) -> None:
        self.filters = filters or FilterEngine()
        self.max_steps = max_steps
        self.variables: dict[str, Any] = {}
        self._init_base_variables()

    def _init_base_variables(self) -> None:
        today = datetime.now(timezone.utc)
        self.variables[".True"] = True
        self.variables[".False"] = None
        self.variables[".Today.Year"] = str(today.year)
        self.variables[".Today.Month"] = f"{today.month:02d}"
        self.variables[".Today.Day"] = f"{today.day:02d}"

    # --- variable store ---

    def set_variable(self, name: str, value: Any) -> None:
        self.variables[name if name.startswith(".") else f".{name}"] = value

    def get_variable(self, name: str) -> Any:
        return self.variables.get(name)

    def set_site_link(self, url: str) -> None:
        self.variables[".Config.sitelink"] = url

    def set_config_with_defaults(
        self, user_settings: dict[str, Any], settings: Sequence[SettingField]
    ) -> None:
        """Resolve every declared setting; undeclared user values are stored as given."""
        declared = set()
        for setting in settings:
            declared.add(setting.name)
            if setting.is_info:
                continue
            self.variables[f".Config.{setting.name}"] = setting.resolve(user_settings.get(setting.name))
        for key, value in user_settings.items():
            if key in declared:
                continue
            if isinstance(value, bool):
                value = True if value else None
            self.variables[f".Config.{key}"] = value

    def reset_query(self) -> None:
        for name in _QUERY_VARIABLES:
            self.variables[f".Query.{name}"] = None
        self.variables[".Keywords"] = None
        self.variables[".Categories"] = []

    def set_query(self, criteria: SearchCriteria) -> None:
        """Populate ``.Query.*`` and ``.Keywords`` from *criteria* (after a full reset)."""
        self.reset_query()
        q = self.variables
        q[".Query.Type"] = criteria.search_type
        q[".Query.Q"] = criteria.query
        q[".Query.Categories"] = [str(c) for c in criteria.categories]
        q[".Query.Limit"] = str(criteria.limit) if criteria.limit is not None else None
        q[".Query.Offset"] = str(criteria.offset) if criteria.offset is not None else None
        q[".Query.Genre"] = criteria.genre

        keywords: list[str] = []
        if criteria.query:
            keywords.append(criteria.query.strip())

        if criteria.imdb_id:
            short = criteria.imdb_id.strip().removeprefix("tt")
            q[".Query.IMDBID"] = f"tt{short}"
            q[".Query.IMDBIDShort"] = short
        for attr, name in (
            ("tmdb_id", "TMDBID"),
            ("trakt_id", "TraktID"),
            ("douban_id", "DoubanID"),
            ("tvdb_id", "TVDBID"),
            ("tvmaze_id", "TVMazeID"),
        ):
            value = getattr(criteria, attr)
            if value is not None:
                q[f".Query.{name}"] = str(value)
        if criteria.year is not None:
            q[".Query.Year"] = str(criteria.year)

        if criteria.search_type == "movie" and criteria.year is not None:
            keywords.append(str(criteria.year))
        elif criteria.search_type == "tv":
            self._set_tv(criteria, keywords)
        elif criteria.search_type == "music":
            q[".Query.Artist"] = criteria.artist
            q[".Query.Album"] = criteria.album
            q[".Query.Label"] = criteria.label
            q[".Query.Track"] = criteria.track
        elif criteria.search_type == "book":
            q[".Query.Author"] = criteria.author
            q[".Query.Title"] = criteria.title
            q[".Query.Publisher"] = criteria.publisher

        joined = " ".join(k for k in keywords if k)
        q[".Query.Keywords"] = joined
        q[".Keywords"] = joined

    def _set_tv(self, criteria: SearchCriteria, keywords: list[str]) -> None:
        q = self.variables
        season = criteria.season if criteria.season is not None else 1
        if criteria.season is not None:
            q[".Query.Season"] = str(criteria.season)
        if criteria.episode is not None:
            q[".Query.Ep"] = str(criteria.episode)
            for style, name in (("standard", "Standard"), ("european", "European"), ("compact", "Compact")):
                q[f".Query.Episode.{name}"] = episode_token(season, criteria.episode, style)
            preferred = episode_token(
                season, criteria.episode, criteria.preferred_episode_format or "standard"
            )
            q[".Query.Episode"] = preferred
            keywords.append(preferred)
        elif criteria.season is not None:
            token = episode_token(season, None)
            q[".Query.Episode"] = token
            q[".Query.Episode.Standard"] = token
            keywords.append(token)

    def set_categories(self, categories: Sequence[str]) -> None:
        self.variables[".Categories"] = list(categories)

    def set_row_context(self, row: dict[str, Any]) -> None:
        for key, value in row.items():
            self.variables[f".Result.{key}"] = value

    def clear_row_context(self) -> None:
        for key in [k for k in self.variables if k.startswith(".Result.")]:
            del self.variables[key]

    def clone(self) -> TemplateEngine:
        cloned = TemplateEngine(self.filters, max_steps=self.max_steps)
        cloned.variables = dict(self.variables)
        return cloned

    def reset(self) -> None:
        self.variables.clear()
        self._init_base_variables()

    # --- expansion ---

    def expand(self, template: str | None, url_encode: Callable[[str], str] | None = None) -> str:
        """Expand *template*; strings without ``{{`` are returned unchanged."""
        if not template or "{{" not in template:
            return template or ""
        try:
            nodes = compile_template(template)
        except TemplateError as e:
            log.warning("template_parse_failed", template=template[:120], error=str(e))
            return template
        evaluator = _Evaluator(self.variables, self.filters, url_encode, self.max_steps)
        try:
            evaluator.render(nodes, _Scope())
        except _StepLimitExceeded:
            log.warning("template_step_limit", template=template[:120], steps=self.max_steps)
        except TemplateError as e:
            log.warning("template_eval_failed", template=template[:120], error=str(e))
        return "".join(evaluator.out)
