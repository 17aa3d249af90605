"""Sandboxed transform expressions for response mapping.

Tool authors shape upstream responses with a small pipe language instead of
host code::

    data.results | pick(id, title, price) | limit(5)
    data.user | format("{first_name} {last_name}") | trim
    data.tags | join(", ") | default("none")

The first stage is a dot path evaluated against ``{"data": <body>, "success": <bool>}``;
a path that does not start with ``data`` or ``success`` is resolved against the
body. Each following stage applies one operation from ``OPERATIONS``. Nothing
in an expression can reach Python attributes, builtins or the filesystem.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, List, Tuple


class TransformExpressionError(ValueError):
    """Expression failed to parse or could not be applied to the value."""


_PATH_RE = re.compile(r"^[A-Za-z0-9_\-]+(\.[A-Za-z0-9_\-]+)*$")
_STAGE_RE = re.compile(r"^(?P<name>[a-z_]+)\s*(?:\((?P<args>.*)\))?$", re.DOTALL)
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")
_WORD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z0-9_.\-]+)\}")

_CONTEXT_ROOTS = ("data", "success")


def get_value_by_path(obj: Any, path: str) -> Any:
    """
    Walk ``obj`` along a dot path. Numeric segments index into lists.

    Returns None when any segment is missing.
    """
    if not path:
        return obj
    current = obj
    for key in path.split("."):
        if current is None:
            return None
        if isinstance(current, list):
            if not key.lstrip("-").isdigit():
                return None
            index = int(key)
            if index < -len(current) or index >= len(current):
                return None
            current = current[index]
        elif isinstance(current, dict):
            current = current.get(key)
        else:
            return None
    return current


def _split_top_level(text: str, separator: str) -> List[str]:
    """Split on ``separator`` outside quotes and parentheses."""
    parts = []
    buf = []
    quote = None
    depth = 0
    for char in text:
        if quote:
            buf.append(char)
            if char == quote:
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif char == separator and depth == 0:
            parts.append("".join(buf))
            buf = []
            continue
        buf.append(char)
    if quote:
        raise TransformExpressionError("Unterminated string literal")
    if depth != 0:
        raise TransformExpressionError("Unbalanced parentheses")
    parts.append("".join(buf))
    return parts


def _parse_literal(token: str) -> Any:
    token = token.strip()
    if len(token) >= 2 and token[0] == token[-1] and token[0] in ("'", '"'):
        return token[1:-1]
    if _NUMBER_RE.match(token):
        return float(token) if "." in token else int(token)
    if token == "true":
        return True
    if token == "false":
        return False
    if token == "null":
        return None
    if _WORD_RE.match(token):
        return token
    raise TransformExpressionError(f"Invalid argument: {token!r}")


# ============================================================================
# Operations
# ============================================================================

def _map_or_apply(value: Any, fn: Callable[[Any], Any]) -> Any:
    if isinstance(value, list):
        return [fn(item) for item in value]
    return fn(value)


def _require_list(name: str, value: Any) -> List[Any]:
    if not isinstance(value, list):
        raise TransformExpressionError(f"{name}() expects a list, got {type(value).__name__}")
    return value


def _require_str(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise TransformExpressionError(f"{name}() expects a string, got {type(value).__name__}")
    return value


def _require_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise TransformExpressionError(f"{name}() expects a non-negative integer argument")
    return value


def _op_pick(value: Any, *fields: Any) -> Any:
    if not fields:
        raise TransformExpressionError("pick() needs at least one field")

    def pick_one(item: Any) -> Dict[str, Any]:
        if not isinstance(item, dict):
            raise TransformExpressionError(f"pick() expects objects, got {type(item).__name__}")
        return {str(field): get_value_by_path(item, str(field)) for field in fields}

    return _map_or_apply(value, pick_one)


def _op_get(value: Any, path: Any) -> Any:
    return _map_or_apply(value, lambda item: get_value_by_path(item, str(path)))


def _op_default(value: Any, fallback: Any) -> Any:
    if value is None or value == "" or value == []:
        return fallback
    return value


def _op_first(value: Any) -> Any:
    items = _require_list("first", value)
    return items[0] if items else None


def _op_last(value: Any) -> Any:
    items = _require_list("last", value)
    return items[-1] if items else None


def _op_limit(value: Any, n: Any) -> Any:
    return _require_list("limit", value)[:_require_int("limit", n)]


def _op_count(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (list, dict, str)):
        return len(value)
    raise TransformExpressionError(f"count() cannot measure {type(value).__name__}")


def _op_lower(value: Any) -> Any:
    return _map_or_apply(value, lambda item: _require_str("lower", item).lower())


def _op_upper(value: Any) -> Any:
    return _map_or_apply(value, lambda item: _require_str("upper", item).upper())


def _op_trim(value: Any) -> Any:
    return _map_or_apply(value, lambda item: _require_str("trim", item).strip())


def _op_join(value: Any, separator: Any = ", ") -> str:
    items = _require_list("join", value)
    return str(separator).join("" if item is None else str(item) for item in items)


def _op_split(value: Any, separator: Any = ",") -> List[str]:
    return [part.strip() for part in _require_str("split", value).split(str(separator))]


def _op_replace(value: Any, old: Any, new: Any) -> Any:
    return _map_or_apply(value, lambda item: _require_str("replace", item).replace(str(old), str(new)))


def _op_format(value: Any, template: Any) -> Any:
    template = _require_str("format", template)

    def render(item: Any) -> str:
        if not isinstance(item, dict):
            raise TransformExpressionError(f"format() expects objects, got {type(item).__name__}")

        def substitute(match: "re.Match") -> str:
            found = get_value_by_path(item, match.group(1))
            return "" if found is None else str(found)

        return _PLACEHOLDER_RE.sub(substitute, template)

    return _map_or_apply(value, render)


def _op_truncate(value: Any, n: Any) -> Any:
    limit = _require_int("truncate", n)
    return _map_or_apply(value, lambda item: _require_str("truncate", item)[:limit])


# name -> (function, min args, max args)
OPERATIONS: Dict[str, Tuple[Callable[..., Any], int, int]] = {
    "pick": (_op_pick, 1, 32),
    "get": (_op_get, 1, 1),
    "default": (_op_default, 1, 1),
    "first": (_op_first, 0, 0),
    "last": (_op_last, 0, 0),
    "limit": (_op_limit, 1, 1),
    "count": (_op_count, 0, 0),
    "lower": (_op_lower, 0, 0),
    "upper": (_op_upper, 0, 0),
    "trim": (_op_trim, 0, 0),
    "join": (_op_join, 0, 1),
    "split": (_op_split, 0, 1),
    "replace": (_op_replace, 2, 2),
    "format": (_op_format, 1, 1),
    "truncate": (_op_truncate, 1, 1),
}


@dataclass(frozen=True)
class TransformStage:
    name: str
    args: Tuple[Any, ...]


@dataclass(frozen=True)
class CompiledTransform:
    expression: str
    path: str
    stages: Tuple[TransformStage, ...]

    def evaluate(self, data: Any, success: bool = True) -> Any:
        """Apply the expression to a response body."""
        root_segment = self.path.split(".", 1)[0]
        if root_segment in _CONTEXT_ROOTS:
            value = get_value_by_path({"data": data, "success": success}, self.path)
        else:
            value = get_value_by_path(data, self.path)

        for stage in self.stages:
            fn = OPERATIONS[stage.name][0]
            value = fn(value, *stage.args)
        return value


@lru_cache(maxsize=512)
def compile_transform(expression: str) -> CompiledTransform:
    """
    Parse an expression once; the result is cached.

    Raises:
        TransformExpressionError: On syntax errors, unknown operations or wrong arity
    """
    if not expression or not expression.strip():
        raise TransformExpressionError("Transform expression is empty")

    parts = [part.strip() for part in _split_top_level(expression, "|")]
    path, stage_texts = parts[0], parts[1:]
    if not _PATH_RE.match(path):
        raise TransformExpressionError(f"Invalid path: {path!r}")

    stages = []
    for text in stage_texts:
        match = _STAGE_RE.match(text)
        if not match:
            raise TransformExpressionError(f"Invalid operation: {text!r}")
        name = match.group("name")
        if name not in OPERATIONS:
            raise TransformExpressionError(f"Unknown operation: {name}")

        raw_args = match.group("args")
        args: Tuple[Any, ...] = ()
        if raw_args is not None and raw_args.strip():
            args = tuple(_parse_literal(arg) for arg in _split_top_level(raw_args, ","))

        _, min_args, max_args = OPERATIONS[name]
        if not min_args <= len(args) <= max_args:
            raise TransformExpressionError(
                f"{name}() takes between {min_args} and {max_args} arguments, got {len(args)}"
            )
        stages.append(TransformStage(name=name, args=args))

    return CompiledTransform(expression=expression, path=path, stages=tuple(stages))
