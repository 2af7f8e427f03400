"""
Nested path addressing for variable maps.

Paths use dots for keys and either ``[n]`` or a bare numeric segment for
list indexes: ``player.items[0].name`` and ``player.items.0.name`` address
the same value.
"""

import json
import re
from typing import Any, List, Optional, Union

PathToken = Union[str, int]

_SEGMENT_PATTERN = re.compile(r"([^\[\]]*)((?:\[\d+\])*)")
_INDEX_PATTERN = re.compile(r"\[(\d+)\]")
_INT_PATTERN = re.compile(r"^[+-]?\d+$")
_FLOAT_PATTERN = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")

MISSING = object()


def parse_path(path: Union[str, List[PathToken]]) -> List[PathToken]:
    """Split a path into key/index tokens. Raises ValueError on malformed input."""
    if isinstance(path, list):
        return path
    if not path or not path.strip():
        raise ValueError("Empty variable path")

    tokens: List[PathToken] = []
    for segment in path.strip().split("."):
        match = _SEGMENT_PATTERN.fullmatch(segment.strip())
        if match is None or segment.strip() == "":
            raise ValueError(f"Invalid variable path: {path}")
        name, indexes = match.groups()
        if name:
            tokens.append(name)
        elif not indexes:
            raise ValueError(f"Invalid variable path: {path}")
        tokens.extend(int(i) for i in _INDEX_PATTERN.findall(indexes))
    return tokens


def canonical_path(path: Union[str, List[PathToken]]) -> str:
    """Normalize a path so that ``a[0]`` and ``a.0`` compare equal."""
    return ".".join(str(token) for token in parse_path(path))


def _as_index(token: PathToken) -> Optional[int]:
    if isinstance(token, int):
        return token
    if token.isdigit():
        return int(token)
    return None


def _step(container: Any, token: PathToken) -> Any:
    if isinstance(container, dict):
        return container.get(str(token), MISSING)
    if isinstance(container, list):
        index = _as_index(token)
        if index is None or index >= len(container):
            return MISSING
        return container[index]
    return MISSING


def lookup(data: Any, path: Union[str, List[PathToken]]) -> Any:
    """Value at path, or MISSING."""
    current = data
    for token in parse_path(path):
        current = _step(current, token)
        if current is MISSING:
            return MISSING
    return current


def get_path(data: Any, path: Union[str, List[PathToken]], default: Any = None) -> Any:
    value = lookup(data, path)
    return default if value is MISSING else value


def has_path(data: Any, path: Union[str, List[PathToken]]) -> bool:
    return lookup(data, path) is not MISSING


def _assign(container: Any, token: PathToken, value: Any) -> None:
    if isinstance(container, dict):
        container[str(token)] = value
        return
    if isinstance(container, list):
        index = _as_index(token)
        if index is None:
            raise TypeError(f"List index must be numeric, got '{token}'")
        if index < len(container):
            container[index] = value
        else:
            container.extend([None] * (index - len(container)))
            container.append(value)
        return
    raise TypeError(f"Cannot set '{token}' on {type(container).__name__}")


def set_path(data: dict, path: Union[str, List[PathToken]], value: Any) -> None:
    """Set a value, creating intermediate dicts/lists as needed."""
    tokens = parse_path(path)
    current: Any = data
    for i, token in enumerate(tokens[:-1]):
        child = _step(current, token)
        if child is MISSING or not isinstance(child, (dict, list)):
            child = [] if isinstance(tokens[i + 1], int) else {}
            _assign(current, token, child)
        current = child
    _assign(current, tokens[-1], value)


def delete_path(data: dict, path: Union[str, List[PathToken]]) -> bool:
    """Remove the value at path. Returns False if nothing was there."""
    tokens = parse_path(path)
    parent = lookup(data, tokens[:-1]) if len(tokens) > 1 else data
    last = tokens[-1]
    if isinstance(parent, dict) and str(last) in parent:
        del parent[str(last)]
        return True
    if isinstance(parent, list):
        index = _as_index(last)
        if index is not None and index < len(parent):
            parent.pop(index)
            return True
    return False


def parse_scalar(text: str) -> Any:
    """Turn numeric strings into int/float, leave everything else as text."""
    stripped = text.strip()
    if _INT_PATTERN.match(stripped):
        return int(stripped)
    if _FLOAT_PATTERN.match(stripped):
        return float(stripped)
    return text


def to_number(value: Any) -> Union[int, float]:
    """Arithmetic operand coercion. Anything non-numeric becomes 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        parsed = parse_scalar(value)
        if isinstance(parsed, (int, float)):
            return parsed
    return 0


def normalize_number(value: Union[int, float]) -> Union[int, float]:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def format_value(value: Any) -> str:
    """Render a variable value as macro output."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return str(normalize_number(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


__all__ = [
    "MISSING",
    "parse_path",
    "canonical_path",
    "lookup",
    "get_path",
    "has_path",
    "set_path",
    "delete_path",
    "parse_scalar",
    "to_number",
    "normalize_number",
    "format_value",
]
