"""
Session variables: path addressing and the operation engine.
"""

from context_engine.variables.paths import (
    canonical_path,
    format_value,
    get_path,
    has_path,
    parse_path,
    set_path,
)
from context_engine.variables.engine import (
    VariableEngine,
    parse_operations,
    parse_value,
    strip_variable_tags,
)

__all__ = [
    "canonical_path",
    "format_value",
    "get_path",
    "has_path",
    "parse_path",
    "set_path",
    "VariableEngine",
    "parse_operations",
    "parse_value",
    "strip_variable_tags",
]
