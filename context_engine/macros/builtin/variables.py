"""
Variable macros.

Writers run in the prestate phase so that reads in the substitute phase see
every write in the text, regardless of position.
"""

from typing import Any, Dict, List

from context_engine.macros.context import MacroContext
from context_engine.macros.registry import MacroDefinition, MacroPhase, MacroRegistry, MacroType
from context_engine.variables.paths import (
    format_value,
    get_path,
    normalize_number,
    parse_scalar,
    set_path,
    to_number,
)


def _set(store: Dict[str, Any], name: str, raw: str) -> str:
    set_path(store, name, parse_scalar(raw))
    return ""


def _add(store: Dict[str, Any], name: str, delta: float) -> str:
    current = get_path(store, name, 0)
    set_path(store, name, normalize_number(to_number(current) + delta))
    return ""


def _session(ctx: MacroContext) -> Dict[str, Any]:
    return ctx.variables


def _global(ctx: MacroContext) -> Dict[str, Any]:
    return ctx.global_variables


def _build(prefix: str, scope, label: str) -> List[MacroDefinition]:
    return [
        MacroDefinition(
            name=f"set{prefix}var",
            phase=MacroPhase.PRESTATE,
            execute=lambda ctx, args: _set(scope(ctx), args[0], args[1]),
            macro_type=MacroType.VARIABLE,
            arg_count=2,
            description=f"Set a {label} variable",
            example=f"{{{{set{prefix}var::name::value}}}}",
            priority=100,
        ),
        MacroDefinition(
            name=f"get{prefix}var",
            phase=MacroPhase.SUBSTITUTE,
            execute=lambda ctx, args: format_value(get_path(scope(ctx), args[0])),
            macro_type=MacroType.VARIABLE,
            arg_count=1,
            description=f"Read a {label} variable",
            example=f"{{{{get{prefix}var::name}}}}",
            priority=100,
        ),
        MacroDefinition(
            name=f"add{prefix}var",
            phase=MacroPhase.PRESTATE,
            execute=lambda ctx, args: _add(scope(ctx), args[0], to_number(args[1])),
            macro_type=MacroType.VARIABLE,
            arg_count=2,
            description=f"Add to a numeric {label} variable",
            example=f"{{{{add{prefix}var::name::5}}}}",
            priority=90,
        ),
        MacroDefinition(
            name=f"sub{prefix}var",
            phase=MacroPhase.PRESTATE,
            execute=lambda ctx, args: _add(scope(ctx), args[0], -to_number(args[1])),
            macro_type=MacroType.VARIABLE,
            arg_count=2,
            description=f"Subtract from a numeric {label} variable",
            priority=90,
        ),
        MacroDefinition(
            name=f"inc{prefix}var",
            phase=MacroPhase.PRESTATE,
            execute=lambda ctx, args: _add(scope(ctx), args[0], 1),
            macro_type=MacroType.VARIABLE,
            arg_count=1,
            description=f"Increment a {label} variable",
            priority=90,
        ),
        MacroDefinition(
            name=f"dec{prefix}var",
            phase=MacroPhase.PRESTATE,
            execute=lambda ctx, args: _add(scope(ctx), args[0], -1),
            macro_type=MacroType.VARIABLE,
            arg_count=1,
            description=f"Decrement a {label} variable",
            priority=90,
        ),
    ]


def register_variable_macros(registry: MacroRegistry) -> None:
    registry.register_many(_build("", _session, "session"))
    registry.register_many(_build("global", _global, "global"))


__all__ = ["register_variable_macros"]
