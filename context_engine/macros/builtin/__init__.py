"""
Built-in macro sets.
"""

from context_engine.macros.registry import MacroRegistry
from context_engine.macros.builtin.core import register_core_macros
from context_engine.macros.builtin.variables import register_variable_macros
from context_engine.macros.builtin.functions import register_function_macros
from context_engine.macros.builtin.datetime_macros import register_datetime_macros


def register_builtin_macros(registry: MacroRegistry) -> None:
    register_core_macros(registry)
    register_variable_macros(registry)
    register_function_macros(registry)
    register_datetime_macros(registry)


__all__ = [
    "register_builtin_macros",
    "register_core_macros",
    "register_variable_macros",
    "register_function_macros",
    "register_datetime_macros",
]
