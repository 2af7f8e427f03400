"""
Macro registry.

Maps macro names to tagged handlers. Each handler declares the phase it
runs in; nothing is discovered by reflection.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from context_engine.macros.context import MacroContext

logger = logging.getLogger(__name__)


class MacroPhase(str, Enum):
    """Macro resolution phase, in execution order."""
    PRESTATE = "prestate"        # Stateful operations (setvar, incvar, roll)
    SUBSTITUTE = "substitute"    # Static lookups (user, char, getvar)
    POSTPROCESS = "postprocess"  # Functions needing the assembled context (time, random)


PHASE_ORDER = [MacroPhase.PRESTATE, MacroPhase.SUBSTITUTE, MacroPhase.POSTPROCESS]


class MacroType(str, Enum):
    """Macro category."""
    VALUE = "value"
    VARIABLE = "variable"
    FUNCTION = "function"


MacroHandler = Callable[[MacroContext, List[str]], str]


@dataclass
class MacroDefinition:
    """A registered macro."""
    name: str
    phase: MacroPhase
    execute: MacroHandler
    macro_type: MacroType = MacroType.VALUE
    arg_count: Optional[int] = None
    min_args: int = 0
    max_args: Optional[int] = None
    priority: int = 0
    description: str = ""
    example: str = ""

    def check_args(self, args: List[str]) -> None:
        """Raise ValueError if args do not match the declared arity."""
        count = len(args)
        if self.arg_count is not None and count != self.arg_count:
            raise ValueError(f"expects {self.arg_count} argument(s), got {count}")
        if count < self.min_args:
            raise ValueError(f"expects at least {self.min_args} argument(s), got {count}")
        if self.max_args is not None and count > self.max_args:
            raise ValueError(f"expects at most {self.max_args} argument(s), got {count}")


class MacroRegistry:
    """
    Name → MacroDefinition table.

    When two definitions share a name, the one with the higher priority
    wins; equal priority means the later registration replaces the earlier.
    """

    def __init__(self):
        self._macros: Dict[str, MacroDefinition] = {}

    def register(self, definition: MacroDefinition) -> bool:
        """
        Register a macro.

        Returns:
            False if an existing higher-priority definition was kept
        """
        existing = self._macros.get(definition.name)
        if existing is not None and existing.priority > definition.priority:
            logger.debug(
                f"[MacroRegistry] Keeping '{definition.name}' "
                f"(priority {existing.priority} > {definition.priority})"
            )
            return False
        self._macros[definition.name] = definition
        return True

    def register_many(self, definitions: List[MacroDefinition]) -> None:
        for definition in definitions:
            self.register(definition)

    def unregister(self, name: str) -> bool:
        return self._macros.pop(name, None) is not None

    def get(self, name: str) -> Optional[MacroDefinition]:
        return self._macros.get(name)

    def has(self, name: str) -> bool:
        return name in self._macros

    def get_by_phase(self, phase: MacroPhase) -> List[MacroDefinition]:
        """Definitions of one phase, highest priority first."""
        macros = [m for m in self._macros.values() if m.phase == phase]
        return sorted(macros, key=lambda m: -m.priority)

    def all(self) -> List[MacroDefinition]:
        return list(self._macros.values())

    def clear(self) -> None:
        self._macros.clear()

    def __len__(self) -> int:
        return len(self._macros)


def create_default_registry() -> MacroRegistry:
    """Registry preloaded with all built-in macros."""
    from context_engine.macros.builtin import register_builtin_macros

    registry = MacroRegistry()
    register_builtin_macros(registry)
    return registry


__all__ = [
    "MacroPhase",
    "PHASE_ORDER",
    "MacroType",
    "MacroHandler",
    "MacroDefinition",
    "MacroRegistry",
    "create_default_registry",
]
