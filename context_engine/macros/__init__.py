"""
Macro engine: ``{{name::args}}`` placeholders resolved in three phases.
"""

from context_engine.macros.context import MacroContext, build_macro_context
from context_engine.macros.registry import (
    PHASE_ORDER,
    MacroDefinition,
    MacroPhase,
    MacroRegistry,
    MacroType,
    create_default_registry,
)
from context_engine.macros.processor import (
    MACRO_PATTERN,
    MacroProcessResult,
    MacroProcessor,
    extract_macros,
    validate_macro,
)

__all__ = [
    "MacroContext",
    "build_macro_context",
    "PHASE_ORDER",
    "MacroDefinition",
    "MacroPhase",
    "MacroRegistry",
    "MacroType",
    "create_default_registry",
    "MACRO_PATTERN",
    "MacroProcessResult",
    "MacroProcessor",
    "extract_macros",
    "validate_macro",
]
