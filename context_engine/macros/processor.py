"""
Three-phase macro processor.

Placeholders look like ``{{name}}`` or ``{{name::arg1::arg2}}``. The whole
text is scanned once per phase (prestate, substitute, postprocess); in each
pass only macros registered for that phase are replaced, left to right,
once per occurrence.

Failures are isolated: a macro that raises, or receives the wrong number
of arguments, is replaced by an inline error marker and recorded, and the
remaining placeholders are still processed.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from context_engine.errors import MacroError
from context_engine.macros.context import MacroContext
from context_engine.macros.registry import (
    PHASE_ORDER,
    MacroPhase,
    MacroRegistry,
    create_default_registry,
)

logger = logging.getLogger(__name__)

MACRO_PATTERN = re.compile(r"\{\{([^{}]+?)\}\}")
ARG_SEPARATOR = "::"
TRIM_MARKER = "\u0000TRIM\u0000"
_TRIM_PATTERN = re.compile(r"\s*" + re.escape(TRIM_MARKER) + r"\s*")

UNKNOWN_KEEP = "keep"
UNKNOWN_FLAG = "flag"


@dataclass
class MacroProcessResult:
    """Output of one process() call."""
    output: str
    has_macros: bool = False
    macro_count: int = 0
    errors: List[MacroError] = field(default_factory=list)
    unknown_macros: List[str] = field(default_factory=list)
    phase_outputs: Dict[str, str] = field(default_factory=dict)


def parse_macro_body(body: str) -> Tuple[str, List[str]]:
    """Split ``name::a::b`` into ("name", ["a", "b"])."""
    parts = body.split(ARG_SEPARATOR)
    return parts[0].strip(), [p.strip() for p in parts[1:]]


def extract_macros(text: str) -> List[Dict[str, object]]:
    """List every placeholder in text with its name, args and span."""
    found = []
    for match in MACRO_PATTERN.finditer(text or ""):
        name, args = parse_macro_body(match.group(1))
        found.append({
            "raw": match.group(0),
            "name": name,
            "args": args,
            "start": match.start(),
            "end": match.end(),
        })
    return found


def validate_macro(text: str, registry: Optional[MacroRegistry] = None) -> Dict[str, List[str]]:
    """
    Static check of the placeholders in text.

    Returns:
        {"unknown": [...], "invalid": [...]} where invalid holds arity problems
    """
    registry = registry or create_default_registry()
    unknown: List[str] = []
    invalid: List[str] = []
    for item in extract_macros(text):
        definition = registry.get(item["name"])
        if definition is None:
            unknown.append(item["name"])
            continue
        try:
            definition.check_args(item["args"])
        except ValueError as e:
            invalid.append(f"{item['name']}: {e}")
    return {"unknown": unknown, "invalid": invalid}


class MacroProcessor:
    """
    Resolves placeholders against a MacroContext.

    Args:
        registry: Macro table (defaults to all built-ins)
        unknown_macro_policy: "keep" leaves unknown placeholders verbatim,
            "flag" replaces them with ``[unknown macro: name]``
    """

    def __init__(
        self,
        registry: Optional[MacroRegistry] = None,
        unknown_macro_policy: str = UNKNOWN_KEEP,
    ):
        if unknown_macro_policy not in (UNKNOWN_KEEP, UNKNOWN_FLAG):
            raise ValueError(f"Invalid unknown_macro_policy: {unknown_macro_policy}")
        self.registry = registry or create_default_registry()
        self.unknown_macro_policy = unknown_macro_policy

    def process(
        self,
        text: str,
        context: MacroContext,
        value_transformer: Optional[Callable[[str], str]] = None,
        phases: Optional[List[MacroPhase]] = None,
    ) -> MacroProcessResult:
        """
        Run the phases over text.

        Args:
            text: Input text
            context: Values and mutable variable stores
            value_transformer: Applied to every substituted value (e.g. re.escape)
            phases: Restrict to a subset of phases (kept in canonical order)
        """
        if not text or "{{" not in text:
            return MacroProcessResult(output=text or "")

        result = MacroProcessResult(output=text, has_macros=bool(MACRO_PATTERN.search(text)))
        selected = [p for p in PHASE_ORDER if phases is None or p in phases]

        output = text
        for phase in selected:
            output = self._run_phase(output, phase, context, result, value_transformer)
            result.phase_outputs[phase.value] = output

        output = self._handle_unknown(output, result)
        if TRIM_MARKER in output:
            output = _TRIM_PATTERN.sub("", output)

        result.output = output
        if result.errors:
            logger.warning(
                f"[MacroProcessor] {len(result.errors)} macro error(s): "
                f"{[e.macro_name for e in result.errors]}"
            )
        return result

    def process_text(self, text: str, context: MacroContext) -> str:
        """Shorthand returning only the output string."""
        return self.process(text, context).output

    def _run_phase(
        self,
        text: str,
        phase: MacroPhase,
        context: MacroContext,
        result: MacroProcessResult,
        value_transformer: Optional[Callable[[str], str]],
    ) -> str:
        def replace(match: re.Match) -> str:
            raw = match.group(0)
            name, args = parse_macro_body(match.group(1))
            definition = self.registry.get(name)
            if definition is None or definition.phase != phase:
                return raw

            result.macro_count += 1
            try:
                definition.check_args(args)
                value = definition.execute(context, args)
            except Exception as e:
                error = MacroError(name, str(e), raw)
                result.errors.append(error)
                logger.debug(f"[MacroProcessor] Macro '{name}' failed: {e}")
                return f"[macro error: {name}: {e}]"

            value = "" if value is None else str(value)
            if value_transformer is not None and value != TRIM_MARKER:
                value = value_transformer(value)
            return value

        return MACRO_PATTERN.sub(replace, text)

    def _handle_unknown(self, text: str, result: MacroProcessResult) -> str:
        def replace(match: re.Match) -> str:
            name, _ = parse_macro_body(match.group(1))
            if self.registry.has(name):
                return match.group(0)
            result.unknown_macros.append(name)
            if self.unknown_macro_policy == UNKNOWN_FLAG:
                return f"[unknown macro: {name}]"
            return match.group(0)

        return MACRO_PATTERN.sub(replace, text)


__all__ = [
    "MACRO_PATTERN",
    "TRIM_MARKER",
    "UNKNOWN_KEEP",
    "UNKNOWN_FLAG",
    "MacroProcessResult",
    "MacroProcessor",
    "parse_macro_body",
    "extract_macros",
    "validate_macro",
]
