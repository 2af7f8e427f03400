"""
Function macros: randomness, dice, text helpers.
"""

import hashlib
import re
from typing import List

from context_engine.macros.context import MacroContext
from context_engine.macros.processor import TRIM_MARKER
from context_engine.macros.registry import MacroDefinition, MacroPhase, MacroRegistry, MacroType

DICE_PATTERN = re.compile(r"^(\d*)d(\d+)$", re.IGNORECASE)
MAX_DICE = 100
MAX_SIDES = 1000
MAX_REPEAT = 1000


def _split_choices(args: List[str]) -> List[str]:
    # {{random::a,b,c}} and {{random::a::b::c}} are both accepted
    if len(args) == 1 and "," in args[0]:
        return [c.strip() for c in args[0].split(",")]
    return args


def _random(ctx: MacroContext, args: List[str]) -> str:
    choices = _split_choices(args)
    return ctx.rng.choice(choices) if choices else ""


def _pick(ctx: MacroContext, args: List[str]) -> str:
    """Stable choice: the same session and options always give the same result."""
    choices = _split_choices(args)
    if not choices:
        return ""
    seed = f"{ctx.session_id or ''}|{'::'.join(choices)}"
    digest = hashlib.md5(seed.encode("utf-8")).hexdigest()
    return choices[int(digest, 16) % len(choices)]


def _roll(ctx: MacroContext, args: List[str]) -> str:
    spec = args[0].replace(" ", "")
    if spec.isdigit():
        spec = f"1d{spec}"
    match = DICE_PATTERN.match(spec)
    if match is None:
        raise ValueError(f"invalid dice formula '{args[0]}'")

    count = int(match.group(1) or 1)
    sides = int(match.group(2))
    if not 1 <= count <= MAX_DICE:
        raise ValueError(f"dice count must be between 1 and {MAX_DICE}")
    if not 1 <= sides <= MAX_SIDES:
        raise ValueError(f"dice sides must be between 1 and {MAX_SIDES}")

    rolls = [ctx.rng.randint(1, sides) for _ in range(count)]
    total = sum(rolls)
    if count == 1:
        return str(total)
    return f"{total} ({', '.join(str(r) for r in rolls)})"


def _random_int(ctx: MacroContext, args: List[str]) -> str:
    low, high = int(args[0]), int(args[1])
    if low > high:
        low, high = high, low
    return str(ctx.rng.randint(low, high))


def _repeat(ctx: MacroContext, args: List[str]) -> str:
    times = int(args[0])
    if times < 0 or times > MAX_REPEAT:
        raise ValueError(f"repeat count must be between 0 and {MAX_REPEAT}")
    return args[1] * times


def register_function_macros(registry: MacroRegistry) -> None:
    registry.register_many([
        MacroDefinition(
            name="random",
            phase=MacroPhase.POSTPROCESS,
            execute=_random,
            macro_type=MacroType.FUNCTION,
            min_args=1,
            description="Random choice among the arguments",
            example="{{random::a::b::c}}",
            priority=60,
        ),
        MacroDefinition(
            name="pick",
            phase=MacroPhase.POSTPROCESS,
            execute=_pick,
            macro_type=MacroType.FUNCTION,
            min_args=1,
            description="Stable per-session choice among the arguments",
            example="{{pick::a::b::c}}",
            priority=60,
        ),
        MacroDefinition(
            name="roll",
            phase=MacroPhase.PRESTATE,
            execute=_roll,
            macro_type=MacroType.FUNCTION,
            arg_count=1,
            description="Roll dice (NdM)",
            example="{{roll::2d6}}",
            priority=60,
        ),
        MacroDefinition(
            name="randomInt",
            phase=MacroPhase.POSTPROCESS,
            execute=_random_int,
            macro_type=MacroType.FUNCTION,
            arg_count=2,
            description="Random integer in [min, max]",
            example="{{randomInt::1::10}}",
            priority=60,
        ),
        MacroDefinition(
            name="repeat",
            phase=MacroPhase.POSTPROCESS,
            execute=_repeat,
            macro_type=MacroType.FUNCTION,
            arg_count=2,
            description="Repeat text N times",
            example="{{repeat::3::ha}}",
            priority=40,
        ),
        MacroDefinition(
            name="trim",
            phase=MacroPhase.POSTPROCESS,
            execute=lambda ctx, args: TRIM_MARKER,
            macro_type=MacroType.FUNCTION,
            description="Remove whitespace around this position",
            priority=10,
        ),
    ])


__all__ = ["register_function_macros"]
