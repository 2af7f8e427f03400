"""
Date and time macros. All read MacroContext.timestamp so that one build
uses one clock value.
"""

from context_engine.macros.registry import MacroDefinition, MacroPhase, MacroRegistry, MacroType


def register_datetime_macros(registry: MacroRegistry) -> None:
    def definition(name, execute, description, **kwargs):
        return MacroDefinition(
            name=name,
            phase=MacroPhase.POSTPROCESS,
            execute=execute,
            macro_type=MacroType.FUNCTION,
            description=description,
            priority=50,
            **kwargs,
        )

    registry.register_many([
        definition("time", lambda ctx, args: ctx.timestamp.strftime("%H:%M"), "Current time (HH:MM)"),
        definition("date", lambda ctx, args: ctx.timestamp.strftime("%Y-%m-%d"), "Current date"),
        definition(
            "datetime",
            lambda ctx, args: ctx.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            "Current date and time",
        ),
        definition(
            "isotime",
            lambda ctx, args: ctx.timestamp.isoformat(timespec="seconds"),
            "ISO-8601 timestamp",
        ),
        definition("isodate", lambda ctx, args: ctx.timestamp.date().isoformat(), "ISO-8601 date"),
        definition(
            "timestamp",
            lambda ctx, args: str(int(ctx.timestamp.timestamp() * 1000)),
            "Unix time in milliseconds",
        ),
        definition("weekday", lambda ctx, args: ctx.timestamp.strftime("%A"), "Day of the week"),
        definition(
            "datetimeformat",
            lambda ctx, args: ctx.timestamp.strftime(args[0]),
            "Format the current time with a strftime pattern",
            arg_count=1,
            example="{{datetimeformat::%d/%m/%Y}}",
        ),
    ])


__all__ = ["register_datetime_macros"]
