"""
Core value macros: names, profile, history lookups.
"""

from context_engine.macros.registry import MacroDefinition, MacroPhase, MacroRegistry, MacroType


def register_core_macros(registry: MacroRegistry) -> None:
    registry.register_many([
        MacroDefinition(
            name="user",
            phase=MacroPhase.SUBSTITUTE,
            execute=lambda ctx, args: ctx.user_name,
            description="Current user name",
            example="{{user}}",
            priority=100,
        ),
        MacroDefinition(
            name="char",
            phase=MacroPhase.SUBSTITUTE,
            execute=lambda ctx, args: ctx.char_name,
            description="Current agent name",
            example="{{char}}",
            priority=100,
        ),
        MacroDefinition(
            name="persona",
            phase=MacroPhase.SUBSTITUTE,
            execute=lambda ctx, args: ctx.user_profile,
            description="User profile text",
            example="{{persona}}",
            priority=90,
        ),
        MacroDefinition(
            name="description",
            phase=MacroPhase.SUBSTITUTE,
            execute=lambda ctx, args: ctx.char_description,
            description="Agent description",
            priority=80,
        ),
        MacroDefinition(
            name="personality",
            phase=MacroPhase.SUBSTITUTE,
            execute=lambda ctx, args: ctx.char_personality,
            description="Agent personality",
            priority=80,
        ),
        MacroDefinition(
            name="scenario",
            phase=MacroPhase.SUBSTITUTE,
            execute=lambda ctx, args: ctx.scenario,
            description="Scenario text",
            priority=80,
        ),
        MacroDefinition(
            name="model",
            phase=MacroPhase.SUBSTITUTE,
            execute=lambda ctx, args: ctx.model_id or "",
            description="Target model id",
            priority=50,
        ),
        MacroDefinition(
            name="newline",
            phase=MacroPhase.SUBSTITUTE,
            execute=lambda ctx, args: "\n",
            macro_type=MacroType.FUNCTION,
            description="A line break",
            priority=50,
        ),
        MacroDefinition(
            name="lastMessage",
            phase=MacroPhase.POSTPROCESS,
            execute=lambda ctx, args: ctx.last_message,
            description="Newest visible message",
            priority=70,
        ),
        MacroDefinition(
            name="lastUserMessage",
            phase=MacroPhase.POSTPROCESS,
            execute=lambda ctx, args: ctx.last_user_message,
            description="Newest user message",
            priority=70,
        ),
        MacroDefinition(
            name="lastCharMessage",
            phase=MacroPhase.POSTPROCESS,
            execute=lambda ctx, args: ctx.last_char_message,
            description="Newest assistant message",
            priority=70,
        ),
        MacroDefinition(
            name="input",
            phase=MacroPhase.POSTPROCESS,
            execute=lambda ctx, args: ctx.input,
            description="Text currently being sent",
            priority=70,
        ),
    ])


__all__ = ["register_core_macros"]
