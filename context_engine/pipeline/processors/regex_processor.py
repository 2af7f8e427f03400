"""
Request-stage regex processor.

Applies the merged global / user / agent request rules to history messages.
Depth counts from the newest history message (depth 0).
"""

import copy
import logging
from typing import List, Optional

from context_engine.errors import RegexError
from context_engine.macros import MacroProcessor, build_macro_context
from context_engine.models import RegexStage
from context_engine.pipeline.context import PipelineContext
from context_engine.pipeline.orchestrator import ContextProcessor
from context_engine.regex import RegexRuleResolver, apply_regex_rules, filter_rules_for_message

logger = logging.getLogger(__name__)


class RegexProcessor(ContextProcessor):
    id = "regex-processor"
    name = "Regex processor"
    description = "Applies request-stage regex rules to history"
    priority = 200

    def __init__(
        self,
        resolver: Optional[RegexRuleResolver] = None,
        macro_processor: Optional[MacroProcessor] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.resolver = resolver or RegexRuleResolver()
        self.macro_processor = macro_processor or MacroProcessor()

    async def execute(self, context: PipelineContext) -> None:
        rules = self.resolver.get_rules(RegexStage.REQUEST, context.agent_config, context.user_profile)
        if not rules:
            return

        macro_context = build_macro_context(
            agent=context.agent_config,
            user_profile=context.user_profile,
            history=context.shared_data.get("visible_nodes"),
            session_id=context.session.id,
            model_id=context.effective_model_id,
            variables=copy.deepcopy(context.shared_data.get("variable_values") or {}),
            timestamp=context.timestamp,
        )

        history = [m for m in context.messages if m.is_history]
        errors: List[RegexError] = []
        changed = 0
        for position, message in enumerate(history):
            depth = len(history) - 1 - position
            applicable = filter_rules_for_message(rules, message.role, depth)
            if not applicable:
                continue
            result = apply_regex_rules(message.content, applicable, self.macro_processor, macro_context, errors)
            if result != message.content:
                message.content = result
                changed += 1

        for error in errors:
            context.log(self.id, "warning", error.message, error.to_dict())
        context.log(self.id, "info", f"{len(rules)} rule(s), {changed} message(s) changed")


__all__ = ["RegexProcessor"]
