"""
Session variable processor.

Computes the variable state for the active path and strips operation tags
from the history sent to the model.
"""

import logging

from context_engine.pipeline.context import PipelineContext
from context_engine.pipeline.orchestrator import ContextProcessor
from context_engine.tree import NodeManager
from context_engine.variables import VariableEngine, strip_variable_tags

logger = logging.getLogger(__name__)


class SessionVariableProcessor(ContextProcessor):
    id = "session-variables"
    name = "Session variables"
    description = "Computes session variables from <var> operations on the active path"
    priority = 150

    async def execute(self, context: PipelineContext) -> None:
        settings = context.variable_settings()
        if not settings.enabled:
            return

        path = context.shared_data.get("active_path")
        if path is None:
            path = NodeManager().get_active_path(context.session)

        engine = VariableEngine(settings)
        state = engine.compute(path)
        context.shared_data["session_variables"] = state
        context.shared_data["variable_values"] = state.values

        if settings.strip_tags:
            for message in context.messages:
                if message.is_history:
                    message.content = strip_variable_tags(message.content)

        for error in state.errors:
            context.log(self.id, "warning", f"{error.op} {error.path}: {error.message}", error.model_dump())

        context.log(
            self.id,
            "info",
            f"Computed {len(state.values)} top-level variable(s)",
            {"snapshot_node_id": state.snapshot_node_id, "errors": len(state.errors)},
        )


__all__ = ["SessionVariableProcessor"]
