"""
Token limiter processor.

Runs after transcription (so extracted attachment text is counted) and
before the injection assembler (so only session history is trimmed).
"""

import logging
from typing import Optional

from context_engine.models import ProcessableMessage
from context_engine.pipeline.context import PipelineContext
from context_engine.pipeline.orchestrator import ContextProcessor
from context_engine.pipeline.processors.injection_assembler import active_presets
from context_engine.services.interfaces import AttachmentService
from context_engine.token import TokenizerService, TokenLimiter

logger = logging.getLogger(__name__)


class TokenLimiterProcessor(ContextProcessor):
    id = "token-limiter"
    name = "Token limiter"
    description = "Drops the oldest unprotected history until it fits the budget"
    priority = 300

    def __init__(
        self,
        tokenizer: Optional[TokenizerService] = None,
        attachment_service: Optional[AttachmentService] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.tokenizer = tokenizer or TokenizerService()
        self.attachment_service = attachment_service

    def _attachment_cost(self, model_id: str):
        service = self.attachment_service
        if service is None:
            return None

        def cost(message: ProcessableMessage) -> int:
            return sum(service.estimate_tokens(a, model_id) for a in message.attachments)

        return cost

    async def execute(self, context: PipelineContext) -> None:
        settings = context.context_settings()
        if not settings.enabled:
            return

        model_id = context.effective_model_id
        preset_tokens = sum(
            self.tokenizer.count(preset.content, model_id)
            for preset in active_presets(context.agent_config.preset_messages, model_id)
            if not preset.is_anchor
        )

        limiter = TokenLimiter(self.tokenizer, self._attachment_cost(model_id))
        messages, stats = limiter.limit(context.messages, settings, preset_tokens, model_id)
        context.messages = messages
        context.shared_data["token_limiter_stats"] = stats.model_dump()

        level = "warning" if stats.protected_overflow else "info"
        context.log(
            self.id,
            level,
            f"History {stats.final_history_count}/{stats.original_history_count}, "
            f"{stats.history_tokens} tokens, budget {stats.budget}",
            {"protected_overflow": stats.protected_overflow, "truncated": stats.truncated_count},
        )


__all__ = ["TokenLimiterProcessor"]
