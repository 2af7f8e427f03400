"""
Context Builder

Runs the processor pipeline for a session and converts the result into
langchain messages. Previews and real sends use the same path.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from config import Config, get_config
from context_engine.macros import MacroProcessor
from context_engine.models import (
    AgentConfig,
    MessageRole,
    ModelCapabilities,
    ProcessableMessage,
    Session,
    UserProfile,
)
from context_engine.pipeline import ContextPipeline, PipelineContext, PipelineLogEntry
from context_engine.pipeline.processors import AnchorRegistry, create_default_processors
from context_engine.regex import RegexRuleResolver
from context_engine.services.interfaces import AttachmentService
from context_engine.token import TokenizerService

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Messages ready for the model plus diagnostics."""
    messages: List[ProcessableMessage]
    stats: Dict[str, Any] = field(default_factory=dict)
    logs: List[PipelineLogEntry] = field(default_factory=list)
    shared_data: Dict[str, Any] = field(default_factory=dict)

    def to_langchain(self) -> List[BaseMessage]:
        return to_langchain_messages(self.messages)


def to_langchain_message(message: ProcessableMessage) -> BaseMessage:
    content: Any = message.content_parts if message.content_parts else message.content
    if message.role == MessageRole.SYSTEM:
        return SystemMessage(content=content)
    if message.role == MessageRole.ASSISTANT:
        return AIMessage(content=content)
    return HumanMessage(content=content)


def to_langchain_messages(messages: List[ProcessableMessage]) -> List[BaseMessage]:
    return [to_langchain_message(m) for m in messages]


class ContextBuilder:
    """
    Owns the pipeline and the services it shares.

    Args:
        config: Global configuration (default: get_config())
        tokenizer: Shared tokenizer service
        attachment_service: Optional attachment backend
        pipeline: Custom pipeline (default: the built-in processor chain)
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        tokenizer: Optional[TokenizerService] = None,
        attachment_service: Optional[AttachmentService] = None,
        regex_resolver: Optional[RegexRuleResolver] = None,
        macro_processor: Optional[MacroProcessor] = None,
        anchor_registry: Optional[AnchorRegistry] = None,
        pipeline: Optional[ContextPipeline] = None,
    ):
        self.config = config or get_config()
        self.tokenizer = tokenizer or TokenizerService(default_model=self.config.llm.default_model)
        self.attachment_service = attachment_service
        self.regex_resolver = regex_resolver or RegexRuleResolver.from_config(self.config)
        self.macro_processor = macro_processor or MacroProcessor(
            unknown_macro_policy=self.config.macros.unknown_macro_policy
        )
        self.anchor_registry = anchor_registry or AnchorRegistry()

        def defaults():
            return create_default_processors(
                tokenizer=self.tokenizer,
                attachment_service=self.attachment_service,
                regex_resolver=self.regex_resolver,
                macro_processor=self.macro_processor,
                anchor_registry=self.anchor_registry,
            )

        self.pipeline = pipeline or ContextPipeline(default_factory=defaults)

    async def build_context(
        self,
        session: Session,
        agent_config: AgentConfig,
        user_profile: Optional[UserProfile] = None,
        capabilities: Optional[ModelCapabilities] = None,
        model_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> BuildResult:
        """
        Build the model input for the session's active branch.

        Raises:
            PipelineProcessorError: a critical processor failed
        """
        context = PipelineContext(
            session=session,
            agent_config=agent_config,
            config=self.config,
            user_profile=user_profile,
            capabilities=capabilities or ModelCapabilities(),
            model_id=model_id,
            timestamp=timestamp or datetime.now(),
        )
        await self.pipeline.execute(context)

        effective_model = context.effective_model_id
        total = 0
        estimated = False
        for message in context.messages:
            count = self.tokenizer.count_tokens(message.content, effective_model)
            total += count.count
            estimated = estimated or count.is_estimated

        stats: Dict[str, Any] = {
            "model_id": effective_model,
            "message_count": len(context.messages),
            "history_count": len([m for m in context.messages if m.is_history]),
            "total_tokens": total,
            "is_estimated": estimated,
            "masked_count": len(context.shared_data.get("masked_node_ids", [])),
            "token_limiter": context.shared_data.get("token_limiter_stats"),
            "processor_timings": context.shared_data.get("processor_timings", {}),
            "errors": len([entry for entry in context.logs if entry.level == "error"]),
        }
        logger.debug(
            f"[ContextBuilder] Built {stats['message_count']} message(s), "
            f"{total} tokens for session {session.id}"
        )
        return BuildResult(
            messages=context.messages,
            stats=stats,
            logs=context.logs,
            shared_data=context.shared_data,
        )


__all__ = [
    "BuildResult",
    "ContextBuilder",
    "to_langchain_message",
    "to_langchain_messages",
]
