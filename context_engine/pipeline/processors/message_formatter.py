"""
Message formatter.

Final shaping of the message list:
- drops messages with no content and no attachments
- optionally merges every system message into one leading message
- optionally merges consecutive messages of the same role
- optionally turns system messages into user messages
- optionally inserts placeholders so user and assistant alternate
"""

import logging
from typing import List

from config import FormattingConfig, merge_config_override
from context_engine.models import MessageRole, MessageSourceType, ProcessableMessage
from context_engine.pipeline.context import PipelineContext
from context_engine.pipeline.orchestrator import ContextProcessor

logger = logging.getLogger(__name__)


def merge_system_to_head(messages: List[ProcessableMessage], separator: str) -> List[ProcessableMessage]:
    system = [m for m in messages if m.role == MessageRole.SYSTEM]
    if not system:
        return messages
    others = [m for m in messages if m.role != MessageRole.SYSTEM]
    if len(system) == 1:
        return system + others

    merged = ProcessableMessage(
        role=MessageRole.SYSTEM,
        content=separator.join(m.content for m in system if m.content),
        source_type=MessageSourceType.MERGED,
        attachments=[a for m in system for a in m.attachments],
    )
    return [merged] + others


def merge_consecutive_roles(messages: List[ProcessableMessage], separator: str) -> List[ProcessableMessage]:
    result: List[ProcessableMessage] = []
    for message in messages:
        previous = result[-1] if result else None
        if previous is None or previous.role != message.role:
            result.append(message)
            continue
        merged = previous.model_copy(deep=True)
        merged.content = separator.join(c for c in (previous.content, message.content) if c)
        merged.attachments = previous.attachments + message.attachments
        merged.source_type = MessageSourceType.MERGED
        merged.source_id = None
        merged.source_index = None
        result[-1] = merged
    return result


def convert_system_to_user(messages: List[ProcessableMessage]) -> List[ProcessableMessage]:
    result: List[ProcessableMessage] = []
    for message in messages:
        if message.role == MessageRole.SYSTEM:
            message = message.model_copy(update={"role": MessageRole.USER})
        result.append(message)
    return result


def ensure_alternating_roles(
    messages: List[ProcessableMessage],
    user_placeholder: str,
    assistant_placeholder: str,
) -> List[ProcessableMessage]:
    """Insert a placeholder between two adjacent user or two adjacent assistant messages."""
    result: List[ProcessableMessage] = []
    for message in messages:
        previous = result[-1] if result else None
        if previous is not None and previous.role == message.role:
            if message.role == MessageRole.USER:
                result.append(ProcessableMessage(
                    role=MessageRole.ASSISTANT,
                    content=assistant_placeholder,
                    source_type=MessageSourceType.PLACEHOLDER,
                ))
            elif message.role == MessageRole.ASSISTANT:
                result.append(ProcessableMessage(
                    role=MessageRole.USER,
                    content=user_placeholder,
                    source_type=MessageSourceType.PLACEHOLDER,
                ))
        result.append(message)
    return result


class MessageFormatter(ContextProcessor):
    id = "message-formatter"
    name = "Message formatter"
    description = "Merges system messages and consecutive roles, converts and alternates roles"
    priority = 500
    config_schema = FormattingConfig

    def settings_for(self, context: PipelineContext) -> FormattingConfig:
        """Processor options, else global config; agent overrides apply on top."""
        base: FormattingConfig = self.options if self.options.model_fields_set else context.config.formatting
        return merge_config_override(base, context.agent_config.context_formatting)

    async def execute(self, context: PipelineContext) -> None:
        settings = self.settings_for(context)
        before = len(context.messages)

        messages = [m for m in context.messages if m.content.strip() or m.attachments]
        if settings.merge_system_to_head:
            messages = merge_system_to_head(messages, settings.system_separator)
        if settings.merge_consecutive_roles:
            messages = merge_consecutive_roles(messages, settings.role_separator)
        if settings.convert_system_to_user:
            messages = convert_system_to_user(messages)
        if settings.ensure_alternating_roles:
            messages = ensure_alternating_roles(
                messages, settings.user_placeholder, settings.assistant_placeholder
            )

        context.messages = messages
        if len(messages) != before:
            context.log(self.id, "info", f"Formatted {before} -> {len(messages)} message(s)")


__all__ = [
    "merge_system_to_head",
    "merge_consecutive_roles",
    "convert_system_to_user",
    "ensure_alternating_roles",
    "MessageFormatter",
]
