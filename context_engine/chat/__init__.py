"""
Chat layer: context building and conversation operations.
"""

from context_engine.chat.context_builder import (
    BuildResult,
    ContextBuilder,
    to_langchain_message,
    to_langchain_messages,
)
from context_engine.chat.chat_service import ChatResult, ChatService

__all__ = [
    "BuildResult",
    "ContextBuilder",
    "to_langchain_message",
    "to_langchain_messages",
    "ChatResult",
    "ChatService",
]
