"""
外部服务模块

接口定义及默认实现（JSON 会话存储、LangChain 模型服务、本地附件服务）
"""

from .interfaces import (
    ModelResponse,
    StreamChunk,
    SessionRepository,
    ModelService,
    AttachmentService,
)
from .session_store import JsonSessionStore, InMemorySessionStore
from .attachments import LocalAttachmentService, is_text_attachment
from .langchain_model import LangChainModelService, usage_from_metadata

__all__ = [
    "ModelResponse",
    "StreamChunk",
    "SessionRepository",
    "ModelService",
    "AttachmentService",
    "JsonSessionStore",
    "InMemorySessionStore",
    "LocalAttachmentService",
    "is_text_attachment",
    "LangChainModelService",
    "usage_from_metadata",
]
