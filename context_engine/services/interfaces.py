"""
外部服务接口

上下文引擎依赖的外部服务：会话存储、模型调用、附件处理。
具体实现可以替换（测试中使用内存实现）。
"""

from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

from langchain_core.messages import BaseMessage
from pydantic import BaseModel, ConfigDict, Field

from context_engine.models import Attachment, Session, SessionIndexEntry, TokenUsage


class ModelResponse(BaseModel):
    """非流式模型响应"""

    model_config = ConfigDict(protected_namespaces=())

    content: str = Field(default="", description="生成内容")
    usage: Optional[TokenUsage] = Field(default=None, description="token 用量")
    model_id: Optional[str] = Field(default=None, description="实际使用的模型")
    finish_reason: Optional[str] = Field(default=None, description="结束原因")


class StreamChunk(BaseModel):
    """流式响应片段"""

    model_config = ConfigDict(protected_namespaces=())

    content: str = Field(default="", description="增量内容")
    usage: Optional[TokenUsage] = Field(default=None, description="token 用量（通常只在最后一块）")
    model_id: Optional[str] = Field(default=None, description="实际使用的模型")


@runtime_checkable
class SessionRepository(Protocol):
    """会话持久化"""

    def load_session(self, session_id: str) -> Optional[Session]:
        """加载会话，不存在时返回 None"""
        ...

    def save_session(self, session: Session) -> None:
        """保存会话（原子写入）"""
        ...

    def load_index(self) -> List[SessionIndexEntry]:
        """加载会话索引"""
        ...

    def save_index(self, entries: List[SessionIndexEntry]) -> None:
        """保存会话索引"""
        ...


@runtime_checkable
class ModelService(Protocol):
    """模型调用"""

    async def send_request(
        self,
        messages: List[BaseMessage],
        params: Dict[str, Any],
    ) -> ModelResponse:
        """
        发送非流式请求

        Args:
            messages: 最终上下文
            params: 模型参数（model_id, temperature, max_tokens 等）
        """
        ...

    def stream_request(
        self,
        messages: List[BaseMessage],
        params: Dict[str, Any],
    ) -> AsyncIterator[StreamChunk]:
        """发送流式请求，逐块返回"""
        ...


@runtime_checkable
class AttachmentService(Protocol):
    """附件处理"""

    def resolve_text(self, attachment: Attachment, model_id: Optional[str] = None) -> Optional[str]:
        """返回附件的文本表示（转写或文档文本），没有时返回 None"""
        ...

    def estimate_tokens(self, attachment: Attachment, model_id: Optional[str] = None) -> int:
        """估算附件以原生形式发送时的 token 数"""
        ...

    def load_payload(self, attachment: Attachment) -> bytes:
        """读取附件二进制内容"""
        ...


__all__ = [
    "ModelResponse",
    "StreamChunk",
    "SessionRepository",
    "ModelService",
    "AttachmentService",
]
