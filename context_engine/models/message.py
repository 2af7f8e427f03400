"""
管道消息模型

上下文管道中流转的消息，最终转换为发送给模型的消息列表
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .node import Attachment, MessageRole


class MessageSourceType(str, Enum):
    """消息来源"""

    SESSION_HISTORY = "session_history"      # 会话历史
    AGENT_PRESET = "agent_preset"            # 智能体预设（骨架）
    DEPTH_INJECTION = "depth_injection"      # 深度注入
    ANCHOR_INJECTION = "anchor_injection"    # 锚点注入
    MERGED = "merged"                        # 格式化阶段合并产生
    PLACEHOLDER = "placeholder"              # 格式化阶段插入的占位消息


class ProcessableMessage(BaseModel):
    """管道中的一条消息"""

    role: MessageRole = Field(..., description="消息角色")
    content: str = Field(default="", description="文本内容")
    source_type: MessageSourceType = Field(
        default=MessageSourceType.SESSION_HISTORY,
        description="消息来源"
    )
    source_id: Optional[str] = Field(default=None, description="来源节点或预设消息 ID")
    source_index: Optional[int] = Field(default=None, description="在来源列表中的位置")
    attachments: List[Attachment] = Field(default_factory=list, description="尚未解析的附件引用")
    content_parts: Optional[List[Dict[str, Any]]] = Field(default=None, description="解析后的多模态内容")
    token_count: Optional[int] = Field(default=None, description="token 数（限制器填写）")
    is_truncated: bool = Field(default=False, description="是否被截断")

    @property
    def is_history(self) -> bool:
        return self.source_type == MessageSourceType.SESSION_HISTORY


__all__ = [
    "MessageSourceType",
    "ProcessableMessage",
]
