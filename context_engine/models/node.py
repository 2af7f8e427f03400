"""
消息节点模型

对话树中的节点、附件和节点元数据
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id


class MessageRole(str, Enum):
    """消息角色"""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class NodeStatus(str, Enum):
    """节点生成状态"""

    COMPLETE = "complete"      # 已完成
    GENERATING = "generating"  # 生成中
    ERROR = "error"            # 出错或被取消（保留部分内容）


class AttachmentType(str, Enum):
    """附件类型"""

    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    TEXT = "text"


class TokenUsage(BaseModel):
    """模型返回的 token 用量"""

    prompt_tokens: int = Field(default=0, description="输入 tokens")
    completion_tokens: int = Field(default=0, description="输出 tokens")
    total_tokens: int = Field(default=0, description="总 tokens")


class Attachment(BaseModel):
    """消息附件引用（不包含二进制内容）"""

    id: str = Field(default_factory=lambda: generate_id("asset"), description="附件 ID")
    name: str = Field(..., description="文件名")
    type: AttachmentType = Field(default=AttachmentType.DOCUMENT, description="附件类型")
    mime_type: str = Field(default="application/octet-stream", description="MIME 类型")
    path: Optional[str] = Field(default=None, description="相对于附件根目录的路径")
    size: int = Field(default=0, description="文件大小（字节）")
    transcription: Optional[str] = Field(default=None, description="已有的转写/提取文本")


class NodeMetadata(BaseModel):
    """节点元数据，允许额外字段"""

    model_config = ConfigDict(extra="allow", protected_namespaces=())

    is_compression_node: bool = Field(default=False, description="是否为压缩节点")
    compressed_node_ids: List[str] = Field(default_factory=list, description="被压缩（遮蔽）的节点 ID")
    session_variable_snapshot: Optional[Dict[str, Any]] = Field(
        default=None,
        description="会话变量快照"
    )
    compression_timestamp: Optional[datetime] = Field(default=None, description="压缩时间")
    original_token_count: Optional[int] = Field(default=None, description="被压缩内容的原始 tokens")
    original_message_count: Optional[int] = Field(default=None, description="被压缩的消息数")
    compression_trigger: Optional[str] = Field(default=None, description="触发方式 (auto, manual)")
    model_id: Optional[str] = Field(default=None, description="生成该消息的模型")
    token_usage: Optional[TokenUsage] = Field(default=None, description="token 用量")
    error: Optional[str] = Field(default=None, description="生成错误信息")


class MessageNode(BaseModel):
    """对话树节点"""

    id: str = Field(default_factory=lambda: generate_id("node"), description="节点 ID")
    parent_id: Optional[str] = Field(default=None, description="父节点 ID（根节点为 None）")
    children_ids: List[str] = Field(default_factory=list, description="子节点 ID 列表")
    role: MessageRole = Field(..., description="消息角色")
    content: str = Field(default="", description="消息内容")
    is_enabled: bool = Field(default=True, description="是否启用")
    status: NodeStatus = Field(default=NodeStatus.COMPLETE, description="生成状态")
    timestamp: datetime = Field(default_factory=datetime.now, description="创建时间")
    attachments: List[Attachment] = Field(default_factory=list, description="附件列表")
    metadata: NodeMetadata = Field(default_factory=NodeMetadata, description="节点元数据")

    @property
    def is_compression_node(self) -> bool:
        return self.metadata.is_compression_node


__all__ = [
    "MessageRole",
    "NodeStatus",
    "AttachmentType",
    "TokenUsage",
    "Attachment",
    "NodeMetadata",
    "MessageNode",
]
