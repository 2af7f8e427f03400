"""
会话模型

会话以 ID 索引的节点表（arena）保存整棵对话树
"""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field

from .base import TimestampMixin, generate_id
from .node import MessageNode, MessageRole


class Session(TimestampMixin):
    """对话会话"""

    id: str = Field(default_factory=lambda: generate_id("session"), description="会话 ID")
    name: str = Field(default="New Chat", description="会话名称")
    agent_id: Optional[str] = Field(default=None, description="最近使用的智能体 ID")
    nodes: Dict[str, MessageNode] = Field(default_factory=dict, description="节点表")
    root_node_id: str = Field(..., description="根节点 ID")
    active_leaf_id: str = Field(..., description="当前活动叶节点 ID")

    @classmethod
    def create(cls, name: str = "New Chat", agent_id: Optional[str] = None) -> "Session":
        """
        创建只含根节点的新会话

        根节点是内容为空的 system 节点，只用于锚定树结构。
        """
        root = MessageNode(role=MessageRole.SYSTEM, content="")
        return cls(
            name=name,
            agent_id=agent_id,
            nodes={root.id: root},
            root_node_id=root.id,
            active_leaf_id=root.id,
        )

    def get_node(self, node_id: Optional[str]) -> Optional[MessageNode]:
        if node_id is None:
            return None
        return self.nodes.get(node_id)


class SessionIndexEntry(BaseModel):
    """会话索引条目"""

    id: str = Field(..., description="会话 ID")
    name: str = Field(..., description="会话名称")
    message_count: int = Field(default=0, description="节点数量（不含根节点）")
    updated_at: datetime = Field(default_factory=datetime.now, description="更新时间")

    @classmethod
    def from_session(cls, session: Session) -> "SessionIndexEntry":
        return cls(
            id=session.id,
            name=session.name,
            message_count=max(0, len(session.nodes) - 1),
            updated_at=session.updated_at,
        )


__all__ = [
    "Session",
    "SessionIndexEntry",
]
