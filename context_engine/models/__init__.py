"""
数据模型模块

导出对话树、智能体、正则规则和会话变量的 Pydantic 模型
"""

from .base import TimestampMixin, generate_id
from .node import (
    MessageRole,
    NodeStatus,
    AttachmentType,
    TokenUsage,
    Attachment,
    NodeMetadata,
    MessageNode,
)
from .session import Session, SessionIndexEntry
from .message import MessageSourceType, ProcessableMessage
from .regex import (
    RegexStage,
    SubstitutionMode,
    RegexApplyTo,
    DepthRange,
    RegexRule,
    RegexPreset,
    RegexConfig,
)
from .agent import (
    PRESET_TYPE_MESSAGE,
    InjectionStrategy,
    ModelMatch,
    PresetMessage,
    UserProfile,
    AgentParameters,
    AgentConfig,
    ModelCapabilities,
)
from .variables import (
    VariableOp,
    VariableOperation,
    VariableChange,
    VariableErrorRecord,
    VariableState,
)
from .worldbook import (
    WorldbookLogic,
    WorldbookPosition,
    CharacterFilter,
    WorldbookEntry,
    Worldbook,
    MatchedWorldbookEntry,
)

__all__ = [
    "TimestampMixin",
    "generate_id",
    # 节点
    "MessageRole",
    "NodeStatus",
    "AttachmentType",
    "TokenUsage",
    "Attachment",
    "NodeMetadata",
    "MessageNode",
    # 会话
    "Session",
    "SessionIndexEntry",
    # 管道消息
    "MessageSourceType",
    "ProcessableMessage",
    # 正则
    "RegexStage",
    "SubstitutionMode",
    "RegexApplyTo",
    "DepthRange",
    "RegexRule",
    "RegexPreset",
    "RegexConfig",
    # 智能体
    "PRESET_TYPE_MESSAGE",
    "InjectionStrategy",
    "ModelMatch",
    "PresetMessage",
    "UserProfile",
    "AgentParameters",
    "AgentConfig",
    "ModelCapabilities",
    # 变量
    "VariableOp",
    "VariableOperation",
    "VariableChange",
    "VariableErrorRecord",
    "VariableState",
    # 世界书
    "WorldbookLogic",
    "WorldbookPosition",
    "CharacterFilter",
    "WorldbookEntry",
    "Worldbook",
    "MatchedWorldbookEntry",
]
