"""
智能体相关模型

定义智能体配置、预设消息、注入策略、用户档案和模型能力
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import VariableConfig

from .base import generate_id
from .node import MessageRole
from .regex import RegexConfig
from .worldbook import Worldbook

# 预设消息类型：普通消息；其他取值表示锚点 ID
PRESET_TYPE_MESSAGE = "message"


class InjectionStrategy(BaseModel):
    """预设消息的注入策略"""

    depth: Optional[int] = Field(default=None, ge=0, description="深度注入：从最新消息往前数的位置")
    depth_config: Optional[str] = Field(
        default=None,
        description="高级深度配置：'3'、'3, 10, 15' 或循环 '10~5' / '10:5'"
    )
    anchor_target: Optional[str] = Field(default=None, description="锚点注入的目标锚点 ID")
    anchor_position: str = Field(default="after", description="相对锚点的位置 (before, after)")
    order: int = Field(default=100, description="同一位置多条注入时的顺序（越小越靠前）")

    @field_validator("anchor_position")
    @classmethod
    def validate_anchor_position(cls, v: str) -> str:
        """验证锚点位置"""
        if v not in ("before", "after"):
            raise ValueError(f"Invalid anchor_position: {v}. Must be 'before' or 'after'")
        return v


class ModelMatch(BaseModel):
    """按模型 ID 过滤预设消息"""

    enabled: bool = Field(default=False, description="是否启用模型匹配")
    patterns: List[str] = Field(default_factory=list, description="正则模式列表（任一匹配即可）")


class PresetMessage(BaseModel):
    """智能体预设消息"""

    id: str = Field(default_factory=lambda: generate_id("preset-msg"), description="预设消息 ID")
    role: MessageRole = Field(default=MessageRole.SYSTEM, description="消息角色")
    content: str = Field(default="", description="消息内容（可包含宏）")
    name: str = Field(default="", description="显示名称")
    is_enabled: bool = Field(default=True, description="是否启用")
    type: str = Field(default=PRESET_TYPE_MESSAGE, description="消息类型：'message' 或锚点 ID")
    injection_strategy: Optional[InjectionStrategy] = Field(default=None, description="注入策略")
    model_match: Optional[ModelMatch] = Field(default=None, description="模型匹配规则")

    @property
    def is_anchor(self) -> bool:
        return self.type != PRESET_TYPE_MESSAGE


class UserProfile(BaseModel):
    """用户档案"""

    id: str = Field(default_factory=lambda: generate_id("profile"), description="档案 ID")
    name: str = Field(default="User", description="用户名")
    display_name: Optional[str] = Field(default=None, description="显示名称")
    content: str = Field(default="", description="档案描述（用于 user_profile 锚点和 persona 宏）")
    regex_config: Optional[RegexConfig] = Field(default=None, description="用户级正则规则")

    @property
    def effective_name(self) -> str:
        return self.display_name or self.name


class AgentParameters(BaseModel):
    """模型请求参数"""

    temperature: Optional[float] = Field(default=None, description="温度")
    max_tokens: Optional[int] = Field(default=None, description="最大生成 tokens")
    stream: Optional[bool] = Field(default=None, description="是否流式输出")
    extra: Dict[str, Any] = Field(default_factory=dict, description="透传给模型服务的其他参数")


class AgentConfig(BaseModel):
    """智能体配置"""

    model_config = ConfigDict(protected_namespaces=())

    id: str = Field(default_factory=lambda: generate_id("agent"), description="智能体 ID")
    name: str = Field(default="Assistant", description="智能体名称")
    display_name: Optional[str] = Field(default=None, description="显示名称")
    description: str = Field(default="", description="角色描述")
    tags: List[str] = Field(default_factory=list, description="标签（供世界书过滤）")
    personality: str = Field(default="", description="性格")
    scenario: str = Field(default="", description="场景")
    model_id: Optional[str] = Field(default=None, description="模型 ID（默认使用全局配置）")
    preset_messages: List[PresetMessage] = Field(default_factory=list, description="预设消息")
    regex_config: Optional[RegexConfig] = Field(default=None, description="智能体级正则规则")
    variable_config: Optional[VariableConfig] = Field(default=None, description="会话变量配置")
    context_management: Optional[Dict[str, Any]] = Field(
        default=None,
        description="覆盖全局 ContextManagementConfig 的字段"
    )
    context_compression: Optional[Dict[str, Any]] = Field(
        default=None,
        description="覆盖全局 CompressionConfig 的字段"
    )
    context_formatting: Optional[Dict[str, Any]] = Field(
        default=None,
        description="覆盖全局 FormattingConfig 的字段"
    )
    worldbooks: List[Worldbook] = Field(default_factory=list, description="关联的世界书")
    worldbook_settings: Optional[Dict[str, Any]] = Field(
        default=None,
        description="覆盖全局 WorldbookConfig 的字段"
    )
    parameters: AgentParameters = Field(default_factory=AgentParameters, description="模型参数")

    @property
    def effective_name(self) -> str:
        return self.display_name or self.name


class ModelCapabilities(BaseModel):
    """目标模型能力"""

    vision: bool = Field(default=False, description="支持图片输入")
    audio: bool = Field(default=False, description="支持音频输入")
    video: bool = Field(default=False, description="支持视频输入")
    document: bool = Field(default=False, description="支持原生文档输入")


__all__ = [
    "PRESET_TYPE_MESSAGE",
    "InjectionStrategy",
    "ModelMatch",
    "PresetMessage",
    "UserProfile",
    "AgentParameters",
    "AgentConfig",
    "ModelCapabilities",
]
