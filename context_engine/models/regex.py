"""
正则规则模型

规则以 RegexConfig -> RegexPreset -> RegexRule 三层组织，
全局、用户档案、智能体各自持有一份 RegexConfig
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .base import generate_id
from .node import MessageRole


class RegexStage(str, Enum):
    """规则应用阶段"""

    RENDER = "render"    # 界面渲染
    REQUEST = "request"  # 发送请求


class SubstitutionMode(str, Enum):
    """正则表达式自身的宏替换模式"""

    NONE = "none"        # 不替换
    RAW = "raw"          # 直接替换宏值
    ESCAPED = "escaped"  # 替换前对宏值做正则转义


class RegexApplyTo(BaseModel):
    """规则适用的阶段"""

    render: bool = Field(default=True, description="渲染时应用")
    request: bool = Field(default=True, description="请求时应用")

    def applies(self, stage: RegexStage) -> bool:
        return self.render if stage == RegexStage.RENDER else self.request


class DepthRange(BaseModel):
    """消息深度范围（0 = 最新消息），两端都包含"""

    min: Optional[int] = Field(default=None, ge=0, description="最小深度")
    max: Optional[int] = Field(default=None, ge=0, description="最大深度")

    def contains(self, depth: int) -> bool:
        if self.min is not None and depth < self.min:
            return False
        if self.max is not None and depth > self.max:
            return False
        return True


class RegexRule(BaseModel):
    """单条正则替换规则"""

    id: str = Field(default_factory=lambda: generate_id("rule"), description="规则 ID")
    name: str = Field(default="", description="规则名称")
    enabled: bool = Field(default=True, description="是否启用")
    regex: str = Field(..., description="正则表达式，支持 /pattern/flags 写法")
    replacement: str = Field(default="", description="替换文本，支持 $1 / $& / $<name>")
    flags: str = Field(default="gm", description="JS 风格标志 (g, i, m, s, u)")
    apply_to: RegexApplyTo = Field(default_factory=RegexApplyTo, description="适用阶段")
    target_roles: List[MessageRole] = Field(
        default_factory=lambda: [MessageRole.SYSTEM, MessageRole.USER, MessageRole.ASSISTANT],
        description="目标角色"
    )
    depth_range: Optional[DepthRange] = Field(default=None, description="深度范围")
    substitution_mode: SubstitutionMode = Field(default=SubstitutionMode.NONE, description="宏替换模式")
    trim_strings: List[str] = Field(default_factory=list, description="替换前从捕获内容中移除的字符串")
    order: int = Field(default=0, description="执行顺序")


class RegexPreset(BaseModel):
    """规则预设（规则组）"""

    id: str = Field(default_factory=lambda: generate_id("preset"), description="预设 ID")
    name: str = Field(default="", description="预设名称")
    enabled: bool = Field(default=True, description="是否启用")
    rules: List[RegexRule] = Field(default_factory=list, description="规则列表")
    order: int = Field(default=0, description="预设顺序")
    priority: int = Field(default=100, description="预设优先级（越小越先执行）")


class RegexConfig(BaseModel):
    """一组正则预设"""

    presets: List[RegexPreset] = Field(default_factory=list, description="预设列表")


__all__ = [
    "RegexStage",
    "SubstitutionMode",
    "RegexApplyTo",
    "DepthRange",
    "RegexRule",
    "RegexPreset",
    "RegexConfig",
]
