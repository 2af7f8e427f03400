"""
世界书模型

关键词触发的背景知识条目，字段与 SillyTavern 世界书导出格式对应
"""

from enum import IntEnum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from .node import MessageRole


class WorldbookLogic(IntEnum):
    """次要关键词的组合逻辑"""

    AND_ANY = 0   # 任一次要关键词命中
    NOT_ALL = 1   # 并非全部命中
    NOT_ANY = 2   # 全部未命中
    AND_ALL = 3   # 全部命中


class WorldbookPosition(IntEnum):
    """条目插入位置"""

    BEFORE_CHAR = 0  # 角色设定之前
    AFTER_CHAR = 1   # 角色设定之后
    BEFORE_AN = 2    # 作者注释之前（映射到历史开头）
    AFTER_AN = 3     # 作者注释之后（映射到第一条历史之后）
    DEPTH = 4        # 按深度插入历史
    BEFORE_EM = 5    # 示例消息之前（映射到历史开头）
    AFTER_EM = 6     # 示例消息之后（映射到第一条历史之后）
    OUTLET = 7       # 不插入消息，只保留在共享数据中


class CharacterFilter(BaseModel):
    """按智能体名称或标签过滤条目"""

    names: List[str] = Field(default_factory=list, description="智能体名称")
    tags: List[str] = Field(default_factory=list, description="智能体标签")
    is_exclude: bool = Field(default=False, description="排除模式：命中时跳过")


class WorldbookEntry(BaseModel):
    """世界书条目"""

    uid: str = Field(..., description="条目 ID（在同一本世界书内唯一）")
    key: List[str] = Field(default_factory=list, description="主关键词，支持 /regex/flags")
    keysecondary: List[str] = Field(default_factory=list, description="次要关键词")
    comment: str = Field(default="", description="备注/标题")
    content: str = Field(default="", description="注入内容")
    constant: bool = Field(default=False, description="常驻：无需关键词即激活")
    selective: bool = Field(default=False, description="启用次要关键词逻辑")
    selective_logic: WorldbookLogic = Field(default=WorldbookLogic.AND_ANY, description="次要关键词逻辑")
    disable: bool = Field(default=False, description="是否禁用")
    order: int = Field(default=100, description="插入顺序（越大越先插入）")
    position: WorldbookPosition = Field(default=WorldbookPosition.BEFORE_CHAR, description="插入位置")
    depth: int = Field(default=4, ge=0, description="DEPTH 位置的深度")
    role: MessageRole = Field(default=MessageRole.SYSTEM, description="注入消息的角色")
    scan_depth: Optional[int] = Field(default=None, ge=0, description="扫描的最近消息条数（默认用全局设置）")
    case_sensitive: bool = Field(default=False, description="关键词区分大小写")
    match_whole_words: bool = Field(default=False, description="整词匹配")
    use_probability: bool = Field(default=False, description="是否按概率激活")
    probability: int = Field(default=100, ge=0, le=100, description="激活概率（百分比）")
    group: str = Field(default="", description="包含组，逗号分隔；同组只激活一条")
    group_override: bool = Field(default=False, description="组内优先胜出")
    group_weight: int = Field(default=100, ge=0, description="组内随机权重")
    prevent_recursion: bool = Field(default=False, description="内容不参与递归扫描")
    delay_until_recursion: bool = Field(default=False, description="只在递归扫描中激活")
    delay_until_recursion_level: int = Field(default=1, ge=1, description="延迟递归层级")
    delay: int = Field(default=0, ge=0, description="历史少于 N 条时不激活")
    cooldown: int = Field(default=0, ge=0, description="最近 N 条历史中出现过关键词时不激活")
    sticky: int = Field(default=0, ge=0, description="最近 N 条历史中出现过关键词时保持激活")
    ignore_budget: bool = Field(default=False, description="不计入 token 预算")
    character_filter: Optional[CharacterFilter] = Field(default=None, description="智能体过滤")
    match_persona_description: bool = Field(default=False, description="同时扫描用户档案")
    match_character_description: bool = Field(default=False, description="同时扫描角色描述")
    match_character_personality: bool = Field(default=False, description="同时扫描角色性格")
    match_scenario: bool = Field(default=False, description="同时扫描场景")

    @field_validator("uid", mode="before")
    @classmethod
    def uid_to_str(cls, v: Any) -> Any:
        """导出文件中的 uid 通常是整数"""
        return str(v) if isinstance(v, int) else v

    @field_validator("key", "keysecondary", mode="before")
    @classmethod
    def split_keys(cls, v: Any) -> Any:
        """允许逗号分隔的字符串"""
        if isinstance(v, str):
            return [k.strip() for k in v.split(",") if k.strip()]
        return v

    @property
    def display_name(self) -> str:
        return self.comment or (self.key[0] if self.key else self.uid)


class Worldbook(BaseModel):
    """一本世界书"""

    name: str = Field(default="Unknown", description="世界书名称")
    entries: List[WorldbookEntry] = Field(default_factory=list, description="条目列表")

    @field_validator("entries", mode="before")
    @classmethod
    def entries_from_mapping(cls, v: Any) -> Any:
        """兼容 {uid: entry} 形式的导出文件"""
        if isinstance(v, dict):
            return [dict(entry, uid=str(entry.get("uid", uid))) for uid, entry in v.items()]
        return v


class MatchedWorldbookEntry(BaseModel):
    """本次构建激活的条目"""

    entry: WorldbookEntry
    worldbook_name: str
    matched_keys: List[str] = Field(default_factory=list)
    tokens: int = 0


__all__ = [
    "WorldbookLogic",
    "WorldbookPosition",
    "CharacterFilter",
    "WorldbookEntry",
    "Worldbook",
    "MatchedWorldbookEntry",
]
