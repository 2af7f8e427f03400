"""
配置管理系统

支持从 YAML 文件、环境变量加载配置；智能体级别的配置可以逐字段覆盖全局配置
"""

import copy
import json
import os
import yaml
from typing import Any, Dict, List, Optional, TypeVar
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

# 加载 .env 文件
load_dotenv()

T = TypeVar('T', bound=BaseModel)

ENV_PREFIX = "CE_"
# 指定配置文件路径的环境变量（不参与字段覆盖）
CONFIG_PATH_ENV = "CE_CONFIG_PATH"


DEFAULT_SUMMARY_PROMPT = """你的任务是创建一份详细的对话摘要，密切关注用户的明确请求和助手之前采取的行动。
这份摘要应全面捕捉核心信息、关键概念和重要决策，这些对于继续对话至关重要。

摘要应结构如下：

## 上下文摘要

### 1. 对话概述
### 2. 当前焦点
### 3. 关键概念与主题
### 4. 重要信息与资料
### 5. 已解决与进行中的事项
### 6. 待处理事项与后续方向

---

以下是需要压缩的对话历史：

{context}

---

仅输出摘要内容，不包括任何额外的评论或解释。"""


DEFAULT_CONTINUE_SUMMARY_PROMPT = """你的任务是根据新增的对话内容，生成一份全新的、完整的对话摘要。
"前情提要"仅供理解历史背景；请输出一份独立完整的新摘要，保留仍然相关的历史信息，更新或移除已过时的内容。

【前情提要 - 仅供参考】
{previous_summary}

---

【新增对话历史 - 需要总结的内容】
{context}

---

仅输出摘要内容，不包括任何额外的评论或解释。"""


class LLMConfig(BaseModel):
    """LLM 模型配置"""

    default_model: str = Field(default="gpt-4o", description="默认模型 ID")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="温度参数")
    max_tokens: int = Field(default=4096, description="最大生成 tokens")
    stream: bool = Field(default=True, description="是否使用流式输出")


class ContextManagementConfig(BaseModel):
    """上下文 Token 限制配置"""

    enabled: bool = Field(default=True, description="是否启用 Token 限制")
    max_context_tokens: int = Field(default=32000, ge=0, description="上下文最大 tokens（含预设消息）")
    protected_recent_count: int = Field(default=4, ge=0, description="无条件保留的最近历史消息数")
    retained_characters: int = Field(
        default=0,
        ge=0,
        description="截断时保留第一条超限消息的前 N 个字符（0 表示直接丢弃）"
    )


class CompressionConfig(BaseModel):
    """上下文压缩配置"""

    enabled: bool = Field(default=False, description="是否启用上下文压缩")
    auto_trigger: bool = Field(default=True, description="发送前是否自动检查并压缩")
    trigger_mode: str = Field(default="token", description="触发模式 (token, count, both)")
    token_threshold: int = Field(default=80000, description="Token 阈值")
    count_threshold: int = Field(default=50, description="消息条数阈值")
    protect_recent_count: int = Field(default=10, ge=0, description="保护最近 N 条消息不被压缩")
    compress_count: int = Field(default=20, ge=1, description="每次压缩多少条消息")
    min_history_count: int = Field(default=15, ge=0, description="至少多少条历史才触发压缩")
    summary_role: str = Field(default="system", description="摘要节点的角色")
    summary_model: Optional[str] = Field(default=None, description="生成摘要的模型（默认使用当前模型）")
    summary_temperature: float = Field(default=0.3, description="摘要生成温度")
    summary_max_tokens: int = Field(default=4096, description="摘要最大 tokens")
    summary_prompt: str = Field(default=DEFAULT_SUMMARY_PROMPT, description="摘要提示词模板")
    continue_summary_prompt: str = Field(
        default=DEFAULT_CONTINUE_SUMMARY_PROMPT,
        description="续写摘要提示词模板"
    )

    @field_validator("trigger_mode")
    @classmethod
    def validate_trigger_mode(cls, v: str) -> str:
        """验证触发模式"""
        valid_modes = ["token", "count", "both"]
        if v not in valid_modes:
            raise ValueError(f"Invalid trigger_mode: {v}. Must be one of {valid_modes}")
        return v

    @field_validator("summary_role")
    @classmethod
    def validate_summary_role(cls, v: str) -> str:
        """验证摘要角色"""
        valid_roles = ["system", "user", "assistant"]
        if v not in valid_roles:
            raise ValueError(f"Invalid summary_role: {v}. Must be one of {valid_roles}")
        return v


class MacroConfig(BaseModel):
    """宏引擎配置"""

    enabled: bool = Field(default=True, description="是否启用宏处理")
    unknown_macro_policy: str = Field(default="keep", description="未知宏处理方式 (keep, flag)")
    process_user_input: bool = Field(default=True, description="发送前是否处理用户输入中的宏")

    @field_validator("unknown_macro_policy")
    @classmethod
    def validate_policy(cls, v: str) -> str:
        """验证未知宏策略"""
        if v not in ("keep", "flag"):
            raise ValueError(f"Invalid unknown_macro_policy: {v}. Must be 'keep' or 'flag'")
        return v


class VariableDefinition(BaseModel):
    """会话变量声明"""

    path: str = Field(..., description="变量路径（支持 a.b[0].c）")
    initial_value: Any = Field(default=None, description="初始值")
    min: Optional[float] = Field(default=None, description="数值下限")
    max: Optional[float] = Field(default=None, description="数值上限")
    readonly: bool = Field(default=False, description="是否只读")
    computed: bool = Field(default=False, description="是否为计算变量（同样拒绝修改）")
    description: str = Field(default="", description="变量说明")


class VariableConfig(BaseModel):
    """会话变量配置"""

    enabled: bool = Field(default=False, description="是否启用会话变量")
    strict_mode: bool = Field(default=False, description="严格模式：拒绝未声明路径上的操作")
    strip_tags: bool = Field(default=True, description="是否从发送的消息中移除变量标签")
    definitions: List[VariableDefinition] = Field(default_factory=list, description="变量声明列表")


class FormattingConfig(BaseModel):
    """消息格式化配置"""

    merge_system_to_head: bool = Field(default=True, description="合并所有 system 消息到开头")
    merge_consecutive_roles: bool = Field(default=False, description="合并连续相同角色的消息")
    system_separator: str = Field(default="\n\n---\n\n", description="合并 system 消息的分隔符")
    role_separator: str = Field(default="\n\n", description="合并连续角色消息的分隔符")
    convert_system_to_user: bool = Field(default=False, description="将 system 消息转换为 user（适用于不支持 system 角色的模型）")
    ensure_alternating_roles: bool = Field(default=False, description="插入占位消息，保证 user/assistant 严格交替")
    user_placeholder: str = Field(default="继续", description="补齐交替时插入的 user 占位内容")
    assistant_placeholder: str = Field(default="好的", description="补齐交替时插入的 assistant 占位内容")


class WorldbookConfig(BaseModel):
    """世界书配置"""

    enabled: bool = Field(default=True, description="是否启用世界书")
    max_tokens: int = Field(default=4000, ge=0, description="激活条目的 token 预算")
    default_scan_depth: int = Field(default=2, ge=0, description="默认扫描的最近消息条数")
    disable_recursion: bool = Field(default=False, description="禁用递归扫描")
    max_recursion_steps: int = Field(default=0, ge=0, description="最大扫描轮数（0 表示不限，硬上限 20）")


class AttachmentConfig(BaseModel):
    """附件处理配置"""

    base_dir: str = Field(default="./data/attachments", description="附件根目录")
    image_token_estimate: int = Field(default=765, description="图片 token 估算")
    audio_token_estimate: int = Field(default=1000, description="音频 token 估算")
    video_token_estimate: int = Field(default=2000, description="视频 token 估算")
    document_token_estimate: int = Field(default=500, description="无法读取文本的文档 token 估算")
    max_text_chars: int = Field(default=50000, description="文本附件最大读取字符数")


class StorageConfig(BaseModel):
    """会话存储配置"""

    sessions_dir: str = Field(default="./data/sessions", description="会话 JSON 文件目录")
    index_file: str = Field(default="index.json", description="会话索引文件名")


class LoggingConfig(BaseModel):
    """日志配置"""

    level: str = Field(default="INFO", description="日志级别")
    file: Optional[str] = Field(default="./logs/context_engine.log", description="日志文件路径")
    max_bytes: int = Field(default=10485760, description="日志文件最大大小（10MB）")
    backup_count: int = Field(default=5, description="日志备份数量")


class Config(BaseModel):
    """上下文引擎总配置"""

    # 环境配置
    environment: str = Field(default="development", description="运行环境 (development, production)")
    debug: bool = Field(default=False, description="调试模式")

    # 各模块配置
    llm: LLMConfig = Field(default_factory=LLMConfig)
    context: ContextManagementConfig = Field(default_factory=ContextManagementConfig)
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    macros: MacroConfig = Field(default_factory=MacroConfig)
    variables: VariableConfig = Field(default_factory=VariableConfig)
    formatting: FormattingConfig = Field(default_factory=FormattingConfig)
    worldbook: WorldbookConfig = Field(default_factory=WorldbookConfig)
    regex: Dict[str, Any] = Field(default_factory=dict, description="全局正则规则组，结构同 RegexConfig（presets 列表）")
    attachments: AttachmentConfig = Field(default_factory=AttachmentConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """验证环境变量"""
        valid_envs = ["development", "production", "test"]
        if v not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v


def merge_config_override(base: T, override: Optional[Dict[str, Any]]) -> T:
    """
    用智能体级别的覆盖值生成有效配置

    覆盖值中为 None 的字段视为未设置，保留全局值。

    Args:
        base: 全局配置
        override: 部分字段覆盖

    Returns:
        新的配置对象（经过校验）
    """
    if not override:
        return base
    data = base.model_dump()
    data.update({k: v for k, v in override.items() if v is not None})
    return type(base).model_validate(data)


class ConfigManager:
    """
    配置管理器

    支持从 YAML 文件加载配置，支持环境变量覆盖
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        初始化配置管理器

        Args:
            config_path: YAML 配置文件路径，默认为 config/settings.yaml
        """
        self.config_path = config_path or self._find_config_file()
        self._config: Optional[Config] = None

    @staticmethod
    def _find_config_file() -> str:
        """
        查找配置文件

        按以下顺序查找：
        0. 环境变量 CE_CONFIG_PATH
        1. ./config/settings.yaml
        2. ./settings.yaml
        3. ~/.config/context_engine/settings.yaml
        """
        env_path = os.environ.get(CONFIG_PATH_ENV)
        if env_path:
            return env_path

        possible_paths = [
            "./config/settings.yaml",
            "./settings.yaml",
            os.path.expanduser("~/.config/context_engine/settings.yaml"),
        ]

        for path in possible_paths:
            if os.path.exists(path):
                return path

        return "./config/settings.yaml"

    def load_yaml(self) -> Dict[str, Any]:
        """
        从 YAML 文件加载配置

        Returns:
            配置字典
        """
        if not os.path.exists(self.config_path):
            return {}

        with open(self.config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def _override_from_env(self, config_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        从环境变量覆盖配置

        使用 __ 分隔层级，例如：
        CE_COMPRESSION__TOKEN_THRESHOLD=1000
        CE_MACROS__UNKNOWN_MACRO_POLICY=flag

        Args:
            config_dict: 原始配置字典

        Returns:
            覆盖后的配置字典
        """
        result = copy.deepcopy(config_dict)

        for env_key, env_value in os.environ.items():
            if not env_key.startswith(ENV_PREFIX) or env_key == CONFIG_PATH_ENV:
                continue
            key = env_key[len(ENV_PREFIX):].replace("__", ".").lower()
            parts = key.split(".")

            current = result
            for part in parts[:-1]:
                if not isinstance(current.get(part), dict):
                    current[part] = {}
                current = current[part]
            current[parts[-1]] = self._parse_env_value(env_value)

        return result

    @staticmethod
    def _parse_env_value(value: str) -> Any:
        """
        解析环境变量值

        布尔、数字直接转换；以 [ 或 { 开头的值按 JSON 解析（列表、字典字段）

        Args:
            value: 环境变量值

        Returns:
            解析后的值
        """
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        if value[:1] in ("[", "{"):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value

    def load(self) -> Config:
        """
        加载配置

        从 YAML 文件加载配置，并使用环境变量覆盖

        Returns:
            配置对象
        """
        if self._config is not None:
            return self._config

        yaml_config = self.load_yaml()
        merged_config = self._override_from_env(yaml_config)

        self._config = Config.model_validate(merged_config)
        return self._config

    def reload(self) -> Config:
        """
        重新加载配置

        Returns:
            配置对象
        """
        self._config = None
        return self.load()

    def save(self, path: Optional[str] = None) -> None:
        """
        保存当前配置到 YAML 文件

        Args:
            path: 保存路径，默认为原配置文件路径
        """
        save_path = path or self.config_path

        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        config_dict = self.load().model_dump(exclude_none=True)

        with open(save_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config_dict, f, allow_unicode=True, default_flow_style=False)


# 全局配置管理器实例
_config_manager: Optional[ConfigManager] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """
    获取全局配置对象

    Args:
        config_path: 可选的配置文件路径

    Returns:
        配置对象
    """
    global _config_manager

    if _config_manager is None:
        _config_manager = ConfigManager(config_path)

    return _config_manager.load()


def get_config_manager() -> ConfigManager:
    """
    获取全局配置管理器

    Returns:
        配置管理器
    """
    global _config_manager

    if _config_manager is None:
        _config_manager = ConfigManager()

    return _config_manager


def reload_config() -> Config:
    """
    重新加载全局配置

    Returns:
        配置对象
    """
    global _config_manager

    if _config_manager is not None:
        return _config_manager.reload()

    return get_config()
