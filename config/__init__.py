"""
配置管理模块

导出配置相关的类和函数
"""

from .config import (
    Config,
    ConfigManager,
    LLMConfig,
    ContextManagementConfig,
    CompressionConfig,
    MacroConfig,
    VariableDefinition,
    VariableConfig,
    FormattingConfig,
    WorldbookConfig,
    AttachmentConfig,
    StorageConfig,
    LoggingConfig,
    DEFAULT_SUMMARY_PROMPT,
    DEFAULT_CONTINUE_SUMMARY_PROMPT,
    merge_config_override,
    get_config,
    get_config_manager,
    reload_config,
)

__all__ = [
    "Config",
    "ConfigManager",
    "LLMConfig",
    "ContextManagementConfig",
    "CompressionConfig",
    "MacroConfig",
    "VariableDefinition",
    "VariableConfig",
    "FormattingConfig",
    "WorldbookConfig",
    "AttachmentConfig",
    "StorageConfig",
    "LoggingConfig",
    "DEFAULT_SUMMARY_PROMPT",
    "DEFAULT_CONTINUE_SUMMARY_PROMPT",
    "merge_config_override",
    "get_config",
    "get_config_manager",
    "reload_config",
]
