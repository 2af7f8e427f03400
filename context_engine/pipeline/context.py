"""
Pipeline context.

State shared by all processors during one context build.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from config import (
    CompressionConfig,
    Config,
    ContextManagementConfig,
    VariableConfig,
    WorldbookConfig,
    merge_config_override,
)
from context_engine.models import (
    AgentConfig,
    ModelCapabilities,
    ProcessableMessage,
    Session,
    UserProfile,
)


@dataclass
class PipelineLogEntry:
    """One log line recorded by a processor."""
    processor_id: str
    level: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class PipelineContext:
    """
    Mutable state passed through the processors.

    Processors read and replace ``messages``, exchange intermediate results
    through ``shared_data`` and append to ``logs``.
    """
    session: Session
    agent_config: AgentConfig
    config: Config = field(default_factory=Config)
    user_profile: Optional[UserProfile] = None
    capabilities: ModelCapabilities = field(default_factory=ModelCapabilities)
    model_id: Optional[str] = None
    messages: List[ProcessableMessage] = field(default_factory=list)
    shared_data: Dict[str, Any] = field(default_factory=dict)
    logs: List[PipelineLogEntry] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def effective_model_id(self) -> str:
        return self.model_id or self.agent_config.model_id or self.config.llm.default_model

    def log(
        self,
        processor_id: str,
        level: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.logs.append(PipelineLogEntry(processor_id, level, message, details or {}))

    def context_settings(self) -> ContextManagementConfig:
        return merge_config_override(self.config.context, self.agent_config.context_management)

    def compression_settings(self) -> CompressionConfig:
        return merge_config_override(self.config.compression, self.agent_config.context_compression)

    def variable_settings(self) -> VariableConfig:
        return self.agent_config.variable_config or self.config.variables

    def worldbook_settings(self) -> WorldbookConfig:
        return merge_config_override(self.config.worldbook, self.agent_config.worldbook_settings)


__all__ = [
    "PipelineLogEntry",
    "PipelineContext",
]
