"""
Built-in context processors.
"""

from typing import List, Optional

from context_engine.macros import MacroProcessor
from context_engine.pipeline.orchestrator import ContextProcessor
from context_engine.pipeline.processors.asset_resolver import AssetResolver
from context_engine.pipeline.processors.injection_assembler import (
    ANCHOR_CHAT_HISTORY,
    ANCHOR_USER_PROFILE,
    AnchorDefinition,
    AnchorRegistry,
    InjectionAssembler,
    parse_depth_config,
    preset_matches_model,
)
from context_engine.pipeline.processors.message_formatter import MessageFormatter
from context_engine.pipeline.processors.regex_processor import RegexProcessor
from context_engine.pipeline.processors.session_loader import SessionLoader
from context_engine.pipeline.processors.token_limiter import TokenLimiterProcessor
from context_engine.pipeline.processors.transcription_processor import TranscriptionProcessor
from context_engine.pipeline.processors.variable_processor import SessionVariableProcessor
from context_engine.pipeline.processors.worldbook_processor import WorldbookProcessor
from context_engine.regex import RegexRuleResolver
from context_engine.services.interfaces import AttachmentService
from context_engine.token import TokenizerService


def create_default_processors(
    tokenizer: Optional[TokenizerService] = None,
    attachment_service: Optional[AttachmentService] = None,
    regex_resolver: Optional[RegexRuleResolver] = None,
    macro_processor: Optional[MacroProcessor] = None,
    anchor_registry: Optional[AnchorRegistry] = None,
) -> List[ContextProcessor]:
    """The default processor chain, sharing the given services."""
    macro_processor = macro_processor or MacroProcessor()
    return [
        SessionLoader(),
        SessionVariableProcessor(),
        RegexProcessor(regex_resolver, macro_processor),
        TranscriptionProcessor(attachment_service),
        TokenLimiterProcessor(tokenizer, attachment_service),
        InjectionAssembler(macro_processor, anchor_registry),
        WorldbookProcessor(tokenizer),
        MessageFormatter(),
        AssetResolver(attachment_service),
    ]


__all__ = [
    "ANCHOR_CHAT_HISTORY",
    "ANCHOR_USER_PROFILE",
    "AnchorDefinition",
    "AnchorRegistry",
    "AssetResolver",
    "InjectionAssembler",
    "MessageFormatter",
    "RegexProcessor",
    "SessionLoader",
    "SessionVariableProcessor",
    "TokenLimiterProcessor",
    "TranscriptionProcessor",
    "WorldbookProcessor",
    "create_default_processors",
    "parse_depth_config",
    "preset_matches_model",
]
