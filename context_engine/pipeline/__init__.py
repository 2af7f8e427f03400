"""
Context pipeline: the processor chain that turns a session into model input.
"""

from context_engine.pipeline.context import PipelineContext, PipelineLogEntry
from context_engine.pipeline.orchestrator import (
    ContextPipeline,
    ContextProcessor,
    FunctionProcessor,
)

__all__ = [
    "PipelineContext",
    "PipelineLogEntry",
    "ContextPipeline",
    "ContextProcessor",
    "FunctionProcessor",
]
