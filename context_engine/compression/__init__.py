"""
Context compression: summary nodes that mask old history.
"""

from context_engine.compression.compressor import (
    CompressionResult,
    CompressionStats,
    ContextCompressor,
    format_nodes_for_summary,
)

__all__ = [
    "CompressionResult",
    "CompressionStats",
    "ContextCompressor",
    "format_nodes_for_summary",
]
