"""
Token Module

Token counting and history budget enforcement.

- TokenizerService: exact counts via tiktoken where available, flagged
  estimates otherwise
- TokenLimiter: protected-window history truncation
"""

from .token_counter import (
    TokenCount,
    TokenCounter,
    TikTokenCounter,
    ApproximateTokenCounter,
    TokenizerProvider,
    TikTokenProvider,
    TokenizerService,
)
from .limiter import TRUNCATION_SUFFIX, TokenLimiter, TokenLimiterStats

__all__ = [
    "TokenCount",
    "TokenCounter",
    "TikTokenCounter",
    "ApproximateTokenCounter",
    "TokenizerProvider",
    "TikTokenProvider",
    "TokenizerService",
    "TRUNCATION_SUFFIX",
    "TokenLimiter",
    "TokenLimiterStats",
]
