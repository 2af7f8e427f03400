"""
Tokenizer Service

Multi-model token counting with tiktoken integration.

- Exact counts come from a TokenizerProvider (tiktoken for OpenAI models)
- Models without a provider get a deterministic character-based estimate,
  flagged as such
- Counters are loaded once per model and shared by reference; they are
  only cleared by an explicit clear_cache() call
- Per-text counts are kept in a bounded LRU keyed by (model, text)
"""

import logging
import math
import re
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, List, NamedTuple, Optional, Set, Tuple

from langchain_core.messages import BaseMessage

logger = logging.getLogger(__name__)

_CJK_PATTERN = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af\uf900-\ufaff]")


class TokenCount(NamedTuple):
    """A token count and whether it is an estimate."""
    count: int
    is_estimated: bool


class TokenCounter:
    """Base class for token counters."""

    def count_tokens(self, text: str) -> int:
        """Count tokens in text."""
        raise NotImplementedError


class TikTokenCounter(TokenCounter):
    """Token counter using tiktoken (OpenAI models)."""

    def __init__(self, model: str = "gpt-4"):
        """
        Initialize tiktoken counter.

        Args:
            model: Model name for tokenizer selection
        """
        self.model = model
        self._tokenizer = None

    @property
    def tokenizer(self):
        """Lazy load tokenizer."""
        if self._tokenizer is None:
            import tiktoken
            try:
                self._tokenizer = tiktoken.encoding_for_model(self.model)
            except KeyError:
                # Unknown OpenAI model: fall back to the GPT-4 family encoding
                self._tokenizer = tiktoken.get_encoding("cl100k_base")
        return self._tokenizer

    def count_tokens(self, text: str) -> int:
        """Count tokens using tiktoken."""
        return len(self.tokenizer.encode(text, disallowed_special=()))


class ApproximateTokenCounter(TokenCounter):
    """
    Deterministic estimate for when no tokenizer is available.

    Rule of thumb: 1 token ≈ chars_per_token characters for Latin text,
    and about 1.5 characters per token for CJK text.
    """

    def __init__(self, chars_per_token: float = 4.0, cjk_chars_per_token: float = 1.5):
        """
        Initialize approximate counter.

        Args:
            chars_per_token: Characters per token ratio (default: 4 for English)
            cjk_chars_per_token: Characters per token ratio for CJK characters
        """
        self.chars_per_token = chars_per_token
        self.cjk_chars_per_token = cjk_chars_per_token

    def count_tokens(self, text: str) -> int:
        """Approximate token count based on character count."""
        if not text:
            return 0
        cjk = len(_CJK_PATTERN.findall(text))
        other = len(text) - cjk
        return math.ceil(other / self.chars_per_token + cjk / self.cjk_chars_per_token)


class TokenizerProvider(ABC):
    """Returns an exact count for a model, or None if the model is unsupported."""

    @abstractmethod
    def count(self, text: str, model_id: str) -> Optional[int]:
        """Exact token count, or None."""

    def clear_cache(self) -> None:
        """Drop any loaded tokenizers."""


class TikTokenProvider(TokenizerProvider):
    """
    Exact counts for OpenAI model families via tiktoken.

    A model whose encoding fails to load is remembered as unsupported, so
    later calls fall back to estimation without retrying.
    """

    MODEL_PATTERNS = [
        r"^gpt-",
        r"^o\d",
        r"^chatgpt-",
        r"^text-embedding-",
    ]

    def __init__(self):
        self._counters: Dict[str, TikTokenCounter] = {}
        self._unsupported: Set[str] = set()
        self._lock = threading.Lock()

    def supports(self, model_id: str) -> bool:
        model_lower = model_id.lower()
        return any(re.match(pattern, model_lower) for pattern in self.MODEL_PATTERNS)

    def count(self, text: str, model_id: str) -> Optional[int]:
        if not self.supports(model_id) or model_id in self._unsupported:
            return None

        with self._lock:
            counter = self._counters.get(model_id)
            if counter is None:
                counter = TikTokenCounter(model_id)
                try:
                    counter.tokenizer
                except Exception as e:
                    logger.warning(f"[TikTokenProvider] Tokenizer unavailable for {model_id}: {e}")
                    self._unsupported.add(model_id)
                    return None
                self._counters[model_id] = counter

        return counter.count_tokens(text)

    def clear_cache(self) -> None:
        with self._lock:
            self._counters.clear()
            self._unsupported.clear()


class TokenizerService:
    """
    Token counting shared by the limiter, the compressor and the builder.

    Create one instance and pass it by reference to every component that
    counts tokens.

    Model Family Detection (for estimates):
    - Anthropic: claude-* → 3.5 chars/token
    - Other: 4 chars/token
    """

    ESTIMATE_RATIOS = {
        "anthropic": 3.5,
        "other": 4.0,
    }

    def __init__(
        self,
        provider: Optional[TokenizerProvider] = None,
        default_model: str = "gpt-4o",
        max_cache_entries: int = 10000,
    ):
        """
        Args:
            provider: Exact tokenizer provider (default: TikTokenProvider)
            default_model: Model used when none is given
            max_cache_entries: Bound of the per-text count cache (least recently used entries are evicted first)
        """
        self.provider = provider if provider is not None else TikTokenProvider()
        self.default_model = default_model
        self._max_cache_entries = max_cache_entries
        self._estimators: Dict[str, ApproximateTokenCounter] = {}
        self._cache: "OrderedDict[Tuple[str, str], TokenCount]" = OrderedDict()
        self._lock = threading.Lock()

    def detect_model_family(self, model: str) -> str:
        if re.match(r"^claude-", model.lower()):
            return "anthropic"
        return "other"

    def _get_estimator(self, model: str) -> ApproximateTokenCounter:
        family = self.detect_model_family(model)
        with self._lock:
            estimator = self._estimators.get(family)
            if estimator is None:
                estimator = ApproximateTokenCounter(self.ESTIMATE_RATIOS[family])
                self._estimators[family] = estimator
            return estimator

    def count_tokens(self, text: str, model: Optional[str] = None) -> TokenCount:
        """
        Count tokens in text.

        Args:
            text: Text to count
            model: Model id (uses default if not specified)
        """
        if not text:
            return TokenCount(0, False)
        model = model or self.default_model

        cache_key = (model, text)
        with self._lock:
            cached = self._cache.get(cache_key)
            if cached is not None:
                self._cache.move_to_end(cache_key)
                return cached

        exact = self.provider.count(text, model)
        if exact is not None:
            result = TokenCount(exact, False)
        else:
            result = TokenCount(self._get_estimator(model).count_tokens(text), True)

        with self._lock:
            self._cache[cache_key] = result
            while len(self._cache) > self._max_cache_entries:
                self._cache.popitem(last=False)
        return result

    def count(self, text: str, model: Optional[str] = None) -> int:
        return self.count_tokens(text, model).count

    def count_messages(self, messages: List[BaseMessage], model: Optional[str] = None) -> TokenCount:
        """
        Count tokens in a list of LangChain messages.

        Non-string content (multimodal parts) only counts its text parts.
        """
        total = 0
        estimated = False
        for msg in messages:
            if isinstance(msg.content, str):
                text = msg.content
            else:
                text = "".join(
                    part.get("text", "") if isinstance(part, dict) else str(part)
                    for part in msg.content
                )
            result = self.count_tokens(text, model)
            total += result.count
            estimated = estimated or result.is_estimated
        return TokenCount(total, estimated)

    def clear_cache(self) -> None:
        """Clear loaded counters and cached counts."""
        with self._lock:
            self._cache.clear()
            self._estimators.clear()
        self.provider.clear_cache()


__all__ = [
    "TokenCount",
    "TokenCounter",
    "TikTokenCounter",
    "ApproximateTokenCounter",
    "TokenizerProvider",
    "TikTokenProvider",
    "TokenizerService",
]
