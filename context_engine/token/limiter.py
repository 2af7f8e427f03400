"""
Token Limiter

Fits session history into a token budget.

Policy:
- budget = max_context_tokens - preset_tokens
- the newest ``protected_recent_count`` history messages are always kept
- older history is kept newest-first while it fits, so the oldest
  messages are the first to go
- non-history messages (presets, injections) are never dropped
- if the protected window alone exceeds the budget this is reported in the
  stats instead of dropping protected messages
"""

import logging
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from config import ContextManagementConfig
from context_engine.errors import TokenBudgetExceeded
from context_engine.models import ProcessableMessage
from context_engine.token.token_counter import TokenCount, TokenizerService

logger = logging.getLogger(__name__)

TRUNCATION_SUFFIX = "\n...(truncated)"

AttachmentCostFn = Callable[[ProcessableMessage], int]


class TokenLimiterStats(BaseModel):
    """Outcome of one limiting pass."""
    original_history_count: int = 0
    final_history_count: int = 0
    truncated_count: int = 0
    preset_tokens: int = 0
    history_tokens: int = 0
    protected_tokens: int = 0
    budget: int = 0
    protected_overflow: bool = False
    is_estimated: bool = False
    dropped_source_ids: List[str] = Field(default_factory=list)


class TokenLimiter:
    """
    Applies the history budget to a message list.

    Args:
        tokenizer: Shared tokenizer service
        attachment_cost: Optional callback returning the token cost of a
            message's unresolved attachments
    """

    def __init__(
        self,
        tokenizer: TokenizerService,
        attachment_cost: Optional[AttachmentCostFn] = None,
    ):
        self.tokenizer = tokenizer
        self.attachment_cost = attachment_cost

    def message_cost(self, message: ProcessableMessage, model_id: Optional[str] = None) -> TokenCount:
        result = self.tokenizer.count_tokens(message.content, model_id)
        if message.attachments and self.attachment_cost is not None:
            # Attachment costs are always estimates
            return TokenCount(result.count + self.attachment_cost(message), True)
        return result

    def limit(
        self,
        messages: List[ProcessableMessage],
        config: ContextManagementConfig,
        preset_tokens: int = 0,
        model_id: Optional[str] = None,
    ) -> "tuple[List[ProcessableMessage], TokenLimiterStats]":
        """
        Apply the budget.

        Returns:
            (kept messages in original order, stats)

        Raises:
            TokenBudgetExceeded: the kept non-protected history exceeds the budget
        """
        budget = max(0, config.max_context_tokens - preset_tokens)
        history_positions = [i for i, m in enumerate(messages) if m.is_history]

        costs: Dict[int, int] = {}
        estimated = False
        for i in history_positions:
            cost = self.message_cost(messages[i], model_id)
            costs[i] = cost.count
            estimated = estimated or cost.is_estimated
            messages[i].token_count = cost.count

        protected_count = min(config.protected_recent_count, len(history_positions))
        protected = history_positions[len(history_positions) - protected_count:]
        older = history_positions[:len(history_positions) - protected_count]
        protected_tokens = sum(costs[i] for i in protected)

        stats = TokenLimiterStats(
            original_history_count=len(history_positions),
            preset_tokens=preset_tokens,
            protected_tokens=protected_tokens,
            budget=budget,
            is_estimated=estimated,
        )

        remaining = budget - protected_tokens
        kept = set(protected)
        replacements: Dict[int, ProcessableMessage] = {}

        for i in reversed(older):
            if costs[i] <= remaining:
                kept.add(i)
                remaining -= costs[i]
                continue
            truncated = self._truncate(messages[i], config.retained_characters, remaining, model_id)
            if truncated is not None:
                kept.add(i)
                replacements[i] = truncated
                costs[i] = truncated.token_count or 0
                remaining -= costs[i]
                stats.truncated_count += 1
            break

        if protected_tokens > budget:
            stats.protected_overflow = True
            logger.warning(
                f"[TokenLimiter] Protected window uses {protected_tokens} tokens, "
                f"budget is {budget}; keeping {protected_count} protected message(s) only"
            )

        result: List[ProcessableMessage] = []
        for i, message in enumerate(messages):
            if not message.is_history:
                result.append(message)
            elif i in kept:
                result.append(replacements.get(i, message))
            elif message.source_id:
                stats.dropped_source_ids.append(message.source_id)

        kept_older_tokens = sum(costs[i] for i in older if i in kept)
        stats.final_history_count = len(kept)
        stats.history_tokens = kept_older_tokens + protected_tokens
        self._verify(kept_older_tokens, protected_tokens, budget)

        if len(kept) < len(history_positions):
            logger.info(
                f"[TokenLimiter] Kept {len(kept)}/{len(history_positions)} history message(s), "
                f"{stats.history_tokens} tokens, budget {budget}"
            )
        return result, stats

    def _truncate(
        self,
        message: ProcessableMessage,
        retained_characters: int,
        remaining: int,
        model_id: Optional[str],
    ) -> Optional[ProcessableMessage]:
        if retained_characters <= 0 or remaining <= 0 or len(message.content) <= retained_characters:
            return None
        truncated = message.model_copy(deep=True)
        truncated.content = message.content[:retained_characters] + TRUNCATION_SUFFIX
        truncated.is_truncated = True
        truncated.token_count = self.message_cost(truncated, model_id).count
        if truncated.token_count > remaining:
            return None
        return truncated

    @staticmethod
    def _verify(kept_older_tokens: int, protected_tokens: int, budget: int) -> None:
        allowed = max(0, budget - protected_tokens)
        if kept_older_tokens > allowed:
            logger.critical(
                f"[TokenLimiter] Budget invariant violated: {kept_older_tokens} > {allowed}"
            )
            raise TokenBudgetExceeded(allowed, kept_older_tokens)


__all__ = [
    "TRUNCATION_SUFFIX",
    "TokenLimiterStats",
    "TokenLimiter",
]
