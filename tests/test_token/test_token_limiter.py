"""
Token 计数与限制器测试
"""

from typing import Optional

import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from config import ContextManagementConfig
from context_engine.errors import TokenBudgetExceeded
from context_engine.models import Attachment, MessageRole, MessageSourceType, ProcessableMessage
from context_engine.token import (
    TRUNCATION_SUFFIX,
    ApproximateTokenCounter,
    TokenizerProvider,
    TokenizerService,
    TokenLimiter,
)


def words(n: int) -> str:
    return " ".join(["w"] * n)


def history(count: int, tokens_each: int):
    return [
        ProcessableMessage(
            role=MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT,
            content=words(tokens_each),
            source_id=f"n{i}",
        )
        for i in range(count)
    ]


class CountingProvider(TokenizerProvider):
    def __init__(self):
        self.calls = 0

    def count(self, text: str, model_id: str) -> Optional[int]:
        self.calls += 1
        if model_id.startswith("exact"):
            return len(text.split())
        return None


class TestTokenizerService:
    """测试分词服务"""

    def test_empty_text(self, tokenizer):
        """测试空文本"""
        result = tokenizer.count_tokens("")
        assert result.count == 0
        assert result.is_estimated is False

    def test_exact_count(self, tokenizer):
        """测试精确计数"""
        result = tokenizer.count_tokens("a b c")
        assert result == (3, False)

    def test_fallback_estimate_is_flagged(self):
        """测试无分词器时使用估算并标记"""
        service = TokenizerService(provider=CountingProvider())
        result = service.count_tokens("abcdefgh", "unknown-model")
        assert result.is_estimated is True
        assert result.count == 2

    def test_estimate_uses_model_family(self):
        """测试按模型家族估算"""
        service = TokenizerService(provider=CountingProvider())
        assert service.count("a" * 35, "claude-3") == 10
        assert service.count("a" * 40, "other-model") == 10

    def test_cache_reuses_counts(self):
        """测试相同文本只计算一次"""
        provider = CountingProvider()
        service = TokenizerService(provider=provider)

        service.count("same text", "exact-1")
        service.count("same text", "exact-1")

        assert provider.calls == 1

    def test_cache_evicts_least_recently_used(self):
        """测试缓存满时只淘汰最久未使用的条目"""
        provider = CountingProvider()
        service = TokenizerService(provider=provider, max_cache_entries=2)

        service.count("one", "exact-1")
        service.count("two", "exact-1")
        service.count("one", "exact-1")
        service.count("three", "exact-1")
        assert provider.calls == 3

        service.count("one", "exact-1")
        assert provider.calls == 3
        service.count("two", "exact-1")
        assert provider.calls == 4

    def test_count_messages(self):
        """测试统计 LangChain 消息，多模态内容只计文本块"""
        service = TokenizerService(provider=CountingProvider())
        messages = [
            SystemMessage(content="be brief"),
            HumanMessage(content=[
                {"type": "text", "text": "look at"},
                {"type": "image", "source_type": "base64", "data": "eA==", "mime_type": "image/png"},
            ]),
        ]

        assert service.count_messages(messages, "exact-1") == (4, False)
        assert service.count_messages(messages, "unknown-model").is_estimated is True

    def test_cjk_estimate(self):
        """测试中日韩字符估算"""
        counter = ApproximateTokenCounter()
        assert counter.count_tokens("你好世") == 2


class TestTokenLimiter:
    """测试 Token 限制器"""

    def test_everything_fits(self, tokenizer):
        """测试预算充足时全部保留"""
        limiter = TokenLimiter(tokenizer)
        messages = history(5, 10)

        kept, stats = limiter.limit(messages, ContextManagementConfig(max_context_tokens=1000))

        assert len(kept) == 5
        assert stats.final_history_count == 5
        assert stats.history_tokens == 50
        assert all(m.token_count == 10 for m in kept)

    def test_protected_window_overflow(self, tokenizer):
        """测试保护窗口本身超出预算时只保留保护消息并标记"""
        limiter = TokenLimiter(tokenizer)
        config = ContextManagementConfig(max_context_tokens=500, protected_recent_count=10)

        kept, stats = limiter.limit(history(20, 60), config)

        assert [m.source_id for m in kept] == [f"n{i}" for i in range(10, 20)]
        assert stats.protected_overflow is True
        assert stats.protected_tokens == 600
        assert len(stats.dropped_source_ids) == 10

    def test_older_messages_fill_remaining_budget(self, tokenizer):
        """测试保护窗口之外按从新到旧填充剩余预算"""
        limiter = TokenLimiter(tokenizer)
        config = ContextManagementConfig(max_context_tokens=500, protected_recent_count=10)

        kept, stats = limiter.limit(history(20, 40), config)

        assert [m.source_id for m in kept] == [f"n{i}" for i in range(8, 20)]
        assert stats.protected_overflow is False
        assert stats.history_tokens == 480
        assert stats.dropped_source_ids == [f"n{i}" for i in range(8)]

    def test_preset_tokens_reduce_budget(self, tokenizer):
        """测试预设消息占用预算"""
        limiter = TokenLimiter(tokenizer)
        config = ContextManagementConfig(max_context_tokens=100, protected_recent_count=0)

        kept, stats = limiter.limit(history(10, 10), config, preset_tokens=50)

        assert stats.budget == 50
        assert len(kept) == 5
        assert [m.source_id for m in kept] == [f"n{i}" for i in range(5, 10)]

    def test_non_history_messages_never_dropped(self, tokenizer):
        """测试非历史消息不参与裁剪"""
        limiter = TokenLimiter(tokenizer)
        preset = ProcessableMessage(
            role=MessageRole.SYSTEM,
            content=words(1000),
            source_type=MessageSourceType.AGENT_PRESET,
        )
        messages = [preset] + history(4, 10)
        config = ContextManagementConfig(max_context_tokens=25, protected_recent_count=1)

        kept, stats = limiter.limit(messages, config)

        assert kept[0] is preset
        assert [m.source_id for m in kept[1:]] == ["n2", "n3"]

    def test_truncation_keeps_prefix(self, tokenizer):
        """测试截断保留开头字符"""
        limiter = TokenLimiter(tokenizer)
        messages = [
            ProcessableMessage(role=MessageRole.USER, content="alpha beta gamma delta epsilon", source_id="old"),
            ProcessableMessage(role=MessageRole.USER, content="new", source_id="new"),
        ]
        config = ContextManagementConfig(max_context_tokens=4, protected_recent_count=1, retained_characters=10)

        kept, stats = limiter.limit(messages, config)

        assert kept[0].content == "alpha beta" + TRUNCATION_SUFFIX
        assert kept[0].is_truncated is True
        assert stats.truncated_count == 1
        assert messages[0].content == "alpha beta gamma delta epsilon"

    def test_truncation_disabled_drops(self, tokenizer):
        """测试未配置截断时直接丢弃"""
        limiter = TokenLimiter(tokenizer)
        messages = history(3, 10)
        config = ContextManagementConfig(max_context_tokens=15, protected_recent_count=1)

        kept, stats = limiter.limit(messages, config)

        assert [m.source_id for m in kept] == ["n2"]
        assert stats.truncated_count == 0

    def test_attachment_cost_counts(self, tokenizer):
        """测试附件估算 token 计入成本"""
        limiter = TokenLimiter(tokenizer, attachment_cost=lambda m: 100 * len(m.attachments))
        message = ProcessableMessage(
            role=MessageRole.USER,
            content="look",
            attachments=[Attachment(name="a.png")],
        )

        cost = limiter.message_cost(message)

        assert cost.count == 101
        assert cost.is_estimated is True

    def test_verify_raises_on_violation(self):
        """测试预算不变量被破坏时抛出异常"""
        with pytest.raises(TokenBudgetExceeded):
            TokenLimiter._verify(kept_older_tokens=10, protected_tokens=5, budget=12)
