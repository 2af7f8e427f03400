"""
预设消息注入测试
"""

import pytest

from context_engine.models import (
    AgentConfig,
    InjectionStrategy,
    MessageRole,
    MessageSourceType,
    ModelMatch,
    PresetMessage,
    ProcessableMessage,
    UserProfile,
)
from context_engine.pipeline import PipelineContext
from context_engine.pipeline.processors import (
    ANCHOR_CHAT_HISTORY,
    ANCHOR_USER_PROFILE,
    AnchorDefinition,
    AnchorRegistry,
    InjectionAssembler,
    parse_depth_config,
    preset_matches_model,
)


def preset(content: str = "", role: str = "system", **kwargs) -> PresetMessage:
    return PresetMessage(role=MessageRole(role), content=content, **kwargs)


def history_anchor() -> PresetMessage:
    return PresetMessage(type=ANCHOR_CHAT_HISTORY)


def depth(content: str, value=None, config=None, order: int = 100) -> PresetMessage:
    return preset(
        content,
        role="user",
        injection_strategy=InjectionStrategy(depth=value, depth_config=config, order=order),
    )


def anchored(content: str, target: str, position: str = "after", order: int = 100) -> PresetMessage:
    return preset(
        content,
        injection_strategy=InjectionStrategy(anchor_target=target, anchor_position=position, order=order),
    )


@pytest.fixture
def run(session, config):
    async def _run(presets, history=("u1", "a1", "u2"), user_profile=None, registry=None):
        agent = AgentConfig(preset_messages=list(presets))
        context = PipelineContext(session=session, agent_config=agent, config=config, user_profile=user_profile)
        context.messages = [
            ProcessableMessage(role=MessageRole.USER if text.startswith("u") else MessageRole.ASSISTANT, content=text)
            for text in history
        ]
        await InjectionAssembler(anchor_registry=registry).execute(context)
        return context.messages

    return _run


def contents(messages):
    return [m.content for m in messages]


class TestParseDepthConfig:
    """测试深度配置解析"""

    def test_single_and_list(self):
        """测试单值与列表"""
        assert parse_depth_config("3", 10) == [3]
        assert parse_depth_config("3, 10, 15", 12) == [3, 10]

    def test_loop(self):
        """测试循环写法"""
        assert parse_depth_config("10~5", 22) == [10, 15, 20]
        assert parse_depth_config("10:5", 9) == []

    def test_dedupe_and_garbage(self):
        """测试去重并忽略非法片段"""
        assert parse_depth_config("2, 2, x, 1", 5) == [2, 1]


class TestModelMatch:
    """测试预设模型过滤"""

    def test_no_filter_matches(self):
        """测试未启用过滤时总是匹配"""
        assert preset_matches_model(preset("x"), None) is True
        assert preset_matches_model(preset("x", model_match=ModelMatch(enabled=False, patterns=["z"])), "a") is True

    def test_patterns(self):
        """测试去除 provider 前缀和路径后匹配"""
        only_claude = preset("x", model_match=ModelMatch(enabled=True, patterns=["^claude"]))

        assert preset_matches_model(only_claude, "anthropic:Claude-3-opus") is True
        assert preset_matches_model(only_claude, "openrouter/anthropic/claude-3") is True
        assert preset_matches_model(only_claude, "gpt-4o") is False
        assert preset_matches_model(only_claude, None) is False

    @pytest.mark.asyncio
    async def test_filtered_preset_is_skipped(self, run):
        """测试不匹配的预设不参与组装"""
        messages = await run([
            preset("S"),
            preset("gpt only", model_match=ModelMatch(enabled=True, patterns=["gpt"])),
            history_anchor(),
        ])
        assert contents(messages) == ["S", "u1", "a1", "u2"]


class TestSkeleton:
    """测试骨架与历史拼接"""

    @pytest.mark.asyncio
    async def test_history_at_anchor(self, run):
        """测试历史放在 chat_history 锚点处"""
        messages = await run([preset("S1"), history_anchor(), preset("S2")])

        assert contents(messages) == ["S1", "u1", "a1", "u2", "S2"]
        assert messages[0].source_type == MessageSourceType.AGENT_PRESET
        assert messages[0].source_index == 0

    @pytest.mark.asyncio
    async def test_history_appended_without_anchor(self, run):
        """测试没有 chat_history 锚点时历史放在骨架之后"""
        messages = await run([preset("S1"), anchored("X", ANCHOR_CHAT_HISTORY)])
        assert contents(messages) == ["S1", "u1", "a1", "u2", "X"]

    @pytest.mark.asyncio
    async def test_disabled_preset_skipped(self, run):
        """测试禁用预设不出现"""
        messages = await run([preset("off", is_enabled=False), history_anchor()])
        assert contents(messages) == ["u1", "a1", "u2"]

    @pytest.mark.asyncio
    async def test_macros_rendered(self, run):
        """测试预设中的宏被替换"""
        messages = await run([preset("Hi {{user}}"), history_anchor()], user_profile=UserProfile(name="Alice"))
        assert messages[0].content == "Hi Alice"


class TestDepthInjection:
    """测试深度注入"""

    @pytest.mark.asyncio
    async def test_depth_zero_and_one(self, run):
        """测试深度 0 在末尾、深度 1 在最后一条之前"""
        messages = await run([history_anchor(), depth("D0", 0), depth("D1", 1)])

        assert contents(messages) == ["u1", "a1", "D1", "u2", "D0"]
        assert messages[2].source_type == MessageSourceType.DEPTH_INJECTION

    @pytest.mark.asyncio
    async def test_depth_config_multiple_positions(self, run):
        """测试高级深度配置插入多个位置"""
        messages = await run([history_anchor(), depth("D", config="0, 2")])
        assert contents(messages) == ["u1", "D", "a1", "u2", "D"]

    @pytest.mark.asyncio
    async def test_same_depth_ordered(self, run):
        """测试同一深度按 order 排序"""
        messages = await run([history_anchor(), depth("late", 0, order=2), depth("early", 0, order=1)])
        assert contents(messages)[-2:] == ["early", "late"]


class TestAnchorInjection:
    """测试锚点注入"""

    @pytest.mark.asyncio
    async def test_before_and_after(self, run):
        """测试锚点前后注入并按 order 排序"""
        messages = await run([
            preset("S1"),
            history_anchor(),
            anchored("A2", ANCHOR_CHAT_HISTORY, order=2),
            anchored("A1", ANCHOR_CHAT_HISTORY, order=1),
            anchored("B", ANCHOR_CHAT_HISTORY, position="before"),
        ])

        assert contents(messages) == ["S1", "B", "u1", "a1", "u2", "A1", "A2"]
        assert messages[1].source_type == MessageSourceType.ANCHOR_INJECTION

    @pytest.mark.asyncio
    async def test_user_profile_fallback(self, run):
        """测试 user_profile 锚点内容为空时使用用户档案"""
        presets = [PresetMessage(type=ANCHOR_USER_PROFILE), history_anchor()]

        with_profile = await run(presets, user_profile=UserProfile(content="likes tea"))
        without_profile = await run(presets)

        assert contents(with_profile) == ["likes tea", "u1", "a1", "u2"]
        assert contents(without_profile) == ["u1", "a1", "u2"]

    @pytest.mark.asyncio
    async def test_custom_placeholder_anchor(self, run):
        """测试自定义锚点作为占位符"""
        registry = AnchorRegistry()
        registry.register(AnchorDefinition("world_info", "World info"))

        messages = await run(
            [PresetMessage(type="world_info"), history_anchor(), anchored("lore", "world_info")],
            registry=registry,
        )

        assert contents(messages) == ["lore", "u1", "a1", "u2"]

    def test_builtin_anchor_cannot_be_removed(self):
        """测试内置锚点不可删除"""
        with pytest.raises(ValueError):
            AnchorRegistry().unregister(ANCHOR_CHAT_HISTORY)
