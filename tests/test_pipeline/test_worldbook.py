"""
世界书处理器测试
"""

from typing import List, Optional

import pytest

from context_engine.models import (
    AgentConfig,
    CharacterFilter,
    MessageRole,
    MessageSourceType,
    ProcessableMessage,
    UserProfile,
    Worldbook,
    WorldbookEntry,
    WorldbookLogic,
    WorldbookPosition,
)
from context_engine.pipeline import PipelineContext
from context_engine.pipeline.processors import WorldbookProcessor
from context_engine.pipeline.processors.worldbook_processor import match_key


class CharTokenizer:
    """按字符数计 token"""

    def count(self, text: str, model: Optional[str] = None) -> int:
        return len(text)


class FixedRandom:
    """固定返回值的随机源"""

    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


def history(*contents: str) -> List[ProcessableMessage]:
    roles = [MessageRole.USER, MessageRole.ASSISTANT]
    return [ProcessableMessage(role=roles[i % 2], content=c) for i, c in enumerate(contents)]


def preset(content: str, role: MessageRole = MessageRole.SYSTEM) -> ProcessableMessage:
    return ProcessableMessage(role=role, content=content, source_type=MessageSourceType.AGENT_PRESET)


def entry(uid: str, content: str, **kwargs) -> WorldbookEntry:
    return WorldbookEntry(uid=uid, content=content, **kwargs)


@pytest.fixture
def run(session, config):
    async def _run(
        entries: List[WorldbookEntry],
        messages: List[ProcessableMessage],
        rng_value: float = 0.0,
        **agent_kwargs,
    ) -> PipelineContext:
        agent = AgentConfig(worldbooks=[Worldbook(name="lore", entries=entries)], **agent_kwargs)
        context = PipelineContext(session=session, agent_config=agent, config=config, messages=list(messages))
        await WorldbookProcessor(CharTokenizer(), FixedRandom(rng_value)).execute(context)
        return context

    return _run


def activated_uids(context: PipelineContext) -> List[str]:
    return [m.entry.uid for m in context.shared_data.get("activated_worldbook_entries", [])]


class TestKeyMatching:
    """测试关键词匹配"""

    def test_case_insensitive_by_default(self):
        """测试默认不区分大小写"""
        assert match_key("\x01I met ALICE", "alice", entry("1", ""))
        assert not match_key("\x01I met ALICE", "alice", entry("1", "", case_sensitive=True))

    def test_whole_words(self):
        """测试整词匹配只作用于单个词"""
        e = entry("1", "", match_whole_words=True)
        assert not match_key("\x01catalog", "cat", e)
        assert match_key("\x01a cat here", "cat", e)
        assert match_key("\x01the black cat", "black cat", e)

    def test_regex_key(self):
        """测试 /regex/flags 形式的关键词"""
        assert match_key("\x01Dragon sighted", "/drag(on|ons)/i", entry("1", ""))
        assert not match_key("\x01Dragon sighted", "/drag(on|ons)/", entry("1", ""))

    def test_invalid_regex_key(self):
        """测试非法正则关键词视为不匹配"""
        assert not match_key("\x01(((", "/(((/", entry("1", ""))

    def test_empty_key(self):
        assert not match_key("\x01text", "", entry("1", ""))


class TestActivation:
    """测试条目激活"""

    @pytest.mark.asyncio
    async def test_keyword_activation(self, run):
        """测试关键词命中时激活并记录命中关键词"""
        context = await run(
            [entry("1", "Alice is a knight.", key=["alice"]), entry("2", "Bob lore", key=["bob"])],
            history("Tell me about Alice"),
        )

        matched = context.shared_data["activated_worldbook_entries"]
        assert [m.entry.uid for m in matched] == ["1"]
        assert matched[0].matched_keys == ["alice"]
        assert matched[0].worldbook_name == "lore"
        assert matched[0].tokens == len("Alice is a knight.")

    @pytest.mark.asyncio
    async def test_constant_and_disabled(self, run):
        """测试常驻条目总是激活，禁用条目从不激活"""
        context = await run(
            [entry("1", "always", constant=True), entry("2", "never", constant=True, disable=True)],
            history("hello"),
        )
        assert activated_uids(context) == ["1"]

    @pytest.mark.asyncio
    async def test_scan_depth(self, run):
        """测试只扫描最近 scan_depth 条历史"""
        messages = history("dragon here", "ok", "anything else")
        context = await run([entry("1", "lore", key=["dragon"])], messages)
        assert activated_uids(context) == []

        context = await run([entry("1", "lore", key=["dragon"], scan_depth=3)], messages)
        assert activated_uids(context) == ["1"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "logic, secondary, expected",
        [
            (WorldbookLogic.AND_ANY, ["castle", "moat"], True),
            (WorldbookLogic.AND_ALL, ["castle", "moat"], False),
            (WorldbookLogic.NOT_ANY, ["moat"], True),
            (WorldbookLogic.NOT_ALL, ["castle"], False),
        ],
    )
    async def test_selective_logic(self, run, logic, secondary, expected):
        """测试次要关键词逻辑"""
        context = await run(
            [entry("1", "lore", key=["king"], selective=True, keysecondary=secondary, selective_logic=logic)],
            history("the king in his castle"),
        )
        assert (activated_uids(context) == ["1"]) is expected

    @pytest.mark.asyncio
    async def test_delay(self, run):
        """测试历史不足 delay 条时不激活"""
        context = await run([entry("1", "lore", key=["king"], delay=3)], history("king", "yes"))
        assert activated_uids(context) == []

    @pytest.mark.asyncio
    async def test_probability(self, run):
        """测试概率掷骰"""
        entries = [entry("1", "lore", key=["king"], use_probability=True, probability=30)]
        assert activated_uids(await run(entries, history("king"), rng_value=0.5)) == []
        assert activated_uids(await run(entries, history("king"), rng_value=0.1)) == ["1"]

    @pytest.mark.asyncio
    async def test_agent_fields_scanned(self, run):
        """测试按需扫描角色描述和用户档案"""
        entries = [
            entry("1", "desc lore", key=["paladin"], match_character_description=True),
            entry("2", "persona lore", key=["archer"], match_persona_description=True),
            entry("3", "plain", key=["paladin"]),
        ]
        context = await run(entries, history("hello"), description="A paladin of light")
        assert activated_uids(context) == ["1"]

    @pytest.mark.asyncio
    async def test_character_filter(self, run):
        """测试智能体过滤的包含和排除模式"""
        entries = [
            entry("1", "a", constant=True, character_filter=CharacterFilter(names=["Knight"])),
            entry("2", "b", constant=True, character_filter=CharacterFilter(tags=["fantasy"], is_exclude=True)),
            entry("3", "c", constant=True, character_filter=CharacterFilter(names=["Other"])),
        ]
        context = await run(entries, history("hi"), name="Knight", tags=["fantasy"])
        assert activated_uids(context) == ["1"]

    @pytest.mark.asyncio
    async def test_disabled_by_config(self, run, config):
        """测试全局关闭世界书"""
        config.worldbook.enabled = False
        context = await run([entry("1", "always", constant=True)], history("hi"))
        assert "activated_worldbook_entries" not in context.shared_data
        assert len(context.messages) == 1

    @pytest.mark.asyncio
    async def test_agent_settings_override(self, run):
        """测试智能体级世界书设置覆盖全局设置"""
        context = await run(
            [entry("1", "always", constant=True)],
            history("hi"),
            worldbook_settings={"enabled": False},
        )
        assert activated_uids(context) == []


class TestRecursionAndBudget:
    """测试递归扫描和预算"""

    @pytest.mark.asyncio
    async def test_recursive_activation(self, run):
        """测试已激活条目的内容可以触发其他条目"""
        entries = [
            entry("1", "The king owns a sword.", key=["king"]),
            entry("2", "The sword is cursed.", key=["sword"]),
        ]
        context = await run(entries, history("the king"))
        assert activated_uids(context) == ["1", "2"]

    @pytest.mark.asyncio
    async def test_prevent_recursion(self, run):
        """测试 prevent_recursion 的内容不参与递归"""
        entries = [
            entry("1", "The king owns a sword.", key=["king"], prevent_recursion=True),
            entry("2", "The sword is cursed.", key=["sword"]),
        ]
        context = await run(entries, history("the king"))
        assert activated_uids(context) == ["1"]

    @pytest.mark.asyncio
    async def test_recursion_disabled_by_config(self, run, config):
        """测试全局关闭递归"""
        config.worldbook.disable_recursion = True
        entries = [
            entry("1", "The king owns a sword.", key=["king"]),
            entry("2", "The sword is cursed.", key=["sword"]),
        ]
        context = await run(entries, history("the king"))
        assert activated_uids(context) == ["1"]

    @pytest.mark.asyncio
    async def test_delay_until_recursion(self, run):
        """测试延迟到递归阶段的条目不在首轮激活"""
        entries = [
            entry("1", "sword lore", key=["king"]),
            entry("2", "late", key=["king"], delay_until_recursion=True),
        ]
        context = await run(entries, history("the king"))
        assert activated_uids(context) == ["1", "2"]

        context = await run([entries[1]], history("the king"))
        assert activated_uids(context) == []

    @pytest.mark.asyncio
    async def test_budget(self, run, config):
        """测试超出预算的条目被跳过，ignore_budget 的条目不受限"""
        config.worldbook.max_tokens = 10
        entries = [
            entry("1", "x" * 8, constant=True),
            entry("2", "y" * 8, constant=True),
            entry("3", "z" * 8, constant=True, ignore_budget=True),
        ]
        context = await run(entries, history("hi"))
        assert activated_uids(context) == ["1", "3"]


class TestGroups:
    """测试包含组"""

    @pytest.mark.asyncio
    async def test_group_override_wins(self, run):
        """测试组内 group_override 的条目胜出"""
        entries = [
            entry("1", "a", constant=True, group="weather"),
            entry("2", "b", constant=True, group="weather", group_override=True),
            entry("3", "c", constant=True),
        ]
        context = await run(entries, history("hi"))
        assert sorted(activated_uids(context)) == ["2", "3"]

    @pytest.mark.asyncio
    async def test_weighted_pick(self, run):
        """测试按权重随机选择"""
        entries = [
            entry("1", "a", constant=True, group="weather", group_weight=10),
            entry("2", "b", constant=True, group="weather", group_weight=90),
        ]
        assert activated_uids(await run(entries, history("hi"), rng_value=0.05)) == ["1"]
        assert activated_uids(await run(entries, history("hi"), rng_value=0.5)) == ["2"]

    @pytest.mark.asyncio
    async def test_active_group_not_reopened(self, run):
        """测试组已有激活条目时，递归阶段不再激活同组条目"""
        entries = [
            entry("1", "mentions rain", key=["hi"], group="weather"),
            entry("2", "b", key=["rain"], group="weather"),
        ]
        context = await run(entries, history("hi"))
        assert activated_uids(context) == ["1"]


class TestInjection:
    """测试条目插入位置"""

    @pytest.mark.asyncio
    async def test_positions(self, run):
        """测试角色前后、历史前后和深度插入"""
        entries = [
            entry("before", "B", constant=True, position=WorldbookPosition.BEFORE_CHAR),
            entry("after", "A", constant=True, position=WorldbookPosition.AFTER_CHAR),
            entry("an", "N", constant=True, position=WorldbookPosition.BEFORE_AN),
            entry("depth", "D", constant=True, position=WorldbookPosition.DEPTH, depth=1,
                  role=MessageRole.USER),
            entry("outlet", "O", constant=True, position=WorldbookPosition.OUTLET),
        ]
        messages = [preset("char")] + history("h1", "h2")
        context = await run(entries, messages)

        assert [m.content for m in context.messages] == ["B", "char", "A", "N", "h1", "D", "h2"]
        depth_message = context.messages[5]
        assert depth_message.role == MessageRole.USER
        assert depth_message.source_type == MessageSourceType.DEPTH_INJECTION
        assert depth_message.source_id == "depth"
        assert context.messages[0].source_type == MessageSourceType.ANCHOR_INJECTION
        assert "outlet" in activated_uids(context)

    @pytest.mark.asyncio
    async def test_order(self, run):
        """测试同一位置按 order 从大到小依次插入"""
        entries = [
            entry("low", "L", constant=True, order=10, position=WorldbookPosition.BEFORE_AN),
            entry("high", "H", constant=True, order=200, position=WorldbookPosition.BEFORE_AN),
        ]
        context = await run(entries, history("h1"))
        assert [m.content for m in context.messages] == ["H", "L", "h1"]

    @pytest.mark.asyncio
    async def test_no_history(self, run):
        """测试没有历史时深度插入追加到末尾"""
        entries = [entry("d", "D", constant=True, position=WorldbookPosition.DEPTH, depth=2)]
        context = await run(entries, [preset("char")])
        assert [m.content for m in context.messages] == ["char", "D"]

    @pytest.mark.asyncio
    async def test_persona_scan(self, session, config):
        """测试扫描用户档案"""
        agent = AgentConfig(worldbooks=[Worldbook(entries=[
            entry("1", "archer lore", key=["archer"], match_persona_description=True),
        ])])
        context = PipelineContext(
            session=session,
            agent_config=agent,
            config=config,
            user_profile=UserProfile(content="An archer from the north"),
            messages=history("hello"),
        )
        await WorldbookProcessor(CharTokenizer()).execute(context)
        assert activated_uids(context) == ["1"]


class TestWorldbookModel:
    """测试世界书模型"""

    def test_entries_from_mapping(self):
        """测试 {uid: entry} 形式的导出和逗号分隔的关键词"""
        book = Worldbook.model_validate({
            "name": "exported",
            "entries": {
                "0": {"key": "alice, Alice Smith", "content": "a"},
                "7": {"uid": 7, "key": ["bob"], "content": "b"},
            },
        })
        assert [e.uid for e in book.entries] == ["0", "7"]
        assert book.entries[0].key == ["alice", "Alice Smith"]
        assert book.entries[1].display_name == "bob"
