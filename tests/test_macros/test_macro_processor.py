"""
宏引擎测试
"""

import random
from datetime import datetime

import pytest

from context_engine.macros import (
    MacroContext,
    MacroDefinition,
    MacroPhase,
    MacroProcessor,
    MacroRegistry,
    build_macro_context,
    create_default_registry,
    extract_macros,
    validate_macro,
)
from context_engine.models import AgentConfig, MessageNode, MessageRole, UserProfile


@pytest.fixture
def processor():
    return MacroProcessor()


@pytest.fixture
def context():
    return MacroContext(
        user_name="Alice",
        char_name="Bot",
        timestamp=datetime(2024, 3, 5, 14, 7, 9),
        rng=random.Random(42),
    )


class TestBasicSubstitution:
    """测试基础宏替换"""

    def test_plain_text_untouched(self, processor, context):
        """测试无宏文本原样返回"""
        result = processor.process("hello world", context)
        assert result.output == "hello world"
        assert result.has_macros is False

    def test_user_and_char(self, processor, context):
        """测试用户名和角色名"""
        assert processor.process_text("{{user}} meets {{char}}", context) == "Alice meets Bot"

    def test_newline(self, processor, context):
        """测试换行宏"""
        assert processor.process_text("a{{newline}}b", context) == "a\nb"

    def test_unknown_macro_kept(self, processor, context):
        """测试未知宏默认保留"""
        result = processor.process("x {{nosuch}} y", context)
        assert result.output == "x {{nosuch}} y"
        assert result.unknown_macros == ["nosuch"]

    def test_unknown_macro_flagged(self, context):
        """测试 flag 策略标记未知宏"""
        processor = MacroProcessor(unknown_macro_policy="flag")
        assert processor.process_text("{{nosuch}}", context) == "[unknown macro: nosuch]"

    def test_invalid_policy(self):
        """测试非法未知宏策略"""
        with pytest.raises(ValueError):
            MacroProcessor(unknown_macro_policy="drop")


class TestVariableMacros:
    """测试变量宏"""

    def test_set_add_get_in_one_text(self, processor, context):
        """测试同一文本中先写后读"""
        text = "{{setvar::x::40}}{{addvar::x::5}}{{getvar::x}}"
        assert processor.process_text(text, context) == "45"
        assert context.variables["x"] == 45

    def test_read_before_write_sees_write(self, processor, context):
        """测试读取位置在写入之前也能看到写入结果"""
        assert processor.process_text("{{getvar::hp}}{{setvar::hp::10}}", context) == "10"

    def test_inc_dec(self, processor, context):
        """测试自增自减"""
        processor.process_text("{{incvar::n}}{{incvar::n}}{{decvar::n}}", context)
        assert context.variables["n"] == 1

    def test_nested_path(self, processor, context):
        """测试嵌套路径"""
        text = "{{setvar::player.hp::7}}{{getvar::player.hp}}"
        assert processor.process_text(text, context) == "7"
        assert context.variables == {"player": {"hp": 7}}

    def test_global_scope_separate(self, processor, context):
        """测试全局变量与会话变量隔离"""
        processor.process_text("{{setglobalvar::x::1}}{{setvar::x::2}}", context)
        assert context.global_variables["x"] == 1
        assert context.variables["x"] == 2

    def test_missing_variable_empty(self, processor, context):
        """测试未定义变量输出空字符串"""
        assert processor.process_text("[{{getvar::nothing}}]", context) == "[]"


class TestFunctionMacros:
    """测试函数宏"""

    def test_wrong_arg_count_is_isolated(self, processor, context):
        """测试参数错误只影响单个宏"""
        result = processor.process("{{setvar::x}} {{user}}", context)
        assert result.output.endswith("Alice")
        assert "[macro error: setvar" in result.output
        assert len(result.errors) == 1

    def test_trim(self, processor, context):
        """测试 trim 移除周围空白"""
        assert processor.process_text("a   {{trim}}   b", context) == "ab"

    def test_pick_is_deterministic_with_seed(self, processor):
        """测试固定随机种子"""
        first = processor.process_text("{{pick::a::b::c}}", MacroContext(rng=random.Random(1)))
        second = processor.process_text("{{pick::a::b::c}}", MacroContext(rng=random.Random(1)))
        assert first == second
        assert first in ("a", "b", "c")

    def test_repeat(self, processor, context):
        """测试重复"""
        assert processor.process_text("{{repeat::3::ha}}", context) == "hahaha"


class TestDateTimeMacros:
    """测试时间宏"""

    def test_date_and_time(self, processor, context):
        """测试日期和时间使用上下文时间"""
        assert processor.process_text("{{date}}", context) == "2024-03-05"
        assert processor.process_text("{{time}}", context) == "14:07"
        assert processor.process_text("{{datetime}}", context) == "2024-03-05 14:07:09"


class TestCustomRegistry:
    """测试自定义宏注册"""

    def test_register_custom_macro(self, context):
        """测试注册自定义宏"""
        registry = MacroRegistry()
        registry.register(MacroDefinition(
            name="shout",
            phase=MacroPhase.SUBSTITUTE,
            execute=lambda ctx, args: args[0].upper(),
            arg_count=1,
        ))
        processor = MacroProcessor(registry=registry)

        assert processor.process_text("{{shout::hey}}", context) == "HEY"

    def test_default_registry_has_core_macros(self):
        """测试默认注册表包含核心宏"""
        registry = create_default_registry()
        for name in ("user", "char", "setvar", "getvar", "date", "trim"):
            assert registry.has(name)


class TestHelpers:
    """测试辅助函数"""

    def test_extract_macros(self):
        """测试提取宏"""
        found = extract_macros("{{user}} and {{setvar::x::1}}")
        assert [m["name"] for m in found] == ["user", "setvar"]
        assert found[1]["args"] == ["x", "1"]

    def test_validate_macro(self):
        """测试校验未知宏"""
        report = validate_macro("{{user}} {{bogus}}")
        assert "bogus" in report["unknown"]

    def test_build_macro_context_from_history(self):
        """测试从历史构建宏上下文"""
        agent = AgentConfig(name="Bot", description="helper")
        profile = UserProfile(name="Alice", content="likes tea")
        history = [
            MessageNode(role=MessageRole.USER, content="hello"),
            MessageNode(role=MessageRole.ASSISTANT, content="hi there"),
        ]

        ctx = build_macro_context(agent=agent, user_profile=profile, history=history)

        assert ctx.user_name == "Alice"
        assert ctx.char_name == "Bot"
        assert ctx.user_profile == "likes tea"
        assert ctx.last_message == "hi there"
        assert ctx.last_user_message == "hello"
        assert ctx.last_char_message == "hi there"
