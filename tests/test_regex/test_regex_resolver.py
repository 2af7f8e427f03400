"""
正则规则测试
"""

import pytest

from config import Config
from context_engine.errors import RegexError
from context_engine.macros import MacroContext, MacroProcessor
from context_engine.models import (
    AgentConfig,
    DepthRange,
    MessageRole,
    RegexApplyTo,
    RegexConfig,
    RegexPreset,
    RegexRule,
    RegexStage,
    SubstitutionMode,
    UserProfile,
)
from context_engine.regex import (
    RegexRuleResolver,
    apply_regex_rules,
    compile_js_regex,
    convert_sillytavern_script,
    filter_rules_for_message,
    parse_regex_literal,
    resolve_raw_rules,
)


def config_with(*rules: RegexRule, priority: int = 100) -> RegexConfig:
    return RegexConfig(presets=[RegexPreset(rules=list(rules), priority=priority)])


class TestPatternCompilation:
    """测试 JS 风格正则编译"""

    def test_literal_with_flags(self):
        """测试 /pattern/flags 写法"""
        assert parse_regex_literal("/abc/i") == ("abc", "i")
        assert parse_regex_literal("abc") == ("abc", "gm")

    def test_non_global_replaces_once(self):
        """测试无 g 标志只替换第一处"""
        rule = RegexRule(regex="a", replacement="b", flags="")
        assert apply_regex_rules("aaa", [rule]) == "baa"

    def test_case_insensitive_flag(self):
        """测试 i 标志"""
        compiled, is_global = compile_js_regex("/hello/gi", "")
        assert is_global is True
        assert compiled.search("HELLO")

    def test_named_groups(self):
        """测试命名分组与替换"""
        rule = RegexRule(regex=r"(?<word>\w+)!", replacement="<$<word>>")
        assert apply_regex_rules("hi!", [rule]) == "<hi>"

    def test_replacement_tokens(self):
        """测试 $1 / $& / $$"""
        rule = RegexRule(regex=r"(\d+)", replacement="[$1|$&|$$]")
        assert apply_regex_rules("n=42", [rule]) == "n=[42|42|$]"

    def test_trim_strings(self):
        """测试从捕获内容中移除字符串"""
        rule = RegexRule(regex=r"\*(.+?)\*", replacement="$1", trim_strings=["!"])
        assert apply_regex_rules("*wow!*", [rule]) == "wow"

    def test_invalid_pattern_is_skipped(self):
        """测试非法正则被跳过并记录"""
        errors = []
        rules = [RegexRule(regex="(unclosed", replacement=""), RegexRule(regex="x", replacement="y")]

        assert apply_regex_rules("xx", rules, errors=errors) == "yy"
        assert len(errors) == 1
        assert isinstance(errors[0], RegexError)


class TestRuleResolution:
    """测试规则解析与排序"""

    def test_order_by_priority_then_order(self):
        """测试按预设优先级、规则顺序排序"""
        late = RegexRule(name="late", regex="a", order=1)
        early = RegexRule(name="early", regex="a", order=0)
        first_preset = RegexRule(name="first", regex="a", order=5)

        rules = resolve_raw_rules(
            RegexStage.REQUEST,
            config_with(late, early, priority=100),
            config_with(first_preset, priority=10),
        )
        assert [r.name for r in rules] == ["first", "early", "late"]

    def test_disabled_and_stage_filtered(self):
        """测试禁用规则与阶段过滤"""
        render_only = RegexRule(name="render", regex="a", apply_to=RegexApplyTo(render=True, request=False))
        disabled = RegexRule(name="off", regex="a", enabled=False)
        both = RegexRule(name="both", regex="a")

        rules = resolve_raw_rules(RegexStage.REQUEST, config_with(render_only, disabled, both))
        assert [r.name for r in rules] == ["both"]

    def test_role_and_depth_filter(self):
        """测试角色与深度过滤"""
        rule = RegexRule(regex="a", target_roles=[MessageRole.USER], depth_range=DepthRange(min=0, max=2))

        assert filter_rules_for_message([rule], MessageRole.USER, 2) == [rule]
        assert filter_rules_for_message([rule], MessageRole.USER, 3) == []
        assert filter_rules_for_message([rule], MessageRole.ASSISTANT, 0) == []

    def test_depth_range_on_ten_messages(self):
        """测试深度 0-2 只影响最新三条消息"""
        rule = RegexRule(regex="x", replacement="y", depth_range=DepthRange(min=0, max=2))
        contents = ["x"] * 10

        results = []
        for position, content in enumerate(contents):
            depth = len(contents) - 1 - position
            results.append(apply_regex_rules(content, filter_rules_for_message([rule], MessageRole.USER, depth)))

        assert results == ["x"] * 7 + ["y"] * 3

    def test_resolver_merges_scopes_and_caches(self):
        """测试合并全局/用户/智能体规则并缓存"""
        agent = AgentConfig(regex_config=config_with(RegexRule(name="agent", regex="a")))
        profile = UserProfile(regex_config=config_with(RegexRule(name="user", regex="a")))
        resolver = RegexRuleResolver(global_config=config_with(RegexRule(name="global", regex="a")))

        rules = resolver.get_rules(RegexStage.REQUEST, agent, profile)

        assert [r.name for r in rules] == ["global", "user", "agent"]
        assert resolver.get_rules(RegexStage.REQUEST, agent, profile) is rules

        resolver.clear_cache_for_agent(agent.id)
        assert resolver.get_rules(RegexStage.REQUEST, agent, profile) is not rules

    def test_global_group_from_config(self):
        """测试从总配置读取全局规则组"""
        config = Config(regex={"presets": [{"rules": [{"name": "global", "regex": "cat", "replacement": "dog"}]}]})

        resolver = RegexRuleResolver.from_config(config)

        assert [r.name for r in resolver.get_rules(RegexStage.REQUEST)] == ["global"]
        assert RegexRuleResolver.from_config(Config()).global_config is None

    def test_process_for_render(self):
        """测试渲染阶段只应用渲染规则并按深度过滤"""
        agent = AgentConfig(regex_config=config_with(
            RegexRule(regex="secret", replacement="***", apply_to=RegexApplyTo(request=False)),
            RegexRule(regex="a", replacement="b", apply_to=RegexApplyTo(render=False)),
            RegexRule(regex="old", replacement="", depth_range=DepthRange(min=1), order=1),
        ))
        resolver = RegexRuleResolver()

        assert resolver.process_for_render("a secret old", MessageRole.ASSISTANT, 0, agent) == "a *** old"
        assert resolver.process_for_render("a secret old", MessageRole.ASSISTANT, 1, agent) == "a *** "


class TestMacroSubstitution:
    """测试正则中的宏替换"""

    def test_escaped_substitution(self):
        """测试转义模式"""
        rule = RegexRule(regex="{{user}}", replacement="someone", substitution_mode=SubstitutionMode.ESCAPED)
        context = MacroContext(user_name="a.b")

        result = apply_regex_rules("a.b axb", [rule], MacroProcessor(), context)

        assert result == "someone axb"

    def test_raw_substitution(self):
        """测试原样模式"""
        rule = RegexRule(regex="{{user}}", replacement="someone", substitution_mode=SubstitutionMode.RAW)
        context = MacroContext(user_name="a.b")

        assert apply_regex_rules("axb", [rule], MacroProcessor(), context) == "someone"


class TestSillyTavernImport:
    """测试 SillyTavern 脚本转换"""

    def test_convert_script(self):
        """测试字段映射"""
        rule = convert_sillytavern_script({
            "id": "abc",
            "scriptName": "strip",
            "findRegex": "/foo/g",
            "replaceString": "bar",
            "placement": [2],
            "markdownOnly": True,
            "minDepth": 1,
            "maxDepth": None,
            "substituteRegex": 2,
        })

        assert rule.id == "abc"
        assert rule.target_roles == [MessageRole.ASSISTANT]
        assert rule.apply_to.render is True
        assert rule.apply_to.request is False
        assert rule.depth_range.min == 1
        assert rule.depth_range.max is None
        assert rule.substitution_mode == SubstitutionMode.ESCAPED

    @pytest.mark.parametrize("stage,expected", [(RegexStage.RENDER, True), (RegexStage.REQUEST, False)])
    def test_apply_to(self, stage, expected):
        """测试阶段判断"""
        assert RegexApplyTo(render=True, request=False).applies(stage) is expected
