"""
Regex Rule Resolver

Flattens global / user / agent rule groups into one ordered rule list and
applies the rules to message text.

Rules are written with JavaScript conventions (``/pattern/flags``
literals, ``$1`` / ``$&`` / ``$<name>`` replacements) and translated to
Python ``re`` here. An invalid pattern is logged, recorded as a RegexError
and skipped; the rest of the batch still runs.
"""

import functools
import logging
import re
import threading
from typing import Any, Dict, List, Optional, Tuple

from config import Config
from context_engine.errors import RegexError
from context_engine.macros import MacroContext, MacroProcessor
from context_engine.models import (
    AgentConfig,
    DepthRange,
    MessageRole,
    RegexApplyTo,
    RegexConfig,
    RegexRule,
    RegexStage,
    SubstitutionMode,
    UserProfile,
)

logger = logging.getLogger(__name__)

_LITERAL_PATTERN = re.compile(r"^/(.*)/([a-zA-Z]*)$", re.DOTALL)
_NAMED_GROUP = re.compile(r"\(\?<(?![=!])(\w+)>")
_NAMED_BACKREF = re.compile(r"\\k<(\w+)>")
_REPLACEMENT_TOKEN = re.compile(r"\$(\$|&|\{\d+\}|<\w+>|\d{1,2})")

_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
}


def parse_regex_literal(pattern: str, default_flags: str = "gm") -> Tuple[str, str]:
    """Split ``/body/flags`` into (body, flags); plain patterns use default_flags."""
    match = _LITERAL_PATTERN.match(pattern)
    if match:
        return match.group(1), match.group(2)
    return pattern, default_flags


@functools.lru_cache(maxsize=512)
def compile_js_regex(pattern: str, flags: str) -> Tuple["re.Pattern", bool]:
    """
    Compile a JS-style pattern.

    Returns:
        (compiled pattern, is_global)

    Raises:
        re.error: invalid pattern
    """
    body, literal_flags = parse_regex_literal(pattern, flags)
    body = _NAMED_GROUP.sub(r"(?P<\1>", body)
    body = _NAMED_BACKREF.sub(r"(?P=\1)", body)

    re_flags = 0
    for flag in literal_flags:
        re_flags |= _FLAG_MAP.get(flag, 0)
    return re.compile(body, re_flags), "g" in literal_flags


def expand_replacement(match: "re.Match", replacement: str, trim_strings: List[str]) -> str:
    """Expand JS replacement tokens, removing trim_strings from captured text."""

    def clean(value: Optional[str]) -> str:
        text = value or ""
        for trim in trim_strings:
            if trim:
                text = text.replace(trim, "")
        return text

    def substitute(token_match: "re.Match") -> str:
        token = token_match.group(1)
        if token == "$":
            return "$"
        if token == "&":
            return clean(match.group(0))
        if token.startswith("<"):
            try:
                return clean(match.group(token[1:-1]))
            except IndexError:
                return token_match.group(0)
        index = int(token.strip("{}"))
        if 0 < index <= (match.re.groups or 0):
            return clean(match.group(index))
        return token_match.group(0)

    replacement = replacement.replace("{{match}}", "$&")
    return _REPLACEMENT_TOKEN.sub(substitute, replacement)


def resolve_raw_rules(stage: RegexStage, *configs: Optional[RegexConfig]) -> List[RegexRule]:
    """
    Flatten enabled presets into enabled rules for a stage.

    Presets are walked in preset order; the result is stably sorted by
    (preset priority, rule order) so ties keep their original position.
    """
    entries: List[Tuple[int, int, RegexRule]] = []
    for config in configs:
        if config is None:
            continue
        presets = sorted((p for p in config.presets if p.enabled), key=lambda p: p.order)
        for preset in presets:
            for rule in preset.rules:
                if rule.enabled and rule.apply_to.applies(stage):
                    entries.append((preset.priority, rule.order, rule))

    entries.sort(key=lambda entry: (entry[0], entry[1]))
    return [rule for _, _, rule in entries]


def filter_rules_for_message(rules: List[RegexRule], role: MessageRole, depth: int) -> List[RegexRule]:
    """Rules targeting role whose depth range contains depth (0 = newest)."""
    result = []
    for rule in rules:
        if role not in rule.target_roles:
            continue
        if rule.depth_range is not None and not rule.depth_range.contains(depth):
            continue
        result.append(rule)
    return result


def apply_regex_rules(
    content: str,
    rules: List[RegexRule],
    macro_processor: Optional[MacroProcessor] = None,
    macro_context: Optional[MacroContext] = None,
    errors: Optional[List[RegexError]] = None,
) -> str:
    """
    Apply rules to content sequentially.

    Args:
        macro_processor/macro_context: Needed for rules with a substitution mode
        errors: Receives a RegexError per invalid rule
    """
    for rule in rules:
        pattern = rule.regex
        trim_strings = rule.trim_strings

        if (
            rule.substitution_mode != SubstitutionMode.NONE
            and macro_processor is not None
            and macro_context is not None
        ):
            transformer = re.escape if rule.substitution_mode == SubstitutionMode.ESCAPED else None
            pattern = macro_processor.process(pattern, macro_context, value_transformer=transformer).output
            trim_strings = [macro_processor.process(t, macro_context).output for t in trim_strings]

        if not pattern:
            continue
        try:
            compiled, is_global = compile_js_regex(pattern, rule.flags)
        except re.error as e:
            error = RegexError(rule.id, rule.regex, f"Invalid pattern in rule '{rule.name or rule.id}': {e}")
            logger.warning(f"[RegexResolver] {error.message}")
            if errors is not None:
                errors.append(error)
            continue

        content = compiled.sub(
            lambda m: expand_replacement(m, rule.replacement, trim_strings),
            content,
            count=0 if is_global else 1,
        )
    return content


class RegexRuleResolver:
    """
    Resolves and caches the rule list for an (agent, user, stage) triple.

    The cache must be cleared when any of the underlying configs change.
    """

    def __init__(self, global_config: Optional[RegexConfig] = None):
        self.global_config = global_config
        self._cache: Dict[str, List[RegexRule]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config) -> "RegexRuleResolver":
        """Resolver whose global group is read from ``config.regex``."""
        global_config = RegexConfig.model_validate(config.regex) if config.regex else None
        return cls(global_config)

    @staticmethod
    def _cache_key(agent_id: Optional[str], user_id: Optional[str], stage: RegexStage) -> str:
        return f"{agent_id or '-'}|{user_id or '-'}|{stage.value}"

    def get_rules(
        self,
        stage: RegexStage,
        agent: Optional[AgentConfig] = None,
        user_profile: Optional[UserProfile] = None,
    ) -> List[RegexRule]:
        key = self._cache_key(agent.id if agent else None, user_profile.id if user_profile else None, stage)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        rules = resolve_raw_rules(
            stage,
            self.global_config,
            user_profile.regex_config if user_profile else None,
            agent.regex_config if agent else None,
        )
        with self._lock:
            self._cache[key] = rules
        return rules

    def process_for_render(
        self,
        content: str,
        role: MessageRole,
        depth: int,
        agent: Optional[AgentConfig] = None,
        user_profile: Optional[UserProfile] = None,
        macro_processor: Optional[MacroProcessor] = None,
        macro_context: Optional[MacroContext] = None,
    ) -> str:
        """Render-stage processing of one displayed message."""
        rules = filter_rules_for_message(self.get_rules(RegexStage.RENDER, agent, user_profile), role, depth)
        return apply_regex_rules(content, rules, macro_processor, macro_context)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def clear_cache_for_agent(self, agent_id: str) -> None:
        with self._lock:
            for key in [k for k in self._cache if k.split("|")[0] == agent_id]:
                del self._cache[key]

    def clear_cache_for_user(self, user_id: str) -> None:
        with self._lock:
            for key in [k for k in self._cache if k.split("|")[1] == user_id]:
                del self._cache[key]


# SillyTavern placement codes
_ST_PLACEMENT_ROLES = {
    1: MessageRole.USER,
    2: MessageRole.ASSISTANT,
}
_ST_SUBSTITUTION = {
    0: SubstitutionMode.NONE,
    1: SubstitutionMode.RAW,
    2: SubstitutionMode.ESCAPED,
}


def convert_sillytavern_script(script: Dict[str, Any], order: int = 0) -> RegexRule:
    """Convert one SillyTavern regex script export into a RegexRule."""
    roles = [
        _ST_PLACEMENT_ROLES[p] for p in script.get("placement", []) if p in _ST_PLACEMENT_ROLES
    ]
    markdown_only = bool(script.get("markdownOnly"))
    prompt_only = bool(script.get("promptOnly"))

    min_depth = script.get("minDepth")
    max_depth = script.get("maxDepth")
    depth_range = None
    if isinstance(min_depth, int) or isinstance(max_depth, int):
        depth_range = DepthRange(
            min=min_depth if isinstance(min_depth, int) and min_depth >= 0 else None,
            max=max_depth if isinstance(max_depth, int) and max_depth >= 0 else None,
        )

    kwargs: Dict[str, Any] = {}
    if script.get("id"):
        kwargs["id"] = str(script["id"])
    if roles:
        kwargs["target_roles"] = roles

    return RegexRule(
        name=script.get("scriptName", ""),
        enabled=not script.get("disabled", False),
        regex=script.get("findRegex", ""),
        replacement=script.get("replaceString", ""),
        trim_strings=list(script.get("trimStrings") or []),
        apply_to=RegexApplyTo(
            render=not prompt_only,
            request=not markdown_only,
        ),
        depth_range=depth_range,
        substitution_mode=_ST_SUBSTITUTION.get(int(script.get("substituteRegex") or 0), SubstitutionMode.NONE),
        order=order,
        **kwargs,
    )


__all__ = [
    "parse_regex_literal",
    "compile_js_regex",
    "expand_replacement",
    "resolve_raw_rules",
    "filter_rules_for_message",
    "apply_regex_rules",
    "RegexRuleResolver",
    "convert_sillytavern_script",
]
