"""
Regex rule resolution and application.
"""

from context_engine.regex.resolver import (
    RegexRuleResolver,
    apply_regex_rules,
    compile_js_regex,
    convert_sillytavern_script,
    expand_replacement,
    filter_rules_for_message,
    parse_regex_literal,
    resolve_raw_rules,
)

__all__ = [
    "RegexRuleResolver",
    "apply_regex_rules",
    "compile_js_regex",
    "convert_sillytavern_script",
    "expand_replacement",
    "filter_rules_for_message",
    "parse_regex_literal",
    "resolve_raw_rules",
]
