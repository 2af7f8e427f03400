"""
Worldbook processor.

Keyword-triggered lore injection in the SillyTavern manner:

- entry keys are matched against the newest ``scan_depth`` history messages
  (plus selected agent/profile fields and, on recursion, the content of
  entries already activated)
- secondary keys, include groups, probability, delay, cooldown and sticky
  windows decide which matched entries activate
- activated entries are inserted around the character preset, the start of
  the history, or at a depth from the newest message

Runs after the injection assembler so presets and history are both in
place, and before the formatter merges system messages.
"""

import logging
import random
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from context_engine.models import (
    AgentConfig,
    MatchedWorldbookEntry,
    MessageRole,
    MessageSourceType,
    ProcessableMessage,
    WorldbookEntry,
    WorldbookLogic,
    WorldbookPosition,
)
from context_engine.pipeline.context import PipelineContext
from context_engine.pipeline.orchestrator import ContextProcessor
from context_engine.regex import compile_js_regex
from context_engine.token import TokenizerService

logger = logging.getLogger(__name__)

SCAN_MATCHER = "\x01"
MAX_SCAN_LOOPS = 20

_REGEX_KEY = re.compile(r"^/([\w\W]+?)/([gimsuy]*)$")

# entry flag -> scan field
_EXTRA_SCAN_FIELDS = (
    ("match_persona_description", "persona"),
    ("match_character_description", "description"),
    ("match_character_personality", "personality"),
    ("match_scenario", "scenario"),
)


def match_key(haystack: str, key: str, entry: WorldbookEntry) -> bool:
    """Whether key occurs in haystack under the entry's matching options."""
    if not key:
        return False
    if _REGEX_KEY.match(key):
        try:
            compiled, _ = compile_js_regex(key, "")
        except re.error as e:
            logger.debug(f"[WorldbookProcessor] Invalid key pattern {key!r} in entry {entry.uid}: {e}")
            return False
        return compiled.search(haystack) is not None

    if not entry.case_sensitive:
        haystack = haystack.lower()
        key = key.lower()
    if entry.match_whole_words and len(key.split()) == 1:
        return re.search(rf"(?:^|\W)({re.escape(key)})(?:$|\W)", haystack) is not None
    return key in haystack


def excluded_by_filter(entry: WorldbookEntry, agent: AgentConfig) -> bool:
    """Whether the entry's character filter rules this agent out."""
    rule = entry.character_filter
    if rule is None or (not rule.names and not rule.tags):
        return False
    matched = agent.name in rule.names or any(tag in agent.tags for tag in rule.tags)
    return matched if rule.is_exclude else not matched


class ScanBuffer:
    """
    Text the entry keys are matched against.

    ``history`` holds message texts newest first.
    """

    def __init__(self, history: List[str], extra_fields: Optional[Dict[str, str]] = None):
        self.history = history
        self.extra_fields = extra_fields or {}
        self.recursion: List[str] = []

    def scan_text(self, entry: WorldbookEntry, default_depth: int) -> str:
        depth = entry.scan_depth if entry.scan_depth is not None else default_depth
        joiner = "\n" + SCAN_MATCHER
        parts = [SCAN_MATCHER + joiner.join(self.history[:depth])]
        for flag, name in _EXTRA_SCAN_FIELDS:
            text = self.extra_fields.get(name)
            if getattr(entry, flag) and text:
                parts.append(text)
        parts.extend(self.recursion)
        return joiner.join(parts)

    def matched_recently(self, entry: WorldbookEntry, depth: int) -> bool:
        """Whether any primary key appears in the newest depth messages."""
        if depth <= 0:
            return False
        return any(
            match_key(SCAN_MATCHER + text, key, entry)
            for text in self.history[:depth]
            for key in entry.key
        )


@dataclass
class _Candidate:
    book: str
    entry: WorldbookEntry
    matched_keys: Tuple[str, ...] = ()

    @property
    def key(self) -> Tuple[str, str]:
        return self.book, self.entry.uid


def _group_names(entry: WorldbookEntry) -> List[str]:
    return [name.strip() for name in entry.group.split(",") if name.strip()]


class WorldbookProcessor(ContextProcessor):
    id = "worldbook"
    name = "Worldbook"
    description = "Activates keyword-triggered worldbook entries and injects them"
    priority = 450

    def __init__(
        self,
        tokenizer: Optional[TokenizerService] = None,
        rng: Optional[random.Random] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.tokenizer = tokenizer or TokenizerService()
        self.rng = rng or random.Random()

    async def execute(self, context: PipelineContext) -> None:
        settings = context.worldbook_settings()
        agent = context.agent_config
        if not settings.enabled or not agent.worldbooks:
            return

        candidates = [_Candidate(book.name, entry) for book in agent.worldbooks for entry in book.entries]
        if not candidates:
            return

        history = [m.content for m in context.messages if m.is_history][::-1]
        buffer = ScanBuffer(history, self._extra_fields(context))
        model_id = context.effective_model_id

        activated: Dict[Tuple[str, str], MatchedWorldbookEntry] = {}
        used_tokens = 0

        delay_levels = sorted({
            c.entry.delay_until_recursion_level for c in candidates if c.entry.delay_until_recursion
        })
        current_level = delay_levels.pop(0) if delay_levels else 0
        recursing = False

        for loop in range(MAX_SCAN_LOOPS):
            if settings.max_recursion_steps and loop >= settings.max_recursion_steps:
                break

            found: List[_Candidate] = []
            for candidate in candidates:
                entry = candidate.entry
                if entry.disable or candidate.key in activated or excluded_by_filter(entry, agent):
                    continue
                if entry.delay_until_recursion and (
                    not recursing or entry.delay_until_recursion_level > current_level
                ):
                    continue
                matched = self.check_activation(entry, buffer, settings.default_scan_depth, len(history))
                if matched is None:
                    continue
                if entry.use_probability and entry.probability < 100:
                    if self.rng.random() * 100 > entry.probability:
                        continue
                found.append(_Candidate(candidate.book, entry, tuple(matched)))

            winners = self.pick_group_winners(found, activated.values())
            if not winners:
                if delay_levels:
                    current_level = delay_levels.pop(0)
                    recursing = True
                    continue
                break

            added_for_recursion = False
            for winner in winners:
                entry = winner.entry
                tokens = self.tokenizer.count(entry.content, model_id)
                if not entry.ignore_budget:
                    if used_tokens + tokens > settings.max_tokens:
                        continue
                    used_tokens += tokens
                activated[winner.key] = MatchedWorldbookEntry(
                    entry=entry,
                    worldbook_name=winner.book,
                    matched_keys=list(winner.matched_keys),
                    tokens=tokens,
                )
                if not entry.prevent_recursion and not settings.disable_recursion:
                    buffer.recursion.append(entry.content)
                    added_for_recursion = True

            if not added_for_recursion:
                break
            recursing = True

        if not activated:
            return

        matched_entries = list(activated.values())
        context.shared_data["activated_worldbook_entries"] = matched_entries
        self.inject(context, matched_entries)

        context.log(
            self.id,
            "info",
            f"Activated {len(matched_entries)} worldbook entr{'y' if len(matched_entries) == 1 else 'ies'} "
            f"({used_tokens} tokens)",
            {
                "total_tokens": used_tokens,
                "activated": [
                    {"uid": m.entry.uid, "name": m.entry.display_name, "worldbook": m.worldbook_name}
                    for m in matched_entries
                ],
            },
        )

    @staticmethod
    def _extra_fields(context: PipelineContext) -> Dict[str, str]:
        agent = context.agent_config
        return {
            "persona": context.user_profile.content if context.user_profile else "",
            "description": agent.description,
            "personality": agent.personality,
            "scenario": agent.scenario,
        }

    @staticmethod
    def check_activation(
        entry: WorldbookEntry,
        buffer: ScanBuffer,
        default_depth: int,
        history_count: int,
    ) -> Optional[List[str]]:
        """
        Matched primary keys, or None when the entry does not activate.

        Constant and sticky activations return an empty key list.
        """
        if entry.constant:
            return []
        if entry.delay and history_count < entry.delay:
            return None
        if entry.cooldown and buffer.matched_recently(entry, entry.cooldown):
            return None

        scan_text = buffer.scan_text(entry, default_depth)
        matched = [key for key in entry.key if match_key(scan_text, key, entry)]
        if not matched and not (entry.sticky and buffer.matched_recently(entry, entry.sticky)):
            return None

        if entry.selective and entry.keysecondary:
            hits = sum(1 for key in entry.keysecondary if match_key(scan_text, key, entry))
            total = len(entry.keysecondary)
            if entry.selective_logic == WorldbookLogic.AND_ALL:
                passed = hits == total
            elif entry.selective_logic == WorldbookLogic.NOT_ANY:
                passed = hits == 0
            elif entry.selective_logic == WorldbookLogic.NOT_ALL:
                passed = hits < total
            else:
                passed = hits > 0
            if not passed:
                return None

        return matched

    def pick_group_winners(
        self,
        found: List[_Candidate],
        activated: Iterable[MatchedWorldbookEntry],
    ) -> List[_Candidate]:
        """Ungrouped entries plus one winner per include group not yet active."""
        winners: Dict[Tuple[str, str], _Candidate] = {}
        groups: Dict[str, List[_Candidate]] = {}
        for candidate in found:
            names = _group_names(candidate.entry)
            if not names:
                winners[candidate.key] = candidate
            for name in names:
                groups.setdefault(name, []).append(candidate)

        active_groups = {name for match in activated for name in _group_names(match.entry)}
        for name, members in groups.items():
            if name in active_groups:
                continue
            chosen = next((m for m in members if m.entry.group_override), None)
            if chosen is None:
                roll = self.rng.random() * sum(m.entry.group_weight for m in members)
                for member in members:
                    roll -= member.entry.group_weight
                    if roll <= 0:
                        chosen = member
                        break
            if chosen is not None:
                winners.setdefault(chosen.key, chosen)
        return list(winners.values())

    @staticmethod
    def inject(context: PipelineContext, matched: List[MatchedWorldbookEntry]) -> None:
        """Insert entries, highest order first; anchors are recomputed per insert."""
        for item in sorted(matched, key=lambda m: m.entry.order, reverse=True):
            entry = item.entry
            if entry.position == WorldbookPosition.OUTLET:
                continue

            message = ProcessableMessage(
                role=entry.role,
                content=entry.content,
                source_type=(
                    MessageSourceType.DEPTH_INJECTION
                    if entry.position == WorldbookPosition.DEPTH
                    else MessageSourceType.ANCHOR_INJECTION
                ),
                source_id=entry.uid,
            )
            messages = context.messages

            history_positions = [i for i, m in enumerate(messages) if m.is_history]
            first_history = history_positions[0] if history_positions else len(messages)
            first_preset = next(
                (i for i, m in enumerate(messages) if m.source_type == MessageSourceType.AGENT_PRESET),
                first_history,
            )
            char_anchor = next(
                (
                    i for i, m in enumerate(messages)
                    if m.source_type == MessageSourceType.AGENT_PRESET and m.role == MessageRole.SYSTEM
                ),
                first_preset,
            )

            if entry.position == WorldbookPosition.BEFORE_CHAR:
                index = char_anchor
            elif entry.position == WorldbookPosition.AFTER_CHAR:
                index = char_anchor + 1
            elif entry.position in (WorldbookPosition.AFTER_AN, WorldbookPosition.AFTER_EM):
                index = first_history + 1
            elif entry.position == WorldbookPosition.DEPTH:
                if history_positions:
                    index = max(0, history_positions[-1] + 1 - entry.depth)
                else:
                    index = len(messages)
            else:
                index = first_history
            messages.insert(min(index, len(messages)), message)


__all__ = [
    "SCAN_MATCHER",
    "ScanBuffer",
    "WorldbookProcessor",
    "excluded_by_filter",
    "match_key",
]
