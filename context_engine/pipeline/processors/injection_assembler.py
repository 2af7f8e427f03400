"""
Injection assembler.

Combines the agent's preset messages with the (already limited) history.

Presets fall into three groups:
- skeleton: no injection strategy, kept in declared order
- depth injections: inserted N positions back from the newest message
- anchor injections: placed before/after a named anchor in the skeleton

Built-in anchors are ``chat_history`` (where history is spliced in) and
``user_profile`` (rendered from the user profile). Further anchors are
registered on an AnchorRegistry.
"""

import copy
import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from context_engine.macros import MacroProcessor, build_macro_context
from context_engine.models import (
    MessageSourceType,
    PresetMessage,
    ProcessableMessage,
)
from context_engine.pipeline.context import PipelineContext
from context_engine.pipeline.orchestrator import ContextProcessor

logger = logging.getLogger(__name__)

ANCHOR_CHAT_HISTORY = "chat_history"
ANCHOR_USER_PROFILE = "user_profile"

_LOOP_SEGMENT = re.compile(r"^(\d+)\s*[~:]\s*(\d+)$")


@dataclass
class AnchorDefinition:
    """A named position in the preset skeleton."""
    id: str
    name: str
    has_template: bool = False
    description: str = ""


class AnchorRegistry:
    """Known anchors. Template anchors render their preset's content."""

    def __init__(self):
        self._anchors: Dict[str, AnchorDefinition] = {}
        self.register(AnchorDefinition(ANCHOR_CHAT_HISTORY, "Chat history", has_template=False))
        self.register(AnchorDefinition(ANCHOR_USER_PROFILE, "User profile", has_template=True))

    def register(self, anchor: AnchorDefinition) -> None:
        self._anchors[anchor.id] = anchor

    def unregister(self, anchor_id: str) -> bool:
        if anchor_id in (ANCHOR_CHAT_HISTORY, ANCHOR_USER_PROFILE):
            raise ValueError(f"Built-in anchor cannot be removed: {anchor_id}")
        return self._anchors.pop(anchor_id, None) is not None

    def get(self, anchor_id: str) -> Optional[AnchorDefinition]:
        return self._anchors.get(anchor_id)

    def has(self, anchor_id: str) -> bool:
        return anchor_id in self._anchors

    def all(self) -> List[AnchorDefinition]:
        return list(self._anchors.values())


def preset_matches_model(preset: PresetMessage, model_id: Optional[str]) -> bool:
    """
    Apply a preset's model_match filter.

    Patterns are case-insensitive and tested against the model id with any
    ``provider:`` prefix removed, then against the part after the last ``/``.
    """
    match = preset.model_match
    if match is None or not match.enabled or not match.patterns:
        return True
    if not model_id:
        return False

    candidate = model_id.split(":", 1)[1] if ":" in model_id else model_id
    candidates = [candidate]
    if "/" in candidate:
        candidates.append(candidate.rsplit("/", 1)[1])

    for pattern in match.patterns:
        try:
            compiled = re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            logger.warning(f"[InjectionAssembler] Invalid model_match pattern in preset {preset.id}: {pattern} ({e})")
            continue
        if any(c and compiled.search(c) for c in candidates):
            return True
    return False


def active_presets(presets: List[PresetMessage], model_id: Optional[str]) -> List[PresetMessage]:
    """Enabled presets whose model filter accepts model_id."""
    return [p for p in presets if p.is_enabled and preset_matches_model(p, model_id)]


def parse_depth_config(depth_config: str, history_length: int) -> List[int]:
    """
    Expand a depth configuration into concrete depths.

    Supports ``"3"``, ``"3, 10, 15"`` and loops ``"10~5"`` / ``"10:5"``
    (10, 15, 20, ... up to history_length). Depths beyond the history
    length are dropped; duplicates are removed, first occurrence wins.
    """
    depths: List[int] = []
    for segment in depth_config.split(","):
        segment = segment.strip()
        if not segment:
            continue
        loop = _LOOP_SEGMENT.match(segment)
        if loop:
            start, interval = int(loop.group(1)), int(loop.group(2))
            if interval <= 0:
                candidates = [start]
            else:
                candidates = list(range(start, history_length + 1, interval))
        elif segment.isdigit():
            candidates = [int(segment)]
        else:
            logger.debug(f"[InjectionAssembler] Ignoring depth segment {segment!r}")
            continue
        for depth in candidates:
            if depth <= history_length and depth not in depths:
                depths.append(depth)
    return depths


def classify_presets(
    presets: List[PresetMessage],
) -> Tuple[List[PresetMessage], List[PresetMessage], List[PresetMessage]]:
    """Split presets into (skeleton, depth injections, anchor injections)."""
    skeleton: List[PresetMessage] = []
    depth: List[PresetMessage] = []
    anchor: List[PresetMessage] = []
    for preset in presets:
        strategy = preset.injection_strategy
        if strategy is None:
            skeleton.append(preset)
        elif strategy.depth is not None or strategy.depth_config:
            depth.append(preset)
        elif strategy.anchor_target:
            anchor.append(preset)
        else:
            skeleton.append(preset)
    return skeleton, depth, anchor


class InjectionAssembler(ContextProcessor):
    id = "injection-assembler"
    name = "Injection assembler"
    description = "Expands presets, applies depth and anchor injections and splices in history"
    priority = 400

    def __init__(
        self,
        macro_processor: Optional[MacroProcessor] = None,
        anchor_registry: Optional[AnchorRegistry] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.macro_processor = macro_processor or MacroProcessor()
        self.anchor_registry = anchor_registry or AnchorRegistry()

    async def execute(self, context: PipelineContext) -> None:
        all_presets = context.agent_config.preset_messages
        presets = active_presets(all_presets, context.effective_model_id)
        if not presets:
            context.log(self.id, "info", "No active preset messages")
            return

        index_of = {p.id: i for i, p in enumerate(all_presets)}
        contents = self._render_contents(context, presets)

        def to_message(preset: PresetMessage, source_type: MessageSourceType) -> ProcessableMessage:
            return ProcessableMessage(
                role=preset.role,
                content=contents[preset.id],
                source_type=source_type,
                source_id=preset.id,
                source_index=index_of[preset.id],
            )

        skeleton, depth_injections, anchor_injections = classify_presets(presets)

        history = self._apply_depth_injections(context.messages, depth_injections, to_message)

        anchors: Dict[str, Dict[str, List[PresetMessage]]] = defaultdict(lambda: {"before": [], "after": []})
        ordered = sorted(
            anchor_injections,
            key=lambda p: (p.injection_strategy.order, index_of[p.id]),
        )
        for preset in ordered:
            strategy = preset.injection_strategy
            anchors[strategy.anchor_target][strategy.anchor_position].append(preset)

        def anchor_messages(anchor_id: str, position: str) -> List[ProcessableMessage]:
            group = anchors.get(anchor_id)
            if not group:
                return []
            return [to_message(p, MessageSourceType.ANCHOR_INJECTION) for p in group[position]]

        final: List[ProcessableMessage] = []
        history_placed = False
        for preset in skeleton:
            if not preset.is_anchor:
                final.append(to_message(preset, MessageSourceType.AGENT_PRESET))
                continue

            anchor_id = preset.type
            final.extend(anchor_messages(anchor_id, "before"))
            if anchor_id == ANCHOR_CHAT_HISTORY:
                if not history_placed:
                    final.extend(history)
                    history_placed = True
            else:
                anchor = self.anchor_registry.get(anchor_id)
                if anchor is None:
                    logger.debug(f"[InjectionAssembler] Unregistered anchor {anchor_id}, treated as placeholder")
                elif anchor.has_template and contents[preset.id].strip():
                    final.append(to_message(preset, MessageSourceType.AGENT_PRESET))
            final.extend(anchor_messages(anchor_id, "after"))

        if not history_placed:
            # No chat_history anchor: history follows the skeleton
            final.extend(anchor_messages(ANCHOR_CHAT_HISTORY, "before"))
            final.extend(history)
            final.extend(anchor_messages(ANCHOR_CHAT_HISTORY, "after"))

        context.messages = final
        message = f"Assembled {len(final)} message(s)"
        logger.debug(
            f"[InjectionAssembler] {message}: skeleton={len(skeleton)}, "
            f"depth={len(depth_injections)}, anchor={len(anchor_injections)}"
        )
        context.log(self.id, "info", message, {
            "skeleton": len(skeleton),
            "depth_injections": len(depth_injections),
            "anchor_injections": len(anchor_injections),
        })

    def _render_contents(self, context: PipelineContext, presets: List[PresetMessage]) -> Dict[str, str]:
        """Preset contents after macro processing."""
        macros_enabled = context.config.macros.enabled
        macro_context = build_macro_context(
            agent=context.agent_config,
            user_profile=context.user_profile,
            history=context.shared_data.get("visible_nodes"),
            session_id=context.session.id,
            model_id=context.effective_model_id,
            # Presets work on a copy of the computed variables
            variables=copy.deepcopy(context.shared_data.get("variable_values") or {}),
            timestamp=context.timestamp,
        )

        contents: Dict[str, str] = {}
        for preset in presets:
            content = preset.content
            if preset.type == ANCHOR_USER_PROFILE and not content.strip() and context.user_profile:
                content = context.user_profile.content
            if macros_enabled and "{{" in content:
                result = self.macro_processor.process(content, macro_context)
                for error in result.errors:
                    context.log(self.id, "warning", f"Macro error in preset {preset.id}: {error.message}")
                content = result.output
            contents[preset.id] = content
        return contents

    @staticmethod
    def _apply_depth_injections(
        history: List[ProcessableMessage],
        injections: List[PresetMessage],
        to_message,
    ) -> List[ProcessableMessage]:
        if not injections:
            return list(history)

        groups: Dict[int, List[Tuple[int, PresetMessage]]] = defaultdict(list)
        for position, preset in enumerate(injections):
            strategy = preset.injection_strategy
            if strategy.depth_config:
                depths = parse_depth_config(strategy.depth_config, len(history))
            else:
                depths = [strategy.depth]
            for depth in depths:
                groups[depth].append((position, preset))

        result = list(history)
        for depth in sorted(groups, reverse=True):
            group = sorted(groups[depth], key=lambda item: (item[1].injection_strategy.order, item[0]))
            insert_at = max(0, len(result) - depth)
            result[insert_at:insert_at] = [
                to_message(preset, MessageSourceType.DEPTH_INJECTION) for _, preset in group
            ]
        return result


__all__ = [
    "ANCHOR_CHAT_HISTORY",
    "ANCHOR_USER_PROFILE",
    "AnchorDefinition",
    "AnchorRegistry",
    "preset_matches_model",
    "active_presets",
    "parse_depth_config",
    "classify_presets",
    "InjectionAssembler",
]
