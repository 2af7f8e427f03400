"""
Macro execution context.
"""

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from context_engine.models import (
    AgentConfig,
    MessageNode,
    MessageRole,
    UserProfile,
)


@dataclass
class MacroContext:
    """
    Values a macro may read, plus the mutable variable stores.

    ``variables`` is the session-level store. Stateful macros mutate it in
    place, so the same dict can be shared by several process() calls within
    one context build.
    """

    user_name: str = "User"
    char_name: str = "Assistant"
    user_profile: str = ""
    char_description: str = ""
    char_personality: str = ""
    scenario: str = ""
    last_message: str = ""
    last_user_message: str = ""
    last_char_message: str = ""
    input: str = ""
    variables: Dict[str, Any] = field(default_factory=dict)
    global_variables: Dict[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None
    agent_id: Optional[str] = None
    model_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    rng: random.Random = field(default_factory=random.Random)


def build_macro_context(
    agent: Optional[AgentConfig] = None,
    user_profile: Optional[UserProfile] = None,
    history: Optional[List[MessageNode]] = None,
    session_id: Optional[str] = None,
    model_id: Optional[str] = None,
    input_text: str = "",
    variables: Optional[Dict[str, Any]] = None,
    global_variables: Optional[Dict[str, Any]] = None,
    timestamp: Optional[datetime] = None,
) -> MacroContext:
    """
    Build a MacroContext from agent, profile and the visible history.

    Args:
        history: Visible history nodes, oldest first
        variables: Session variable store (shared, not copied)
    """
    context = MacroContext(
        session_id=session_id,
        model_id=model_id or (agent.model_id if agent else None),
        input=input_text,
        variables=variables if variables is not None else {},
        global_variables=global_variables if global_variables is not None else {},
        timestamp=timestamp or datetime.now(),
    )

    if agent is not None:
        context.char_name = agent.effective_name
        context.char_description = agent.description
        context.char_personality = agent.personality
        context.scenario = agent.scenario
        context.agent_id = agent.id

    if user_profile is not None:
        context.user_name = user_profile.effective_name
        context.user_profile = user_profile.content

    for node in reversed(history or []):
        if not node.content:
            continue
        if not context.last_message:
            context.last_message = node.content
        if not context.last_user_message and node.role == MessageRole.USER:
            context.last_user_message = node.content
        if not context.last_char_message and node.role == MessageRole.ASSISTANT:
            context.last_char_message = node.content
        if context.last_user_message and context.last_char_message:
            break

    return context


__all__ = [
    "MacroContext",
    "build_macro_context",
]
