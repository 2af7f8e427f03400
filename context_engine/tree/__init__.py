"""
Conversation tree store: node CRUD, branch navigation and masking.
"""

from context_engine.tree.node_manager import NodeManager, collect_masked_node_ids
from context_engine.tree.branch_navigator import BranchNavigator

__all__ = [
    "NodeManager",
    "BranchNavigator",
    "collect_masked_node_ids",
]
