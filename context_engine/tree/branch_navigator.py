"""
Branch navigation helpers.

Siblings are ordered by the parent's children_ids, which is creation order.
"""

import logging
from typing import List, Optional

from context_engine.errors import ValidationError
from context_engine.models import MessageNode, Session

logger = logging.getLogger(__name__)


class BranchNavigator:
    """Read-only queries over branches plus sibling switching."""

    def get_siblings(self, session: Session, node_id: str) -> List[MessageNode]:
        """All children of node_id's parent, including the node itself."""
        node = session.get_node(node_id)
        if node is None:
            return []
        parent = session.get_node(node.parent_id)
        if parent is None:
            return [node]
        return [session.nodes[cid] for cid in parent.children_ids if cid in session.nodes]

    def get_sibling_index(self, session: Session, node_id: str) -> int:
        """Position of node_id among its siblings, or -1."""
        for i, sibling in enumerate(self.get_siblings(session, node_id)):
            if sibling.id == node_id:
                return i
        return -1

    def find_leaf_of_branch(self, session: Session, node_id: str) -> str:
        """
        Follow a branch down to its leaf.

        At each fork the most recently created child is taken, unless a
        descendant is already on the active path.
        """
        if node_id not in session.nodes:
            raise ValidationError(f"Node not found: {node_id}", node_id=node_id)

        active_ids = self._active_ids(session)
        current = session.nodes[node_id]
        visited = {current.id}
        while current.children_ids:
            next_id: Optional[str] = None
            for child_id in current.children_ids:
                if child_id in active_ids:
                    next_id = child_id
                    break
            if next_id is None:
                next_id = current.children_ids[-1]
            if next_id in visited or next_id not in session.nodes:
                break
            visited.add(next_id)
            current = session.nodes[next_id]
        return current.id

    def switch_to_sibling(self, session: Session, node_id: str, direction: str) -> str:
        """
        Move the active leaf to the previous/next sibling branch, wrapping around.

        Returns:
            The new active leaf id
        """
        if direction not in ("prev", "next"):
            raise ValidationError(f"Invalid direction: {direction}", node_id=node_id)

        siblings = self.get_siblings(session, node_id)
        if not siblings:
            raise ValidationError(f"Node not found: {node_id}", node_id=node_id)
        if len(siblings) == 1:
            return session.active_leaf_id

        index = self.get_sibling_index(session, node_id)
        step = -1 if direction == "prev" else 1
        target = siblings[(index + step) % len(siblings)]

        leaf_id = self.find_leaf_of_branch(session, target.id)
        session.active_leaf_id = leaf_id
        session.touch()
        logger.debug(f"[BranchNavigator] Switched {direction} to branch {target.id}, leaf {leaf_id}")
        return leaf_id

    def is_node_in_active_path(self, session: Session, node_id: str) -> bool:
        return node_id in self._active_ids(session)

    @staticmethod
    def _active_ids(session: Session) -> set:
        ids = set()
        current = session.get_node(session.active_leaf_id)
        while current is not None and current.id not in ids:
            ids.add(current.id)
            current = session.get_node(current.parent_id)
        return ids


__all__ = ["BranchNavigator"]
