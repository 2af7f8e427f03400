"""
Conversation Tree Store

Node CRUD over a session's id-indexed node table.

The tree keeps parent/children as ids only. Every mutation keeps these
invariants:
- the tree is acyclic and every non-root node has exactly one parent
- a node's children_ids equals the set of nodes whose parent_id is that node
- deleting a node removes its whole subtree
"""

import logging
from typing import Iterable, List, Optional, Set, Tuple

from context_engine.errors import ValidationError
from context_engine.models import (
    Attachment,
    MessageNode,
    MessageRole,
    NodeMetadata,
    NodeStatus,
    Session,
)

logger = logging.getLogger(__name__)


def collect_masked_node_ids(nodes: Iterable[MessageNode]) -> Set[str]:
    """
    Collect ids hidden by enabled compression nodes.

    Context building and UI rendering both use this function.
    """
    masked: Set[str] = set()
    for node in nodes:
        if node.is_enabled and node.metadata.is_compression_node:
            masked.update(node.metadata.compressed_node_ids)
    return masked


class NodeManager:
    """
    Stateless operations over Session.nodes.

    Editing is non-destructive: edits become sibling branches and
    regenerations become new children of the same parent. Only
    is_enabled is changed in place.
    """

    def create_node(
        self,
        role: MessageRole,
        content: str = "",
        parent_id: Optional[str] = None,
        status: NodeStatus = NodeStatus.COMPLETE,
        is_enabled: bool = True,
        attachments: Optional[List[Attachment]] = None,
        metadata: Optional[NodeMetadata] = None,
    ) -> MessageNode:
        """Create a detached node. Use add_node_to_session to link it."""
        return MessageNode(
            role=role,
            content=content,
            parent_id=parent_id,
            status=status,
            is_enabled=is_enabled,
            attachments=list(attachments or []),
            metadata=metadata or NodeMetadata(),
        )

    def add_node_to_session(self, session: Session, node: MessageNode) -> MessageNode:
        """
        Link a node into the session under its parent.

        Raises:
            ValidationError: duplicate id, missing parent or a second root
        """
        if node.id in session.nodes:
            raise ValidationError(f"Node already exists: {node.id}", node_id=node.id)
        if node.parent_id is None:
            raise ValidationError("Only the session root may have no parent", node_id=node.id)

        parent = session.nodes.get(node.parent_id)
        if parent is None:
            raise ValidationError(
                f"Parent node not found: {node.parent_id}",
                node_id=node.id,
                details={"parent_id": node.parent_id},
            )

        node.children_ids = []
        session.nodes[node.id] = node
        parent.children_ids.append(node.id)
        session.touch()
        return node

    def create_message_pair(
        self,
        session: Session,
        content: str,
        parent_id: str,
        attachments: Optional[List[Attachment]] = None,
    ) -> Tuple[MessageNode, MessageNode]:
        """Create a user node and an empty assistant node in generating state."""
        user_node = self.add_node_to_session(
            session,
            self.create_node(
                MessageRole.USER,
                content,
                parent_id=parent_id,
                attachments=attachments,
            ),
        )
        assistant_node = self.add_node_to_session(
            session,
            self.create_node(
                MessageRole.ASSISTANT,
                "",
                parent_id=user_node.id,
                status=NodeStatus.GENERATING,
            ),
        )
        return user_node, assistant_node

    def create_regenerate_branch(self, session: Session, target_node_id: str) -> MessageNode:
        """
        Create a new assistant child under the parent of target_node_id.

        The old reply stays in the tree as a sibling branch.
        """
        target = self._require(session, target_node_id)
        if target.role != MessageRole.ASSISTANT:
            raise ValidationError("Only assistant messages can be regenerated", node_id=target_node_id)
        if target.parent_id is None:
            raise ValidationError("Cannot regenerate the root node", node_id=target_node_id)

        return self.add_node_to_session(
            session,
            self.create_node(
                MessageRole.ASSISTANT,
                "",
                parent_id=target.parent_id,
                status=NodeStatus.GENERATING,
            ),
        )

    def create_edit_branch(self, session: Session, node_id: str, new_content: str) -> MessageNode:
        """Create a sibling of node_id carrying new_content. The original is kept."""
        original = self._require(session, node_id)
        if original.parent_id is None:
            raise ValidationError("Cannot edit the root node", node_id=node_id)

        return self.add_node_to_session(
            session,
            self.create_node(
                original.role,
                new_content,
                parent_id=original.parent_id,
                attachments=[a.model_copy() for a in original.attachments],
                metadata=NodeMetadata(model_id=original.metadata.model_id),
            ),
        )

    def update_active_leaf(self, session: Session, node_id: str) -> None:
        """
        Point the session at a new active leaf.

        Raises:
            ValidationError: unknown node id
        """
        self._require(session, node_id)
        session.active_leaf_id = node_id
        session.touch()

    def set_node_enabled(self, session: Session, node_id: str, enabled: bool) -> bool:
        """
        Toggle is_enabled. Idempotent.

        Returns:
            True if the flag changed
        """
        node = self._require(session, node_id)
        if node.is_enabled == enabled:
            return False
        node.is_enabled = enabled
        session.touch()
        return True

    def hard_delete_node(self, session: Session, node_id: str) -> List[str]:
        """
        Remove a node and its entire subtree.

        If the active leaf lived in the removed subtree it moves to the
        removed node's parent.

        Returns:
            Ids of all removed nodes

        Raises:
            ValidationError: unknown id or root node
        """
        node = self._require(session, node_id)
        if node_id == session.root_node_id:
            raise ValidationError("Cannot delete the root node", node_id=node_id)

        removed = [node_id] + self.get_all_descendants(session, node_id)
        removed_set = set(removed)

        parent = session.nodes.get(node.parent_id) if node.parent_id else None
        if parent is not None:
            parent.children_ids = [cid for cid in parent.children_ids if cid != node_id]

        for rid in removed:
            session.nodes.pop(rid, None)

        if session.active_leaf_id in removed_set:
            session.active_leaf_id = parent.id if parent is not None else session.root_node_id

        session.touch()
        logger.info(f"[NodeManager] Deleted {len(removed)} node(s) starting at {node_id}")
        return removed

    def get_node_path(self, session: Session, node_id: str) -> List[MessageNode]:
        """
        Nodes from the root down to node_id (inclusive).

        Raises:
            ValidationError: unknown id, dangling parent or a cycle
        """
        path: List[MessageNode] = []
        visited: Set[str] = set()
        current = self._require(session, node_id)

        while current is not None:
            if current.id in visited:
                raise ValidationError("Cycle detected in node ancestry", node_id=current.id)
            visited.add(current.id)
            path.append(current)
            if current.parent_id is None:
                break
            parent = session.nodes.get(current.parent_id)
            if parent is None:
                raise ValidationError(
                    f"Dangling parent reference: {current.parent_id}",
                    node_id=current.id,
                )
            current = parent

        path.reverse()
        if path[0].id != session.root_node_id:
            raise ValidationError("Node is not reachable from the session root", node_id=node_id)
        return path

    def get_active_path(self, session: Session) -> List[MessageNode]:
        """Root-to-leaf path for the active leaf, oldest first."""
        return self.get_node_path(session, session.active_leaf_id)

    def get_all_descendants(self, session: Session, node_id: str) -> List[str]:
        """Ids of every node below node_id, breadth-first."""
        result: List[str] = []
        queue = list(self._require(session, node_id).children_ids)
        seen: Set[str] = {node_id}
        while queue:
            child_id = queue.pop(0)
            if child_id in seen:
                continue
            seen.add(child_id)
            result.append(child_id)
            child = session.nodes.get(child_id)
            if child is not None:
                queue.extend(child.children_ids)
        return result

    def is_in_subtree(self, session: Session, root_id: str, node_id: str) -> bool:
        """True if node_id is root_id or one of its descendants."""
        return node_id == root_id or node_id in self.get_all_descendants(session, root_id)

    def reparent_node(self, session: Session, node_id: str, new_parent_id: str) -> None:
        """
        Move a node (with its subtree) under a new parent.

        Raises:
            ValidationError: unknown ids, root node, or a move that would create a cycle
        """
        node = self._require(session, node_id)
        new_parent = self._require(session, new_parent_id)
        if node_id == session.root_node_id:
            raise ValidationError("Cannot reparent the root node", node_id=node_id)
        if self.is_in_subtree(session, node_id, new_parent_id):
            raise ValidationError(
                "Reparenting would create a cycle",
                node_id=node_id,
                details={"new_parent_id": new_parent_id},
            )
        if node.parent_id == new_parent_id:
            return

        old_parent = session.nodes.get(node.parent_id) if node.parent_id else None
        if old_parent is not None:
            old_parent.children_ids = [cid for cid in old_parent.children_ids if cid != node_id]

        node.parent_id = new_parent_id
        new_parent.children_ids.append(node_id)
        session.touch()

    def transfer_children(self, session: Session, from_id: str, to_id: str) -> List[str]:
        """Move every child of from_id under to_id, keeping their order."""
        source = self._require(session, from_id)
        moved = [cid for cid in source.children_ids if cid != to_id]
        for child_id in moved:
            self.reparent_node(session, child_id, to_id)
        return moved

    def validate_node_integrity(self, session: Session) -> Tuple[bool, List[str]]:
        """
        Check the structural invariants of a session.

        Returns:
            (ok, list of human readable problems)
        """
        errors: List[str] = []

        if session.root_node_id not in session.nodes:
            errors.append(f"Root node missing: {session.root_node_id}")
        if session.active_leaf_id not in session.nodes:
            errors.append(f"Active leaf missing: {session.active_leaf_id}")

        for node_id, node in session.nodes.items():
            if node.id != node_id:
                errors.append(f"Node key {node_id} does not match id {node.id}")
            if node.parent_id is None:
                if node_id != session.root_node_id:
                    errors.append(f"Node {node_id} has no parent but is not the root")
                continue
            parent = session.nodes.get(node.parent_id)
            if parent is None:
                errors.append(f"Node {node_id} references missing parent {node.parent_id}")
            elif node_id not in parent.children_ids:
                errors.append(f"Parent {parent.id} does not list child {node_id}")

            for child_id in node.children_ids:
                child = session.nodes.get(child_id)
                if child is None:
                    errors.append(f"Node {node_id} lists missing child {child_id}")
                elif child.parent_id != node_id:
                    errors.append(f"Child {child_id} of {node_id} points at {child.parent_id}")

        root = session.nodes.get(session.root_node_id)
        if root is not None:
            reachable = {session.root_node_id, *self.get_all_descendants(session, session.root_node_id)}
            unreachable = set(session.nodes) - reachable
            if unreachable:
                errors.append(f"Unreachable nodes: {sorted(unreachable)}")
            if session.active_leaf_id not in reachable:
                errors.append("Active leaf is not reachable from the root")

        return len(errors) == 0, errors

    def finalize_node(
        self,
        node: MessageNode,
        status: NodeStatus,
        content: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Set the final status of a generated node."""
        if content is not None:
            node.content = content
        node.status = status
        node.metadata.error = error

    @staticmethod
    def _require(session: Session, node_id: str) -> MessageNode:
        node = session.nodes.get(node_id)
        if node is None:
            raise ValidationError(f"Node not found: {node_id}", node_id=node_id)
        return node


__all__ = [
    "NodeManager",
    "collect_masked_node_ids",
]
