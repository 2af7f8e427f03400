"""
Session loader.

Turns the active branch into history messages. Skipped nodes:
the root, disabled nodes, nodes masked by an enabled compression node on
the path, nodes still generating and empty nodes without attachments.
"""

import logging
from typing import Optional

from context_engine.models import NodeStatus, ProcessableMessage
from context_engine.pipeline.context import PipelineContext
from context_engine.pipeline.orchestrator import ContextProcessor
from context_engine.tree import NodeManager, collect_masked_node_ids

logger = logging.getLogger(__name__)


class SessionLoader(ContextProcessor):
    id = "session-loader"
    name = "Session loader"
    description = "Loads the active branch as history messages"
    priority = 100
    critical = True

    def __init__(self, node_manager: Optional[NodeManager] = None, **kwargs):
        super().__init__(**kwargs)
        self.node_manager = node_manager or NodeManager()

    async def execute(self, context: PipelineContext) -> None:
        session = context.session
        path = self.node_manager.get_active_path(session)
        masked = collect_masked_node_ids(path)

        history = []
        visible = []
        for index, node in enumerate(path):
            if node.id == session.root_node_id:
                continue
            if not node.is_enabled or node.id in masked:
                continue
            if node.status == NodeStatus.GENERATING:
                continue
            if not node.content and not node.attachments:
                continue
            visible.append(node)
            history.append(ProcessableMessage(
                role=node.role,
                content=node.content,
                source_id=node.id,
                source_index=index,
                attachments=list(node.attachments),
            ))

        context.messages = history
        context.shared_data["active_path"] = path
        context.shared_data["visible_nodes"] = visible
        context.shared_data["masked_node_ids"] = sorted(masked)

        message = f"Loaded {len(history)} history message(s) from a path of {len(path)} node(s)"
        logger.debug(f"[SessionLoader] {message}, {len(masked)} masked")
        context.log(self.id, "info", message, {"masked": len(masked)})


__all__ = ["SessionLoader"]
