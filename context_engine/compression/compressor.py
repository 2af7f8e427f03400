"""
Context Compressor

Summarizes old history into a compression node.

Design:
- A compression node is a normal tree node (child of the last compressed
  node) whose metadata lists the ids it masks
- Masking is non-destructive: disabling the node restores the originals
- The summary is generated before the tree is touched, so a failed
  summarization leaves the session unchanged
- Consecutive compressions chain: the new summary continues the previous
  one and also masks the previous compression node
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from langchain_core.messages import HumanMessage
from pydantic import BaseModel, Field

from config import CompressionConfig, VariableConfig
from context_engine.errors import CompressionFailure
from context_engine.models import MessageNode, MessageRole, NodeMetadata, NodeStatus, Session
from context_engine.services.interfaces import ModelService
from context_engine.token import TokenizerService
from context_engine.tree import NodeManager, collect_masked_node_ids
from context_engine.variables import VariableEngine

logger = logging.getLogger(__name__)


class CompressionStats(BaseModel):
    """Size of the visible part of the active path."""
    total_tokens: int = 0
    message_count: int = 0
    history_count: int = 0
    is_estimated: bool = False


class CompressionResult(BaseModel):
    """Outcome of one compression attempt."""
    compressed: bool = False
    node_id: Optional[str] = None
    compressed_node_ids: List[str] = Field(default_factory=list)
    summary: Optional[str] = None
    trigger: Optional[str] = None
    stats: Optional[CompressionStats] = None
    failure_reason: Optional[str] = None


def format_nodes_for_summary(nodes: List[MessageNode]) -> str:
    """Render nodes as ``role: content`` blocks."""
    return "\n\n".join(f"{node.role.value}: {node.content}" for node in nodes)


class ContextCompressor:
    """
    Trigger check, range selection and summary node creation.

    Args:
        model_service: Used for the summarization call
        tokenizer: Shared tokenizer service
        node_manager: Tree operations
    """

    def __init__(
        self,
        model_service: ModelService,
        tokenizer: Optional[TokenizerService] = None,
        node_manager: Optional[NodeManager] = None,
    ):
        self.model_service = model_service
        self.tokenizer = tokenizer or TokenizerService()
        self.node_manager = node_manager or NodeManager()

    # ===== Trigger =====

    def _visible_nodes(self, session: Session, path: List[MessageNode]) -> List[MessageNode]:
        masked = collect_masked_node_ids(path)
        return [
            node for node in path
            if node.id != session.root_node_id and node.is_enabled and node.id not in masked
        ]

    def calculate_context_stats(
        self,
        session: Session,
        path: Optional[List[MessageNode]] = None,
        model_id: Optional[str] = None,
    ) -> CompressionStats:
        if path is None:
            path = self.node_manager.get_active_path(session)
        visible = self._visible_nodes(session, path)

        total = 0
        estimated = False
        for node in visible:
            count = self.tokenizer.count_tokens(node.content, model_id)
            total += count.count
            estimated = estimated or count.is_estimated

        return CompressionStats(
            total_tokens=total,
            message_count=len(visible),
            history_count=len([n for n in visible if not n.is_compression_node]),
            is_estimated=estimated,
        )

    def should_compress(self, stats: CompressionStats, config: CompressionConfig) -> bool:
        if stats.history_count < config.min_history_count:
            return False

        over_tokens = stats.total_tokens > config.token_threshold
        over_count = stats.message_count > config.count_threshold
        if config.trigger_mode == "token":
            return over_tokens
        if config.trigger_mode == "count":
            return over_count
        return over_tokens or over_count

    # ===== Selection =====

    def select_nodes_to_compress(
        self,
        session: Session,
        path: List[MessageNode],
        config: CompressionConfig,
    ) -> List[MessageNode]:
        """
        Oldest eligible nodes outside the protected window.

        Compression nodes, system nodes, masked, disabled and unfinished
        nodes are not eligible.
        """
        masked = collect_masked_node_ids(path)
        candidates = [
            node for node in path
            if node.id != session.root_node_id
            and node.is_enabled
            and node.id not in masked
            and not node.is_compression_node
            and node.role != MessageRole.SYSTEM
            and node.status == NodeStatus.COMPLETE
        ]
        if len(candidates) <= config.protect_recent_count:
            return []
        compressible = candidates[:len(candidates) - config.protect_recent_count]
        return compressible[:config.compress_count]

    def find_previous_summary(
        self,
        path: List[MessageNode],
        first_node: MessageNode,
    ) -> Optional[MessageNode]:
        """Nearest enabled, unmasked compression node above first_node."""
        masked = collect_masked_node_ids(path)
        previous = None
        for node in path:
            if node.id == first_node.id:
                break
            if node.is_compression_node and node.is_enabled and node.id not in masked:
                previous = node
        return previous

    # ===== Summary =====

    async def generate_summary(
        self,
        nodes: List[MessageNode],
        config: CompressionConfig,
        model_id: Optional[str] = None,
        previous_summary: Optional[str] = None,
    ) -> str:
        """
        Ask the model for a summary of nodes.

        Raises:
            CompressionFailure: the call failed or returned nothing
        """
        context_text = format_nodes_for_summary(nodes)
        if previous_summary:
            prompt = config.continue_summary_prompt.replace("{previous_summary}", previous_summary)
        else:
            prompt = config.summary_prompt
        prompt = prompt.replace("{context}", context_text)

        params = {
            "model_id": config.summary_model or model_id,
            "temperature": config.summary_temperature,
            "max_tokens": config.summary_max_tokens,
        }
        logger.info(f"[ContextCompressor] Summarizing {len(nodes)} node(s) with {params['model_id']}")
        try:
            response = await self.model_service.send_request([HumanMessage(content=prompt)], params)
        except Exception as e:
            raise CompressionFailure(f"Summary request failed: {e}", {"node_count": len(nodes)}) from e

        summary = (response.content or "").strip()
        if not summary:
            raise CompressionFailure("Summary model returned empty content", {"node_count": len(nodes)})
        return summary

    # ===== Tree mutation =====

    def compress_nodes(
        self,
        session: Session,
        nodes: List[MessageNode],
        summary: str,
        config: CompressionConfig,
        trigger: str = "manual",
        previous_summary_node: Optional[MessageNode] = None,
        variable_snapshot: Optional[Dict] = None,
        model_id: Optional[str] = None,
    ) -> MessageNode:
        """
        Insert the compression node below the last compressed node and move
        that node's children under it.
        """
        last_node = nodes[-1]
        children = list(last_node.children_ids)

        compressed_ids = [n.id for n in nodes]
        if previous_summary_node is not None:
            compressed_ids.insert(0, previous_summary_node.id)

        metadata = NodeMetadata(
            is_compression_node=True,
            compressed_node_ids=compressed_ids,
            session_variable_snapshot=variable_snapshot,
            compression_timestamp=datetime.now(),
            original_token_count=sum(self.tokenizer.count(n.content, model_id) for n in nodes),
            original_message_count=len(nodes),
            compression_trigger=trigger,
        )
        summary_node = self.node_manager.create_node(
            role=MessageRole(config.summary_role),
            content=summary,
            parent_id=last_node.id,
            metadata=metadata,
        )
        self.node_manager.add_node_to_session(session, summary_node)
        for child_id in children:
            self.node_manager.reparent_node(session, child_id, summary_node.id)

        if session.active_leaf_id == last_node.id:
            session.active_leaf_id = summary_node.id

        logger.info(
            f"[ContextCompressor] Created compression node {summary_node.id} "
            f"masking {len(compressed_ids)} node(s)"
        )
        return summary_node

    def set_compression_enabled(self, session: Session, node_id: str, enabled: bool) -> bool:
        """
        Enable or disable a compression node. Idempotent.

        Returns:
            True if the state changed
        """
        node = session.get_node(node_id)
        if node is None or not node.is_compression_node:
            raise ValueError(f"Not a compression node: {node_id}")
        return self.node_manager.set_node_enabled(session, node_id, enabled)

    # ===== Entry points =====

    async def check_and_compress(
        self,
        session: Session,
        config: CompressionConfig,
        variable_config: Optional[VariableConfig] = None,
        model_id: Optional[str] = None,
    ) -> CompressionResult:
        """Compress if enabled and the thresholds are exceeded."""
        if not config.enabled:
            return CompressionResult(compressed=False)

        path = self.node_manager.get_active_path(session)
        stats = self.calculate_context_stats(session, path, model_id)
        if not self.should_compress(stats, config):
            return CompressionResult(compressed=False, stats=stats)

        logger.info(
            f"[ContextCompressor] Auto compression triggered: "
            f"{stats.total_tokens} tokens, {stats.message_count} messages"
        )
        return await self._execute(session, path, config, variable_config, model_id, "auto", stats)

    async def manual_compress(
        self,
        session: Session,
        config: CompressionConfig,
        variable_config: Optional[VariableConfig] = None,
        model_id: Optional[str] = None,
    ) -> CompressionResult:
        """Compress regardless of thresholds and the enabled flag."""
        path = self.node_manager.get_active_path(session)
        stats = self.calculate_context_stats(session, path, model_id)
        return await self._execute(session, path, config, variable_config, model_id, "manual", stats)

    async def _execute(
        self,
        session: Session,
        path: List[MessageNode],
        config: CompressionConfig,
        variable_config: Optional[VariableConfig],
        model_id: Optional[str],
        trigger: str,
        stats: CompressionStats,
    ) -> CompressionResult:
        nodes = self.select_nodes_to_compress(session, path, config)
        if not nodes:
            logger.info("[ContextCompressor] Not enough eligible nodes outside the protected window")
            return CompressionResult(
                compressed=False,
                trigger=trigger,
                stats=stats,
                failure_reason="No eligible nodes to compress",
            )

        previous = self.find_previous_summary(path, nodes[0])
        try:
            summary = await self.generate_summary(
                nodes, config, model_id, previous.content if previous is not None else None
            )
        except CompressionFailure as e:
            logger.warning(f"[ContextCompressor] Compression aborted: {e.message}")
            return CompressionResult(compressed=False, trigger=trigger, stats=stats, failure_reason=e.message)

        snapshot = None
        if variable_config is not None and variable_config.enabled:
            engine = VariableEngine(variable_config)
            cut = next(i for i, n in enumerate(path) if n.id == nodes[-1].id)
            snapshot = engine.create_snapshot(engine.compute(path[:cut + 1]))

        node = self.compress_nodes(
            session, nodes, summary, config, trigger, previous, snapshot, model_id
        )
        return CompressionResult(
            compressed=True,
            node_id=node.id,
            compressed_node_ids=list(node.metadata.compressed_node_ids),
            summary=summary,
            trigger=trigger,
            stats=stats,
        )


__all__ = [
    "CompressionStats",
    "CompressionResult",
    "format_nodes_for_summary",
    "ContextCompressor",
]
