"""
Chat Service

Async entry points for sending, regenerating, editing and navigating.

Every operation works on a deep copy of the stored session and saves it
only when the operation completes. A fatal error (broken tree, critical
processor failure) therefore leaves the stored session untouched, while
generation errors and cancellations are committed as an error node that
keeps the partial content.
"""

import asyncio
import weakref
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from config import CompressionConfig, Config, get_config, merge_config_override
from context_engine.chat.context_builder import BuildResult, ContextBuilder
from context_engine.compression import CompressionResult, ContextCompressor
from context_engine.errors import (
    ContextEngineError,
    GenerationCancelled,
    SessionNotFoundError,
    ValidationError,
)
from context_engine.macros import MacroProcessor, build_macro_context
from context_engine.models import (
    AgentConfig,
    Attachment,
    MessageNode,
    MessageRole,
    ModelCapabilities,
    NodeStatus,
    Session,
    TokenUsage,
    UserProfile,
)
from context_engine.services.interfaces import ModelService, SessionRepository
from context_engine.tree import BranchNavigator, NodeManager, collect_masked_node_ids
from context_engine.variables import VariableEngine

logger = logging.getLogger(__name__)


class ChatResult(BaseModel):
    """Outcome of a generating operation."""

    model_config = ConfigDict(protected_namespaces=())

    session: Session
    node_id: str
    user_node_id: Optional[str] = None
    status: NodeStatus = NodeStatus.COMPLETE
    content: str = ""
    error: Optional[str] = None
    model_id: Optional[str] = None
    usage: Optional[TokenUsage] = None
    compression: Optional[CompressionResult] = None
    build_stats: Dict[str, Any] = Field(default_factory=dict)


class ChatService:
    """
    Conversation operations over a SessionRepository.

    Args:
        repository: Session persistence
        model_service: Generation and summarization backend
        builder: Context builder (default built from config)
        compressor: Compression engine (default uses model_service)
        config: Global configuration
    """

    def __init__(
        self,
        repository: SessionRepository,
        model_service: ModelService,
        builder: Optional[ContextBuilder] = None,
        compressor: Optional[ContextCompressor] = None,
        config: Optional[Config] = None,
        node_manager: Optional[NodeManager] = None,
    ):
        self.config = config or (builder.config if builder else get_config())
        self.repository = repository
        self.model_service = model_service
        self.builder = builder or ContextBuilder(config=self.config)
        self.node_manager = node_manager or NodeManager()
        self.navigator = BranchNavigator()
        self.compressor = compressor or ContextCompressor(
            model_service, self.builder.tokenizer, self.node_manager
        )
        self.macro_processor: MacroProcessor = self.builder.macro_processor
        # entries disappear once no operation holds or awaits the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # ===== Session access =====

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def _fetch(self, session_id: str) -> Session:
        session = self.repository.load_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session.model_copy(deep=True)

    async def _load(self, session_id: str) -> Session:
        return await asyncio.to_thread(self._fetch, session_id)

    async def _save(self, session: Session) -> None:
        await asyncio.to_thread(self.repository.save_session, session)

    def create_session(self, name: str = "New Chat", agent_id: Optional[str] = None) -> Session:
        session = Session.create(name=name, agent_id=agent_id)
        self.repository.save_session(session)
        logger.info(f"[ChatService] Created session {session.id}")
        return session

    def get_session(self, session_id: str) -> Session:
        return self._fetch(session_id)

    def _model_id(self, agent_config: AgentConfig) -> str:
        return agent_config.model_id or self.config.llm.default_model

    def _request_params(self, agent_config: AgentConfig) -> Dict[str, Any]:
        parameters = agent_config.parameters
        return {
            "model_id": self._model_id(agent_config),
            "temperature": parameters.temperature if parameters.temperature is not None else self.config.llm.temperature,
            "max_tokens": parameters.max_tokens or self.config.llm.max_tokens,
            "extra": dict(parameters.extra),
        }

    # ===== Operations =====

    async def send_message(
        self,
        session_id: str,
        content: str,
        agent_config: AgentConfig,
        attachments: Optional[List[Attachment]] = None,
        user_profile: Optional[UserProfile] = None,
        capabilities: Optional[ModelCapabilities] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ChatResult:
        """
        Append a user message and generate the assistant reply.

        Raises:
            SessionNotFoundError: unknown session
            ContextEngineError: fatal build error (nothing is saved)
        """
        async with self._lock_for(session_id):
            session = await self._load(session_id)

            session, compression = await self._auto_compress(session, agent_config)

            text = self._process_user_input(session, content, agent_config, user_profile)
            user_node, assistant_node = self.node_manager.create_message_pair(
                session, text, session.active_leaf_id, attachments
            )
            self.node_manager.update_active_leaf(session, assistant_node.id)
            session.agent_id = agent_config.id

            build = await self.builder.build_context(
                session, agent_config, user_profile, capabilities, self._model_id(agent_config)
            )
            result = await self._generate(session, assistant_node, build, agent_config, cancel_event)
            result.user_node_id = user_node.id
            result.compression = compression

            await self._save(session)
            return result

    async def regenerate(
        self,
        session_id: str,
        node_id: str,
        agent_config: AgentConfig,
        user_profile: Optional[UserProfile] = None,
        capabilities: Optional[ModelCapabilities] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ChatResult:
        """
        Generate a new reply as a sibling of an assistant node.

        Given a user node, the new reply becomes that node's child instead.
        The previous reply stays in the tree.
        """
        async with self._lock_for(session_id):
            session = await self._load(session_id)
            target = session.get_node(node_id)
            if target is None:
                raise ValidationError(f"Node not found: {node_id}", node_id=node_id)

            if target.role == MessageRole.USER:
                new_node = self.node_manager.add_node_to_session(
                    session,
                    self.node_manager.create_node(
                        MessageRole.ASSISTANT,
                        "",
                        parent_id=target.id,
                        status=NodeStatus.GENERATING,
                    ),
                )
            else:
                new_node = self.node_manager.create_regenerate_branch(session, node_id)
            self.node_manager.update_active_leaf(session, new_node.id)

            build = await self.builder.build_context(
                session, agent_config, user_profile, capabilities, self._model_id(agent_config)
            )
            result = await self._generate(session, new_node, build, agent_config, cancel_event)
            await self._save(session)
            return result

    async def edit_message(self, session_id: str, node_id: str, new_content: str) -> Session:
        """Create an edited sibling of node_id and make it the active leaf."""
        async with self._lock_for(session_id):
            session = await self._load(session_id)
            new_node = self.node_manager.create_edit_branch(session, node_id, new_content)
            self.node_manager.update_active_leaf(session, new_node.id)
            await self._save(session)
            logger.info(f"[ChatService] Edited {node_id} as new branch {new_node.id}")
            return session

    async def switch_branch(self, session_id: str, node_id: str) -> Session:
        """Make node_id the active leaf."""
        async with self._lock_for(session_id):
            session = await self._load(session_id)
            self.node_manager.update_active_leaf(session, node_id)
            await self._save(session)
            return session

    async def switch_sibling(self, session_id: str, node_id: str, direction: str) -> Session:
        """Move to the previous/next sibling branch of node_id."""
        async with self._lock_for(session_id):
            session = await self._load(session_id)
            self.navigator.switch_to_sibling(session, node_id, direction)
            await self._save(session)
            return session

    async def set_node_enabled(self, session_id: str, node_id: str, enabled: bool) -> Session:
        async with self._lock_for(session_id):
            session = await self._load(session_id)
            if self.node_manager.set_node_enabled(session, node_id, enabled):
                await self._save(session)
            return session

    async def delete_node(self, session_id: str, node_id: str) -> Session:
        """Remove node_id and its subtree."""
        async with self._lock_for(session_id):
            session = await self._load(session_id)
            self.node_manager.hard_delete_node(session, node_id)
            await self._save(session)
            return session

    async def compress_context(
        self,
        session_id: str,
        agent_config: AgentConfig,
        mode: str = "manual",
    ) -> CompressionResult:
        """
        Compress the active branch.

        mode="manual" ignores thresholds, mode="auto" applies them.
        """
        if mode not in ("manual", "auto"):
            raise ValueError(f"Invalid compression mode: {mode}")

        async with self._lock_for(session_id):
            session = await self._load(session_id)
            settings = self._compression_settings(agent_config)
            variable_config = agent_config.variable_config or self.config.variables
            model_id = self._model_id(agent_config)

            if mode == "manual":
                result = await self.compressor.manual_compress(session, settings, variable_config, model_id)
            else:
                result = await self.compressor.check_and_compress(session, settings, variable_config, model_id)

            if result.compressed:
                await self._save(session)
            return result

    async def preview_context(
        self,
        session_id: str,
        agent_config: AgentConfig,
        user_profile: Optional[UserProfile] = None,
        capabilities: Optional[ModelCapabilities] = None,
    ) -> BuildResult:
        """Build the context the next request would send, without changing anything."""
        session = await self._load(session_id)
        return await self.builder.build_context(
            session, agent_config, user_profile, capabilities, self._model_id(agent_config)
        )

    # ===== Internals =====

    def _compression_settings(self, agent_config: AgentConfig) -> CompressionConfig:
        return merge_config_override(self.config.compression, agent_config.context_compression)

    async def _auto_compress(
        self,
        session: Session,
        agent_config: AgentConfig,
    ) -> Tuple[Session, Optional[CompressionResult]]:
        """Compress a copy of session; return the copy only if it changed."""
        settings = self._compression_settings(agent_config)
        if not settings.enabled or not settings.auto_trigger:
            return session, None

        staged = session.model_copy(deep=True)
        try:
            result = await self.compressor.check_and_compress(
                staged,
                settings,
                agent_config.variable_config or self.config.variables,
                self._model_id(agent_config),
            )
        except ContextEngineError as e:
            logger.warning(f"[ChatService] Auto compression skipped: {e.message}")
            return session, CompressionResult(compressed=False, trigger="auto", failure_reason=e.message)
        return (staged if result.compressed else session), result

    def _process_user_input(
        self,
        session: Session,
        content: str,
        agent_config: AgentConfig,
        user_profile: Optional[UserProfile],
    ) -> str:
        macros = self.config.macros
        if not macros.enabled or not macros.process_user_input or "{{" not in content:
            return content

        path = self.node_manager.get_active_path(session)
        masked = collect_masked_node_ids(path)
        visible = [n for n in path if n.id != session.root_node_id and n.is_enabled and n.id not in masked]

        variable_config = agent_config.variable_config or self.config.variables
        variables: Dict[str, Any] = {}
        if variable_config.enabled:
            variables = VariableEngine(variable_config).compute(path).values

        macro_context = build_macro_context(
            agent=agent_config,
            user_profile=user_profile,
            history=visible,
            session_id=session.id,
            model_id=self._model_id(agent_config),
            input_text=content,
            variables=variables,
        )
        return self.macro_processor.process(content, macro_context).output

    async def _generate(
        self,
        session: Session,
        node: MessageNode,
        build: BuildResult,
        agent_config: AgentConfig,
        cancel_event: Optional[asyncio.Event],
    ) -> ChatResult:
        params = self._request_params(agent_config)
        stream = agent_config.parameters.stream
        if stream is None:
            stream = self.config.llm.stream

        messages = build.to_langchain()
        chunks: List[str] = []
        usage: Optional[TokenUsage] = None
        model_id = params["model_id"]

        try:
            if cancel_event is not None and cancel_event.is_set():
                raise GenerationCancelled(node.id)

            if stream:
                iterator = self.model_service.stream_request(messages, params).__aiter__()
                try:
                    while True:
                        chunk = await self._cancellable(self._next_chunk(iterator), cancel_event, node.id)
                        if chunk is None:
                            break
                        if cancel_event is not None and cancel_event.is_set():
                            raise GenerationCancelled(node.id)
                        chunks.append(chunk.content)
                        node.content = "".join(chunks)
                        usage = chunk.usage or usage
                        model_id = chunk.model_id or model_id
                finally:
                    aclose = getattr(iterator, "aclose", None)
                    if aclose is not None:
                        await aclose()
                content = "".join(chunks)
            else:
                response = await self._cancellable(
                    self.model_service.send_request(messages, params), cancel_event, node.id
                )
                content = response.content
                usage = response.usage
                model_id = response.model_id or model_id

        except GenerationCancelled:
            logger.info(f"[ChatService] Generation cancelled for node {node.id}")
            self.node_manager.finalize_node(node, NodeStatus.ERROR, "".join(chunks), error="cancelled")
            node.metadata.model_id = model_id
            return self._result(session, node, build, usage)

        except Exception as e:
            logger.error(f"[ChatService] Generation failed for node {node.id}: {e}")
            self.node_manager.finalize_node(node, NodeStatus.ERROR, "".join(chunks), error=str(e))
            node.metadata.model_id = model_id
            return self._result(session, node, build, usage)

        self.node_manager.finalize_node(node, NodeStatus.COMPLETE, content)
        node.metadata.model_id = model_id
        node.metadata.token_usage = usage
        logger.info(f"[ChatService] Generated {len(content)} chars for node {node.id} ({model_id})")
        return self._result(session, node, build, usage)

    @staticmethod
    async def _next_chunk(iterator):
        try:
            return await iterator.__anext__()
        except StopAsyncIteration:
            return None

    @staticmethod
    async def _cancellable(coro, cancel_event: Optional[asyncio.Event], node_id: str):
        if cancel_event is None:
            return await coro

        request = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(cancel_event.wait())
        done, _ = await asyncio.wait({request, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if request in done:
            waiter.cancel()
            return request.result()
        request.cancel()
        # let the request unwind before the caller closes its stream
        await asyncio.wait({request})
        raise GenerationCancelled(node_id)

    @staticmethod
    def _result(session: Session, node: MessageNode, build: BuildResult, usage: Optional[TokenUsage]) -> ChatResult:
        return ChatResult(
            session=session,
            node_id=node.id,
            status=node.status,
            content=node.content,
            error=node.metadata.error,
            model_id=node.metadata.model_id,
            usage=usage,
            build_stats=build.stats,
        )


__all__ = [
    "ChatResult",
    "ChatService",
]
