"""
LangChain Model Service

Adapts any langchain-core chat model to the ModelService interface.
"""

import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage

from context_engine.models import TokenUsage
from context_engine.services.interfaces import ModelResponse, StreamChunk

logger = logging.getLogger(__name__)

# Request params forwarded to the chat model
FORWARDED_PARAMS = ("temperature", "max_tokens", "stop")


def usage_from_metadata(usage_metadata: Optional[Dict[str, Any]]) -> Optional[TokenUsage]:
    """Convert langchain usage_metadata to TokenUsage."""
    if not usage_metadata:
        return None
    prompt = usage_metadata.get("input_tokens", 0) or 0
    completion = usage_metadata.get("output_tokens", 0) or 0
    total = usage_metadata.get("total_tokens") or prompt + completion
    return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def _chunk_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    # Anthropic-style content blocks
    return "".join(
        part.get("text", "") if isinstance(part, dict) else str(part)
        for part in content or []
    )


class LangChainModelService:
    """
    ModelService backed by a BaseChatModel.

    Args:
        llm: Default chat model
        llm_factory: Optional factory returning a chat model for a given
            model id (used when params["model_id"] differs from default_model_id)
        default_model_id: Id reported for responses from ``llm``
    """

    def __init__(
        self,
        llm: BaseChatModel,
        llm_factory: Optional[Callable[[str], BaseChatModel]] = None,
        default_model_id: Optional[str] = None,
    ):
        self.llm = llm
        self.llm_factory = llm_factory
        self.default_model_id = default_model_id
        self._models: Dict[str, BaseChatModel] = {}

    def _select(self, params: Dict[str, Any]):
        model_id = params.get("model_id") or self.default_model_id
        llm = self.llm
        if model_id and model_id != self.default_model_id and self.llm_factory is not None:
            llm = self._models.get(model_id)
            if llm is None:
                llm = self.llm_factory(model_id)
                self._models[model_id] = llm

        kwargs = {k: params[k] for k in FORWARDED_PARAMS if params.get(k) is not None}
        kwargs.update(params.get("extra") or {})
        runnable = llm.bind(**kwargs) if kwargs else llm
        return runnable, model_id

    async def send_request(self, messages: List[BaseMessage], params: Dict[str, Any]) -> ModelResponse:
        runnable, model_id = self._select(params)
        logger.debug(f"[LangChainModelService] Request: {len(messages)} message(s), model={model_id}")
        result = await runnable.ainvoke(messages)

        response_metadata = getattr(result, "response_metadata", None) or {}
        return ModelResponse(
            content=_chunk_text(result.content),
            usage=usage_from_metadata(getattr(result, "usage_metadata", None)),
            model_id=response_metadata.get("model_name") or model_id,
            finish_reason=response_metadata.get("finish_reason") or response_metadata.get("stop_reason"),
        )

    async def stream_request(
        self,
        messages: List[BaseMessage],
        params: Dict[str, Any],
    ) -> AsyncIterator[StreamChunk]:
        runnable, model_id = self._select(params)
        logger.debug(f"[LangChainModelService] Stream: {len(messages)} message(s), model={model_id}")
        async for chunk in runnable.astream(messages):
            yield StreamChunk(
                content=_chunk_text(chunk.content),
                usage=usage_from_metadata(getattr(chunk, "usage_metadata", None)),
                model_id=model_id,
            )


__all__ = [
    "usage_from_metadata",
    "LangChainModelService",
]
