"""
Context Pipeline

Runs an ordered, configurable list of processors over a PipelineContext.

- Processors run strictly by ascending priority (stable for equal values)
- A failing processor is logged and skipped; a critical one aborts the run
- Processors are registered by id, so a custom processor slots in purely by
  its priority value
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel

from context_engine.errors import ContextEngineError, PipelineProcessorError
from context_engine.pipeline.context import PipelineContext

logger = logging.getLogger(__name__)

ProcessorFactory = Callable[[], List["ContextProcessor"]]


class ContextProcessor(ABC):
    """
    Base class for pipeline processors.

    Subclasses set ``id``, ``name`` and a default ``priority``.
    ``config_schema`` optionally validates the ``options`` dict.
    """

    id: str = ""
    name: str = ""
    description: str = ""
    priority: int = 1000
    critical: bool = False
    config_schema: Optional[Type[BaseModel]] = None

    def __init__(
        self,
        enabled: bool = True,
        priority: Optional[int] = None,
        options: Optional[Dict[str, Any]] = None,
    ):
        self.enabled = enabled
        if priority is not None:
            self.priority = priority
        self.options: Any = options or {}
        if self.config_schema is not None:
            self.options = self.config_schema.model_validate(options or {})

    @abstractmethod
    async def execute(self, context: PipelineContext) -> None:
        """Process the context in place."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id} priority={self.priority} enabled={self.enabled}>"


class FunctionProcessor(ContextProcessor):
    """Wraps a plain async function as a processor."""

    def __init__(
        self,
        processor_id: str,
        func: Callable[[PipelineContext], Awaitable[None]],
        priority: int = 1000,
        name: str = "",
        critical: bool = False,
        enabled: bool = True,
    ):
        super().__init__(enabled=enabled, priority=priority)
        self.id = processor_id
        self.name = name or processor_id
        self.critical = critical
        self._func = func

    async def execute(self, context: PipelineContext) -> None:
        await self._func(context)


class ContextPipeline:
    """
    Ordered processor list.

    Args:
        processors: Initial processors
        default_factory: Builds the default processor set for reset_to_defaults()
    """

    def __init__(
        self,
        processors: Optional[List[ContextProcessor]] = None,
        default_factory: Optional[ProcessorFactory] = None,
    ):
        self._default_factory = default_factory
        self._processors: Dict[str, ContextProcessor] = {}
        initial = processors if processors is not None else (default_factory() if default_factory else [])
        for processor in initial:
            self.register_processor(processor)

    def register_processor(self, processor: ContextProcessor) -> None:
        """Register a processor, replacing any processor with the same id."""
        if not processor.id:
            raise ValueError("Processor id must not be empty")
        if processor.id in self._processors:
            logger.debug(f"[ContextPipeline] Replacing processor {processor.id}")
        self._processors[processor.id] = processor

    def unregister_processor(self, processor_id: str) -> bool:
        return self._processors.pop(processor_id, None) is not None

    def get_processor(self, processor_id: str) -> Optional[ContextProcessor]:
        return self._processors.get(processor_id)

    def set_processor_enabled(self, processor_id: str, enabled: bool) -> None:
        processor = self._processors.get(processor_id)
        if processor is None:
            raise KeyError(f"Unknown processor: {processor_id}")
        processor.enabled = enabled

    def reorder_processors(self, processor_ids: List[str]) -> None:
        """
        Assign priorities 100, 200, ... in the given order.

        Processors not listed keep their current priority.
        """
        unknown = [pid for pid in processor_ids if pid not in self._processors]
        if unknown:
            raise KeyError(f"Unknown processor(s): {unknown}")
        for index, processor_id in enumerate(processor_ids):
            self._processors[processor_id].priority = (index + 1) * 100

    def reset_to_defaults(self) -> None:
        """Drop all customisation and rebuild the default processor set."""
        self._processors.clear()
        if self._default_factory is not None:
            for processor in self._default_factory():
                self.register_processor(processor)

    def get_processors(self) -> List[ContextProcessor]:
        """All processors in execution order."""
        return sorted(self._processors.values(), key=lambda p: p.priority)

    async def execute(self, context: PipelineContext) -> PipelineContext:
        """
        Run the enabled processors in priority order.

        Raises:
            PipelineProcessorError: a critical processor failed
        """
        timings: Dict[str, float] = context.shared_data.setdefault("processor_timings", {})

        for processor in self.get_processors():
            if not processor.enabled:
                continue

            start = time.perf_counter()
            try:
                await processor.execute(context)
            except Exception as e:
                details = e.to_dict() if isinstance(e, ContextEngineError) else {"error": repr(e)}
                if processor.critical:
                    logger.error(f"[ContextPipeline] Critical processor {processor.id} failed: {e}")
                    context.log(processor.id, "error", f"Critical failure: {e}", details)
                    raise PipelineProcessorError(processor.id, str(e), critical=True, details=dict(details)) from e
                logger.error(f"[ContextPipeline] Processor {processor.id} failed, continuing: {e}")
                context.log(processor.id, "error", str(e), details)
            finally:
                timings[processor.id] = round((time.perf_counter() - start) * 1000, 3)

        return context


__all__ = [
    "ContextProcessor",
    "FunctionProcessor",
    "ContextPipeline",
]
