"""
Asset resolver.

Runs last. Turns the attachment references still left on a message into
langchain content parts. Attachments the model cannot take, or that fail
to load, are replaced by a text label.
"""

import base64
import logging
from typing import Any, Dict, List, Optional

from context_engine.models import Attachment, AttachmentType
from context_engine.pipeline.context import PipelineContext
from context_engine.pipeline.orchestrator import ContextProcessor
from context_engine.pipeline.processors.transcription_processor import (
    attachment_label,
    is_natively_supported,
)
from context_engine.services.interfaces import AttachmentService

logger = logging.getLogger(__name__)

_PART_TYPES = {
    AttachmentType.IMAGE: "image",
    AttachmentType.AUDIO: "audio",
    AttachmentType.VIDEO: "file",
    AttachmentType.DOCUMENT: "file",
}


def build_media_part(attachment: Attachment, payload: bytes) -> Dict[str, Any]:
    """Standard langchain base64 content block."""
    return {
        "type": _PART_TYPES.get(attachment.type, "file"),
        "source_type": "base64",
        "data": base64.b64encode(payload).decode("ascii"),
        "mime_type": attachment.mime_type,
        "filename": attachment.name,
    }


class AssetResolver(ContextProcessor):
    id = "asset-resolver"
    name = "Asset resolver"
    description = "Resolves remaining attachments into multimodal content parts"
    priority = 10000

    def __init__(self, attachment_service: Optional[AttachmentService] = None, **kwargs):
        super().__init__(**kwargs)
        self.attachment_service = attachment_service

    async def execute(self, context: PipelineContext) -> None:
        resolved = 0
        labelled = 0
        for message in context.messages:
            if not message.attachments:
                continue

            parts: List[Dict[str, Any]] = []
            labels: List[str] = []
            for index, attachment in enumerate(message.attachments):
                if self.attachment_service is not None and is_natively_supported(attachment, context.capabilities):
                    try:
                        parts.append(build_media_part(attachment, self.attachment_service.load_payload(attachment)))
                        resolved += 1
                        continue
                    except OSError as e:
                        logger.warning(f"[AssetResolver] Failed to load {attachment.name}: {e}")
                        context.log(self.id, "warning", f"Failed to load attachment {attachment.name}: {e}")
                labels.append(attachment_label(index, attachment.name))
                labelled += 1

            if labels:
                message.content = "\n".join(([message.content] if message.content else []) + labels)
            if parts:
                text_part = [{"type": "text", "text": message.content}] if message.content else []
                message.content_parts = text_part + parts
            message.attachments = []

        if resolved or labelled:
            context.log(self.id, "info", f"Resolved {resolved} attachment(s), labelled {labelled}")


__all__ = [
    "build_media_part",
    "AssetResolver",
]
