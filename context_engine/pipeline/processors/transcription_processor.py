"""
Transcription processor.

Converts attachments the target model cannot take natively into message
text, so the token limiter sees their real cost.

- ``【file::<asset id>】`` placeholders are replaced in place
- other converted attachments are appended, each under a
  ``[附件: N - name]`` label
- attachments the model supports natively are left for the asset resolver
"""

import logging
import re
from typing import List, Optional

from context_engine.models import Attachment, AttachmentType, ModelCapabilities
from context_engine.pipeline.context import PipelineContext
from context_engine.pipeline.orchestrator import ContextProcessor
from context_engine.services.interfaces import AttachmentService

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"【file::([^\s】]+)】")


def attachment_label(index: int, name: str) -> str:
    return f"[附件: {index + 1} - {name}]"


def is_natively_supported(attachment: Attachment, capabilities: ModelCapabilities) -> bool:
    """Whether the model accepts the attachment as a native content part."""
    return {
        AttachmentType.IMAGE: capabilities.vision,
        AttachmentType.AUDIO: capabilities.audio,
        AttachmentType.VIDEO: capabilities.video,
        AttachmentType.DOCUMENT: capabilities.document,
    }.get(attachment.type, False)


class TranscriptionProcessor(ContextProcessor):
    id = "transcription"
    name = "Transcription"
    description = "Turns unsupported attachments into text before token limiting"
    priority = 250

    def __init__(self, attachment_service: Optional[AttachmentService] = None, **kwargs):
        super().__init__(**kwargs)
        self.attachment_service = attachment_service

    async def execute(self, context: PipelineContext) -> None:
        if self.attachment_service is None:
            return

        model_id = context.effective_model_id
        converted = 0
        for message in context.messages:
            if not message.attachments:
                continue

            texts = {}
            remaining: List[Attachment] = []
            for attachment in message.attachments:
                if is_natively_supported(attachment, context.capabilities):
                    remaining.append(attachment)
                    continue
                text = self.attachment_service.resolve_text(attachment, model_id)
                if text is None:
                    remaining.append(attachment)
                else:
                    texts[attachment.id] = text

            if not texts:
                continue

            by_id = {a.id: i for i, a in enumerate(message.attachments)}
            claimed = set()

            def replace(match: re.Match) -> str:
                asset_id = match.group(1)
                if asset_id not in texts:
                    return match.group(0)
                claimed.add(asset_id)
                return texts[asset_id]

            content = PLACEHOLDER_PATTERN.sub(replace, message.content)
            blocks = [
                f"{attachment_label(by_id[asset_id], message.attachments[by_id[asset_id]].name)}\n{text}"
                for asset_id, text in texts.items()
                if asset_id not in claimed
            ]
            if blocks:
                content = "\n\n".join([content] + blocks) if content else "\n\n".join(blocks)

            message.content = content
            message.attachments = remaining
            converted += len(texts)

        if converted:
            context.log(self.id, "info", f"Converted {converted} attachment(s) to text")


__all__ = [
    "PLACEHOLDER_PATTERN",
    "attachment_label",
    "is_natively_supported",
    "TranscriptionProcessor",
]
