"""
本地附件服务

从附件根目录读取文件，提供文本提取、token 估算和二进制读取。
"""

import logging
from pathlib import Path
from typing import Optional

from config import AttachmentConfig
from context_engine.models import Attachment, AttachmentType

logger = logging.getLogger(__name__)

TEXT_MIME_PREFIXES = ("text/",)
TEXT_MIME_TYPES = {
    "application/json",
    "application/xml",
    "application/x-yaml",
    "application/yaml",
    "application/javascript",
    "application/x-python",
}


def is_text_attachment(attachment: Attachment) -> bool:
    """附件是否可直接按文本读取"""
    if attachment.type == AttachmentType.TEXT:
        return True
    mime = attachment.mime_type.lower()
    return mime.startswith(TEXT_MIME_PREFIXES) or mime in TEXT_MIME_TYPES


class LocalAttachmentService:
    """
    AttachmentService 的本地文件实现

    - 已有转写文本时直接返回
    - 文本类文件读取内容（超过 max_text_chars 截断）
    - 图片/音频/视频按配置估算 token
    """

    def __init__(self, config: Optional[AttachmentConfig] = None):
        self.config = config or AttachmentConfig()
        self.base_dir = Path(self.config.base_dir).resolve()

    def resolve_path(self, attachment: Attachment) -> Path:
        """解析附件路径，拒绝越出根目录的路径"""
        if not attachment.path:
            raise FileNotFoundError(f"Attachment {attachment.id} has no path")
        path = (self.base_dir / attachment.path).resolve()
        if self.base_dir not in path.parents and path != self.base_dir:
            raise PermissionError(f"Attachment path escapes base directory: {attachment.path}")
        return path

    def resolve_text(self, attachment: Attachment, model_id: Optional[str] = None) -> Optional[str]:
        if attachment.transcription:
            return attachment.transcription
        if not is_text_attachment(attachment):
            return None
        try:
            path = self.resolve_path(attachment)
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                text = f.read(self.config.max_text_chars + 1)
        except OSError as e:
            logger.warning(f"[LocalAttachmentService] Cannot read {attachment.name}: {e}")
            return None
        if len(text) > self.config.max_text_chars:
            text = text[:self.config.max_text_chars] + "\n...(truncated)"
        return text

    def estimate_tokens(self, attachment: Attachment, model_id: Optional[str] = None) -> int:
        estimates = {
            AttachmentType.IMAGE: self.config.image_token_estimate,
            AttachmentType.AUDIO: self.config.audio_token_estimate,
            AttachmentType.VIDEO: self.config.video_token_estimate,
            AttachmentType.DOCUMENT: self.config.document_token_estimate,
        }
        if attachment.type in estimates:
            return estimates[attachment.type]
        # 文本：约 4 字符 / token
        return max(1, attachment.size // 4)

    def load_payload(self, attachment: Attachment) -> bytes:
        with open(self.resolve_path(attachment), "rb") as f:
            return f.read()


__all__ = [
    "is_text_attachment",
    "LocalAttachmentService",
]
