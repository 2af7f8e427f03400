"""
JSON 会话存储

每个会话一个 JSON 文件，另有 index.json 保存会话列表。
写入先落到临时文件再 os.replace，保证不会留下半写的文件。
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from context_engine.models import Session, SessionIndexEntry

logger = logging.getLogger(__name__)


class JsonSessionStore:
    """
    基于文件的 SessionRepository 实现

    目录结构:
        base_dir/
            index.json
            <session_id>.json
    """

    def __init__(self, base_dir: Union[str, Path], index_file: str = "index.json"):
        """
        初始化存储

        Args:
            base_dir: 会话目录
            index_file: 索引文件名
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.index_path = self.base_dir / index_file
        self._lock = threading.Lock()

    def session_path(self, session_id: str) -> Path:
        # 会话 ID 只允许出现在文件名中，不允许路径分隔符
        if not session_id or "/" in session_id or "\\" in session_id or session_id.startswith("."):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.base_dir / f"{session_id}.json"

    def load_session(self, session_id: str) -> Optional[Session]:
        path = self.session_path(session_id)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return Session.model_validate(json.load(f))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.warning(f"[JsonSessionStore] Failed to load session {session_id}: {e}")
            return None

    def save_session(self, session: Session) -> None:
        """保存会话并更新索引"""
        path = self.session_path(session.id)
        self._atomic_write(path, session.model_dump_json(indent=2))

        with self._lock:
            entries = [e for e in self.load_index() if e.id != session.id]
            entries.append(SessionIndexEntry.from_session(session))
            self.save_index(entries)
        logger.debug(f"[JsonSessionStore] Saved session {session.id} ({len(session.nodes)} nodes)")

    def delete_session(self, session_id: str) -> bool:
        path = self.session_path(session_id)
        if not path.exists():
            return False
        path.unlink()
        with self._lock:
            self.save_index([e for e in self.load_index() if e.id != session_id])
        return True

    def list_sessions(self) -> List[SessionIndexEntry]:
        """按更新时间倒序列出会话"""
        return sorted(self.load_index(), key=lambda e: e.updated_at, reverse=True)

    def load_index(self) -> List[SessionIndexEntry]:
        if not self.index_path.exists():
            return []
        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return [SessionIndexEntry.model_validate(item) for item in data.get("sessions", [])]
        except (json.JSONDecodeError, PydanticValidationError) as e:
            logger.warning(f"[JsonSessionStore] Index unreadable, starting empty: {e}")
            return []

    def save_index(self, entries: List[SessionIndexEntry]) -> None:
        payload = {"sessions": [e.model_dump(mode="json") for e in entries]}
        self._atomic_write(self.index_path, json.dumps(payload, ensure_ascii=False, indent=2))

    @staticmethod
    def _atomic_write(path: Path, text: str) -> None:
        temp_path = path.with_name(path.name + ".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise


class InMemorySessionStore:
    """内存实现，用于测试和临时会话"""

    def __init__(self):
        self._sessions = {}
        self._index: List[SessionIndexEntry] = []

    def load_session(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    def save_session(self, session: Session) -> None:
        self._sessions[session.id] = session.model_copy(deep=True)
        self._index = [e for e in self._index if e.id != session.id]
        self._index.append(SessionIndexEntry.from_session(session))

    def load_index(self) -> List[SessionIndexEntry]:
        return list(self._index)

    def save_index(self, entries: List[SessionIndexEntry]) -> None:
        self._index = list(entries)


__all__ = [
    "JsonSessionStore",
    "InMemorySessionStore",
]
