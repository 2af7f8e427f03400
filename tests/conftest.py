"""
Pytest 配置文件

设置测试环境和共享 fixture
"""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# 添加项目根目录到 Python 路径（必须放在最前面，避免命名冲突）
project_root = Path(__file__).parent.parent.resolve()
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from config import Config  # noqa: E402
from context_engine.models import MessageRole, NodeStatus, Session, TokenUsage  # noqa: E402
from context_engine.services.interfaces import ModelResponse, StreamChunk  # noqa: E402
from context_engine.token import TokenizerProvider, TokenizerService  # noqa: E402
from context_engine.tree import NodeManager  # noqa: E402


class WordCountProvider(TokenizerProvider):
    """每个空白分隔的词计 1 个 token，避免下载 tiktoken 编码"""

    def count(self, text: str, model_id: str) -> Optional[int]:
        return len(text.split())


class FakeModelService:
    """
    可编程的模型服务

    replies 依次返回；元素为 Exception 时抛出。
    """

    def __init__(self, replies: Optional[List[Any]] = None, chunk_size: int = 0):
        self.replies = list(replies or [])
        self.chunk_size = chunk_size
        self.requests: List[Dict[str, Any]] = []

    def _next(self) -> Any:
        reply = self.replies.pop(0) if self.replies else "ok"
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def send_request(self, messages, params):
        self.requests.append({"messages": messages, "params": params, "stream": False})
        content = self._next()
        return ModelResponse(
            content=content,
            usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
            model_id=params.get("model_id"),
        )

    async def stream_request(self, messages, params):
        self.requests.append({"messages": messages, "params": params, "stream": True})
        content = self._next()
        size = self.chunk_size or max(1, len(content))
        for start in range(0, len(content), size):
            yield StreamChunk(content=content[start:start + size], model_id=params.get("model_id"))
        yield StreamChunk(
            content="",
            usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
            model_id=params.get("model_id"),
        )


@pytest.fixture
def config():
    """不读取文件的默认配置"""
    cfg = Config(environment="test")
    cfg.llm.default_model = "test-model"
    cfg.logging.file = None
    return cfg


@pytest.fixture
def tokenizer():
    return TokenizerService(provider=WordCountProvider(), default_model="test-model")


@pytest.fixture
def node_manager():
    return NodeManager()


@pytest.fixture
def session():
    return Session.create(name="Test")


@pytest.fixture
def build_chain(node_manager):
    """
    按顺序在活动叶节点下追加消息，返回节点列表

    用法: build_chain(session, [("user", "hi"), ("assistant", "hello")])
    """

    def _build(session: Session, turns, status: NodeStatus = NodeStatus.COMPLETE):
        nodes = []
        for role, content in turns:
            node = node_manager.add_node_to_session(
                session,
                node_manager.create_node(
                    MessageRole(role),
                    content,
                    parent_id=session.active_leaf_id,
                    status=status,
                ),
            )
            node_manager.update_active_leaf(session, node.id)
            nodes.append(node)
        return nodes

    return _build


@pytest.fixture
def fake_model():
    return FakeModelService()


@pytest.fixture
def make_model():
    def _make(replies=None, chunk_size: int = 0) -> FakeModelService:
        return FakeModelService(replies, chunk_size)

    return _make
