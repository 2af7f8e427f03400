"""
会话存储测试配置
"""

import tempfile
from pathlib import Path

import pytest

from context_engine.services import JsonSessionStore


@pytest.fixture
def temp_dir():
    """临时目录夹具"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def json_store(temp_dir):
    """JsonSessionStore 实例夹具"""
    return JsonSessionStore(temp_dir)
