"""
日志配置测试
"""

import logging
import logging.handlers
import tempfile
from pathlib import Path

import pytest

from config import LoggingConfig
from context_engine.logging_config import setup_logging, setup_logging_from_config


@pytest.fixture(autouse=True)
def restore_logger():
    """测试后恢复 context_engine 日志记录器"""
    logger = logging.getLogger("context_engine")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    for handler in logger.handlers:
        handler.close()
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate


class TestSetupLogging:
    """测试日志设置"""

    def test_console_and_file(self):
        """测试控制台和文件处理器"""
        with tempfile.TemporaryDirectory() as tmpdir:
            log_file = Path(tmpdir) / "sub" / "engine.log"

            logger = setup_logging("DEBUG", str(log_file))
            logging.getLogger("context_engine.tree").debug("[NodeManager] hello")
            for handler in logger.handlers:
                handler.flush()

            assert logger.level == logging.DEBUG
            assert len(logger.handlers) == 2
            assert isinstance(logger.handlers[1], logging.handlers.RotatingFileHandler)
            assert "[NodeManager] hello" in log_file.read_text(encoding="utf-8")

            for handler in logger.handlers:
                handler.close()

    def test_from_config_console_only(self):
        """测试按配置设置且不写文件"""
        logger = setup_logging_from_config(LoggingConfig(level="warning", file=None))

        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1
        assert logger.propagate is False

    def test_repeat_setup_does_not_duplicate(self):
        """测试重复设置不会叠加处理器"""
        setup_logging("INFO", None)
        logger = setup_logging("INFO", None)
        assert len(logger.handlers) == 1
