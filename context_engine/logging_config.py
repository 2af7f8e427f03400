"""
日志配置模块

为上下文引擎提供控制台 + 轮转文件日志。
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

from config import LoggingConfig

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = "./logs/context_engine.log",
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5
) -> logging.Logger:
    """
    设置日志

    Args:
        log_level: 日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: 日志文件路径，None 表示只输出到控制台
        max_bytes: 单个日志文件最大大小
        backup_count: 保留的日志备份数量

    Returns:
        context_engine 包的日志记录器
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    # 只配置本包的日志记录器，不影响宿主应用的根记录器
    logger = logging.getLogger("context_engine")
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8"
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # 第三方库
    logging.getLogger("langchain").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger.info(f"[Logging] Initialized: level={log_level}, file={log_file}")
    return logger


def setup_logging_from_config(config: LoggingConfig) -> logging.Logger:
    """按 LoggingConfig 设置日志"""
    return setup_logging(config.level, config.file, config.max_bytes, config.backup_count)


__all__ = [
    "LOG_FORMAT",
    "setup_logging",
    "setup_logging_from_config",
]
