"""
基础模型类

定义模型混入类和 ID 生成函数
"""

import time
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field


def generate_id(prefix: str) -> str:
    """
    生成带前缀的唯一 ID

    格式: {prefix}-{毫秒时间戳}-{9位随机串}
    """
    return f"{prefix}-{int(time.time() * 1000)}-{uuid4().hex[:9]}"


class TimestampMixin(BaseModel):
    """时间戳混入类 - 为模型添加创建和更新时间"""

    created_at: datetime = Field(
        default_factory=datetime.now,
        description="创建时间"
    )
    updated_at: datetime = Field(
        default_factory=datetime.now,
        description="更新时间"
    )

    def touch(self) -> None:
        """刷新更新时间"""
        self.updated_at = datetime.now()


__all__ = [
    "generate_id",
    "TimestampMixin",
]
