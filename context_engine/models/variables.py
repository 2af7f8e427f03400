"""
会话变量状态模型
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class VariableOp(str, Enum):
    """变量操作类型"""

    SET = "set"
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    DIV = "div"
    APPEND = "append"  # 字符串拼接
    PUSH = "push"      # 列表追加元素
    REMOVE = "remove"  # 从列表移除值，或删除路径
    MERGE = "merge"    # 浅合并字典
    RESET = "reset"    # 恢复初始值


class VariableOperation(BaseModel):
    """从消息中解析出的一次变量操作"""

    op: VariableOp = Field(..., description="操作类型")
    path: str = Field(..., description="变量路径")
    value: Any = Field(default=None, description="操作数")
    node_id: Optional[str] = Field(default=None, description="来源节点")


class VariableChange(BaseModel):
    """一条变量变更记录"""

    path: str = Field(..., description="变量路径")
    op: VariableOp = Field(..., description="操作类型")
    old_value: Any = Field(default=None, description="旧值")
    new_value: Any = Field(default=None, description="新值")
    node_id: Optional[str] = Field(default=None, description="来源节点")


class VariableErrorRecord(BaseModel):
    """可恢复的变量操作错误"""

    path: str = Field(..., description="变量路径")
    op: str = Field(..., description="操作类型")
    message: str = Field(..., description="错误信息")
    node_id: Optional[str] = Field(default=None, description="来源节点")


class VariableState(BaseModel):
    """一次计算得到的会话变量状态"""

    values: Dict[str, Any] = Field(default_factory=dict, description="嵌套变量值")
    changes: List[VariableChange] = Field(default_factory=list, description="变更历史（按应用顺序）")
    errors: List[VariableErrorRecord] = Field(default_factory=list, description="可恢复错误")
    snapshot_node_id: Optional[str] = Field(default=None, description="起始快照所在节点")


__all__ = [
    "VariableOp",
    "VariableOperation",
    "VariableChange",
    "VariableErrorRecord",
    "VariableState",
]
