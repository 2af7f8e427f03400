"""
错误处理模块

上下文引擎的统一异常体系。非致命错误（宏、正则、变量操作）会被记录到
日志或 VariableState.errors 中；致命错误会中止当前构建/发送。
"""

from typing import Any, Dict, Optional


# ===== 错误代码定义 =====

class ErrorCode:
    """标准错误代码"""

    # 树结构错误
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"

    # 非致命错误
    MACRO_ERROR = "MACRO_ERROR"
    REGEX_ERROR = "REGEX_ERROR"
    VARIABLE_OPERATION_ERROR = "VARIABLE_OPERATION_ERROR"

    # 流程错误
    COMPRESSION_FAILURE = "COMPRESSION_FAILURE"
    PIPELINE_PROCESSOR_ERROR = "PIPELINE_PROCESSOR_ERROR"
    TOKEN_BUDGET_EXCEEDED = "TOKEN_BUDGET_EXCEEDED"
    GENERATION_CANCELLED = "GENERATION_CANCELLED"
    GENERATION_FAILED = "GENERATION_FAILED"


# ===== 自定义异常 =====

class ContextEngineError(Exception):
    """
    上下文引擎异常基类

    携带结构化错误信息（message / code / details）。
    """

    fatal: bool = True

    def __init__(
        self,
        message: str,
        code: str = ErrorCode.VALIDATION_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典，用于日志和检查"""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(ContextEngineError):
    """节点引用错误（未知 ID、循环引用、删除根节点等）"""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        error_details = details or {}
        if node_id:
            error_details["node_id"] = node_id
        super().__init__(message, ErrorCode.VALIDATION_ERROR, error_details)


class SessionNotFoundError(ContextEngineError):
    """会话不存在"""

    def __init__(self, session_id: str):
        super().__init__(
            f"Session not found: {session_id}",
            ErrorCode.SESSION_NOT_FOUND,
            {"session_id": session_id},
        )


class MacroError(ContextEngineError):
    """单个宏占位符执行失败（非致命）"""

    fatal = False

    def __init__(self, macro_name: str, message: str, raw: Optional[str] = None):
        self.macro_name = macro_name
        super().__init__(
            message,
            ErrorCode.MACRO_ERROR,
            {"macro": macro_name, "raw": raw},
        )


class RegexError(ContextEngineError):
    """正则规则无效（非致命）"""

    fatal = False

    def __init__(self, rule_id: str, pattern: str, message: str):
        self.rule_id = rule_id
        super().__init__(
            message,
            ErrorCode.REGEX_ERROR,
            {"rule_id": rule_id, "pattern": pattern},
        )


class VariableOperationError(ContextEngineError):
    """单个变量操作失败（非致命，操作被跳过）"""

    fatal = False

    def __init__(self, path: str, op: str, message: str, node_id: Optional[str] = None):
        self.path = path
        self.op = op
        self.node_id = node_id
        super().__init__(
            message,
            ErrorCode.VARIABLE_OPERATION_ERROR,
            {"path": path, "op": op, "node_id": node_id},
        )


class CompressionFailure(ContextEngineError):
    """上下文压缩失败（只中止压缩这一步）"""

    fatal = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.COMPRESSION_FAILURE, details)


class PipelineProcessorError(ContextEngineError):
    """管道处理器执行失败"""

    def __init__(
        self,
        processor_id: str,
        message: str,
        critical: bool = False,
        details: Optional[Dict[str, Any]] = None
    ):
        self.processor_id = processor_id
        self.critical = critical
        error_details = details or {}
        error_details.update({"processor_id": processor_id, "critical": critical})
        super().__init__(message, ErrorCode.PIPELINE_PROCESSOR_ERROR, error_details)


class TokenBudgetExceeded(ContextEngineError):
    """Token 限制器运行后仍超出预算（不变量被破坏）"""

    def __init__(self, budget: int, actual: int):
        self.budget = budget
        self.actual = actual
        super().__init__(
            f"History uses {actual} tokens, budget is {budget}",
            ErrorCode.TOKEN_BUDGET_EXCEEDED,
            {"budget": budget, "actual": actual},
        )


class GenerationCancelled(ContextEngineError):
    """生成被取消"""

    fatal = False

    def __init__(self, node_id: str):
        super().__init__(
            "Generation cancelled",
            ErrorCode.GENERATION_CANCELLED,
            {"node_id": node_id},
        )


__all__ = [
    "ErrorCode",
    "ContextEngineError",
    "ValidationError",
    "SessionNotFoundError",
    "MacroError",
    "RegexError",
    "VariableOperationError",
    "CompressionFailure",
    "PipelineProcessorError",
    "TokenBudgetExceeded",
    "GenerationCancelled",
]
