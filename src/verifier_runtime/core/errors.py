"""
错误分类（异常类型）。

说明：
- 校验/加载/持久化失败使用异常在模块间传递，并带稳定的 `code/message/details`。
- 子进程结果（非 0 退出、超时、启动失败）不抛异常，统一编码在 `RunResult` 中。
- 工具层（tools/builtin）负责把异常投影为 `ToolResult.error_json(...)`。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


class VerifierError(Exception):
    """内部错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """结构化问题对象（CLI 输出 / 工具结果 details 使用）。"""

    code: str
    message: str
    details: Dict[str, Any]


class FrameworkError(VerifierError):
    """结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建结构化错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> FrameworkIssue:
        """把异常转换为可序列化问题对象。"""

        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class ValidationError(FrameworkError):
    """输入不合法：空命令、空白参数、env 格式错误、working_dir 不可用等。"""

    def __init__(self, message: str, *, code: str = "VALIDATION_ERROR", details: Dict[str, Any] | None = None) -> None:
        """创建 `ValidationError`（默认 code=`VALIDATION_ERROR`）。"""

        super().__init__(code=code, message=message, details=details or {})


class WorkingDirNotFoundError(ValidationError):
    """working_dir 不存在。"""

    def __init__(self, working_dir: str, *, reason: str | None = None) -> None:
        """创建错误；`reason` 为底层 OS 错误文本（可选）。"""

        details: Dict[str, Any] = {"working_dir": working_dir}
        if reason:
            details["reason"] = reason
        super().__init__(f"working_dir does not exist: {working_dir}", code="WORKING_DIR_NOT_FOUND", details=details)


class WorkingDirNotADirectoryError(ValidationError):
    """working_dir 存在但不是目录。"""

    def __init__(self, working_dir: str) -> None:
        """创建错误。"""

        super().__init__(
            f"working_dir is not a directory: {working_dir}",
            code="WORKING_DIR_NOT_A_DIRECTORY",
            details={"working_dir": working_dir},
        )


class ConfigLoadError(FrameworkError):
    """共享配置文件缺失/不可读/无法解析/内容校验失败（对 run 调用是致命错误）。"""


class ConfigWriteError(FrameworkError):
    """共享配置文件持久化失败（建目录、写临时文件、原子替换）。"""
