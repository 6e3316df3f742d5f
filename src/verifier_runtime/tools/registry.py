"""
ToolRegistry：工具注册表与派发（dispatch）。

本模块提供：
- 注册：`register/get_spec/list_specs`
- 执行：`dispatch(ToolCall) -> ToolResult`
- 执行上下文：`ToolExecutionContext`（共享配置文件路径、Executor、默认超时）
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional

from verifier_runtime.core.errors import ConfigLoadError, ConfigWriteError, FrameworkError, ValidationError
from verifier_runtime.core.executor import Executor
from verifier_runtime.core.verifier import DEFAULT_TIMEOUT_SECONDS
from verifier_runtime.tools.protocol import ToolCall, ToolResult, ToolSpec

logger = logging.getLogger(__name__)

ToolHandler = Callable[[ToolCall, "ToolExecutionContext"], ToolResult]

_ERROR_KINDS = (
    (ValidationError, "validation"),
    (ConfigLoadError, "config_load"),
    (ConfigWriteError, "io"),
)


def framework_error_result(exc: FrameworkError) -> ToolResult:
    """把框架异常投影为失败的 ToolResult（validation/config_load/io）。"""

    error_kind = "unknown"
    for exc_type, kind in _ERROR_KINDS:
        if isinstance(exc, exc_type):
            error_kind = kind
            break
    return ToolResult.error_json(error_kind=error_kind, message=exc.message, details={"code": exc.code, **exc.details})


@dataclass
class ToolExecutionContext:
    """
    Tool 执行上下文（派发层注入）。

    字段：
    - config_path：共享配置文件绝对路径（registrar/verifier 必须一致）；仅列出 specs 的注册表可为 None
    - executor：run_tests 使用的子进程执行原语
    - default_timeout_seconds：run_tests 未提供正数 timeout_seconds 时的默认值
    """

    config_path: Optional[Path] = None
    executor: Executor = field(default_factory=Executor)
    default_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS

    def require_config_path(self) -> Path:
        """返回共享配置文件路径；未注入时抛 `ValidationError`（code=CONFIG_PATH_UNSET）。"""

        if self.config_path is None:
            raise ValidationError("shared config path is not set", code="CONFIG_PATH_UNSET")
        return self.config_path


class ToolRegistry:
    """工具注册表。"""

    def __init__(self, *, ctx: ToolExecutionContext) -> None:
        """创建注册表并绑定执行上下文。"""

        self._ctx = ctx
        self._specs: Dict[str, ToolSpec] = {}
        self._handlers: Dict[str, ToolHandler] = {}

    @property
    def ctx(self) -> ToolExecutionContext:
        """执行上下文。"""

        return self._ctx

    def register(self, spec: ToolSpec, handler: ToolHandler, *, override: bool = False) -> None:
        """
        注册工具。

        参数：
        - spec：工具规格
        - handler：工具执行函数
        - override：是否允许覆盖同名工具；默认 False（重复注册抛 ValidationError）
        """

        name = spec.name
        if name in self._specs and not override:
            raise ValidationError(f"tool already registered: {name}", code="TOOL_DUPLICATE", details={"tool": name})
        self._specs[name] = spec
        self._handlers[name] = handler

    def get_spec(self, name: str) -> ToolSpec:
        """获取工具规格；不存在则抛 `ValidationError`。"""

        try:
            return self._specs[name]
        except KeyError as e:
            raise ValidationError(f"tool not registered: {name}", code="TOOL_NOT_FOUND", details={"tool": name}) from e

    def list_specs(self) -> list[ToolSpec]:
        """按注册顺序返回所有工具规格。"""

        return list(self._specs.values())

    def dispatch(self, call: ToolCall) -> ToolResult:
        """
        派发执行一个 ToolCall。

        说明：
        - 未注册的工具返回 error_kind=not_found；
        - handler 漏出的框架异常统一投影为对应 error_kind（兜底，handler 通常已自行处理）。
        """

        handler = self._handlers.get(call.name)
        if handler is None:
            return ToolResult.error_json(
                error_kind="not_found",
                message=f"tool not registered: {call.name}",
                details={"tool": call.name},
            )

        logger.debug("dispatching tool %s (call_id=%s)", call.name, call.call_id)
        try:
            return handler(call, self._ctx)
        except FrameworkError as e:
            return framework_error_result(e)
