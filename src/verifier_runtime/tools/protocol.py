"""
Tool 协议（ServerInfo / ToolSpec / ToolCall / ToolResult）。

本模块只定义外部请求/响应框架需要的最小协议：
- ServerInfo：工具提供方元信息（name/title/version/instructions）
- ToolSpec：注册表条目（JSON schema 描述参数）
- ToolCall：执行输入（call_id/name/args）
- ToolResult：执行输出（ok/content/error_kind/message/details）

约定：
- `content` 为一行可读文本（直接展示给调用方）
- `details` 为结构化结果（RegisterResult / RunResult 的 dict 形式，或错误详情）
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ServerInfo(BaseModel):
    """工具提供方元信息。"""

    model_config = ConfigDict(extra="forbid")

    name: str
    title: str
    version: str
    instructions: str = ""


class ToolSpec(BaseModel):
    """
    Tool 注册信息。

    字段：
    - name：工具名（全局唯一，稳定）
    - description：工具说明
    - parameters：JSON Schema（必须为 object schema）
    - idempotency：可选；用于重试策略与审计（safe|unsafe|unknown）
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    idempotency: Optional[str] = None


class ToolCall(BaseModel):
    """
    Tool 调用（内部表示）。

    字段：
    - call_id：本次调用的唯一 id
    - name：工具名
    - args：解析后的参数 dict
    """

    model_config = ConfigDict(extra="forbid")

    call_id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """
    Tool 执行结果（统一 envelope）。

    字段：
    - ok：是否成功（register：已落盘；run_tests：测试通过）
    - content：一行可读文本
    - error_kind：validation/config_load/io/not_found（调用失败）或 exit_code/timeout/start_failed（测试结论）
    - message：面向开发者的一句话说明（可选）
    - is_error：是否应作为“错误结果”上报（调用失败，或测试命令未能启动；超时/非 0 退出属于正常结论）
    - details：结构化结果
    """

    model_config = ConfigDict(extra="forbid")

    ok: bool
    content: str
    error_kind: Optional[str] = None
    message: Optional[str] = None
    is_error: bool = False
    details: Optional[Dict[str, Any]] = None

    @classmethod
    def from_model(
        cls,
        model: BaseModel,
        *,
        text: str,
        ok: bool = True,
        error_kind: Optional[str] = None,
        is_error: bool = False,
    ) -> "ToolResult":
        """从结构化结果模型构造（details = model_dump(exclude_none=True)）。"""

        return cls(
            ok=ok,
            content=text,
            error_kind=error_kind,
            is_error=is_error,
            message=None if ok else text,
            details=model.model_dump(exclude_none=True),
        )

    @classmethod
    def error_json(
        cls,
        *,
        error_kind: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> "ToolResult":
        """便捷构造：调用失败（校验失败/配置加载失败/持久化失败/未注册工具）。"""

        return cls(
            ok=False,
            content=message,
            error_kind=error_kind,
            message=message,
            is_error=True,
            details=details,
        )
