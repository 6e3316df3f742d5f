"""
内置工具：register_test_command（registrar 侧）。

把测试命令（argv + 可选 working_dir/env）原子写入共享配置文件，供 run_tests 之后读取。
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from verifier_runtime.core.errors import FrameworkError
from verifier_runtime.core.registrar import Registrar
from verifier_runtime.tools.protocol import ServerInfo, ToolCall, ToolResult, ToolSpec
from verifier_runtime.tools.registry import ToolExecutionContext, framework_error_result

REGISTRAR_SERVER_INFO = ServerInfo(
    name="test-registrar",
    title="Test Command Registrar",
    version="0.1.0",
    instructions=(
        "Register the test command with register_test_command. This writes the shared config file used by "
        "the test verifier. Use the TEST_VERIFIER_CONFIG env var to point both sides at the same config path."
    ),
)


class _RegisterArgs(BaseModel):
    """register_test_command 输入参数。"""

    model_config = ConfigDict(extra="forbid")

    command: list[str] = Field(description="命令与参数（argv 形式）")
    working_dir: Optional[str] = Field(default=None, description="工作目录（可选）")
    env: Optional[list[str]] = Field(default=None, description="环境变量 KEY=VALUE（可选）")


REGISTER_TEST_COMMAND_SPEC = ToolSpec(
    name="register_test_command",
    description=(
        "Register the command used to run tests. Provide the command as an array; "
        "the first entry is the executable and remaining entries are args."
    ),
    parameters={
        "type": "object",
        "properties": {
            "command": {
                "type": "array",
                "items": {"type": "string"},
                "minItems": 1,
                "description": 'Command and arguments to run the tests, e.g. ["npm","test"]',
            },
            "working_dir": {"type": "string", "description": "Optional working directory for running the command"},
            "env": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Optional environment variables as KEY=VALUE",
            },
        },
        "required": ["command"],
        "additionalProperties": False,
    },
    idempotency="safe",
)


def register_test_command(call: ToolCall, ctx: ToolExecutionContext) -> ToolResult:
    """
    执行 register_test_command。

    返回：
    - ok=true：content 为确认信息，details 为 RegisterResult
    - ok=false：error_kind=validation（参数/命令/env/working_dir 不合法）或 io（持久化失败）
    """

    try:
        args = _RegisterArgs.model_validate(call.args)
    except PydanticValidationError as e:
        return ToolResult.error_json(error_kind="validation", message=str(e), details={"code": "ARGS_INVALID"})

    try:
        registrar = Registrar(config_path=ctx.require_config_path())
        result = registrar.register(args.command, working_dir=args.working_dir, env=args.env)
    except FrameworkError as e:
        return framework_error_result(e)
    return ToolResult.from_model(result, text=result.message)
