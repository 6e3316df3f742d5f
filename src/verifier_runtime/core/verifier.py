"""
Verifier：加载共享配置文件中的测试命令，在 deadline 内执行并给出结构化结论。

结论分四类（互斥）：
- 启动失败：exit_code=-1，success=false，error 为 OS 错误文本（is_error=true）
- 超时：timed_out=true，success=false，error 说明超时秒数
- 正常退出且 exit_code=0：success=true
- 正常退出且 exit_code!=0：success=false（退出码本身即信号，不设置 error）

约束：
- 配置加载/校验失败、extra_args/env 不合法时抛异常，且不会启动任何子进程；
- 子进程层面的失败（非 0、超时、启动失败）只编码在 `RunResult` 中，不抛异常。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from verifier_runtime.config.run_spec import TestRunSpec, env_pairs, load_run_spec, validate_command, validate_env
from verifier_runtime.core.errors import ValidationError
from verifier_runtime.core.executor import START_ERROR_KINDS, CommandResult, Executor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 600


class RunResult(BaseModel):
    """run 的结构化结果。"""

    model_config = ConfigDict(extra="forbid")

    config_path: str
    command: List[str]
    working_dir: Optional[str] = None
    exit_code: int
    duration_ms: int = Field(default=0, ge=0)
    stdout: str = ""
    stderr: str = ""
    success: bool
    timed_out: bool = False
    truncated: bool = False
    error: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class RunOutcome:
    """
    一次 run 的输出。

    字段：
    - result：结构化结果
    - summary：一行可读摘要
    - is_error：是否应作为“错误结果”上报（仅启动失败）
    - error_kind：None/exit_code/timeout/start_failed
    """

    result: RunResult
    summary: str
    is_error: bool
    error_kind: Optional[str]


def effective_timeout_seconds(timeout_seconds: Optional[int], default: int = DEFAULT_TIMEOUT_SECONDS) -> int:
    """正数用调用方的值，否则回退到默认值。"""

    if timeout_seconds is not None and int(timeout_seconds) > 0:
        return int(timeout_seconds)
    return default


def effective_env(config_env: Sequence[str], run_env: Sequence[str]) -> Dict[str, str]:
    """
    合并 env 覆盖项：配置文件中的 env 在前，run 调用的 env 在后（同名 key 后写覆盖先写）。

    返回的 dict 作为 `os.environ` 之上的覆盖层传给 Executor。
    """

    merged: Dict[str, str] = {}
    for key, value in env_pairs(list(config_env) + list(run_env)):
        merged[key] = value
    return merged


def summarize(result: RunResult, *, timeout_seconds: int) -> str:
    """生成一行摘要（区分启动失败/超时/通过/失败四种情况）。"""

    if result.timed_out:
        return f"Test run timed out after {timeout_seconds} seconds."
    if result.exit_code == -1 and result.error:
        return f"Test run failed to start: {result.error}"
    if result.success:
        return "Test run passed (exit code 0)."
    return f"Test run failed with exit code {result.exit_code}."


class Verifier:
    """
    测试命令执行器。

    参数：
    - config_path：共享配置文件绝对路径（由调用方解析后注入）
    - executor：子进程执行原语（默认 `Executor()`）
    - default_timeout_seconds：未提供正数 timeout 时使用（默认 600）
    """

    def __init__(
        self,
        *,
        config_path: Path,
        executor: Optional[Executor] = None,
        default_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """创建执行器。参数见类注释。"""

        if default_timeout_seconds < 1:
            raise ValueError("default_timeout_seconds must be >= 1")
        self._config_path = Path(config_path)
        self._executor = executor or Executor()
        self._default_timeout_seconds = default_timeout_seconds

    @property
    def config_path(self) -> Path:
        """共享配置文件路径。"""

        return self._config_path

    def load(self) -> TestRunSpec:
        """读取并重新校验共享配置文件（失败抛 `ConfigLoadError`）。"""

        return load_run_spec(self._config_path)

    def run(
        self,
        *,
        extra_args: Optional[Sequence[str]] = None,
        timeout_seconds: Optional[int] = None,
        env: Optional[Sequence[str]] = None,
    ) -> RunOutcome:
        """
        执行已登记的测试命令。

        参数：
        - extra_args：追加到登记命令之后的参数（与 command 同样的 trim/非空校验）
        - timeout_seconds：正整数时生效，否则使用默认值
        - env：本次调用追加的 `KEY=VALUE`（覆盖配置文件中同名项）

        返回：
        - `RunOutcome`

        异常：
        - `ConfigLoadError`：共享配置文件缺失/不可解析/校验失败
        - `ValidationError`：extra_args/env 不合法
        """

        spec = self.load()

        clean_extra: List[str] = []
        if extra_args:
            try:
                clean_extra = validate_command(extra_args, field="extra_args")
            except ValidationError as e:
                raise ValidationError(f"extra_args: {e.message}", code="EXTRA_ARGS_INVALID", details=e.details) from e

        run_env = validate_env(env)
        cmdline = list(spec.command) + clean_extra
        timeout = effective_timeout_seconds(timeout_seconds, self._default_timeout_seconds)
        overrides = effective_env(spec.env or [], run_env)

        logger.info("running %s (timeout=%ss, working_dir=%s)", cmdline, timeout, spec.working_dir)
        cmd = self._executor.run_command(
            cmdline,
            cwd=Path(spec.working_dir) if spec.working_dir else None,
            env=overrides or None,
            timeout_ms=timeout * 1000,
        )

        result = self._to_run_result(cmd, spec=spec, cmdline=cmdline, timeout_seconds=timeout)
        summary = summarize(result, timeout_seconds=timeout)
        error_kind = _error_kind(result)
        logger.info(
            "test run finished: exit_code=%s success=%s timed_out=%s duration_ms=%s",
            result.exit_code,
            result.success,
            result.timed_out,
            result.duration_ms,
        )
        return RunOutcome(result=result, summary=summary, is_error=error_kind == "start_failed", error_kind=error_kind)

    def _to_run_result(
        self,
        cmd: CommandResult,
        *,
        spec: TestRunSpec,
        cmdline: List[str],
        timeout_seconds: int,
    ) -> RunResult:
        """把 `CommandResult` 投影为 `RunResult`。"""

        base = {
            "config_path": str(self._config_path),
            "command": cmdline,
            "working_dir": spec.working_dir,
            "duration_ms": cmd.duration_ms,
            "updated_at": spec.updated_at,
        }

        if cmd.error_kind in START_ERROR_KINDS or cmd.error_kind == "validation":
            return RunResult(**base, exit_code=-1, success=False, error=cmd.stderr or "failed to start process")

        if cmd.timeout:
            return RunResult(
                **base,
                exit_code=cmd.exit_code if cmd.exit_code is not None else -1,
                stdout=cmd.stdout,
                stderr=cmd.stderr,
                success=False,
                timed_out=True,
                truncated=cmd.truncated,
                error=f"timed out after {timeout_seconds} seconds",
            )

        exit_code = cmd.exit_code if cmd.exit_code is not None else -1
        return RunResult(
            **base,
            exit_code=exit_code,
            stdout=cmd.stdout,
            stderr=cmd.stderr,
            success=exit_code == 0,
            truncated=cmd.truncated,
        )


def _error_kind(result: RunResult) -> Optional[str]:
    """RunResult → 工具层 error_kind。"""

    if result.timed_out:
        return "timeout"
    if result.exit_code == -1 and result.error:
        return "start_failed"
    if not result.success:
        return "exit_code"
    return None
