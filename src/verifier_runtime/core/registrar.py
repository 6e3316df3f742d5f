"""
Registrar：校验并原子持久化测试运行规格（写共享配置文件）。

说明：
- 每次 `register` 整体替换文件中的所有字段（无部分更新）；
- 不启动任何子进程；唯一副作用是写文件；
- 校验失败时不触碰文件系统（不会创建目录或临时文件）。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from verifier_runtime.config.run_spec import (
    TestRunSpec,
    save_run_spec,
    validate_command,
    validate_env,
    validate_working_dir,
)
from verifier_runtime.core.utils import now_rfc3339

logger = logging.getLogger(__name__)

REGISTERED_MESSAGE = "Test command registered. The test verifier can now run tests."


class RegisterResult(BaseModel):
    """register 的结构化结果。"""

    model_config = ConfigDict(extra="forbid")

    config_path: str
    command: List[str]
    working_dir: Optional[str] = None
    env: Optional[List[str]] = None
    updated_at: str
    message: str


class Registrar:
    """
    测试命令登记器。

    参数：
    - config_path：共享配置文件绝对路径（由调用方解析后注入，见 `config.paths.resolve_config_path`）
    - clock：时间戳函数（默认 `now_rfc3339`；测试可注入固定值）
    """

    def __init__(self, *, config_path: Path, clock: Callable[[], str] = now_rfc3339) -> None:
        """创建登记器。参数见类注释。"""

        self._config_path = Path(config_path)
        self._clock = clock

    @property
    def config_path(self) -> Path:
        """共享配置文件路径。"""

        return self._config_path

    def register(
        self,
        command: Sequence[str],
        *,
        working_dir: Optional[str] = None,
        env: Optional[Sequence[str]] = None,
    ) -> RegisterResult:
        """
        校验并持久化测试命令。

        参数：
        - command：命令与参数（第 0 项为可执行文件）
        - working_dir：可选工作目录（必须存在且为目录；落盘为绝对路径）
        - env：可选 `KEY=VALUE` 列表；空白项丢弃

        返回：
        - `RegisterResult`

        异常：
        - `ValidationError`：命令/env/working_dir 不合法（文件未被修改）
        - `ConfigWriteError`：持久化失败（旧文件保持不变）
        """

        clean_command = validate_command(command)
        clean_env = validate_env(env)
        clean_working_dir = validate_working_dir(working_dir)

        spec = TestRunSpec(
            command=clean_command,
            working_dir=clean_working_dir,
            env=clean_env or None,
            updated_at=self._clock(),
        )
        save_run_spec(self._config_path, spec)
        logger.info("registered test command %s at %s", spec.command, self._config_path)

        return RegisterResult(
            config_path=str(self._config_path),
            command=list(spec.command),
            working_dir=spec.working_dir,
            env=list(spec.env) if spec.env else None,
            updated_at=str(spec.updated_at),
            message=REGISTERED_MESSAGE,
        )
