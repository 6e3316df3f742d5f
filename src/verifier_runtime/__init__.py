"""
Test Verifier Runtime（Python）。

说明：
- registrar 校验并原子写入“测试命令”到共享配置文件；
- verifier 在另一个进程中读取该文件，执行命令（超时/进程组终止/输出捕获），返回结构化结论；
- 两侧只通过共享配置文件通信（`TEST_VERIFIER_CONFIG` 或 `./.test-verifier/command.json`）。
"""

from __future__ import annotations

from verifier_runtime.config.paths import resolve_config_path
from verifier_runtime.config.run_spec import TestRunSpec
from verifier_runtime.core.registrar import RegisterResult, Registrar
from verifier_runtime.core.verifier import RunOutcome, RunResult, Verifier

__all__ = [
    "RegisterResult",
    "Registrar",
    "RunOutcome",
    "RunResult",
    "TestRunSpec",
    "Verifier",
    "__version__",
    "resolve_config_path",
]

__version__ = "0.1.0"
