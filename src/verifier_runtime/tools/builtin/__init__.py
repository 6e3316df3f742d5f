"""
内置工具（builtin tools）。

- registrar 侧：`register_test_command`
- verifier 侧：`run_tests`

两侧只通过共享配置文件通信，可以在不同进程中分别注册与派发。
"""

from __future__ import annotations

from verifier_runtime.tools.builtin.register_test_command import (
    REGISTER_TEST_COMMAND_SPEC,
    REGISTRAR_SERVER_INFO,
    register_test_command,
)
from verifier_runtime.tools.builtin.run_tests import RUN_TESTS_SPEC, VERIFIER_SERVER_INFO, run_tests
from verifier_runtime.tools.registry import ToolRegistry

__all__ = [
    "REGISTRAR_SERVER_INFO",
    "VERIFIER_SERVER_INFO",
    "register_registrar_tools",
    "register_verifier_tools",
]


def register_registrar_tools(registry: ToolRegistry) -> None:
    """注册 registrar 侧工具。"""

    registry.register(REGISTER_TEST_COMMAND_SPEC, register_test_command)


def register_verifier_tools(registry: ToolRegistry) -> None:
    """注册 verifier 侧工具。"""

    registry.register(RUN_TESTS_SPEC, run_tests)
