"""
verifier-runtime CLI（registrar/verifier）。

约束：
- 使用 argparse（不引入第三方 CLI 依赖）
- stdout 输出单个机器可读 JSON；失败时也输出 JSON
- 日志只写 stderr（`--log-level`，默认 WARNING）

子命令：
- `registrar register [--working-dir D] [--env K=V]... -- <argv...>`
- `registrar describe`
- `verifier run [--timeout-seconds N] [--env K=V]... [-- <extra args...>]`
- `verifier describe`

独立入口 `test-registrar` / `test-verifier` 分别等价于 `verifier-runtime registrar` / `verifier-runtime verifier`，
便于外部 launcher 以子进程方式启动任一侧并转发其标准流。
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml
from pydantic import ValidationError as PydanticValidationError

from verifier_runtime import __version__
from verifier_runtime.cli.utf8 import ensure_utf8_stdio
from verifier_runtime.config.defaults import load_default_settings_dict
from verifier_runtime.config.loader import VerifierSettings, load_settings_dicts
from verifier_runtime.config.paths import resolve_config_path
from verifier_runtime.core.errors import FrameworkIssue
from verifier_runtime.core.executor import Executor
from verifier_runtime.tools.builtin import (
    REGISTRAR_SERVER_INFO,
    VERIFIER_SERVER_INFO,
    register_registrar_tools,
    register_verifier_tools,
)
from verifier_runtime.tools.protocol import ServerInfo, ToolCall, ToolResult
from verifier_runtime.tools.registry import ToolExecutionContext, ToolRegistry


def _dump_json_to_stdout(obj: Dict[str, Any], *, pretty: bool) -> None:
    """
    将 dict 输出为 JSON 到 stdout（末尾包含换行）。

    参数：
    - obj：待输出对象（必须可 JSON dumps）
    - pretty：是否启用 pretty-print（indent=2）
    """

    if pretty:
        text = json.dumps(obj, ensure_ascii=False, indent=2)
    else:
        text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    print(text)


def _configure_logging(level_name: str) -> None:
    """把日志输出到 stderr（stdout 保留给 JSON）。"""

    level = getattr(logging, str(level_name).upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_yaml_mapping(path: Path) -> Tuple[Optional[Dict[str, Any]], Optional[FrameworkIssue]]:
    """
    加载 YAML overlay 并确保根节点为 mapping(dict)。

    返回：
    - (mapping, issue)：失败时 mapping 为 None，issue 为错误信息（英文结构化）。
    """

    if not path.exists():
        return None, FrameworkIssue(
            code="CLI_OVERLAY_NOT_FOUND",
            message="Overlay settings not found.",
            details={"path": str(path)},
        )
    try:
        obj = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        return None, FrameworkIssue(
            code="CLI_OVERLAY_LOAD_FAILED",
            message="Overlay settings load failed.",
            details={"path": str(path), "reason": str(exc)},
        )
    if not isinstance(obj, dict):
        return None, FrameworkIssue(
            code="CLI_OVERLAY_INVALID",
            message="Overlay settings root must be an object.",
            details={"path": str(path), "actual": type(obj).__name__},
        )
    return obj, None


def _load_effective_settings(overlay_paths: List[Path]) -> Tuple[Optional[VerifierSettings], Optional[FrameworkIssue]]:
    """
    加载默认设置 + overlays，返回校验后的 VerifierSettings。

    返回：
    - (settings, issue)：失败时 settings 为 None。
    """

    overlays: List[Dict[str, Any]] = [load_default_settings_dict()]
    for p in overlay_paths:
        obj, issue = _load_yaml_mapping(p)
        if issue is not None:
            return None, issue
        overlays.append(obj or {})

    try:
        return load_settings_dicts(overlays), None
    except PydanticValidationError as exc:
        return None, FrameworkIssue(
            code="CLI_SETTINGS_INVALID",
            message="Settings are invalid.",
            details={"reason": str(exc)},
        )


def _resolve_config_path_for_cli(args: argparse.Namespace, settings: VerifierSettings) -> Path:
    """`--config-path` 优先；否则按环境变量/默认路径解析（相对当前工作目录）。"""

    raw = getattr(args, "config_path", None)
    if raw:
        return Path(os.path.abspath(Path(str(raw)).expanduser()))
    return resolve_config_path(
        env=os.environ,
        cwd=Path.cwd(),
        env_var=settings.storage.config_env_var,
        default_relative_path=settings.storage.default_relative_path,
    )


def _exit_code_for_tool_result(result: ToolResult) -> int:
    """
    将 ToolResult 映射为 CLI exit code。

    约定：
    - ok=true -> 0
    - exit_code（测试执行了但失败）-> 1
    - validation -> 20
    - config_load -> 22
    - start_failed -> 24
    - timeout -> 25
    - io/其它 -> 23
    """

    if bool(result.ok):
        return 0

    kind = str(result.error_kind or "")
    if kind == "exit_code":
        return 1
    if kind == "validation":
        return 20
    if kind == "config_load":
        return 22
    if kind == "start_failed":
        return 24
    if kind == "timeout":
        return 25
    return 23


def _dump_tool_payload(
    *,
    tool_name: str,
    result: ToolResult,
    config_path: Optional[Path],
    overlay_paths: List[Path],
    pretty: bool,
) -> None:
    """输出统一 JSON envelope（tool/ok/error_kind/is_error/text/result/stats）。"""

    payload = {
        "tool": tool_name,
        "ok": bool(result.ok),
        "error_kind": result.error_kind,
        "is_error": bool(result.is_error),
        "text": result.content,
        "result": result.details or {},
        "stats": {
            "config_path": str(config_path) if config_path is not None else None,
            "overlay_paths": [str(p) for p in overlay_paths],
        },
    }
    _dump_json_to_stdout(payload, pretty=pretty)


def _strip_double_dash(argv: Sequence[str]) -> List[str]:
    """去掉 argparse.REMAINDER 可能保留的前导 `--`。"""

    out = list(argv or [])
    if out and out[0] == "--":
        out = out[1:]
    return out


def _build_parser() -> argparse.ArgumentParser:
    """构建 CLI argparse parser。"""

    parser = argparse.ArgumentParser(
        prog="verifier-runtime",
        description="Register a test command, then run it from another process.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    root_sub = parser.add_subparsers(dest="command", required=True)

    def _add_common_flags(p: argparse.ArgumentParser) -> None:
        """为子命令添加公共 flags。"""

        p.add_argument(
            "--config-path",
            default=None,
            help="Shared config file path (default: $TEST_VERIFIER_CONFIG or ./.test-verifier/command.json).",
        )
        p.add_argument("--config", action="append", default=[], help="Overlay settings YAML path (repeatable).")
        p.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")
        p.add_argument("--log-level", default="WARNING", help="Log level for stderr logging (default: WARNING).")

    registrar = root_sub.add_parser("registrar", help="Registrar commands")
    registrar_sub = registrar.add_subparsers(dest="registrar_cmd", required=True)

    register_p = registrar_sub.add_parser("register", help="Call tool: register_test_command")
    _add_common_flags(register_p)
    register_p.add_argument("--working-dir", default=None, help="Working directory for the test command.")
    register_p.add_argument("--env", action="append", default=[], help="Environment override KEY=VALUE (repeatable).")
    register_p.add_argument("argv", nargs=argparse.REMAINDER, help="Test command argv; use `--` before argv.")

    registrar_describe = registrar_sub.add_parser("describe", help="Print registrar server info and tool specs")
    registrar_describe.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    verifier = root_sub.add_parser("verifier", help="Verifier commands")
    verifier_sub = verifier.add_subparsers(dest="verifier_cmd", required=True)

    run_p = verifier_sub.add_parser("run", help="Call tool: run_tests")
    _add_common_flags(run_p)
    run_p.add_argument("--timeout-seconds", type=int, default=None, help="Timeout in seconds (<=0: default 600).")
    run_p.add_argument("--env", action="append", default=[], help="Environment override KEY=VALUE (repeatable).")
    run_p.add_argument("extra_args", nargs=argparse.REMAINDER, help="Extra args appended to the command; use `--`.")

    verifier_describe = verifier_sub.add_parser("describe", help="Print verifier server info and tool specs")
    verifier_describe.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")

    return parser


def _handle_describe(info: ServerInfo, *, registrar: bool, pretty: bool) -> int:
    """输出 server info 与 tool specs。"""

    registry = ToolRegistry(ctx=ToolExecutionContext())
    if registrar:
        register_registrar_tools(registry)
    else:
        register_verifier_tools(registry)
    payload = {
        "server": info.model_dump(),
        "tools": [spec.model_dump(exclude_none=True) for spec in registry.list_specs()],
    }
    _dump_json_to_stdout(payload, pretty=pretty)
    return 0


def _dispatch_tool(args: argparse.Namespace, *, tool_name: str, tool_args: Dict[str, Any]) -> int:
    """加载设置、解析共享配置路径、构造 ToolRegistry 并派发；输出 JSON envelope 并返回 exit code。"""

    _configure_logging(str(args.log_level))
    overlay_paths = [Path(os.path.abspath(Path(str(p)).expanduser())) for p in (args.config or [])]
    pretty = bool(args.pretty)

    settings, issue = _load_effective_settings(overlay_paths)
    if settings is None:
        assert issue is not None
        result = ToolResult.error_json(
            error_kind="validation",
            message=issue.message,
            details={"code": issue.code, **issue.details},
        )
        _dump_tool_payload(tool_name=tool_name, result=result, config_path=None, overlay_paths=overlay_paths, pretty=pretty)
        return _exit_code_for_tool_result(result)

    config_path = _resolve_config_path_for_cli(args, settings)
    executor = Executor(
        max_stdout_bytes=settings.executor.max_stdout_bytes,
        max_stderr_bytes=settings.executor.max_stderr_bytes,
        max_combined_bytes=settings.executor.max_combined_bytes,
        terminate_grace_ms=settings.executor.terminate_grace_ms,
    )
    ctx = ToolExecutionContext(
        config_path=config_path,
        executor=executor,
        default_timeout_seconds=settings.run.default_timeout_seconds,
    )
    registry = ToolRegistry(ctx=ctx)
    register_registrar_tools(registry)
    register_verifier_tools(registry)

    call = ToolCall(call_id=f"cli_{tool_name}_{uuid.uuid4().hex}", name=tool_name, args=tool_args)
    result = registry.dispatch(call)
    _dump_tool_payload(
        tool_name=tool_name,
        result=result,
        config_path=config_path,
        overlay_paths=overlay_paths,
        pretty=pretty,
    )
    return _exit_code_for_tool_result(result)


def _handle_registrar_register(args: argparse.Namespace) -> int:
    """执行 `registrar register`。"""

    tool_args: Dict[str, Any] = {"command": _strip_double_dash(args.argv)}
    if args.working_dir is not None:
        tool_args["working_dir"] = str(args.working_dir)
    if args.env:
        tool_args["env"] = [str(e) for e in args.env]
    return _dispatch_tool(args, tool_name="register_test_command", tool_args=tool_args)


def _handle_verifier_run(args: argparse.Namespace) -> int:
    """执行 `verifier run`。"""

    tool_args: Dict[str, Any] = {}
    extra = _strip_double_dash(args.extra_args)
    if extra:
        tool_args["extra_args"] = extra
    if args.timeout_seconds is not None:
        tool_args["timeout_seconds"] = int(args.timeout_seconds)
    if args.env:
        tool_args["env"] = [str(e) for e in args.env]
    return _dispatch_tool(args, tool_name="run_tests", tool_args=tool_args)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    CLI 入口函数（用于 console_scripts 与测试）。

    参数：
    - argv：命令行参数列表（不含程序名）；为 None 时读取 sys.argv[1:]。

    返回：
    - int：exit code（不会直接 sys.exit，便于测试）。
    """

    ensure_utf8_stdio()

    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:
        # argparse 约定：`--help`/`--version` 为 0，参数错误为 2
        code = getattr(exc, "code", 2)
        if code is None:
            return 0
        return int(code)

    if args.command == "registrar":
        if args.registrar_cmd == "register":
            return _handle_registrar_register(args)
        return _handle_describe(REGISTRAR_SERVER_INFO, registrar=True, pretty=bool(args.pretty))

    if args.verifier_cmd == "run":
        return _handle_verifier_run(args)
    return _handle_describe(VERIFIER_SERVER_INFO, registrar=False, pretty=bool(args.pretty))


def registrar_main(argv: Optional[Sequence[str]] = None) -> int:
    """`test-registrar` 入口：等价于 `verifier-runtime registrar ...`。"""

    rest = list(argv) if argv is not None else sys.argv[1:]
    return main(["registrar", *rest])


def verifier_main(argv: Optional[Sequence[str]] = None) -> int:
    """`test-verifier` 入口：等价于 `verifier-runtime verifier ...`。"""

    rest = list(argv) if argv is not None else sys.argv[1:]
    return main(["verifier", *rest])


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
