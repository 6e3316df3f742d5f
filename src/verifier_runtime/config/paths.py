from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

CONFIG_ENV_VAR = "TEST_VERIFIER_CONFIG"
DEFAULT_RELATIVE_CONFIG_PATH = ".test-verifier/command.json"


def resolve_config_path(
    *,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Path] = None,
    env_var: str = CONFIG_ENV_VAR,
    default_relative_path: str = DEFAULT_RELATIVE_CONFIG_PATH,
) -> Path:
    """
    解析共享配置文件的绝对路径（registrar 与 verifier 各自独立调用，结果必须一致）。

    规则：
    - `env[env_var]` 去除首尾空白后非空：使用该值（相对路径相对 `cwd`）
    - 否则：`<cwd>/<default_relative_path>`

    参数：
    - env：环境变量映射；为 None 时视为空（调用方显式传入 `os.environ`）
    - cwd：相对路径基准目录；为 None 时使用当前进程工作目录
    """

    base = Path(cwd) if cwd is not None else Path.cwd()
    raw = str((env or {}).get(env_var) or "").strip()
    p = Path(raw).expanduser() if raw else Path(default_relative_path)
    if not p.is_absolute():
        p = base / p
    return Path(os.path.abspath(p))
