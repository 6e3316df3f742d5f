"""
运行时设置加载器（YAML）。

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者）。
- 使用 pydantic 做 schema 校验；未知字段允许保留（避免默认配置新增字段导致加载失败）。

注意：这里的“设置”与共享配置文件（`.test-verifier/command.json`，见 `run_spec.py`）不是一回事：
前者控制执行器/超时等运行参数，后者是 registrar 写入、verifier 读取的测试命令。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field


def _deep_merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """返回 base 与 overlay 深度合并后的新 dict（不修改入参）：两侧都是 mapping 时递归，否则 overlay 整体替换。"""

    merged: Dict[str, Any] = deepcopy(dict(base))
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


class VerifierRunSettings(BaseModel):
    """run_tests 参数默认值。"""

    model_config = ConfigDict(extra="allow")

    default_timeout_seconds: int = Field(default=600, ge=1)


class VerifierExecutorSettings(BaseModel):
    """
    Executor 输出截断与超时终止策略。

    说明：
    - stdout/stderr 超出上限时保留尾部（测试失败摘要通常在末尾）；
    - `terminate_grace_ms` 为超时后 SIGTERM→SIGKILL 的等待时间。
    """

    model_config = ConfigDict(extra="allow")

    max_stdout_bytes: int = Field(default=1024 * 1024, ge=0)
    max_stderr_bytes: int = Field(default=1024 * 1024, ge=0)
    max_combined_bytes: int = Field(default=2 * 1024 * 1024, ge=0)
    terminate_grace_ms: int = Field(default=200, ge=0)


class VerifierStorageSettings(BaseModel):
    """共享配置文件路径解析参数。"""

    model_config = ConfigDict(extra="allow")

    config_env_var: str = Field(default="TEST_VERIFIER_CONFIG", min_length=1)
    default_relative_path: str = Field(default=".test-verifier/command.json", min_length=1)


class VerifierSettings(BaseModel):
    """设置根对象（允许扩展字段）。"""

    model_config = ConfigDict(extra="allow")

    config_version: int = Field(default=1, ge=1)
    run: VerifierRunSettings = Field(default_factory=VerifierRunSettings)
    executor: VerifierExecutorSettings = Field(default_factory=VerifierExecutorSettings)
    storage: VerifierStorageSettings = Field(default_factory=VerifierStorageSettings)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"settings file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"settings root must be a mapping: {path}")
    return data


def load_settings_dicts(settings_dicts: list[Dict[str, Any]]) -> VerifierSettings:
    """
    加载并合并多个 dict 设置，返回校验后的 `VerifierSettings`。

    参数：
    - settings_dicts：按顺序做深度合并（后者覆盖前者）
    """

    merged: Dict[str, Any] = {}
    for overlay in settings_dicts:
        if not overlay:
            continue
        merged = _deep_merge(merged, overlay)
    return VerifierSettings.model_validate(merged)


def load_settings(settings_paths: list[Path]) -> VerifierSettings:
    """
    加载并合并多个 YAML 设置文件，返回校验后的 `VerifierSettings`。

    参数：
    - settings_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays: list[Dict[str, Any]] = []
    for path in settings_paths:
        overlays.append(_load_yaml_file(Path(path)))
    return load_settings_dicts(overlays)
