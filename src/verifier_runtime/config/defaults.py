"""
默认设置加载器。

设计目标：
- 作为库被引用时，不依赖 repo 相对路径即可运行
- 默认设置通过 `importlib.resources` 随 package 分发（`verifier_runtime/assets/default.yaml`）
"""

from __future__ import annotations

from importlib.resources import files
from typing import Any, Dict

import yaml


def load_default_settings_dict() -> Dict[str, Any]:
    """
    读取内置默认设置（YAML）并返回 dict。

    返回：
    - dict：用于与 overlays 做深度合并（overlay 语义由 `verifier_runtime.config.loader` 定义）

    异常：
    - RuntimeError：内容不是 mapping(dict)
    """

    text = files("verifier_runtime.assets").joinpath("default.yaml").read_text(encoding="utf-8")
    obj = yaml.safe_load(text) or {}
    if not isinstance(obj, dict):
        raise RuntimeError("embedded default settings root must be a mapping(dict)")
    return obj
