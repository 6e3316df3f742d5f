"""
原子替换文件内容（write-temp-then-rename）。

保证：
- 读者只会看到“旧的完整内容”或“新的完整内容”，不会看到截断的中间态；
- 失败时临时文件被清理。

流程：
1) 确保父目录存在
2) 在目标文件同目录创建唯一临时文件（mkstemp，0600），写入并 fsync
3) `os.replace(tmp, target)`
4) 若 3) 失败：删除目标文件后重试一次 rename；仍失败则清理临时文件并抛 `ConfigWriteError`

说明：
- POSIX 上 `os.replace` 本身即原子覆盖，步骤 4) 基本不会触发；它针对的是部分平台/文件系统
  对“rename 覆盖已存在文件”的限制。走到删除目标文件这一步后，若重试仍失败，旧文件已不存在。
- `replace`/`remove` 可注入，便于单测模拟文件系统故障。
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Union

from verifier_runtime.core.errors import ConfigWriteError

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def _unlink_quietly(path: Path) -> None:
    """删除文件；不存在或删除失败时忽略（仅用于清理临时文件）。"""

    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.debug("failed to remove temp file %s", path, exc_info=True)


def atomic_write_text(
    path: PathLike,
    text: str,
    *,
    encoding: str = "utf-8",
    replace: Callable[[PathLike, PathLike], None] = os.replace,
    remove: Callable[[PathLike], None] = os.remove,
) -> Path:
    """
    以原子替换方式写入文本文件。

    参数：
    - path：目标文件路径
    - text：完整文件内容
    - replace：rename 原语（默认 `os.replace`）
    - remove：fallback 时删除目标文件的原语（默认 `os.remove`）

    返回：
    - 目标文件路径（Path）

    异常：
    - `ConfigWriteError`：建目录/写临时文件/替换失败
    """

    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigWriteError(
            code="CONFIG_DIR_CREATE_FAILED",
            message="failed to create config dir",
            details={"dir": str(target.parent), "reason": str(e)},
        ) from e

    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
    except OSError as e:
        raise ConfigWriteError(
            code="CONFIG_TEMP_WRITE_FAILED",
            message="failed to create temp config",
            details={"dir": str(target.parent), "reason": str(e)},
        ) from e

    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
    except OSError as e:
        _unlink_quietly(tmp)
        raise ConfigWriteError(
            code="CONFIG_TEMP_WRITE_FAILED",
            message="failed to write temp config",
            details={"path": str(tmp), "reason": str(e)},
        ) from e

    try:
        replace(tmp, target)
        return target
    except OSError as first_error:
        logger.warning("rename %s -> %s failed (%s); removing target and retrying once", tmp, target, first_error)
        try:
            try:
                remove(target)
            except FileNotFoundError:
                pass
            replace(tmp, target)
            return target
        except OSError as retry_error:
            _unlink_quietly(tmp)
            raise ConfigWriteError(
                code="CONFIG_RENAME_FAILED",
                message="failed to move config into place",
                details={"path": str(target), "reason": str(first_error), "retry_reason": str(retry_error)},
            ) from first_error
