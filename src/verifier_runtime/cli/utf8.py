"""CLI 启动时的 stdio 编码修正：`C` locale 下 stdout/stderr 可能是 ASCII，输出非 ASCII 测试日志会抛 `UnicodeEncodeError`。"""

from __future__ import annotations

import codecs
import io
import sys


def _is_utf8(encoding: str | None) -> bool:
    """encoding 是否为 UTF-8（接受别名）。"""

    try:
        return codecs.lookup(encoding or "ascii").name == "utf-8"
    except LookupError:
        return False


def ensure_utf8_stdio() -> None:
    """
    把非 UTF-8 的 stdout/stderr 改为 UTF-8（无法编码的字符用 `\\x..` 转义）。

    已是 UTF-8、或不是 `io.TextIOWrapper`（例如被测试框架替换）的流保持原样。
    """

    for name in ("stdout", "stderr"):
        stream = getattr(sys, name, None)
        if not isinstance(stream, io.TextIOWrapper) or _is_utf8(stream.encoding):
            continue
        try:
            stream.reconfigure(encoding="utf-8", errors="backslashreplace")
        except (ValueError, OSError):
            # 已 detach 或底层不可写的流无法 reconfigure，沿用原编码
            continue
