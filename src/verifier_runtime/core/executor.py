"""
Executor（子进程执行引擎）。

本模块提供 verifier 使用的执行原语：
- `Executor.run_command(...)`：执行 argv 命令，受 deadline 约束
- 标准化 `CommandResult`：stdout/stderr/exit_code/timeout/truncated/error_kind 等

说明：
- stdout/stderr 分别捕获（不交织），由后台线程持续读取，避免管道写满导致子进程阻塞。
- 为避免输出过大导致内存膨胀，采用“尾部截断”策略：
  - 单独限制 stdout/stderr 的最大字节数（保留尾部）
  - 再对 combined bytes 施加上限（优先保留 stderr，其次 stdout）
- 超时后终止整个进程组（POSIX：子进程为新 session leader），SIGTERM → grace → SIGKILL。
- 子进程退出后，若后台后代进程仍持有输出管道，清理整个进程组；读线程的等待时间有上限。
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import IO, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

# 子进程未能启动时的 error_kind 集合
START_ERROR_KINDS = frozenset({"not_found", "permission", "start_failed"})


class CommandResult(BaseModel):
    """
    命令执行结果（结构化）。

    字段说明：
    - ok：exit_code==0 且未超时
    - exit_code：进程退出码；未能启动时为 None；超时被终止时为终止后的返回码（POSIX 下为负的信号值）
    - stdout/stderr：捕获到的输出（可能被截断）；启动失败时 stderr 为错误文本
    - duration_ms：从启动前到进程退出（或被强制终止）的耗时（毫秒）
    - timeout：是否因超时被终止
    - truncated：stdout/stderr 是否发生截断（任一发生即 true）
    - error_kind：validation/not_found/permission/start_failed/timeout/exit_code
    """

    model_config = ConfigDict(extra="forbid")

    ok: bool
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = Field(default=0, ge=0)
    timeout: bool = False
    truncated: bool = False
    error_kind: Optional[str] = None


class _TailRingBuffer:
    """保留尾部的有界字节缓冲（用于截断策略；读线程写入、主线程取快照，需加锁）。"""

    def __init__(self, max_bytes: int) -> None:
        """
        创建一个“只保留尾部”的字节缓冲区。

        参数：
        - `max_bytes`：允许保留的最大字节数；为 0 时表示不保留任何输出（但会标记 truncated）。
        """

        if max_bytes < 0:
            raise ValueError("max_bytes must be >= 0")
        self._max_bytes = max_bytes
        self._buf = bytearray()
        self._lock = threading.Lock()
        self.truncated = False

    def append(self, chunk: bytes) -> None:
        """追加字节；超出上限时丢弃头部，保留尾部。"""

        if not chunk:
            return
        with self._lock:
            if self._max_bytes == 0:
                self.truncated = True
                return
            if len(chunk) >= self._max_bytes:
                self._buf[:] = chunk[-self._max_bytes :]
                self.truncated = True
                return
            overflow = len(self._buf) + len(chunk) - self._max_bytes
            if overflow > 0:
                del self._buf[:overflow]
                self.truncated = True
            self._buf.extend(chunk)

    def get_bytes(self) -> bytes:
        """获取当前缓冲内容（尾部片段）。"""

        with self._lock:
            return bytes(self._buf)


def _decode_bytes(data: bytes) -> str:
    """将字节解码为 UTF-8 文本；非法字节替换为 U+FFFD。"""

    return data.decode("utf-8", errors="replace")


def _drain_stream(stream: Optional[IO[bytes]], buf: _TailRingBuffer) -> None:
    """
    持续读取子进程 stdout/stderr 并写入尾部缓冲（后台线程）。

    使用 `os.read` 直接读 fd：有数据即返回，且不持有 BufferedReader 的锁，
    主线程放弃该线程时不会被它阻塞。
    """

    if stream is None:
        return
    try:
        fd = stream.fileno()
    except (OSError, ValueError):
        return
    while True:
        try:
            chunk = os.read(fd, 4096)
        except OSError:
            return
        if not chunk:
            return
        buf.append(chunk)


class Executor:
    """
    执行器。

    参数：
    - max_stdout_bytes/max_stderr_bytes：分别限制 stdout/stderr 记录的最大字节数（尾部保留）
    - max_combined_bytes：限制 stdout+stderr 的总记录字节数（尾部保留；优先保留 stderr）
    - terminate_grace_ms：超时后 SIGTERM→SIGKILL 的宽限时间（毫秒）
    - truncate_marker：截断提示（会被插入到输出最前部，提示前文被省略）
    """

    def __init__(
        self,
        *,
        max_stdout_bytes: int = 1024 * 1024,
        max_stderr_bytes: int = 1024 * 1024,
        max_combined_bytes: int = 2 * 1024 * 1024,
        terminate_grace_ms: int = 200,
        truncate_marker: str = "...<truncated>\n",
    ) -> None:
        """
        创建执行器并配置输出截断策略与超时终止策略。

        约束：
        - 所有 `max_*_bytes` 必须 >= 0；
        - `terminate_grace_ms` 必须 >= 0。
        """

        if max_stdout_bytes < 0 or max_stderr_bytes < 0 or max_combined_bytes < 0:
            raise ValueError("max_*_bytes must be >= 0")
        if terminate_grace_ms < 0:
            raise ValueError("terminate_grace_ms must be >= 0")
        self._max_stdout_bytes = max_stdout_bytes
        self._max_stderr_bytes = max_stderr_bytes
        self._max_combined_bytes = max_combined_bytes
        self._terminate_grace_ms = terminate_grace_ms
        self._truncate_marker = truncate_marker

    def run_command(
        self,
        argv: list[str],
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout_ms: int = 600_000,
    ) -> CommandResult:
        """
        执行 argv 命令并捕获结果。

        参数：
        - argv：命令与参数（argv 形式，至少 1 项）
        - cwd：工作目录；None 表示继承当前进程工作目录
        - env：追加/覆盖的环境变量（会覆盖 os.environ 同名项）
        - timeout_ms：超时毫秒数；超时后终止进程组

        返回：
        - `CommandResult`
        """

        if not argv:
            return CommandResult(ok=False, stderr="argv must not be empty", error_kind="validation")

        cwd_path: Optional[Path] = None
        if cwd is not None:
            cwd_path = Path(cwd)
            if not cwd_path.is_dir():
                return CommandResult(
                    ok=False,
                    stderr=f"cwd does not exist or is not a directory: {cwd_path}",
                    error_kind="validation",
                )

        if timeout_ms < 1:
            return CommandResult(ok=False, stderr="timeout_ms must be >= 1", error_kind="validation")

        merged_env = dict(os.environ)
        if env:
            merged_env.update({str(k): str(v) for k, v in env.items()})

        stdout_buf = _TailRingBuffer(self._max_stdout_bytes)
        stderr_buf = _TailRingBuffer(self._max_stderr_bytes)

        popen_kwargs: dict = {
            "cwd": str(cwd_path) if cwd_path is not None else None,
            "env": merged_env,
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.PIPE,
            "stderr": subprocess.PIPE,
            "text": False,
        }

        # 让超时 kill 覆盖整棵进程树：子进程成为新的进程组 leader。
        if os.name != "nt":
            popen_kwargs["start_new_session"] = True
        else:
            popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]

        start = time.monotonic()
        try:
            proc = subprocess.Popen(argv, **popen_kwargs)  # noqa: S603
        except FileNotFoundError as e:
            return self._start_failure(start, e, "not_found")
        except PermissionError as e:
            return self._start_failure(start, e, "permission")
        except OSError as e:
            return self._start_failure(start, e, "start_failed")

        t_out = threading.Thread(target=_drain_stream, args=(proc.stdout, stdout_buf), daemon=True)
        t_err = threading.Thread(target=_drain_stream, args=(proc.stderr, stderr_buf), daemon=True)
        t_out.start()
        t_err.start()

        timeout = False
        try:
            proc.wait(timeout=timeout_ms / 1000.0)
        except subprocess.TimeoutExpired:
            timeout = True
            self._terminate_process(proc)
        finally:
            duration_ms = int((time.monotonic() - start) * 1000)
            self._finish_readers(proc, (t_out, t_err))

        exit_code = proc.returncode

        out_b, err_b, combined_truncated = self._apply_combined_limit(stdout_buf.get_bytes(), stderr_buf.get_bytes())
        truncated = stdout_buf.truncated or stderr_buf.truncated or combined_truncated

        stdout_text = _decode_bytes(out_b)
        stderr_text = _decode_bytes(err_b)
        if truncated:
            if stdout_text:
                stdout_text = f"{self._truncate_marker}{stdout_text}"
            if stderr_text:
                stderr_text = f"{self._truncate_marker}{stderr_text}"

        if timeout:
            return CommandResult(
                ok=False,
                exit_code=exit_code,
                stdout=stdout_text,
                stderr=stderr_text,
                duration_ms=duration_ms,
                timeout=True,
                truncated=truncated,
                error_kind="timeout",
            )

        ok = exit_code == 0
        return CommandResult(
            ok=ok,
            exit_code=exit_code,
            stdout=stdout_text,
            stderr=stderr_text,
            duration_ms=duration_ms,
            timeout=False,
            truncated=truncated,
            error_kind=None if ok else "exit_code",
        )

    def _start_failure(self, start: float, exc: OSError, error_kind: str) -> CommandResult:
        """子进程未能启动（可执行文件不存在/无权限等）。"""

        return CommandResult(
            ok=False,
            exit_code=None,
            stderr=str(exc),
            duration_ms=int((time.monotonic() - start) * 1000),
            error_kind=error_kind,
        )

    def _finish_readers(self, proc: subprocess.Popen[bytes], readers: tuple[threading.Thread, ...]) -> None:
        """
        子进程退出后回收读线程，总耗时有上限。

        步骤：
        - 短暂等待读线程读到 EOF；
        - 仍未结束说明后代进程继承并持有了管道：POSIX 下 SIGKILL 整个进程组后再等待；
        - 仍未结束（后代已脱离进程组）则放弃这些 daemon 线程，不关闭其管道，缓冲区快照照常进行。
        """

        for t in readers:
            t.join(timeout=0.2)
        if any(t.is_alive() for t in readers) and os.name != "nt":
            logger.debug("descendants of pid=%s still hold output pipes; killing process group", proc.pid)
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except OSError:
                pass
            for t in readers:
                t.join(timeout=1.0)

        for t, stream in zip(readers, (proc.stdout, proc.stderr)):
            if stream is None:
                continue
            if t.is_alive():
                logger.warning("abandoning output reader for pid=%s; pipe still held by a detached process", proc.pid)
                continue
            try:
                stream.close()
            except OSError:
                pass

    def _terminate_process(self, proc: subprocess.Popen[bytes]) -> None:
        """
        超时终止子进程：SIGTERM → (grace) → SIGKILL，最后回收子进程。

        注意：
        - 在 POSIX 下，优先终止进程组（start_new_session=True）。
        - 在 Windows 下，使用 terminate/kill。
        """

        grace = self._terminate_grace_ms / 1000.0
        logger.debug("terminating pid=%s after timeout", proc.pid)

        if os.name == "nt":
            try:
                proc.terminate()
                proc.wait(timeout=grace)
                return
            except (OSError, subprocess.TimeoutExpired):
                pass
            try:
                proc.kill()
            except OSError:
                pass
            proc.wait()
            return

        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except OSError:
            try:
                proc.terminate()
            except OSError:
                pass

        try:
            proc.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            pass

        # 即使 leader 已退出，也清理进程组中可能残留的后代进程。
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except OSError:
            try:
                proc.kill()
            except OSError:
                pass
        proc.wait()

    def _apply_combined_limit(self, stdout_b: bytes, stderr_b: bytes) -> tuple[bytes, bytes, bool]:
        """
        对 stdout/stderr 的“记录字节数总和”施加上限（尾部保留）。

        策略：
        - 优先保留 stderr（更利于诊断）
        - 再保留 stdout
        """

        max_total = self._max_combined_bytes
        total = len(stdout_b) + len(stderr_b)
        if max_total <= 0 or total <= max_total:
            return stdout_b, stderr_b, False

        drop = total - max_total

        if drop >= len(stdout_b):
            drop -= len(stdout_b)
            stdout_b = b""
        else:
            stdout_b = stdout_b[drop:]
            drop = 0

        if drop > 0:
            if drop >= len(stderr_b):
                stderr_b = b""
            else:
                stderr_b = stderr_b[drop:]

        return stdout_b, stderr_b, True
