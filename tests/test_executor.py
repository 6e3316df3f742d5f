from __future__ import annotations

import sys
import time
from pathlib import Path

from verifier_runtime.core.executor import Executor


def _py(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def test_executor_run_command_echo_ok(tmp_path: Path) -> None:
    ex = Executor()
    result = ex.run_command(_py('print("hi")'), cwd=tmp_path, env=None, timeout_ms=10_000)

    assert result.ok is True
    assert result.exit_code == 0
    assert result.timeout is False
    assert result.error_kind is None
    assert "hi" in result.stdout


def test_executor_captures_stdout_and_stderr_separately(tmp_path: Path) -> None:
    code = "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"
    result = Executor().run_command(_py(code), cwd=tmp_path, timeout_ms=10_000)

    assert result.ok is False
    assert result.exit_code == 3
    assert result.error_kind == "exit_code"
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


def test_executor_run_command_timeout(tmp_path: Path) -> None:
    ex = Executor(terminate_grace_ms=50)
    result = ex.run_command(_py("import time; time.sleep(30)"), cwd=tmp_path, timeout_ms=300)

    assert result.ok is False
    assert result.timeout is True
    assert result.error_kind == "timeout"
    assert result.duration_ms < 10_000


def test_executor_timeout_kills_process_group(tmp_path: Path) -> None:
    marker = tmp_path / "late.txt"
    grandchild = f"import time; time.sleep(2); open({str(marker)!r}, 'w').write('x')"
    code = f"import subprocess, sys, time; subprocess.Popen([sys.executable, '-c', {grandchild!r}]); time.sleep(30)"
    result = Executor(terminate_grace_ms=50).run_command(_py(code), cwd=tmp_path, timeout_ms=500)

    assert result.timeout is True
    time.sleep(2.5)
    assert not marker.exists()


def test_executor_missing_executable_is_start_failure(tmp_path: Path) -> None:
    result = Executor().run_command([str(tmp_path / "no-such-binary")], cwd=tmp_path, timeout_ms=1_000)

    assert result.ok is False
    assert result.exit_code is None
    assert result.error_kind == "not_found"
    assert result.stderr


def test_executor_env_overrides_are_applied(tmp_path: Path) -> None:
    code = "import os; print(os.environ['VERIFIER_X'])"
    result = Executor().run_command(_py(code), cwd=tmp_path, env={"VERIFIER_X": "42"}, timeout_ms=10_000)
    assert result.stdout.strip() == "42"


def test_executor_rejects_invalid_inputs(tmp_path: Path) -> None:
    ex = Executor()
    assert ex.run_command([], timeout_ms=1_000).error_kind == "validation"
    assert ex.run_command(_py("pass"), cwd=tmp_path / "missing", timeout_ms=1_000).error_kind == "validation"
    assert ex.run_command(_py("pass"), timeout_ms=0).error_kind == "validation"


def test_executor_truncates_keeping_tail(tmp_path: Path) -> None:
    ex = Executor(max_stdout_bytes=64, truncate_marker="<cut>")
    code = "print('A' * 1000); print('END')"
    result = ex.run_command(_py(code), cwd=tmp_path, timeout_ms=10_000)

    assert result.truncated is True
    assert result.stdout.startswith("<cut>")
    assert result.stdout.rstrip().endswith("END")
    assert len(result.stdout) <= 64 + len("<cut>")


def test_executor_combined_limit_prefers_stderr(tmp_path: Path) -> None:
    ex = Executor(max_combined_bytes=32, truncate_marker="")
    code = "import sys; sys.stdout.write('o' * 100); sys.stderr.write('e' * 20)"
    result = ex.run_command(_py(code), cwd=tmp_path, timeout_ms=10_000)

    assert result.truncated is True
    assert result.stderr == "e" * 20
    assert len(result.stdout) == 12


def test_executor_returns_when_background_child_holds_stdout(tmp_path: Path) -> None:
    background = "import time; time.sleep(15)"
    code = f"import subprocess, sys; subprocess.Popen([sys.executable, '-c', {background!r}]); print('hi', flush=True)"

    started = time.monotonic()
    result = Executor().run_command(_py(code), cwd=tmp_path, timeout_ms=10_000)
    elapsed = time.monotonic() - started

    assert elapsed < 5.0
    assert result.ok is True
    assert result.exit_code == 0
    assert result.stdout.strip() == "hi"
