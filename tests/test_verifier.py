from __future__ import annotations

import json
import sys
import time
from pathlib import Path

import pytest

from verifier_runtime.core.errors import ConfigLoadError, ValidationError
from verifier_runtime.core.executor import Executor
from verifier_runtime.core.registrar import Registrar
from verifier_runtime.core.verifier import RunResult, Verifier, effective_env, effective_timeout_seconds, summarize


def _register(cfg: Path, command: list[str], **kwargs) -> None:  # type: ignore[no-untyped-def]
    Registrar(config_path=cfg).register(command, **kwargs)


def _py(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def test_run_passing_command(tmp_path: Path) -> None:
    cfg = tmp_path / "command.json"
    _register(cfg, _py("print('hello')"))

    outcome = Verifier(config_path=cfg).run()

    assert outcome.result.success is True
    assert outcome.result.exit_code == 0
    assert outcome.result.timed_out is False
    assert outcome.result.error is None
    assert "hello" in outcome.result.stdout
    assert outcome.summary == "Test run passed (exit code 0)."
    assert outcome.is_error is False
    assert outcome.error_kind is None
    assert outcome.result.updated_at


def test_run_failing_command_is_not_an_error_result(tmp_path: Path) -> None:
    cfg = tmp_path / "command.json"
    _register(cfg, _py("import sys; sys.stderr.write('boom'); sys.exit(2)"))

    outcome = Verifier(config_path=cfg).run()

    assert outcome.result.success is False
    assert outcome.result.exit_code == 2
    assert outcome.result.error is None
    assert outcome.result.stderr == "boom"
    assert outcome.summary == "Test run failed with exit code 2."
    assert outcome.is_error is False
    assert outcome.error_kind == "exit_code"


def test_run_missing_executable_is_start_failure(tmp_path: Path) -> None:
    cfg = tmp_path / "command.json"
    _register(cfg, [str(tmp_path / "definitely-not-here")])

    outcome = Verifier(config_path=cfg).run()

    assert outcome.result.exit_code == -1
    assert outcome.result.success is False
    assert outcome.result.error
    assert outcome.summary.startswith("Test run failed to start: ")
    assert outcome.is_error is True
    assert outcome.error_kind == "start_failed"


def test_run_timeout(tmp_path: Path) -> None:
    cfg = tmp_path / "command.json"
    _register(cfg, _py("import time; time.sleep(30)"))

    outcome = Verifier(config_path=cfg, executor=Executor(terminate_grace_ms=50)).run(timeout_seconds=1)

    assert outcome.result.timed_out is True
    assert outcome.result.success is False
    assert outcome.result.error == "timed out after 1 seconds"
    assert outcome.summary == "Test run timed out after 1 seconds."
    assert outcome.error_kind == "timeout"
    assert outcome.is_error is False
    assert outcome.result.duration_ms < 10_000
    assert outcome.result.duration_ms >= 900


def test_extra_args_are_appended(tmp_path: Path) -> None:
    cfg = tmp_path / "command.json"
    _register(cfg, _py("import sys; print(' '.join(sys.argv[1:]))"))

    outcome = Verifier(config_path=cfg).run(extra_args=[" -k ", "smoke"])

    assert outcome.result.stdout.strip() == "-k smoke"
    assert outcome.result.command[-2:] == ["-k", "smoke"]


def test_blank_extra_arg_is_rejected_before_running(tmp_path: Path) -> None:
    cfg = tmp_path / "command.json"
    marker = tmp_path / "ran.txt"
    _register(cfg, _py(f"open({str(marker)!r}, 'w').write('x')"))

    with pytest.raises(ValidationError) as ei:
        Verifier(config_path=cfg).run(extra_args=["ok", "  "])

    assert ei.value.code == "EXTRA_ARGS_INVALID"
    assert ei.value.message.startswith("extra_args: ")
    assert not marker.exists()


def test_invalid_run_env_is_rejected(tmp_path: Path) -> None:
    cfg = tmp_path / "command.json"
    _register(cfg, _py("pass"))
    with pytest.raises(ValidationError):
        Verifier(config_path=cfg).run(env=["NOPE"])


def test_env_layering_run_overrides_config(tmp_path: Path) -> None:
    cfg = tmp_path / "command.json"
    code = "import os; print(os.environ['VX'], os.environ['VY'])"
    _register(cfg, _py(code), env=["VX=from-config", "VY=config-only"])

    outcome = Verifier(config_path=cfg).run(env=["VX=from-run"])

    assert outcome.result.stdout.strip() == "from-run config-only"


def test_parent_env_is_inherited(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VERIFIER_PARENT_VAR", "inherited")
    cfg = tmp_path / "command.json"
    _register(cfg, _py("import os; print(os.environ['VERIFIER_PARENT_VAR'])"))

    assert Verifier(config_path=cfg).run().result.stdout.strip() == "inherited"


def test_working_dir_is_used(tmp_path: Path) -> None:
    wd = tmp_path / "proj"
    wd.mkdir()
    cfg = tmp_path / "command.json"
    _register(cfg, _py("import os; print(os.getcwd())"), working_dir=str(wd))

    outcome = Verifier(config_path=cfg).run()

    assert Path(outcome.result.stdout.strip()).resolve() == wd.resolve()
    assert outcome.result.working_dir == str(wd)


def test_missing_config_raises_load_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError) as ei:
        Verifier(config_path=tmp_path / "none.json").run()
    assert ei.value.code == "CONFIG_NOT_FOUND"


def test_working_dir_removed_after_registration(tmp_path: Path) -> None:
    wd = tmp_path / "proj"
    wd.mkdir()
    cfg = tmp_path / "command.json"
    _register(cfg, _py("pass"), working_dir=str(wd))
    wd.rmdir()

    with pytest.raises(ConfigLoadError) as ei:
        Verifier(config_path=cfg).run()
    assert ei.value.code == "CONFIG_INVALID"


def test_effective_timeout_seconds() -> None:
    assert effective_timeout_seconds(None) == 600
    assert effective_timeout_seconds(0) == 600
    assert effective_timeout_seconds(-5) == 600
    assert effective_timeout_seconds(3) == 3
    assert effective_timeout_seconds(None, default=30) == 30


def test_effective_env_later_entries_win() -> None:
    assert effective_env(["A=1", "B=2"], ["A=3"]) == {"A": "3", "B": "2"}
    assert effective_env([], []) == {}


def test_default_timeout_must_be_positive(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        Verifier(config_path=tmp_path / "c.json", default_timeout_seconds=0)


def test_summarize_start_failure_text() -> None:
    result = RunResult(config_path="c", command=["x"], exit_code=-1, success=False, error="no such file")
    assert summarize(result, timeout_seconds=600) == "Test run failed to start: no such file"


def test_run_is_bounded_when_background_child_keeps_pipes_open(tmp_path: Path) -> None:
    cfg = tmp_path / "command.json"
    background = "import time; time.sleep(15)"
    _register(cfg, _py(f"import subprocess, sys; subprocess.Popen([sys.executable, '-c', {background!r}]); print('hi')"))

    started = time.monotonic()
    outcome = Verifier(config_path=cfg).run(timeout_seconds=2)
    elapsed = time.monotonic() - started

    assert elapsed < 5.0
    assert outcome.result.success is True
    assert outcome.result.stdout.strip() == "hi"


def test_registering_same_spec_twice_differs_only_in_timestamp(tmp_path: Path) -> None:
    cfg = tmp_path / "command.json"
    wd = tmp_path / "proj"
    wd.mkdir()
    command = _py("import os; print(os.environ['MODE'])")

    Registrar(config_path=cfg, clock=lambda: "2026-01-01T00:00:00Z").register(command, working_dir=str(wd), env=["MODE=x"])
    first_text = cfg.read_text(encoding="utf-8")
    first_run = Verifier(config_path=cfg).run()

    Registrar(config_path=cfg, clock=lambda: "2026-01-01T00:00:09Z").register(command, working_dir=str(wd), env=["MODE=x"])
    second_text = cfg.read_text(encoding="utf-8")
    second_run = Verifier(config_path=cfg).run()

    assert first_text != second_text
    first, second = json.loads(first_text), json.loads(second_text)
    assert first.pop("updated_at") == "2026-01-01T00:00:00Z"
    assert second.pop("updated_at") == "2026-01-01T00:00:09Z"
    assert first == second

    for attr in ("command", "working_dir", "stdout"):
        assert getattr(first_run.result, attr) == getattr(second_run.result, attr)
