from __future__ import annotations

import json
from pathlib import Path

import pytest

from verifier_runtime.core.errors import ValidationError, WorkingDirNotFoundError
from verifier_runtime.core.registrar import REGISTERED_MESSAGE, Registrar


def _fixed_clock() -> str:
    return "2026-01-02T03:04:05Z"


def test_register_writes_config_file(tmp_path: Path) -> None:
    cfg = tmp_path / ".test-verifier" / "command.json"
    reg = Registrar(config_path=cfg, clock=_fixed_clock)

    result = reg.register(["npm", "test"])

    assert result.message == REGISTERED_MESSAGE
    assert result.config_path == str(cfg)
    assert result.updated_at == "2026-01-02T03:04:05Z"
    assert json.loads(cfg.read_text(encoding="utf-8")) == {
        "command": ["npm", "test"],
        "updated_at": "2026-01-02T03:04:05Z",
    }


def test_register_with_working_dir_and_env(tmp_path: Path) -> None:
    cfg = tmp_path / "command.json"
    wd = tmp_path / "proj"
    wd.mkdir()

    result = Registrar(config_path=cfg, clock=_fixed_clock).register(
        [" pytest ", "-q"],
        working_dir=str(wd),
        env=["", "CI=1", "  "],
    )

    obj = json.loads(cfg.read_text(encoding="utf-8"))
    assert obj["command"] == ["pytest", "-q"]
    assert obj["working_dir"] == str(wd)
    assert obj["env"] == ["CI=1"]
    assert result.env == ["CI=1"]
    assert result.working_dir == str(wd)


def test_register_replaces_previous_fields_entirely(tmp_path: Path) -> None:
    cfg = tmp_path / "command.json"
    reg = Registrar(config_path=cfg, clock=_fixed_clock)
    reg.register(["a"], working_dir=str(tmp_path), env=["X=1"])

    reg.register(["b"])

    assert json.loads(cfg.read_text(encoding="utf-8")) == {"command": ["b"], "updated_at": "2026-01-02T03:04:05Z"}


def test_blank_working_dir_is_omitted(tmp_path: Path) -> None:
    cfg = tmp_path / "command.json"
    Registrar(config_path=cfg).register(["x"], working_dir="   ")
    assert "working_dir" not in json.loads(cfg.read_text(encoding="utf-8"))


def test_invalid_input_leaves_existing_file_untouched(tmp_path: Path) -> None:
    cfg = tmp_path / "command.json"
    reg = Registrar(config_path=cfg, clock=_fixed_clock)
    reg.register(["keep"])
    before = cfg.read_text(encoding="utf-8")

    with pytest.raises(ValidationError):
        reg.register([])
    with pytest.raises(ValidationError):
        reg.register(["x", " "])
    with pytest.raises(ValidationError):
        reg.register(["x"], env=["BAD"])
    with pytest.raises(WorkingDirNotFoundError):
        reg.register(["x"], working_dir=str(tmp_path / "missing"))

    assert cfg.read_text(encoding="utf-8") == before


def test_invalid_input_does_not_create_config_dir(tmp_path: Path) -> None:
    cfg = tmp_path / "fresh" / "command.json"
    with pytest.raises(ValidationError):
        Registrar(config_path=cfg).register([])
    assert not cfg.parent.exists()


def test_default_clock_is_rfc3339_utc(tmp_path: Path) -> None:
    result = Registrar(config_path=tmp_path / "c.json").register(["x"])
    assert result.updated_at.endswith("Z")
    assert "T" in result.updated_at
    assert len(result.updated_at) == len("2026-01-02T03:04:05Z")
