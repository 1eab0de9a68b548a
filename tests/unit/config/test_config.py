"""Config layering, validation and path normalization."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from ticketforge.config import (
    ConfigLoadError,
    ConfigValidationError,
    default_config,
    dump_effective_config,
    load_config,
    validate_config,
)
from ticketforge.config.loader import env_name_for_path
from ticketforge.config.schema import migration_guidance

if TYPE_CHECKING:
    from pathlib import Path


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "ticketforge.toml"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_apply_without_a_config_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    config = load_config(environ={})

    assert config["drift"]["max_concurrency"] == 4
    assert config["workflow"]["lock_timeout_seconds"] == 1_800
    assert config["observability"]["log_level"] == "INFO"
    assert config["persistence"]["state_db_path"] == (
        tmp_path.resolve() / "state" / "ticketforge.sqlite"
    ).as_posix()
    assert validate_config(default_config()) == ()


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})


def test_precedence_is_cli_then_env_then_file(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
[drift]
max_concurrency = 8

[workflow]
lock_timeout_seconds = 120

[observability]
log_level = "debug"
""",
    )
    environ = {
        env_name_for_path(("drift", "max_concurrency")): "16",
        "TICKETFORGE_OBSERVABILITY_LOG_TO_STDOUT": "yes",
    }

    config = load_config(
        path, environ=environ, cli_overrides={"drift.max_concurrency": 2, "workflow.x": None}
    )

    assert config["drift"]["max_concurrency"] == 2
    assert config["workflow"]["lock_timeout_seconds"] == 120
    assert config["observability"]["log_level"] == "DEBUG"
    assert config["observability"]["log_to_stdout"] is True


def test_relative_paths_resolve_against_config_directory(tmp_path: Path) -> None:
    config_dir = tmp_path / "conf"
    config_dir.mkdir()
    path = config_dir / "ticketforge.toml"
    path.write_text(
        '[persistence]\nstate_db_path = "../data/tickets.sqlite"\n'
        '[observability]\nlog_dir = "/var/log/ticketforge"\n',
        encoding="utf-8",
    )

    config = load_config(path, environ={})

    assert config["persistence"]["state_db_path"] == (
        (tmp_path / "data" / "tickets.sqlite").resolve().as_posix()
    )
    assert config["observability"]["log_dir"] == "/var/log/ticketforge"


def test_every_issue_is_reported_at_once(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
[drift]
max_concurrency = 0
fan_out = 3

[observability]
log_level = "verbose"
redact_secrets = "yes"

[providers]
name = "x"
""",
    )

    with pytest.raises(ConfigValidationError) as exc_info:
        load_config(path, environ={})

    paths = [issue.path for issue in exc_info.value.issues]
    assert paths == [
        "providers",
        "drift.fan_out",
        "drift.max_concurrency",
        "observability.log_level",
        "observability.redact_secrets",
    ]
    assert "invalid config:" in str(exc_info.value)


@pytest.mark.parametrize("version", [0, 2])
def test_schema_version_mismatch_gives_guidance(tmp_path: Path, version: int) -> None:
    path = _write(tmp_path, f"[meta]\nschema_version = {version}\n")

    with pytest.raises(ConfigValidationError) as exc_info:
        load_config(path, environ={})

    messages = [issue.message for issue in exc_info.value.issues]
    if version == 0:
        assert messages == ["must be >= 1"]
    else:
        assert messages == [migration_guidance(2)]
        assert "upgrade the ticketforge runtime" in messages[0]


def test_invalid_toml_is_a_load_error(tmp_path: Path) -> None:
    path = _write(tmp_path, "[drift\nmax_concurrency = 1\n")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(path, environ={})


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("TICKETFORGE_DRIFT_MAX_CONCURRENCY", "many", "must be an integer"),
        ("TICKETFORGE_OBSERVABILITY_REDACT_SECRETS", "maybe", "must be a boolean"),
    ],
)
def test_uncoercible_env_values_are_rejected(
    tmp_path: Path, name: str, value: str, message: str
) -> None:
    path = _write(tmp_path, "")

    with pytest.raises(ConfigLoadError, match=message):
        load_config(path, environ={name: value})


def test_cli_override_keys_need_a_section(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="expected section.field"):
        load_config(_write(tmp_path, ""), environ={}, cli_overrides={"drift": 3})


def test_effective_config_dump_is_deterministic(tmp_path: Path) -> None:
    config = load_config(_write(tmp_path, ""), environ={})

    dumped = dump_effective_config(config)

    assert dumped == dump_effective_config(json.loads(dumped))
    assert list(json.loads(dumped)) == sorted(config)
