from __future__ import annotations

import json
from pathlib import Path
from textwrap import dedent

import pytest

from conductor.config.loader import ConfigResolver, deep_merge, substitute_env
from conductor.core.enums import LogLevel, ModeName
from conductor.core.errors import ConfigurationError, ConfigValidationError
from conductor.storage.files import FileOperations


def _user_config(files: FileOperations) -> dict:
    return json.loads(files.read("config/config.json").content)


def test_load_should_create_user_file_from_defaults(resolver: ConfigResolver, files: FileOperations) -> None:
    config = resolver.load()

    assert config.default_mode is ModeName.DISCOVERY
    assert files.exists("config/config.json")
    assert _user_config(files)["file_paths"]["state_dir"] == "state"


def test_layers_should_deep_merge_in_precedence_order(files: FileOperations, tmp_path: Path) -> None:
    files.write(
        "config/default.yml",
        dedent(
            """
            logging:
              level: DEBUG
            git:
              commit_prefix: "[base]"
              auto_commit: true
            """
        ),
    )
    files.write("config/config.json", json.dumps({"git": {"commit_prefix": "[user]"}, "api": {"model": None}}))
    resolver = ConfigResolver(files, env_file=tmp_path / "absent.env", base_name="config/default.yml")

    config = resolver.load()

    assert config.logging.level is LogLevel.DEBUG
    assert config.git.commit_prefix == "[user]"
    assert config.git.auto_commit is True
    assert config.git.enabled is True
    assert config.api.model == "claude-3-5-sonnet-latest"


def test_placeholders_should_resolve_from_env_file_then_process_env(
    files: FileOperations, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("CONDUCTOR_TEST_KEY=from-dotenv\n", encoding="utf-8")
    monkeypatch.setenv("CONDUCTOR_TEST_KEY", "from-process")
    monkeypatch.setenv("CONDUCTOR_TEST_LOG", "custom.log")
    files.write(
        "config/config.json",
        json.dumps(
            {
                "api": {"api_key": "${CONDUCTOR_TEST_KEY}"},
                "logging": {"file": "logs/${CONDUCTOR_TEST_LOG}"},
                "git": {"commit_prefix": "${CONDUCTOR_TEST_UNSET}"},
            }
        ),
    )
    monkeypatch.delenv("CONDUCTOR_TEST_UNSET", raising=False)

    config = ConfigResolver(files, env_file=env_file).load()

    assert config.api.api_key == "from-dotenv"
    assert config.logging.file == "logs/custom.log"
    assert config.git.commit_prefix == "${CONDUCTOR_TEST_UNSET}"


def test_created_user_file_should_keep_placeholders_unsubstituted(
    files: FileOperations, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CONDUCTOR_TEST_KEY", "secret")
    files.write("config/default.json", json.dumps({"api": {"api_key": "${CONDUCTOR_TEST_KEY}"}}))

    config = ConfigResolver(files, env_file=tmp_path / "absent.env").load()

    assert config.api.api_key == "secret"
    assert _user_config(files)["api"]["api_key"] == "${CONDUCTOR_TEST_KEY}"


def test_validation_should_aggregate_every_violation(files: FileOperations, resolver: ConfigResolver) -> None:
    files.write(
        "config/config.json",
        json.dumps({"default_mode": "daydream", "security": {"max_file_size": -1}, "git": {"enabled": "maybe"}}),
    )

    with pytest.raises(ConfigValidationError) as exc_info:
        resolver.load()

    errors = exc_info.value.errors
    assert len(errors) == 3
    assert any(error.startswith("default_mode:") for error in errors)
    assert any(error.startswith("security.max_file_size:") for error in errors)
    assert any(error.startswith("git.enabled:") for error in errors)


def test_unparseable_user_file_should_raise_configuration_error(files: FileOperations, resolver: ConfigResolver) -> None:
    files.write("config/config.json", "{not json")
    with pytest.raises(ConfigurationError):
        resolver.load()


def test_validate_and_recover_should_reset_corrupted_config(files: FileOperations, resolver: ConfigResolver) -> None:
    files.write("config/config.json", "{not json")

    report = resolver.validate_and_recover()

    assert report.valid is True
    assert report.recovered is True
    assert report.errors and "config/config.json" in report.errors[0]
    assert _user_config(files)["default_mode"] == "discovery"
    assert resolver.reload().default_mode is ModeName.DISCOVERY


def test_validate_and_recover_should_report_validation_errors(files: FileOperations, resolver: ConfigResolver) -> None:
    files.write("config/config.json", json.dumps({"default_mode": "daydream"}))

    report = resolver.validate_and_recover()

    assert report.recovered is True
    assert len(report.errors) == 1 and report.errors[0].startswith("default_mode:")


def test_validate_and_recover_should_leave_valid_config_alone(resolver: ConfigResolver) -> None:
    resolver.load()
    report = resolver.validate_and_recover()
    assert (report.valid, report.recovered, report.errors) == (True, False, [])


def test_save_should_bump_last_modified_and_refresh_cache(resolver: ConfigResolver, files: FileOperations) -> None:
    original = resolver.load()

    updated = resolver.update({"user_preferences": {"show_hints": False}})

    assert updated.user_preferences.show_hints is False
    assert updated.user_preferences.auto_save is True
    assert updated.last_modified >= original.last_modified
    assert updated.created == original.created
    assert resolver.get() is updated
    assert _user_config(files)["user_preferences"]["show_hints"] is False


def test_save_should_reject_invalid_config(resolver: ConfigResolver, files: FileOperations) -> None:
    resolver.load()
    before = files.read("config/config.json").content
    with pytest.raises(ConfigValidationError):
        resolver.update({"logging": {"level": "LOUD"}})
    assert files.read("config/config.json").content == before


def test_get_should_cache_until_reload(resolver: ConfigResolver, files: FileOperations) -> None:
    first = resolver.get()
    assert resolver.get() is first

    payload = _user_config(files)
    payload["default_mode"] = "planning"
    files.write("config/config.json", json.dumps(payload))

    assert resolver.get().default_mode is ModeName.DISCOVERY
    assert resolver.reload().default_mode is ModeName.PLANNING


def test_reset_should_restore_defaults(resolver: ConfigResolver) -> None:
    resolver.update({"default_mode": "build"})
    assert resolver.reset().default_mode is ModeName.DISCOVERY


def test_deep_merge_should_replace_lists_and_skip_none() -> None:
    base = {"a": {"b": [1, 2], "c": 1}, "d": "keep"}
    merged = deep_merge(base, {"a": {"b": [3]}, "d": None, "e": {"f": 1}})

    assert merged == {"a": {"b": [3], "c": 1}, "d": "keep", "e": {"f": 1}}
    assert base == {"a": {"b": [1, 2], "c": 1}, "d": "keep"}


def test_substitute_env_should_walk_nested_values() -> None:
    value = {"a": ["${X}", {"b": "pre-${X}-${Y}"}], "n": 3}
    assert substitute_env(value, {"X": "1"}) == {"a": ["1", {"b": "pre-1-${Y}"}], "n": 3}


def test_update_should_persist_placeholders_not_resolved_secrets(
    files: FileOperations, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("CONDUCTOR_TEST_SECRET", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("CONDUCTOR_TEST_SECRET=sk-first\n", encoding="utf-8")
    files.write("config/config.json", json.dumps({"api": {"api_key": "${CONDUCTOR_TEST_SECRET}"}}))
    resolver = ConfigResolver(files, env_file=env_file)

    updated = resolver.update({"git": {"enabled": False}})

    assert updated.api.api_key == "sk-first"
    assert updated.git.enabled is False
    assert _user_config(files)["api"]["api_key"] == "${CONDUCTOR_TEST_SECRET}"
    assert "sk-first" not in files.read("config/config.json").content

    resolver.save(resolver.get())
    assert _user_config(files)["api"]["api_key"] == "${CONDUCTOR_TEST_SECRET}"

    env_file.write_text("CONDUCTOR_TEST_SECRET=sk-rotated\n", encoding="utf-8")
    assert resolver.reload().api.api_key == "sk-rotated"


@pytest.mark.parametrize("base_text", ["{not json", json.dumps({"default_mode": "daydream"})])
def test_recovery_should_move_a_broken_base_file_aside(
    files: FileOperations, resolver: ConfigResolver, tmp_path: Path, base_text: str
) -> None:
    files.write("config/default.json", base_text)

    report = resolver.validate_and_recover()

    assert report.recovered is True
    assert report.errors
    assert not files.exists("config/default.json")
    moved = files.list("config", pattern=r"^default\.json\.corrupt\.")
    assert len(moved) == 1
    assert files.read(moved[0].path).content == base_text + "\n"
    fresh = ConfigResolver(files, env_file=tmp_path / "absent.env")
    assert fresh.load().default_mode is ModeName.DISCOVERY


def test_recovery_should_keep_a_valid_base_file(files: FileOperations, resolver: ConfigResolver) -> None:
    files.write("config/default.json", json.dumps({"git": {"commit_prefix": "[base]"}}))
    files.write("config/config.json", "{not json")

    report = resolver.validate_and_recover()

    assert report.recovered is True
    assert files.exists("config/default.json")
    assert files.list("config", pattern=r"\.corrupt\.") == []
