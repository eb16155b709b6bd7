# tests/unit/config/test_schema.py
"""Tests for configuration schema."""
import pytest
import toml
from pydantic import ValidationError

from coderace.config.manager import ConfigManager
from coderace.config.schema import CoderaceConfig, SessionConfig, WaitingConfig
from coderace.errors import ValidationError as CoderaceValidationError


def test_coderace_config_defaults():
    """Test CoderaceConfig has correct defaults."""
    config = CoderaceConfig.default()

    assert config.global_.color is True
    assert config.global_.log_level == "WARNING"
    assert config.session.step_settle_seconds == 2.0
    assert config.session.prompt_delay_seconds == 3.0
    assert config.waiting.threshold_seconds == 30.0
    assert config.waiting.sweep_interval_seconds == 60.0
    assert config.ranking.default_rating == 1500.0
    assert config.ranking.provisional_games == 30


def test_global_section_uses_alias():
    """Test the global section is read from the 'global' key."""
    config = CoderaceConfig.model_validate({"global": {"verbose": True}})
    assert config.global_.verbose is True
    assert "global" in config.model_dump(by_alias=True)


def test_waiting_threshold_must_be_positive():
    with pytest.raises(ValidationError):
        WaitingConfig(threshold_seconds=0)


def test_session_timings_cannot_be_negative():
    with pytest.raises(ValidationError):
        SessionConfig(step_settle_seconds=-1)


def test_database_path_override(tmp_path):
    config = CoderaceConfig.model_validate({"database": {"path": str(tmp_path / "db" / "x.db")}})
    path = config.database.resolve_path()

    assert path == tmp_path / "db" / "x.db"
    assert path.parent.exists()


def test_deep_merge():
    merged = ConfigManager._deep_merge(
        {"waiting": {"threshold_seconds": 30, "sweep_interval_seconds": 60}},
        {"waiting": {"threshold_seconds": 45}, "global": {"color": False}},
    )
    assert merged == {
        "waiting": {"threshold_seconds": 45, "sweep_interval_seconds": 60},
        "global": {"color": False},
    }


def test_project_config_overrides_user_config(tmp_path, monkeypatch):
    user_dir = tmp_path / "home" / ".config" / "coderace"
    user_dir.mkdir(parents=True)
    (user_dir / "config.toml").write_text(toml.dumps({"waiting": {"threshold_seconds": 40}}))
    project = tmp_path / "work"
    project.mkdir()
    (project / ".coderace.toml").write_text(
        toml.dumps({"session": {"prompt_delay_seconds": 1.5}})
    )
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(project)

    config = ConfigManager.load_config()

    assert config.waiting.threshold_seconds == 40
    assert config.session.prompt_delay_seconds == 1.5
    assert config.session.step_settle_seconds == 2.0


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Point the user config at a temp home and forget any cached config."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(ConfigManager, "_config", None)
    return home / ".config" / "coderace" / "config.toml"


def test_get_config_applies_database_override(isolated_config, tmp_path):
    config = ConfigManager.get_config(str(tmp_path / "race.db"))

    assert config.database.path == str(tmp_path / "race.db")
    assert ConfigManager.get_config().database.path is None


def test_set_value_writes_only_user_file(isolated_config, tmp_path):
    (tmp_path / ".coderace.toml").write_text(toml.dumps({"session": {"shell": "zsh"}}))

    config = ConfigManager.set_value("waiting.threshold_seconds", 45)

    assert config.waiting.threshold_seconds == 45
    assert config.session.shell == "zsh"
    assert toml.load(isolated_config) == {"waiting": {"threshold_seconds": 45}}
    assert ConfigManager.get_value("waiting.threshold_seconds") == 45


@pytest.mark.parametrize("key", ["waiting", "waiting.nope", "nope.threshold_seconds", "a.b.c"])
def test_set_value_unknown_key(isolated_config, key):
    with pytest.raises(CoderaceValidationError, match="Unknown config key"):
        ConfigManager.set_value(key, 1)
    assert not isolated_config.exists()


def test_set_value_rejects_invalid_value(isolated_config):
    with pytest.raises(CoderaceValidationError, match="Invalid value"):
        ConfigManager.set_value("waiting.threshold_seconds", -5)
    assert not isolated_config.exists()


def test_invalid_config_file_is_reported(isolated_config):
    isolated_config.parent.mkdir(parents=True, exist_ok=True)
    isolated_config.write_text(toml.dumps({"waiting": {"threshold_seconds": 0}}))

    with pytest.raises(CoderaceValidationError, match="Invalid configuration"):
        ConfigManager.load_config()
