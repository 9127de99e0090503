"""
Tests for configuration layering.
"""

import pytest

from nakes.core.config import NakesConfig, load_config
from nakes.core.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for var in ("NAKES_CONFIG", "NAKES_LOCKFILE", "NAKES_REGISTRY_URL", "NAKES_FAN_OUT"):
        monkeypatch.delenv(var, raising=False)


def test_defaults():
    config = load_config()
    assert config == NakesConfig()
    assert config.lockfile == "nakes.lock"
    assert config.registry_url == "https://pypi.org/pypi"
    assert config.fan_out == 8


def test_yaml_file_in_working_directory(tmp_path):
    (tmp_path / "nakes.yaml").write_text("lockfile: project.lock\nfan_out: 4\n", encoding="utf-8")

    config = load_config()

    assert config.lockfile == "project.lock"
    assert config.fan_out == 4


def test_config_env_var_points_to_file(tmp_path, monkeypatch):
    path = tmp_path / "elsewhere.yaml"
    path.write_text("registry_url: https://mirror.test/pypi\n", encoding="utf-8")
    monkeypatch.setenv("NAKES_CONFIG", str(path))

    assert load_config().registry_url == "https://mirror.test/pypi"


def test_environment_overrides_file(tmp_path, monkeypatch):
    (tmp_path / "nakes.yaml").write_text("lockfile: project.lock\n", encoding="utf-8")
    monkeypatch.setenv("NAKES_LOCKFILE", "env.lock")
    monkeypatch.setenv("NAKES_FAN_OUT", "2")

    config = load_config()

    assert config.lockfile == "env.lock"
    assert config.fan_out == 2


def test_explicit_overrides_win_and_none_is_ignored(monkeypatch):
    monkeypatch.setenv("NAKES_LOCKFILE", "env.lock")

    config = load_config({"lockfile": "cli.lock", "fan_out": None})

    assert config.lockfile == "cli.lock"
    assert config.fan_out == 8


def test_empty_file_uses_defaults(tmp_path):
    (tmp_path / "nakes.yaml").write_text("", encoding="utf-8")
    assert load_config() == NakesConfig()


@pytest.mark.parametrize(
    "content",
    [
        "fan_out: 0\n",
        "- just\n- a list\n",
        "lockfile: [unterminated\n",
    ],
)
def test_invalid_file(tmp_path, content):
    (tmp_path / "nakes.yaml").write_text(content, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config()


def test_missing_explicit_file(tmp_path, monkeypatch):
    monkeypatch.setenv("NAKES_CONFIG", str(tmp_path / "absent.yaml"))
    with pytest.raises(ConfigError):
        load_config()
