"""
Tests for configuration loading.
"""

import textwrap
from pathlib import Path

import pytest

from provisioner.core.config import loader
from provisioner.core.config.loader import (
    ConfigError,
    ProvisionConfig,
    find_config_file,
    load_config,
)
from provisioner.core.use_cases.config_check import check_config


@pytest.fixture(autouse=True)
def _no_user_config(tmp_path: Path, monkeypatch):
    """Keep the developer's own config out of lookups."""
    monkeypatch.setattr(loader, "USER_CONFIG_PATH", tmp_path / "no-user-config.yml")


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "provision.yml"
    path.write_text(textwrap.dedent(content))
    return path


class TestProvisionConfig:
    def test_defaults(self):
        config = ProvisionConfig()
        assert config.github_user == "dabstractor"
        assert config.only == []
        assert config.sudo_refresh_interval == 60
        assert config.command_timeout == 1800

    def test_blank_user_means_default(self):
        assert ProvisionConfig(github_user="   ").github_user == "dabstractor"

    def test_state_path_expanded(self):
        config = ProvisionConfig(state_dir="~/state")
        assert config.state_path == Path("~/state").expanduser()

    def test_refresh_interval_positive(self):
        with pytest.raises(ValueError):
            ProvisionConfig(sudo_refresh_interval=0)


class TestLoadConfig:
    def test_flat_file(self, tmp_path: Path):
        path = _write(tmp_path, """\
            github_user: octocat
            skip:
              - install-meld
            critical:
              - install-git
        """)
        config = load_config(path)
        assert config.github_user == "octocat"
        assert config.skip == ["install-meld"]
        assert config.critical == ["install-git"]

    def test_wrapped_under_provision(self, tmp_path: Path):
        path = _write(tmp_path, """\
            provision:
              github_user: hubot
        """)
        assert load_config(path).github_user == "hubot"

    def test_empty_file(self, tmp_path: Path):
        assert load_config(_write(tmp_path, "")).github_user == "dabstractor"

    def test_missing_explicit_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.yml")

    def test_invalid_yaml(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(_write(tmp_path, "github_user: [unclosed\n"))

    def test_not_a_mapping(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Expected a YAML mapping"):
            load_config(_write(tmp_path, "- a\n- b\n"))

    def test_invalid_value(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(_write(tmp_path, "sudo_refresh_interval: -5\n"))

    def test_no_file_means_defaults(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert load_config() == ProvisionConfig()


class TestFindConfigFile:
    def test_walks_up(self, tmp_path: Path):
        path = _write(tmp_path, "github_user: octocat\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_config_file(nested) == path.resolve()

    def test_user_config_fallback(self, tmp_path: Path, monkeypatch):
        user_config = tmp_path / "user" / "provision.yml"
        user_config.parent.mkdir()
        user_config.write_text("github_user: me\n")
        monkeypatch.setattr(loader, "USER_CONFIG_PATH", user_config)
        start = tmp_path / "empty"
        start.mkdir()
        assert find_config_file(start) == user_config


class TestCheckConfig:
    def test_valid(self, tmp_path: Path):
        result = check_config(_write(tmp_path, "github_user: octocat\nskip: [install-meld]\n"))
        assert result.valid
        assert result.errors == []
        assert result.to_dict()["github_user"] == "octocat"

    def test_unknown_step_names(self, tmp_path: Path):
        result = check_config(_write(tmp_path, "only: [install-zsh, install-emacs]\ncritical: [nope]\n"))
        assert not result.valid
        assert any("'only'" in e and "install-emacs" in e for e in result.errors)
        assert any("'critical'" in e and "nope" in e for e in result.errors)

    def test_overlap_warning(self, tmp_path: Path):
        result = check_config(_write(tmp_path, "only: [install-zsh]\nskip: [install-zsh]\n"))
        assert result.valid
        assert len(result.warnings) == 2

    def test_invalid_file(self, tmp_path: Path):
        result = check_config(_write(tmp_path, "command_timeout: soon\n"))
        assert not result.valid
        assert result.config is None

    def test_no_file(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = check_config()
        assert result.valid
        assert result.config_path is None
        assert result.warnings
