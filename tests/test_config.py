"""Tests for nanocode.config: TOML config loading, env vars, and CLI integration."""

import argparse
import re
import tomllib

import pytest

from nanocode.config import (
    _UNSET,
    ConfigError,
    _validate_config,
    apply_config_to_args,
    config_to_session_kwargs,
    generate_config,
    global_config_dir,
    load_config,
    load_env,
)
from nanocode.llm import DEFAULT_API_URL, DEFAULT_MODEL


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_toml(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _make_args(**overrides):
    """Build a namespace mimicking build_parser() with _UNSET sentinels."""
    defaults = {
        "model": _UNSET,
        "api_key": _UNSET,
        "api_url": _UNSET,
        "max_turns": _UNSET,
        "system_prompt": _UNSET,
        "no_system_prompt": _UNSET,
        "yolo": _UNSET,
        "debug": _UNSET,
        "color": _UNSET,
        "no_color": _UNSET,
        "quiet": _UNSET,
    }
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


@pytest.fixture
def xdg(tmp_path, monkeypatch):
    """Point the global config dir at a temp directory and return it."""
    d = tmp_path / "xdg"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(d))
    return d / "nanocode"


# ===========================================================================
# Config loading
# ===========================================================================


class TestLoadConfig:
    def test_missing_files_returns_empty(self, tmp_path, xdg):
        assert load_config(tmp_path) == {}

    def test_global_only(self, tmp_path, xdg):
        _write_toml(xdg / "config.toml", 'model = "a/b"\n')
        assert load_config(tmp_path / "project") == {"model": "a/b"}

    def test_project_only(self, tmp_path, xdg):
        _write_toml(tmp_path / "nanocode.toml", "max_turns = 4\n")
        assert load_config(tmp_path) == {"max_turns": 4}

    def test_project_overrides_global(self, tmp_path, xdg):
        _write_toml(xdg / "config.toml", 'model = "global"\nyolo = true\n')
        _write_toml(tmp_path / "nanocode.toml", 'model = "project"\n')
        result = load_config(tmp_path)
        assert result == {"model": "project", "yolo": True}

    def test_unknown_keys_warn(self, tmp_path, xdg, capsys):
        _write_toml(tmp_path / "nanocode.toml", 'bogus = 1\nmodel = "m"\n')
        assert load_config(tmp_path) == {"model": "m"}
        assert "unknown config key 'bogus'" in capsys.readouterr().err

    def test_wrong_type_raises(self, tmp_path, xdg):
        _write_toml(tmp_path / "nanocode.toml", 'max_turns = "ten"\n')
        with pytest.raises(ConfigError, match="max_turns"):
            load_config(tmp_path)

    def test_bool_for_int_field_raises(self, tmp_path, xdg):
        _write_toml(tmp_path / "nanocode.toml", "max_turns = true\n")
        with pytest.raises(ConfigError, match="got bool"):
            load_config(tmp_path)

    def test_max_turns_must_be_positive(self, tmp_path, xdg):
        _write_toml(tmp_path / "nanocode.toml", "max_turns = 0\n")
        with pytest.raises(ConfigError, match="at least 1"):
            load_config(tmp_path)

    def test_invalid_toml_raises(self, tmp_path, xdg):
        _write_toml(tmp_path / "nanocode.toml", "model = \n")
        with pytest.raises(ConfigError, match="invalid TOML"):
            load_config(tmp_path)

    def test_both_system_prompt_and_no_system_prompt(self, tmp_path, xdg):
        _write_toml(
            tmp_path / "nanocode.toml",
            'system_prompt = "hi"\nno_system_prompt = true\n',
        )
        with pytest.raises(ConfigError, match="mutually exclusive"):
            load_config(tmp_path)

    def test_cross_file_conflict(self, tmp_path, xdg):
        _write_toml(xdg / "config.toml", 'system_prompt = "hi"\n')
        _write_toml(tmp_path / "nanocode.toml", "no_system_prompt = true\n")
        with pytest.raises(ConfigError, match="across global and project"):
            load_config(tmp_path)

    def test_api_key_in_git_repo_warns(self, tmp_path, xdg, capsys):
        (tmp_path / ".git").mkdir()
        _write_toml(tmp_path / "nanocode.toml", 'api_key = "sk-secret"\n')
        load_config(tmp_path)
        assert "git-tracked" in capsys.readouterr().err

    def test_validate_accepts_all_keys(self):
        _validate_config(
            {
                "model": "m",
                "api_key": "k",
                "api_url": "u",
                "max_turns": 3,
                "system_prompt": "s",
                "yolo": False,
                "debug": True,
                "color": False,
                "quiet": True,
            },
            "test",
        )


class TestGlobalConfigDir:
    def test_respects_xdg(self, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", "/custom/config")
        assert str(global_config_dir()) == "/custom/config/nanocode"

    def test_default_home(self, monkeypatch, tmp_path):
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert global_config_dir() == tmp_path / ".config" / "nanocode"


# ===========================================================================
# Environment
# ===========================================================================


class TestLoadEnv:
    def test_maps_variables(self):
        env = {
            "OPENROUTER_API_KEY": "sk-or-1",
            "MODEL": "x/y",
            "API_URL": "http://localhost/v1/chat/completions",
            "UNRELATED": "z",
        }
        assert load_env(env) == {
            "api_key": "sk-or-1",
            "model": "x/y",
            "api_url": "http://localhost/v1/chat/completions",
        }

    def test_debug_only_literal_true(self):
        assert load_env({"DEBUG": "true"}) == {"debug": True}
        assert load_env({"DEBUG": "1"}) == {"debug": False}
        assert load_env({"DEBUG": "yes"}) == {"debug": False}

    def test_empty_values_ignored(self):
        assert load_env({"MODEL": "", "OPENROUTER_API_KEY": ""}) == {}

    def test_defaults_to_process_environment(self, monkeypatch):
        monkeypatch.setenv("MODEL", "from/env")
        assert load_env()["model"] == "from/env"


# ===========================================================================
# apply_config_to_args
# ===========================================================================


class TestApplyConfigToArgs:
    def test_config_fills_unset(self):
        args = _make_args()
        apply_config_to_args(args, {"model": "cfg/model", "max_turns": 3})
        assert args.model == "cfg/model"
        assert args.max_turns == 3

    def test_cli_beats_config(self):
        args = _make_args(model="cli/model")
        apply_config_to_args(args, {"model": "cfg/model"})
        assert args.model == "cli/model"

    def test_env_beats_config(self):
        args = _make_args()
        apply_config_to_args(args, {"model": "cfg/model"}, env={"model": "env/model"})
        assert args.model == "env/model"

    def test_cli_beats_env(self):
        args = _make_args(api_key="cli-key")
        apply_config_to_args(args, {}, env={"api_key": "env-key"})
        assert args.api_key == "cli-key"

    def test_sentinel_resolves_to_default(self):
        args = _make_args()
        apply_config_to_args(args, {})
        assert args.model == DEFAULT_MODEL
        assert args.api_url == DEFAULT_API_URL
        assert args.max_turns == 10
        assert args.api_key is None
        assert args.yolo is False
        assert args.quiet is False

    def test_store_const_flag_present_beats_config(self):
        args = _make_args(yolo=True)
        apply_config_to_args(args, {"yolo": False})
        assert args.yolo is True

    def test_color_config_true(self):
        args = _make_args()
        apply_config_to_args(args, {"color": True})
        assert args.color is True
        assert args.no_color is False

    def test_color_config_false(self):
        args = _make_args()
        apply_config_to_args(args, {"color": False})
        assert args.color is False
        assert args.no_color is True

    def test_no_color_cli_overrides_config(self):
        args = _make_args(no_color=True)
        apply_config_to_args(args, {"color": True})
        assert args.no_color is True
        assert args.color is False

    def test_debug_from_env(self):
        args = _make_args()
        apply_config_to_args(args, {}, env={"debug": True})
        assert args.debug is True


# ===========================================================================
# config_to_session_kwargs
# ===========================================================================


class TestConfigToSessionKwargs:
    def test_identity_keys(self):
        kwargs = config_to_session_kwargs({"model": "m", "max_turns": 5, "yolo": True})
        assert kwargs == {"model": "m", "max_turns": 5, "yolo": True}

    def test_inverted_keys(self):
        assert config_to_session_kwargs({"quiet": True}) == {"verbose": False}

    def test_dropped_keys(self):
        assert config_to_session_kwargs({"color": True, "debug": True}) == {}

    def test_accepted_by_session(self):
        from nanocode.session import Session

        kwargs = config_to_session_kwargs(
            {"model": "m", "api_key": "k", "max_turns": 2, "quiet": False}
        )
        session = Session(**kwargs)
        assert session.verbose is True
        assert session.max_turns == 2


# ===========================================================================
# generate_config
# ===========================================================================


class TestGenerateConfig:
    def test_template_is_valid_toml(self):
        assert tomllib.loads(generate_config()) == {}

    def test_uncommented_template_validates(self):
        lines = []
        for line in generate_config().splitlines():
            if re.match(r"^# \w+ = ", line):
                lines.append(line[2:])
        parsed = tomllib.loads("\n".join(lines))
        assert parsed["model"] == DEFAULT_MODEL
        assert parsed["max_turns"] == 10
        _validate_config(parsed, "template")

    def test_project_flag(self):
        assert "nanocode.toml" in generate_config(project=True)
        assert "config.toml" in generate_config(project=False)
