"""Configuration file loading and merging for nanocode.

Reads TOML config from ~/.config/nanocode/config.toml (global) and
<base_dir>/nanocode.toml (project), plus the OPENROUTER_API_KEY, MODEL,
API_URL and DEBUG environment variables.
Precedence: CLI > environment > project > global > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .llm import DEFAULT_API_URL, DEFAULT_MODEL
from .report import ConfigError  # noqa: F401

_UNSET = object()  # Sentinel for "not set by CLI"

DEFAULT_MAX_TURNS = 10

# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "model": str,
    "api_key": str,
    "api_url": str,
    "max_turns": int,
    "system_prompt": str,
    "no_system_prompt": bool,
    "yolo": bool,
    "debug": bool,
    "color": bool,
    "quiet": bool,
}

# Environment variable -> config key
ENV_KEYS: dict[str, str] = {
    "OPENROUTER_API_KEY": "api_key",
    "MODEL": "model",
    "API_URL": "api_url",
    "DEBUG": "debug",
}

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "model": DEFAULT_MODEL,
    "api_key": None,
    "api_url": DEFAULT_API_URL,
    "max_turns": DEFAULT_MAX_TURNS,
    "system_prompt": None,
    "no_system_prompt": False,
    "yolo": False,
    "debug": False,
    "color": False,
    "no_color": False,
    "quiet": False,
}


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "nanocode"
    return Path.home() / ".config" / "nanocode"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate types and mutual exclusions in a parsed config dict.

    Raises ConfigError for type mismatches or invalid combinations.
    Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int; reject bools for non-bool fields.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, "
                f"got {type(value).__name__}"
            )

    if config.get("max_turns") is not None and config["max_turns"] < 1:
        raise ConfigError(f"{source}: 'max_turns' must be at least 1")

    if config.get("system_prompt") and config.get("no_system_prompt"):
        raise ConfigError(
            f"{source}: 'system_prompt' and 'no_system_prompt' are mutually exclusive"
        )


def _check_api_key_in_git(config: dict, config_path: Path) -> None:
    """Warn if api_key is set in a project config inside a git repo."""
    if "api_key" not in config:
        return
    parent = config_path.parent
    while parent != parent.parent:
        if (parent / ".git").exists():
            print(
                f"warning: {config_path}: 'api_key' in a git-tracked project config "
                f"may be committed accidentally. Consider using OPENROUTER_API_KEY.",
                file=sys.stderr,
            )
            return
        parent = parent.parent


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e

    _validate_config(config, label)
    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


# --- Public API ---


def load_config(base_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict with only the keys actually set in config files.
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))

    project_path = Path(base_dir).resolve() / "nanocode.toml"
    project_config = _load_single(project_path, str(project_path))
    if project_config:
        _check_api_key_in_git(project_config, project_path)

    merged = {**global_config, **project_config}
    if merged.get("system_prompt") and merged.get("no_system_prompt"):
        raise ConfigError(
            "'system_prompt' and 'no_system_prompt' are mutually exclusive "
            "(set across global and project config)"
        )
    return merged


def load_env(environ=None) -> dict:
    """Read configuration from environment variables.

    DEBUG is only enabled by the literal value "true".
    """
    if environ is None:
        environ = os.environ
    config: dict = {}
    for var, key in ENV_KEYS.items():
        value = environ.get(var)
        if not value:
            continue
        if key == "debug":
            config[key] = value.strip().lower() == "true"
        else:
            config[key] = value
    return config


def apply_config_to_args(
    args: argparse.Namespace, config: dict, env: dict | None = None
) -> None:
    """Fill argparse values the CLI left unset, from env first, then config files.

    Remaining _UNSET sentinels are replaced with the hardcoded defaults.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    layered = {**config, **(env or {})}

    # A single "color" key controls the mutually exclusive --color/--no-color pair
    if "color" in layered:
        color_val = layered["color"]
        if _is_unset("color") and _is_unset("no_color"):
            args.color = color_val
            args.no_color = not color_val

    for key, value in layered.items():
        if key == "color":
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def config_to_session_kwargs(config: dict) -> dict:
    """Convert a config dict to Session constructor kwargs.

    quiet -> verbose (inverted). Presentation-only keys (color, debug) are
    dropped.
    """
    kwargs = {}
    for key, value in config.items():
        if key in ("color", "debug"):
            continue
        if key == "quiet":
            kwargs["verbose"] = not value
        else:
            kwargs[key] = value
    return kwargs


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# nanocode configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'<project>/nanocode.toml' if project else '~/.config/nanocode/config.toml'}",
        "#",
        "# CLI flags and environment variables override these values.",
        "",
        "# --- Model endpoint ---",
        f'# model = "{DEFAULT_MODEL}"',
        '# api_key = "sk-or-..."            # prefer OPENROUTER_API_KEY',
        f'# api_url = "{DEFAULT_API_URL}"',
        "",
        "# --- Agent behaviour ---",
        f"# max_turns = {DEFAULT_MAX_TURNS}",
        '# system_prompt = "You are a helpful coding agent."',
        "# no_system_prompt = false",
        "# yolo = false                     # run write/edit/bash without asking",
        "",
        "# --- UI ---",
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "# quiet = false",
        "# debug = false",
        "",
    ]
    return "\n".join(lines)
