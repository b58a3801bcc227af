"""Configuration file loading and merging for winecode.

Reads TOML config from ~/.config/winecode/config.toml (global) and
<base_dir>/winecode.toml (project). Precedence: CLI > project > global > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .report import ConfigError  # noqa: F401 (re-export for convenience)

_UNSET = object()  # Sentinel for "not set by CLI"

API_KEY_ENV = "WINECODE_API_KEY"
TOOL_MODES = ("inline", "structured", "auto")


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "model": str,
    "api_key": str,
    "base_url": str,
    "tool_mode": str,
    "max_turns": int,
    "continuation_delay": (int, float),
    "history_limit": int,
    "history_keep_recent": int,
    "history_keep_summaries": int,
    "truncation_threshold": int,
    "context_read_lines": int,
    "bash_timeout": int,
    "no_instructions": bool,
    "no_context": bool,
    "color": bool,
    "quiet": bool,
}

# Keys that must be strictly positive when set
_POSITIVE_KEYS = {
    "max_turns",
    "history_limit",
    "history_keep_recent",
    "history_keep_summaries",
    "truncation_threshold",
    "context_read_lines",
    "bash_timeout",
}

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "model": None,
    "api_key": None,
    "base_url": "https://api.llm.vin/v1",
    "tool_mode": "inline",
    "max_turns": 25,
    "continuation_delay": 0.5,
    "history_limit": 50,
    "history_keep_recent": 30,
    "history_keep_summaries": 10,
    "truncation_threshold": 200,
    "context_read_lines": 50,
    "bash_timeout": 120,
    "no_instructions": False,
    "no_context": False,
    "color": False,
    "no_color": False,
    "quiet": False,
}


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "winecode"
    return Path.home() / ".config" / "winecode"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate value types and ranges in a parsed config dict.

    Raises ConfigError for mismatches. Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int, reject it for numeric fields.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )

        if key in _POSITIVE_KEYS and value < 1:
            raise ConfigError(f"{source}: {key!r} must be at least 1, got {value}")

    if "tool_mode" in config and config["tool_mode"] not in TOOL_MODES:
        raise ConfigError(
            f"{source}: 'tool_mode' must be one of {', '.join(TOOL_MODES)}, "
            f"got {config['tool_mode']!r}"
        )
    if config.get("continuation_delay", 0) < 0:
        raise ConfigError(f"{source}: 'continuation_delay' must not be negative")


def _check_history_limits(config: dict, source: str) -> None:
    limit = config.get("history_limit", _ARGPARSE_DEFAULTS["history_limit"])
    recent = config.get("history_keep_recent", _ARGPARSE_DEFAULTS["history_keep_recent"])
    if recent >= limit:
        raise ConfigError(
            f"{source}: 'history_keep_recent' ({recent}) must be below "
            f"'history_limit' ({limit})"
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
                f"may be committed accidentally. Consider {API_KEY_ENV} instead.",
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

    Returns a flat dict holding only keys actually set in config files
    (no defaults injected).
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))

    project_path = Path(base_dir).resolve() / "winecode.toml"
    project_config = _load_single(project_path, str(project_path))
    if project_config:
        _check_api_key_in_git(project_config, project_path)

    merged = {**global_config, **project_config}
    _check_history_limits(merged, "config")
    return merged


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to argparse namespace where CLI didn't set a value.

    Config values fill any dest still holding _UNSET; remaining sentinels
    are then replaced with hardcoded defaults. The API key falls back to
    the WINECODE_API_KEY environment variable last.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # A single config key controls the --color/--no-color pair
    if "color" in config and _is_unset("color") and _is_unset("no_color"):
        args.color = config["color"]
        args.no_color = not config["color"]

    for key, value in config.items():
        if key == "color":
            continue
        if _is_unset(key):
            setattr(args, key, value)

    if _is_unset("api_key") and os.environ.get(API_KEY_ENV):
        args.api_key = os.environ[API_KEY_ENV]

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    location = "<project>/winecode.toml" if project else "~/.config/winecode/config.toml"
    lines = [
        "# winecode configuration file",
        f"# {'Project' if project else 'Global'} config: {location}",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "",
        "# --- Endpoint / model ---",
        '# model = "grok-3-mini"',
        f"# api_key = \"...\"                 # prefer {API_KEY_ENV}; this is a fallback",
        '# base_url = "https://api.llm.vin/v1"',
        '# tool_mode = "inline"            # "inline" | "structured" | "auto"',
        "",
        "# --- Agent behaviour ---",
        "# max_turns = 25                  # cap on automatic continuations",
        "# continuation_delay = 0.5        # seconds between continuation turns",
        "# truncation_threshold = 200",
        "# bash_timeout = 120",
        "",
        "# --- History ---",
        "# history_limit = 50",
        "# history_keep_recent = 30",
        "# history_keep_summaries = 10",
        "",
        "# --- Context ---",
        "# no_context = false",
        "# context_read_lines = 50",
        "# no_instructions = false",
        "",
        "# --- UI ---",
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "# quiet = false",
        "",
    ]
    return "\n".join(lines)
