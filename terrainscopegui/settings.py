"""Window preferences stored as ``terrainscope.config.json``.

The file lives in the per-user config directory (``%APPDATA%`` on
Windows, ``~/Library/Application Support`` on macOS, ``$XDG_CONFIG_HOME``
or ``~/.config`` elsewhere) and holds two sections: ``view`` with the
analyzer parameters and ``gui`` with window-only state.

Unreadable or invalid files are moved aside to ``*.bak`` and replaced
with defaults; missing keys are filled in from the current defaults.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import platform
from typing import Any

from terrainscopelib.config import default_config, validate_config_fields

log = logging.getLogger(__name__)

CONFIG_FILENAME = "terrainscope.config.json"
SECTIONS = ("view", "gui")

_GUI_DEFAULTS: dict[str, Any] = {
    "scale_factor": 1.0,
    "colors": [],
    "last_source": "",
}

# system -> (environment variable, fallback below the home directory)
_BASE_DIRS = {
    "Windows": ("APPDATA", ()),
    "Darwin": (None, ("Library", "Application Support")),
}
_XDG = ("XDG_CONFIG_HOME", (".config",))


def config_path() -> str:
    env_var, fallback = _BASE_DIRS.get(platform.system(), _XDG)
    base = os.environ.get(env_var) if env_var else None
    if not base:
        base = os.path.join(os.path.expanduser("~"), *fallback)
    return os.path.join(base, "terrainscope", CONFIG_FILENAME)


def build_defaults() -> dict[str, Any]:
    return {"view": default_config(), "gui": copy.deepcopy(_GUI_DEFAULTS)}


def load_config() -> dict[str, Any]:
    """Return the stored preferences merged over the defaults.

    Always returns a complete, valid config and rewrites the file when
    it was missing, broken, or lacked keys.
    """
    path = config_path()
    defaults = build_defaults()

    if not os.path.isfile(path):
        log.info("Creating %s", path)
        save_config(defaults)
        return defaults

    stored = _read_json(path)
    if stored is None:
        return _reset(path, defaults)

    merged = copy.deepcopy(defaults)
    for section in SECTIONS:
        values = stored.get(section)
        if isinstance(values, dict):
            merged[section].update(
                (k, v) for k, v in values.items() if k in merged[section])

    problems = validate_config_fields(merged["view"])
    if problems:
        log.warning("Invalid view settings (%s); restoring defaults",
                    "; ".join(p.message for p in problems))
        defaults["gui"] = merged["gui"]
        return _reset(path, defaults)

    if merged != stored:
        save_config(merged)
    return merged


def save_config(config: dict[str, Any]) -> str:
    path = config_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=4, ensure_ascii=False)
        f.write("\n")
    log.info("Saved preferences to %s", path)
    return path


def view_config(config: dict[str, Any]) -> dict[str, Any]:
    """Flat session config: the ``view`` section plus the saved GUI colors."""
    flat = dict(config.get("view", {}))
    colors = config.get("gui", {}).get("colors")
    if colors:
        flat["colors"] = list(colors)
    return flat


def _read_json(path: str) -> dict[str, Any] | None:
    """Parse *path*; None when it is unreadable or not a JSON object."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        log.warning("Cannot read %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        log.warning("%s holds a %s, not an object", path, type(data).__name__)
        return None
    return data


def _reset(path: str, replacement: dict[str, Any]) -> dict[str, Any]:
    backup = path + ".bak"
    try:
        os.replace(path, backup)
        log.info("Moved unusable preferences to %s", backup)
    except OSError as e:
        log.warning("Could not back up %s: %s", path, e)
    save_config(replacement)
    return replacement
