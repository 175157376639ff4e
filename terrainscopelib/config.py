"""View configuration: parameter table, validation and JSON presets."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

from .terrain import parse_color

PRESET_SCHEMA_VERSION = "1.0"

DEFAULT_COLOR = "#81A596"

_MISSING = object()


class ConfigError(Exception):
    """A configuration or preset file was rejected."""


@dataclass
class ConfigFieldError:
    """One rejected field: its key, the offending value and a readable reason."""
    key: str
    value: Any
    message: str


@dataclass(frozen=True)
class ParamSpec:
    """One tunable view parameter.

    ``min``/``max`` are inclusive unless the matching ``*_exclusive`` flag
    is set.  ``item_type`` applies to list values.
    """
    key: str
    type: type | tuple
    default: Any
    label: str
    description: str = ""
    min: float | int | None = None
    max: float | int | None = None
    min_exclusive: bool = False
    max_exclusive: bool = False
    item_type: type | None = None


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------

VIEW_PARAMS: list[ParamSpec] = [
    ParamSpec(
        key="volume_size", type=(int, float), default=10.0,
        min=0.0, min_exclusive=True,
        label="Volume size",
        description=(
            "Edge length of the display cube.  Terrain peaks reach 70% of it."
        ),
    ),
    ParamSpec(
        key="tick_count", type=int, default=5, min=1, max=50,
        label="Cage ticks",
        description="Number of gridline divisions per cage axis.",
    ),
    ParamSpec(
        key="scan_points", type=int, default=64, min=2, max=4096,
        label="Scanner resolution",
        description=(
            "Points sampled across the frequency axis for the playback "
            "cross-section line.  Need not match the number of bins."
        ),
    ),
    ParamSpec(
        key="colors", type=list, default=[], item_type=str,
        label="Terrain colors",
        description=(
            "One or two colors (#RRGGBB).  Two colors blend from low to "
            "high frequency.  Empty uses the default color."
        ),
    ),
    ParamSpec(
        key="default_color", type=str, default=DEFAULT_COLOR,
        label="Default color",
        description="Terrain color used when no colors are supplied.",
    ),
    ParamSpec(
        key="fetch_timeout", type=(int, float), default=10.0,
        min=0.0, min_exclusive=True,
        label="Fetch timeout (s)",
        description="HTTP timeout for loading clips from a URL.",
    ),
    ParamSpec(
        key="load_workers", type=int, default=2, min=1, max=16,
        label="Load workers",
        description="Background threads for fetch/decode/analysis.",
    ),
]


def default_config() -> dict[str, Any]:
    """Fresh copy of every VIEW_PARAMS default."""
    return {p.key: (list(p.default) if isinstance(p.default, list) else p.default)
            for p in VIEW_PARAMS}


def merge_configs(*configs: dict[str, Any]) -> dict[str, Any]:
    """Layer *configs* left to right.

    ``None`` never overrides, so unset CLI options leave preset values alone.
    """
    merged: dict[str, Any] = {}
    for cfg in configs:
        merged.update((k, v) for k, v in cfg.items() if v is not None)
    return merged


def effective_colors(config: dict[str, Any]) -> list[str]:
    """The color list the terrain should use for *config*."""
    colors = list(config.get("colors") or [])
    if not colors:
        colors = [config.get("default_color", DEFAULT_COLOR)]
    return colors


_PRESET_META = ("schema_version", "_description")


def load_preset(path: str) -> dict[str, Any]:
    """Read a JSON preset and return its settings (a partial config).

    Raises :class:`ConfigError` when the file is missing, unreadable or
    not a JSON object.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Preset file not found: {path}") from None
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in preset file {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read preset file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(
            f"Preset {path} must hold a JSON object, not {type(data).__name__}")
    return {k: v for k, v in data.items() if k not in _PRESET_META}


def save_preset(config: dict[str, Any], path: str, *, description: str | None = None) -> None:
    """Write the settings in *config* that differ from the defaults."""
    defaults = default_config()
    changed = {
        k: v for k, v in config.items()
        if not k.startswith("_") and defaults.get(k, _MISSING) != v
    }
    preset: dict[str, Any] = {"schema_version": PRESET_SCHEMA_VERSION}
    if description:
        preset["_description"] = description
    preset.update(changed)

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(preset, f, indent=4, ensure_ascii=False)
        f.write("\n")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _type_label(t) -> str:
    names = t if isinstance(t, tuple) else (t,)
    return " or ".join(n.__name__ for n in names)


def _range_problem(spec: ParamSpec, value: float) -> str | None:
    lo, hi = spec.min, spec.max
    if lo is not None:
        if spec.min_exclusive and value <= lo:
            return f"{spec.label} must be greater than {lo}."
        if not spec.min_exclusive and value < lo:
            return f"{spec.label} must be at least {lo}."
    if hi is not None:
        if spec.max_exclusive and value >= hi:
            return f"{spec.label} must be less than {hi}."
        if not spec.max_exclusive and value > hi:
            return f"{spec.label} must be at most {hi}."
    return None


def check_param(spec: ParamSpec, value: Any) -> str | None:
    """Reason *value* is unacceptable for *spec*, or None if it is fine."""
    # bool is an int subclass; only accept it where bool is the declared type
    if isinstance(value, bool) and spec.type is not bool:
        return f"{spec.label} must be {_type_label(spec.type)}, got boolean."
    if not isinstance(value, spec.type):
        return (f"{spec.label} must be {_type_label(spec.type)}, "
                f"got {type(value).__name__}.")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _range_problem(spec, value)
    if spec.item_type is not None and isinstance(value, list):
        for i, item in enumerate(value):
            if not isinstance(item, spec.item_type):
                return (f"{spec.label}[{i}] must be {spec.item_type.__name__}, "
                        f"got {type(item).__name__}.")
    return None


def validate_param_values(
    params: list[ParamSpec],
    values: dict[str, Any],
) -> list[ConfigFieldError]:
    """Check the keys of *values* that *params* describe.

    Keys absent from *values* are skipped; they fall back to defaults.
    """
    errors = []
    for spec in params:
        if spec.key not in values:
            continue
        problem = check_param(spec, values[spec.key])
        if problem:
            errors.append(ConfigFieldError(spec.key, values[spec.key], problem))
    return errors


def validate_config_fields(config: dict[str, Any]) -> list[ConfigFieldError]:
    """Every problem in *config*: per-parameter checks, then color count and syntax."""
    errors = validate_param_values(VIEW_PARAMS, config)
    bad_keys = {e.key for e in errors}

    colors = config.get("colors")
    if "colors" not in bad_keys and isinstance(colors, list):
        if len(colors) > 2:
            errors.append(ConfigFieldError(
                "colors", colors, "Terrain colors accept at most two entries.",
            ))
        else:
            for c in colors:
                try:
                    parse_color(c)
                except ValueError as e:
                    errors.append(ConfigFieldError("colors", colors, str(e)))
                    break

    default_color = config.get("default_color")
    if "default_color" not in bad_keys and isinstance(default_color, str):
        try:
            parse_color(default_color)
        except ValueError as e:
            errors.append(ConfigFieldError("default_color", default_color, str(e)))

    return errors


def validate_config(config: dict[str, Any]) -> None:
    """Raise :class:`ConfigError` naming each invalid field of *config*."""
    problems = validate_config_fields(config)
    if problems:
        raise ConfigError("Invalid view settings: "
                          + "; ".join(p.message for p in problems))
