from __future__ import annotations

"""
target_detect.core.config
-------------------------

Configuration document loading (YAML).

The document is read once at startup and never mutated afterwards. Minimum shape:

  target_finder:
    type: checkerboard        # registered finder name
    rows: 6                   # implementation-specific parameters
    cols: 9

Optional sections:

  node:
    input_topic: image
    detected_topic: image_detected
    annotated_topic: image_annotated
    queue_size: 1
  plugins:                    # extra modules / .py files that register finders
    - my_package.finders

Every problem here is a ConfigError, which is fatal to startup.
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from .schema import ConfigError

CONFIG_ENV = "TARGET_DETECT_CONFIG"

DEFAULT_NODE_OPTIONS: Dict[str, Any] = {
    "input_topic": "image",
    "detected_topic": "image_detected",
    "annotated_topic": "image_annotated",
    "queue_size": 1,
}

_MISSING = object()


def resolve_config_path(value: Optional[Union[str, Path]] = None) -> Path:
    """Return the config file path from an explicit value or $TARGET_DETECT_CONFIG."""
    raw = value if value not in (None, "") else os.getenv(CONFIG_ENV)
    if raw in (None, ""):
        raise ConfigError(f"Failed to get 'config_file' parameter (pass --config or set {CONFIG_ENV}).")
    return Path(str(raw)).expanduser()


def load_config(path: Union[str, Path]) -> Dict[str, Any]:
    """Load a YAML configuration document into a plain dict."""
    p = Path(path).expanduser()
    if not p.is_file():
        raise ConfigError(f"Config file not found: {p}")
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Failed to read config file {p}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed YAML in config file {p}: {e}") from e

    if data is None:
        raise ConfigError(f"Config file is empty: {p}")
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping at the top level: {p}")
    return data


def get_member(node: Mapping[str, Any], key: str, expected_type: Any = object, default: Any = _MISSING) -> Any:
    """Return node[key] checked against expected_type.

    Missing keys raise ConfigError unless a default is given.
    """
    if not isinstance(node, Mapping):
        raise ConfigError(f"Expected a mapping while looking up '{key}', got {type(node).__name__}.")
    if key not in node or node[key] is None:
        if default is not _MISSING:
            return default
        raise ConfigError(f"Missing required config field '{key}'.")
    value = node[key]
    if not isinstance(value, expected_type):
        name = getattr(expected_type, "__name__", str(expected_type))
        raise ConfigError(f"Config field '{key}' must be of type {name}, got {type(value).__name__}.")
    return value


def node_options(config: Mapping[str, Any]) -> Dict[str, Any]:
    """Return the node section merged over DEFAULT_NODE_OPTIONS."""
    section = get_member(config, "node", dict, default={})
    unknown = set(section) - set(DEFAULT_NODE_OPTIONS)
    if unknown:
        raise ConfigError(f"Unknown node option(s): {', '.join(sorted(unknown))}")
    opts = dict(DEFAULT_NODE_OPTIONS)
    opts.update(section)
    for key in ("input_topic", "detected_topic", "annotated_topic"):
        if not isinstance(opts[key], str) or not opts[key].strip():
            raise ConfigError(f"Node option '{key}' must be a non-empty string.")
    if isinstance(opts["queue_size"], bool) or not isinstance(opts["queue_size"], int) or opts["queue_size"] < 0:
        raise ConfigError("Node option 'queue_size' must be an integer >= 0.")
    return opts


__all__ = [
    "CONFIG_ENV",
    "DEFAULT_NODE_OPTIONS",
    "resolve_config_path",
    "load_config",
    "get_member",
    "node_options",
]
