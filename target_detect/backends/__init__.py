from __future__ import annotations

"""
target_detect.backends
----------------------

Target finder registry (the detector factory).

Today we ship an OpenCV backend with three finders:
- checkerboard, circle_grid, aruco_grid

CamelCase aliases are also registered:
- CheckerboardTargetFinder, CircleGridTargetFinder, ArucoGridTargetFinder

Further finders come from plugins (see target_detect.registry.plugins).
"""

import logging
from collections import abc
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Type

from ..core.config import get_member
from ..core.schema import BaseTargetFinder, ConfigError
from ..registry.plugins import load_plugins

from .opencv.finders import (  # noqa: E402
    ArucoGridTargetFinder,
    CheckerboardTargetFinder,
    CircleGridTargetFinder,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetFinderSpec:
    backend: str
    name: str
    cls: Type[BaseTargetFinder]
    init_kwargs: Dict[str, Any]


# Keyed by finder "public name" (lowercase, e.g. "checkerboard") -> spec
_FINDERS: Dict[str, TargetFinderSpec] = {}


def _key(name: str) -> str:
    return (name or "").strip().lower()


def register_target_finder(
    *,
    name: str,
    backend: str,
    cls: Type[BaseTargetFinder],
    init_kwargs: Optional[Dict[str, Any]] = None,
    replace: bool = False,
) -> None:
    key = _key(name)
    if not key:
        raise ValueError("Target finder name must be non-empty.")
    if not (isinstance(cls, type) and issubclass(cls, BaseTargetFinder)):
        raise TypeError(f"Target finder '{key}' must be a BaseTargetFinder subclass, got {cls!r}.")
    if key in _FINDERS and not replace:
        raise ValueError(f"Target finder '{key}' already registered.")
    _FINDERS[key] = TargetFinderSpec(backend=backend, name=key, cls=cls, init_kwargs=dict(init_kwargs or {}))


def unregister_target_finder(name: str) -> None:
    _FINDERS.pop(_key(name), None)


def available_target_finders() -> List[str]:
    return sorted(_FINDERS.keys())


def create_target_finder(*, name: str, params: Optional[Mapping[str, Any]] = None) -> BaseTargetFinder:
    """
    Create a target finder instance.

    - Looks up the registered class by (case-insensitive) name.
    - Instantiates it with the spec's init_kwargs overlaid by `params`.
    Raises ConfigError for unknown names and for any failure while the finder
    is constructed (bad parameters, missing optional modules, device errors).
    """
    key = _key(name)
    if key not in _FINDERS:
        raise ConfigError(f"Unknown target finder '{name}'. Available: {', '.join(available_target_finders())}")

    spec = _FINDERS[key]
    init_kwargs: Dict[str, Any] = dict(spec.init_kwargs)
    init_kwargs.update(dict(params or {}))

    try:
        finder = spec.cls(**init_kwargs)
    except ConfigError:
        raise
    except (TypeError, ValueError, KeyError) as e:
        raise ConfigError(f"Invalid parameters for target finder '{key}': {e}") from e
    except Exception as e:
        raise ConfigError(f"Failed to construct target finder '{key}': {type(e).__name__}: {e}") from e

    logger.info("Created target finder '%s' (backend=%s).", key, spec.backend)
    return finder


def target_finder_params(section: Mapping[str, Any]) -> Dict[str, Any]:
    """Split a target_finder config section into implementation parameters.

    Everything except 'type' is a parameter; a nested 'params' mapping is merged on top.
    """
    params = {k: v for k, v in section.items() if k not in ("type", "params")}
    nested = get_member(section, "params", abc.Mapping, default={})
    params.update(dict(nested))
    return params


def build_target_finder(config: Mapping[str, Any]) -> BaseTargetFinder:
    """Build the process-wide target finder from a configuration document.

    Reads config["target_finder"]["type"] and the section's parameters. If the type is
    not registered yet, plugins on the search path are loaded before resolving it.
    Every failure is a ConfigError.
    """
    section = get_member(config, "target_finder", abc.Mapping)
    finder_type = get_member(section, "type", str)
    if not finder_type.strip():
        raise ConfigError("Config field 'type' must be a non-empty string.")

    if _key(finder_type) not in _FINDERS:
        load_plugins(register_target_finder, config)
    return create_target_finder(name=finder_type, params=target_finder_params(section))


# -------------------------
# Built-in finder wiring
# -------------------------
register_target_finder(name="checkerboard", backend="opencv", cls=CheckerboardTargetFinder)
register_target_finder(name="circle_grid", backend="opencv", cls=CircleGridTargetFinder)
register_target_finder(name="aruco_grid", backend="opencv", cls=ArucoGridTargetFinder)

# CamelCase aliases
register_target_finder(name="CheckerboardTargetFinder", backend="opencv", cls=CheckerboardTargetFinder)
register_target_finder(name="CircleGridTargetFinder", backend="opencv", cls=CircleGridTargetFinder)
register_target_finder(name="ArucoGridTargetFinder", backend="opencv", cls=ArucoGridTargetFinder)

# Asymmetric circle grid shortcut
register_target_finder(
    name="asymmetric_circle_grid",
    backend="opencv",
    cls=CircleGridTargetFinder,
    init_kwargs={"symmetric": False},
)


__all__ = [
    "TargetFinderSpec",
    "register_target_finder",
    "unregister_target_finder",
    "available_target_finders",
    "create_target_finder",
    "target_finder_params",
    "build_target_finder",
]
