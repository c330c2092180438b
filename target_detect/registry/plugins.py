from __future__ import annotations

"""
target_detect.registry.plugins
------------------------------

Plugin search path for target finder implementations.

A search entry can be:
  • A dotted module name (e.g. "my_pkg.finders") -> imported
  • A path to a .py file                       -> imported from file
Importing a plugin is expected to call target_detect.backends.register_target_finder().

Search sources are merged in this order (later entries appended):
  1) DEFAULT_SEARCH_LIBRARIES (in-code defaults)
  2) the "plugins" list of the configuration document
  3) TARGET_DETECT_SEARCH_LIBRARIES env var (os.pathsep separated)

In addition, entry points in the "target_detect.target_finders" group are loaded;
each entry point must resolve to a BaseTargetFinder subclass and is registered
under the entry point name.

Plugins that fail to import are logged and skipped. Each source is imported once
per process.
"""

import hashlib
import importlib
import importlib.util
import logging
import os
import sys
from importlib import metadata
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Iterable, List, Mapping, Optional, Set

logger = logging.getLogger(__name__)

SEARCH_LIBRARIES_ENV = "TARGET_DETECT_SEARCH_LIBRARIES"
ENTRY_POINT_GROUP = "target_detect.target_finders"

# In-code defaults (normally empty; keep for programmatic injection)
DEFAULT_SEARCH_LIBRARIES: List[str] = []

_loaded_sources: Set[str] = set()
_entry_points_loaded = False


# --- Internal helpers ---
def _is_file_source(s: str) -> bool:
    return s.endswith(".py") or any(sep in s for sep in (os.sep, "/", "\\"))


def _import_file(path: Path) -> ModuleType:
    p = path.expanduser().resolve()
    if not p.is_file():
        raise FileNotFoundError(f"Plugin file not found: {p}")
    digest = hashlib.sha1(str(p).encode("utf-8")).hexdigest()[:10]
    mod_name = f"target_detect_plugin_{p.stem}_{digest}"
    spec = importlib.util.spec_from_file_location(mod_name, p)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot import plugin file: {p}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[mod_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception:
        sys.modules.pop(mod_name, None)
        raise
    return module


def _env_sources() -> List[str]:
    env = os.getenv(SEARCH_LIBRARIES_ENV, "")
    return [s.strip() for s in env.split(os.pathsep) if s.strip()]


def search_libraries(config: Optional[Mapping[str, Any]] = None) -> List[str]:
    """Return the merged, de-duplicated plugin search list."""
    out: List[str] = []
    extra: Iterable[Any] = ()
    if config is not None:
        extra = config.get("plugins") or ()
        if isinstance(extra, str):
            extra = [extra]
    for s in list(DEFAULT_SEARCH_LIBRARIES) + [str(x).strip() for x in extra] + _env_sources():
        if s and s not in out:
            out.append(s)
    return out


def import_plugin(source: str) -> Optional[ModuleType]:
    """Import a single plugin source once. Returns the module, or None if already loaded."""
    if source in _loaded_sources:
        return None
    if _is_file_source(source):
        module = _import_file(Path(source))
    else:
        module = importlib.import_module(source)
    _loaded_sources.add(source)
    logger.info("Loaded target finder plugin '%s'.", source)
    return module


def load_entry_points(register: Callable[..., None]) -> List[str]:
    """Register finders advertised via entry points. Returns the names registered."""
    global _entry_points_loaded
    if _entry_points_loaded:
        return []
    _entry_points_loaded = True

    try:
        eps = metadata.entry_points(group=ENTRY_POINT_GROUP)
    except TypeError:  # pragma: no cover  (Python < 3.10)
        eps = metadata.entry_points().get(ENTRY_POINT_GROUP, [])

    names: List[str] = []
    for ep in eps:
        try:
            cls = ep.load()
            register(name=ep.name, backend=getattr(cls, "backend", "plugin"), cls=cls)
            names.append(ep.name)
        except Exception as e:
            logger.warning("Skipping target finder entry point '%s': %s", ep.name, e)
    return names


def load_plugins(register: Callable[..., None], config: Optional[Mapping[str, Any]] = None) -> List[str]:
    """Import every plugin on the search path and load entry points.

    Returns the sources that were newly imported.
    """
    loaded: List[str] = []
    for source in search_libraries(config):
        try:
            if import_plugin(source) is not None:
                loaded.append(source)
        except Exception as e:
            logger.warning("Failed to load target finder plugin '%s': %s", source, e)
    load_entry_points(register)
    return loaded


def reset_plugin_state() -> None:
    """Forget which plugins were imported (tests / long-lived hosts reloading config)."""
    global _entry_points_loaded
    _loaded_sources.clear()
    _entry_points_loaded = False


__all__ = [
    "SEARCH_LIBRARIES_ENV",
    "ENTRY_POINT_GROUP",
    "DEFAULT_SEARCH_LIBRARIES",
    "search_libraries",
    "import_plugin",
    "load_entry_points",
    "load_plugins",
    "reset_plugin_state",
]
