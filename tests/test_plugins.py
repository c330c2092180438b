from __future__ import annotations

import logging
import os

import numpy as np
import pytest

from target_detect.core.schema import BaseTargetFinder
from target_detect.registry import plugins


class _PluginFinder(BaseTargetFinder):
    backend = "entry"

    def find_target_features(self, image_bgr: np.ndarray):
        return {}

    def draw_target_features(self, image_bgr: np.ndarray, features) -> np.ndarray:
        return image_bgr.copy()


class _FakeEntryPoint:
    def __init__(self, name: str, target) -> None:
        self.name = name
        self._target = target

    def load(self):
        if isinstance(self._target, Exception):
            raise self._target
        return self._target


@pytest.fixture(autouse=True)
def _clean_plugin_state(monkeypatch):
    monkeypatch.delenv(plugins.SEARCH_LIBRARIES_ENV, raising=False)
    plugins.reset_plugin_state()
    yield
    plugins.reset_plugin_state()


def test_search_libraries_merges_defaults_config_and_env(monkeypatch) -> None:
    monkeypatch.setattr(plugins, "DEFAULT_SEARCH_LIBRARIES", ["pkg.default"])
    monkeypatch.setenv(plugins.SEARCH_LIBRARIES_ENV, os.pathsep.join(["pkg.env", "pkg.default", ""]))

    result = plugins.search_libraries({"plugins": ["pkg.config"]})

    assert result == ["pkg.default", "pkg.config", "pkg.env"]


def test_single_string_plugin_entry_is_accepted() -> None:
    assert plugins.search_libraries({"plugins": "pkg.only"}) == ["pkg.only"]


def test_modules_are_imported_once(monkeypatch) -> None:
    monkeypatch.setattr(plugins.metadata, "entry_points", lambda **kwargs: [])

    first = plugins.load_plugins(lambda **kw: None, {"plugins": ["json"]})
    second = plugins.load_plugins(lambda **kw: None, {"plugins": ["json"]})

    assert first == ["json"]
    assert second == []


def test_broken_plugin_is_logged_and_skipped(monkeypatch, tmp_path, caplog) -> None:
    monkeypatch.setattr(plugins.metadata, "entry_points", lambda **kwargs: [])
    missing = str(tmp_path / "missing_plugin.py")

    with caplog.at_level(logging.WARNING, logger="target_detect.registry.plugins"):
        loaded = plugins.load_plugins(lambda **kw: None, {"plugins": ["no_such_module_xyz", missing]})

    assert loaded == []
    messages = " ".join(r.getMessage() for r in caplog.records)
    assert "no_such_module_xyz" in messages
    assert "missing_plugin.py" in messages


def test_entry_points_are_registered(monkeypatch, caplog) -> None:
    eps = [
        _FakeEntryPoint("good_finder", _PluginFinder),
        _FakeEntryPoint("broken_finder", ImportError("missing dependency")),
    ]
    monkeypatch.setattr(plugins.metadata, "entry_points", lambda **kwargs: eps)
    registered = []

    with caplog.at_level(logging.WARNING, logger="target_detect.registry.plugins"):
        names = plugins.load_entry_points(lambda **kw: registered.append(kw))
        again = plugins.load_entry_points(lambda **kw: registered.append(kw))

    assert names == ["good_finder"]
    assert again == []
    assert registered == [{"name": "good_finder", "backend": "entry", "cls": _PluginFinder}]
    assert "broken_finder" in caplog.text
