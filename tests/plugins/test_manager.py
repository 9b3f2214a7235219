"""Tests for PluginManager: discovery, registration, and hook relay."""

from __future__ import annotations

from typing import Any

import pluggy
import pytest

from twoine.plugins.manager import PluginManager

hookimpl = pluggy.HookimplMarker("twoine")


class _DummyPlugin:
    @hookimpl
    def alert_raised(self, level: str, source: str, message: str, detail: dict[str, Any]) -> None:
        pass


class _NeedsArgs:
    def __init__(self, url: str) -> None:
        self.url = url

    @hookimpl
    def alert_raised(self, level: str, source: str, message: str, detail: dict[str, Any]) -> None:
        pass


class TestPluginManager:
    def test_register_plugin(self) -> None:
        pm = PluginManager()
        pm.register_plugin(_DummyPlugin(), name="dummy")
        assert "dummy" in pm.list_plugin_names()

    def test_register_plugin_default_name(self) -> None:
        pm = PluginManager()
        pm.register_plugin(_DummyPlugin())
        assert "_DummyPlugin" in pm.list_plugin_names()

    def test_unregister_plugin(self) -> None:
        pm = PluginManager()
        plugin = _DummyPlugin()
        pm.register_plugin(plugin, name="dummy")
        pm.unregister(plugin)
        assert "dummy" not in pm.list_plugin_names()

    def test_is_loaded(self) -> None:
        pm = PluginManager()
        assert pm.is_loaded is False
        pm.discover_and_load()
        assert pm.is_loaded is True

    def test_get_plugins_returns_registered(self) -> None:
        pm = PluginManager()
        plugin = _DummyPlugin()
        pm.register_plugin(plugin, name="test")
        assert plugin in pm.get_plugins()

    @pytest.mark.parametrize(
        "hook_name",
        [
            "service_status_changed",
            "site_status_changed",
            "domain_status_changed",
            "database_status_changed",
            "alert_raised",
        ],
    )
    def test_all_hookspecs_registered(self, hook_name: str) -> None:
        assert hasattr(PluginManager().hook, hook_name)


class TestNormalizeEntryPointClasses:
    def test_class_replaced_by_instance(self) -> None:
        pm = PluginManager()
        pm._pm.register(_DummyPlugin, name="entry")
        pm._normalize_plugin_instances()
        (plugin,) = pm.get_plugins()
        assert isinstance(plugin, _DummyPlugin)
        assert pm.list_plugin_names() == ["entry"]

    def test_uninstantiable_class_dropped(self, caplog: pytest.LogCaptureFixture) -> None:
        pm = PluginManager()
        pm._pm.register(_NeedsArgs, name="broken")
        with caplog.at_level("WARNING"):
            pm._normalize_plugin_instances()
        assert pm.get_plugins() == []
        assert "Failed to instantiate entry-point plugin broken" in caplog.text
