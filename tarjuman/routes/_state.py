"""Shared mutable state for API route modules.

Globals are set once during app lifespan startup via the setter functions.
Route modules import from here to avoid circular dependencies.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tarjuman.config import AppConfig
    from tarjuman.pipeline.orchestrator import PipelineCoordinator
    from tarjuman.services.health import HealthMonitor
    from tarjuman.services.settings_store import SettingsStore

_coordinator: PipelineCoordinator | None = None
_settings_store: SettingsStore | None = None
_health_monitor: HealthMonitor | None = None
_config: AppConfig | None = None


def set_coordinator(coordinator):
    global _coordinator
    _coordinator = coordinator


def set_settings_store(store):
    global _settings_store
    _settings_store = store


def set_health_monitor(monitor):
    global _health_monitor
    _health_monitor = monitor


def set_config(config):
    global _config
    _config = config
