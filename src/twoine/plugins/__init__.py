"""Extension layer: notification plugins via pluggy.

Discovery: entry_points (pip-installed) via pluggy setuptools entrypoints.
INVARIANT: Plugin failures are warnings, never errors.
"""

from twoine.plugins.event_bus import EventBus
from twoine.plugins.manager import PluginManager

__all__ = ["EventBus", "PluginManager"]
