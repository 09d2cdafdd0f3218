"""Monitor configuration and registry."""

from crypto_sentinel.monitors.registry import MonitorRegistry, RegistryEvent
from crypto_sentinel.monitors.validation import build_config

__all__ = ["MonitorRegistry", "RegistryEvent", "build_config"]
