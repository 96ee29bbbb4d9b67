"""Connector interfaces, connector services and an in-process pipeline run manager."""

__version__ = "0.1.0"

__all__ = [
    "bridge",
    "connector",
    "errors",
    "messages",
    "plugin_config",
    "runs",
]