"""Scoped service registry for realm-composed FastAPI hosts."""

from realm_services.plugin import PLUGIN_NAME, ServicesPlugin, services_plugin

__all__ = ["PLUGIN_NAME", "ServicesPlugin", "services_plugin"]

__version__ = "0.1.0"
