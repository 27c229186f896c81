from __future__ import annotations


class HostError(RuntimeError):
    pass


class PluginRegistrationError(HostError):
    pass


class DecorationError(HostError):
    pass


class MethodError(HostError):
    pass


class MethodCacheError(MethodError):
    pass


class GenerateTimeoutError(MethodCacheError):
    """Raised when a cached value is still being generated elsewhere past generateTimeout."""
