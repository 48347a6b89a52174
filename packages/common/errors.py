from __future__ import annotations


class FailoverRpcError(Exception):
    """Base class for errors raised by the failover client itself."""


class ConfigError(FailoverRpcError, ValueError):
    """Missing required setting or an invalid value."""


class RpcConnectionError(FailoverRpcError, ConnectionError):
    """An endpoint could not be dialed."""
