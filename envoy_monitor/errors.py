# envoy_monitor/errors.py


class EnvoyError(Exception):
    """Base class for gateway and cloud failures."""


class ConfigError(EnvoyError):
    """Client used before it knows where the gateway lives."""


class AuthError(EnvoyError):
    """Cloud login, token exchange or gateway JWT check was rejected."""


class NetworkError(EnvoyError):
    """Data endpoint failed after the single retry, or the transport failed."""


class ParseError(EnvoyError):
    """Payload is missing a field the reconciler depends on."""


class DataJoinError(EnvoyError):
    """Metered mode is active but readings could not be matched to meters."""
