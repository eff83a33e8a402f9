"""Custom exceptions for the tunnel supervisor."""


class RtunError(Exception):
    """Base exception for all rtun errors."""
    pass


class SpawnError(RtunError):
    """Raised when the external tunnel process cannot be launched."""
    pass


class ParseError(RtunError):
    """Raised when operator input is not of the form ``<host> <local>:<remote>``.

    Attributes:
        segment: Part of the input that failed (``space``, ``host``, ``colon``,
            ``local port`` or ``remote port``)
    """

    def __init__(self, segment: str, message: str):
        super().__init__(message)
        self.segment = segment


class ConfigError(RtunError):
    """Raised when configuration or the SSH host list is missing or malformed."""
    pass


class SignalSetupError(RtunError):
    """Raised when termination signal handlers cannot be installed."""
    pass


class RegistryError(RtunError):
    """Raised for tunnel registry bookkeeping failures."""
    pass
