"""Error types for Handover Sync."""

__all__ = [
    "HandoverSyncError",
    "TransportError",
    "ParseError",
    "UnsupportedFormatError",
    "ConfigurationError",
    "StoreCorruptError",
]


class HandoverSyncError(Exception):
    """Base class for Handover Sync errors."""

    pass


class TransportError(HandoverSyncError):
    """Remote call failed (network failure, timeout or non-2xx status)."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class ParseError(HandoverSyncError):
    """Remote or import payload could not be parsed."""

    pass


class UnsupportedFormatError(HandoverSyncError):
    """Requested export format is not recognized."""

    def __init__(self, fmt: str):
        self.format = fmt
        super().__init__(f"Unsupported format: {fmt}")


class ConfigurationError(HandoverSyncError):
    """Persisted configuration is malformed."""

    pass


class StoreCorruptError(HandoverSyncError):
    """Persisted dataset exists but cannot be decoded."""

    pass
