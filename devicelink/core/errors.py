"""Domain-specific errors for devicelink."""


class DevicelinkError(Exception):
    """Base error for devicelink."""


class DefinitionValidationError(DevicelinkError):
    """Raised when a cloud definition does not conform to schema or semantics."""


class DefinitionLoadError(DevicelinkError):
    """Raised when reading cloud definition sources fails."""


class DefinitionSelectionError(DevicelinkError):
    """Raised when no cloud definition can be resolved for a device."""


class DeviceNotFoundError(DevicelinkError):
    """Raised when an address has no attached device link."""


class PayloadError(DevicelinkError):
    """Raised when a value cannot be converted to or from characteristic bytes."""


class TransportError(DevicelinkError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised on BLE connect failures."""


class TransportWriteError(TransportError):
    """Raised when a characteristic write fails."""
