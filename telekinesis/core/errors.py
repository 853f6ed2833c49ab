"""Domain-specific errors for telekinesis."""


class TelekinesisError(Exception):
    """Base error for telekinesis."""


class DeviceNotFoundError(TelekinesisError):
    """Raised when an unknown device name is referenced."""


class SessionStateError(TelekinesisError):
    """Raised when an operation is not valid in the current session/scan state."""


class AlreadyScanningError(SessionStateError):
    """Raised when a scan is requested while one is running."""


class NotScanningError(SessionStateError):
    """Raised when stopping a scan that is not running."""


class AlreadyConnectedError(SessionStateError):
    """Raised when connecting a session that already has a backend."""


class NotConnectedError(SessionStateError):
    """Raised when an operation needs a connected backend session."""


class BackendUnavailableError(TelekinesisError):
    """Raised when the backend transport cannot be reached."""


class CommandValidationError(TelekinesisError):
    """Base error for commands rejected by the capability model."""


class UnsupportedCapabilityError(CommandValidationError):
    """Raised when a device lacks the capability a command needs."""


class ParameterOutOfRangeError(CommandValidationError):
    """Raised when a command parameter is negative or not finite."""


class PersistenceError(TelekinesisError):
    """Raised when settings cannot be written to durable storage."""


class SettingsValidationError(TelekinesisError):
    """Raised when a settings file does not conform to schema."""


class ProfileValidationError(TelekinesisError):
    """Raised when a device profile does not conform to schema or semantics."""


class ProfileLoadError(TelekinesisError):
    """Raised when loading device profile sources fails."""


class TransportError(TelekinesisError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised on device connect failures."""


class TransportSendError(TransportError):
    """Raised when payload sending fails."""


class TransportTimeoutError(TransportError):
    """Raised when a backend round-trip times out."""
