"""Domain-specific errors for comctl."""


class ComctlError(Exception):
    """Base error for comctl."""


class ConfigurationError(ComctlError):
    """Raised when a call cannot run with the configuration it was given."""


class TemplateError(ConfigurationError):
    """Raised when a command template references a value that cannot be resolved."""


class ProfileValidationError(ComctlError):
    """Raised when a profile file does not conform to schema or semantics."""


class ProfileLoadError(ComctlError):
    """Raised when loading profile sources fails."""


class SettingsError(ComctlError):
    """Raised when the settings file or environment overrides are invalid."""


class NotFoundError(ComctlError):
    """Raised when a profile/index/name lookup does not resolve a connection."""


class DeviceDiscoveryError(ComctlError):
    """Raised when serial port enumeration fails."""


class TransportError(ComctlError):
    """Base transport error."""


class TransportOpenError(TransportError):
    """Raised when a serial port cannot be opened."""


class TransportSendError(TransportError):
    """Raised when writing a command fails."""


class TransportCloseError(TransportError):
    """Raised when closing a serial port reports an error."""


class TransportTimeoutError(TransportError):
    """Base error for bounded waits that expired."""


class ResponseTimeoutError(TransportTimeoutError):
    """Raised when no response matched before the read timeout."""


class LockTimeoutError(TransportTimeoutError):
    """Raised when a port stays busy for longer than the lock wait."""


class ConnectTimeoutError(TransportTimeoutError):
    """Raised when a connecting port does not settle in time."""
