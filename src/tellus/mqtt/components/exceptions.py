"""
MQTT Components Exception Hierarchy

Exception classes for the Tellus monitor components. Connection failures are
reported as session state, so only configuration and decoding raise.
"""


class TellusError(Exception):
    """
    Base exception for all Tellus MQTT component errors.

    All Tellus-specific exceptions inherit from this base class
    to enable catching all Tellus errors with a single except clause.
    """
    pass


class TellusCommunicationError(TellusError):
    """
    MQTT communication errors.

    Raised when:
    - The transport cannot be created for a connection attempt
    - A subscription request cannot be issued
    """
    pass


class TellusProcessingError(TellusError):
    """
    Data processing errors.

    Raised when:
    - A payload cannot be decoded
    - A decoded value fails validation
    """
    pass


class PayloadDecodeError(TellusProcessingError):
    """
    A payload on a subscribed topic could not be turned into a domain event.

    Attributes:
        role: Topic role the payload arrived on
        payload_size: Size of the rejected payload in bytes
    """

    def __init__(self, message: str, role: str = "", payload_size: int = 0):
        super().__init__(message)
        self.role = role
        self.payload_size = payload_size


class InvalidSpectrumError(PayloadDecodeError):
    """Spectrum payload is not a JSON array of exactly 288 finite numbers."""
    pass


class InvalidCarbonError(PayloadDecodeError):
    """Carbon payload does not start with a finite number."""
    pass


class ConfigurationError(TellusError):
    """Exception raised for configuration-related errors."""
    pass


def wrap_exception(exc: Exception, new_exc_type: type, message: str | None = None) -> Exception:
    """
    Wrap an existing exception in a new exception type while preserving the original.

    Args:
        exc: Original exception to wrap
        new_exc_type: New exception type to wrap with
        message: Optional custom message (uses original message if None)

    Returns:
        New exception instance with original exception chained
    """
    if message is None:
        message = str(exc)

    new_exc = new_exc_type(f"{message}: {type(exc).__name__}: {exc}")
    new_exc.__cause__ = exc
    return new_exc
