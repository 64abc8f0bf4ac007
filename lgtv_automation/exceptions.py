"""Custom exceptions for LGTV Automation with structured error codes."""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes for structured error reporting."""

    # Generic errors
    LGTV_ERROR = "LGTV_ERROR"

    # Wake-on-LAN errors
    INVALID_ADDRESS = "INVALID_ADDRESS"
    NETWORK_ERROR = "NETWORK_ERROR"

    # Protocol client errors
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    HANDSHAKE_TIMEOUT = "HANDSHAKE_TIMEOUT"
    NOT_CONNECTED = "NOT_CONNECTED"
    CONNECTION_CLOSED = "CONNECTION_CLOSED"
    COMMAND_FAILED = "COMMAND_FAILED"

    # Configuration and storage errors
    CONFIG_ERROR = "CONFIG_ERROR"
    TV_NOT_CONFIGURED = "TV_NOT_CONFIGURED"
    KEY_STORE_ERROR = "KEY_STORE_ERROR"


class LGTVException(Exception):
    """Base exception for TV control errors.

    All custom exceptions should inherit from this class so callers can
    catch every controller failure with a single except clause.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.LGTV_ERROR,
        details: dict[str, Any] | None = None,
    ):
        """Initialize LGTV exception.

        Args:
            message: Human-readable error message
            code: Error code from ErrorCode enum
            details: Additional error context (address, transport, elapsed time)
        """
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


class InvalidAddressException(LGTVException):
    """Physical (MAC) address is malformed."""

    def __init__(self, address: str, reason: str, details: dict[str, Any] | None = None):
        self.address = address
        super().__init__(
            f"Invalid MAC address '{address}': {reason}",
            code=ErrorCode.INVALID_ADDRESS,
            details={"mac_address": address, **(details or {})},
        )


class NetworkException(LGTVException):
    """Wake packet could not be sent."""

    def __init__(self, message: str = "Failed to broadcast wake packet", details: dict[str, Any] | None = None):
        super().__init__(message, code=ErrorCode.NETWORK_ERROR, details=details)


class TransportFailureException(LGTVException):
    """Socket, TLS or WebSocket level failure."""

    def __init__(
        self,
        message: str = "Failed to connect to TV",
        code: ErrorCode = ErrorCode.TRANSPORT_FAILURE,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code=code, details=details)


class HandshakeTimeoutException(TransportFailureException):
    """Transport or registration did not complete in time."""

    def __init__(self, message: str = "TV handshake timeout", details: dict[str, Any] | None = None):
        super().__init__(message, code=ErrorCode.HANDSHAKE_TIMEOUT, details=details)


class NotConnectedException(LGTVException):
    """Command sent without a live, registered session."""

    def __init__(self, message: str = "Not connected to TV", details: dict[str, Any] | None = None):
        super().__init__(message, code=ErrorCode.NOT_CONNECTED, details=details)


class ConnectionClosedException(LGTVException):
    """Pending request invalidated because the connection went away."""

    def __init__(self, message: str = "Connection closed", details: dict[str, Any] | None = None):
        super().__init__(message, code=ErrorCode.CONNECTION_CLOSED, details=details)


class CommandFailedException(LGTVException):
    """TV answered a request with an error envelope."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code=ErrorCode.COMMAND_FAILED, details=details)


class ConfigurationException(LGTVException):
    """Configuration errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFIG_ERROR,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, code=code, details=details)


class TVNotConfiguredException(ConfigurationException):
    """No TV configuration has been saved yet."""

    def __init__(self, message: str = "No TV configured", details: dict[str, Any] | None = None):
        super().__init__(message, code=ErrorCode.TV_NOT_CONFIGURED, details=details)


class KeyStoreException(LGTVException):
    """Pairing key could not be persisted or removed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code=ErrorCode.KEY_STORE_ERROR, details=details)
