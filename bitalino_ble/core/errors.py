# bitalino_ble/core/errors.py
from __future__ import annotations


class BitalinoError(Exception):
    """
    Base class for all expected operational errors in bitalino-ble.
    """

    #: Stable machine-readable identifier (for CLI exit mapping, logging, etc.)
    code: str = "unknown"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Configuration / setup errors (no radio access yet)
# ---------------------------------------------------------------------------

class ConfigError(BitalinoError):
    """
    Configuration file or overrides are invalid.

    Examples:
      - YAML document is not a mapping
      - connect timeout is negative
      - profile UUID is malformed
    """
    code = "config_error"


class NotInitializedError(BitalinoError):
    """
    Transport adapter is unavailable or initialize() has not succeeded.
    Not recoverable without re-initialization.
    """
    code = "not_initialized"


class InvalidAddressError(BitalinoError):
    """
    Caller passed an empty or malformed device address.
    Raised before any transport interaction.
    """
    code = "invalid_address"


class SessionActiveError(BitalinoError):
    """
    connect() was called for a different device while a session is still
    connecting or connected.
    """
    code = "session_active"


# ---------------------------------------------------------------------------
# Command errors
# ---------------------------------------------------------------------------

class NotConnectedError(BitalinoError):
    """
    Command issued while the link is not connected. No side effect.
    """
    code = "not_connected"


class ServiceUnavailableError(BitalinoError):
    """
    Required GATT service / characteristic is missing from the catalogue.

    Examples:
      - service discovery not complete yet
      - device does not implement the exchange-data service
    """
    code = "service_unavailable"


class TransportRejectedError(BitalinoError):
    """
    The transport did not accept the connect / write / read request.
    Session state is left unchanged.
    """
    code = "transport_rejected"


class UnsupportedOperationError(BitalinoError):
    """
    Operation is part of the device surface but not implemented
    (digital port write, analog port read).
    """
    code = "not_implemented"
