"""
Exception taxonomy for transports and the coordinator.

Transport errors (TransportError and subclasses) are raised by a single
transport. The coordinator never lets them reach its callers directly from
control calls: they are wrapped in ControlFailed with the underlying error as
__cause__.
"""

from typing import Optional

from .constants import (
    ERROR_AUTH,
    ERROR_NETWORK,
    ERROR_NO_LIGHTS,
    ERROR_TIMEOUT,
    ERROR_UNKNOWN,
)


class LifxCtlError(Exception):
    """Base exception for every lifxctl error.

    Attributes:
        user_message: Human-friendly message for display
        transport: Transport that raised the error ("lan"/"http"), if any
        light_id: Device the error refers to, if any
        reason: Short machine-readable category (errorType)
    """

    reason = ERROR_UNKNOWN

    def __init__(
        self,
        user_message: str,
        *,
        transport: Optional[str] = None,
        light_id: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        super().__init__(user_message)
        self.user_message = user_message
        self.transport = transport
        self.light_id = light_id
        if reason is not None:
            self.reason = reason

    def __str__(self) -> str:
        parts = []
        if self.transport:
            parts.append(self.transport)
        if self.light_id:
            parts.append(self.light_id)
        if parts:
            return f"[{'/'.join(parts)}] {self.user_message}"
        return self.user_message


class ConfigError(LifxCtlError):
    """Invalid configuration value or unreadable config file."""


class TransportError(LifxCtlError):
    """Base for failures raised inside one transport."""


class TransportUnavailable(TransportError):
    """Transport could not initialize (no devices, bad credentials, no network)."""

    reason = ERROR_NETWORK


class LightNotFound(TransportError):
    """Device id unknown to this transport."""

    reason = ERROR_NO_LIGHTS


class TransportTimeout(TransportError):
    """Device or service did not acknowledge within the bound."""

    reason = ERROR_TIMEOUT


class ProtocolError(TransportError):
    """Malformed or unexpected response."""


class AuthenticationError(TransportUnavailable):
    """Cloud API rejected the token."""

    reason = ERROR_AUTH


class NoTransportAvailable(LifxCtlError):
    """Every configured transport failed to initialize (or none is configured)."""

    def __init__(self, user_message: str, *, failures: Optional[dict] = None):
        super().__init__(user_message)
        self.failures = dict(failures or {})


class DeviceNotFound(LifxCtlError):
    """Device id unknown to every transport."""

    reason = ERROR_NO_LIGHTS


class ControlFailed(LifxCtlError):
    """Primary and fallback control attempts both failed.

    ``attempts`` lists (transport, error) pairs in the order they were tried;
    the last error is also chained as ``__cause__``.
    """

    def __init__(self, user_message: str, *, light_id: str, attempts: list):
        last = attempts[-1][1] if attempts else None
        super().__init__(
            user_message,
            transport=attempts[-1][0] if attempts else None,
            light_id=light_id,
            reason=getattr(last, "reason", None),
        )
        self.attempts = list(attempts)

    @property
    def last_error(self) -> Optional[BaseException]:
        return self.attempts[-1][1] if self.attempts else None
