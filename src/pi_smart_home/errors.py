"""
Error Taxonomy shared by the Agent (server) and the Controller (client).

Configuration and connection errors are fatal to the component that raises
them. Payload and actuator errors are per-request business errors that the
agent turns into a 500 response. Remote-status and timeout errors are what
the controller raises to its caller.
"""
from typing import Optional


class SmartHomeError(Exception):
    """Base class for every error raised by pi_smart_home."""


class ConfigurationError(SmartHomeError, ValueError):
    """Raised when a credential or configuration value is missing or malformed."""


class ConnectionInitError(SmartHomeError):
    """Raised when the transport connection cannot be established."""


class ConnectionLostError(SmartHomeError):
    """Raised when an established transport connection can no longer carry requests."""


class HandlerRegistrationError(SmartHomeError):
    """Raised when a remote method handler cannot be bound."""


class PayloadError(SmartHomeError, ValueError):
    """Raised when a request or response body cannot be decoded."""


class UnknownActuatorError(SmartHomeError, KeyError):
    """Raised when an actuator id is not part of the configured set."""

    def __init__(self, actuator_id, known_ids=()):
        self.actuator_id = actuator_id
        self.known_ids = tuple(known_ids)
        super().__init__(actuator_id)

    def __str__(self) -> str:
        accepted = ", ".join(str(i) for i in self.known_ids)
        return f"Invalid light bulb Id {self.actuator_id!r}. Acceptable values are ({accepted})."


class RemoteMethodError(SmartHomeError):
    """
    Raised by the controller when the device answers with anything but 200.
    Carries the returned status code and raw body so callers can decide
    whether to retry or abort.
    """

    def __init__(self, method: str, status: int, body: Optional[bytes] = None):
        self.method = method
        self.status = status
        self.body = body
        text = body.decode("utf-8", errors="replace") if body else ""
        super().__init__(
            f"There was an error when processing your request. "
            f"The device returned status {status} for '{method}'\n{text}"
        )


class MethodTimeoutError(SmartHomeError, TimeoutError):
    """Raised when a remote method does not answer within its response timeout."""

    def __init__(self, method: str, timeout: float):
        self.method = method
        self.timeout = timeout
        super().__init__(f"No response to '{method}' within {timeout:g} seconds")
