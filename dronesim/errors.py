"""Error taxonomy for the drone simulation server."""

from __future__ import annotations


class DroneSimError(Exception):
    """Base class for all dronesim errors."""


class CommandError(DroneSimError):
    """A command was rejected. Reported to the requesting session only.

    ``error_type`` is the outbound event name, e.g. ``drone:error``.
    """

    def __init__(self, error_type: str, message: str) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.message = message


class ValidationError(CommandError):
    """Payload field missing, of the wrong type, or out of range."""


class StateConflictError(CommandError):
    """Command is well formed but the target drone cannot accept it."""


class ProtocolError(DroneSimError):
    """Inbound frame is not a JSON object with a string ``type``."""


class TransportError(DroneSimError):
    """The listener could not be bound."""
