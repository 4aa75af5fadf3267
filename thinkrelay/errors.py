"""Exception taxonomy for relay sessions.

Every failure terminates only the session that raised it.  ``kind`` is the
stable identifier sent to the browser in an ``Error`` event.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for session-terminating failures.

    Attributes
    ----------
    message:
        Human-readable description of the failure.
    kind:
        Short identifier used on the wire and in logs.
    reportable:
        Whether the client should be told about the failure before the
        socket closes.  False for failures where the client is already gone
        or misbehaved.
    """

    kind = "RelayError"
    reportable = True

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ModelUnavailable(RelayError):
    """The model could not be provisioned at session start."""

    kind = "ModelUnavailable"


class EngineUnreachable(RelayError):
    """The inference engine could not be contacted."""

    kind = "EngineUnreachable"


class EngineError(RelayError):
    """The engine rejected the request or failed mid-stream."""

    kind = "EngineError"


class EngineTimeout(EngineError):
    kind = "EngineTimeout"


class SerializationFailure(RelayError):
    """An outbound event or the history could not be serialized."""

    kind = "SerializationFailure"


class HistoryFormatError(RelayError):
    """Serialized history text does not describe a list of turns."""

    kind = "HistoryFormatError"


class ClientGone(RelayError):
    """An outbound send failed because the client disconnected."""

    kind = "ClientGone"
    reportable = False


class MalformedInbound(RelayError):
    """The client sent a frame that is not text."""

    kind = "MalformedInbound"
    reportable = False
