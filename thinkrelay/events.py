"""Outbound session events and their JSON wire format."""

from __future__ import annotations

import json
from dataclasses import dataclass

from .errors import RelayError, SerializationFailure

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


@dataclass(frozen=True)
class Token:
    text: str


@dataclass(frozen=True)
class ThinkingStarted:
    pass


@dataclass(frozen=True)
class ThinkingEnded:
    pass


@dataclass(frozen=True)
class Done:
    pass


@dataclass(frozen=True)
class Error:
    kind: str
    message: str

    @classmethod
    def from_exception(cls, exc: RelayError) -> "Error":
        return cls(kind=exc.kind, message=exc.message)


Event = Token | ThinkingStarted | ThinkingEnded | Done | Error


def to_wire(event: Event) -> dict:
    """Map an event to its wire object, keyed by the ``event`` discriminant."""
    if isinstance(event, Token):
        return {"event": "Token", "token": event.text}
    if isinstance(event, ThinkingStarted):
        return {"event": "Thinking"}
    if isinstance(event, ThinkingEnded):
        return {"event": "DoneThinking"}
    if isinstance(event, Done):
        return {"event": "Done"}
    if isinstance(event, Error):
        return {"event": "Error", "kind": event.kind, "message": event.message}
    raise SerializationFailure(f"Unknown event type: {type(event).__name__}")


def encode(event: Event) -> str:
    try:
        return json.dumps(to_wire(event), ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise SerializationFailure(
            f"Failed to serialize {type(event).__name__} event: {exc}"
        ) from exc


def decode(text: str) -> Event:
    """Parse a wire frame back into an event (used by clients and tests)."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SerializationFailure(f"Event frame is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SerializationFailure("Event frame must be a JSON object")

    name = data.get("event")
    if name == "Token":
        token = data.get("token")
        if not isinstance(token, str):
            raise SerializationFailure("Token event requires a string 'token'")
        return Token(token)
    if name == "Thinking":
        return ThinkingStarted()
    if name == "DoneThinking":
        return ThinkingEnded()
    if name == "Done":
        return Done()
    if name == "Error":
        return Error(kind=str(data.get("kind", "")), message=str(data.get("message", "")))
    raise SerializationFailure(f"Unknown event {name!r}")
