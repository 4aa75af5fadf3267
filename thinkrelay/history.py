"""Per-session conversation history and its prompt serialization."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum

from .errors import HistoryFormatError, SerializationFailure

HISTORY_FENCE = "```CHAT_HISTORY"


class Role(str, Enum):
    USER = "User"
    ASSISTANT = "Assistant"


@dataclass(frozen=True)
class Turn:
    role: Role
    text: str


class ConversationHistory:
    """Ordered turns replayed to the engine as context.

    Bounded by *limit* turns (``0`` = unbounded); the oldest turns are
    dropped first, along with any Assistant turn left at the front.
    """

    def __init__(self, limit: int = 0) -> None:
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        self.limit = limit
        self._turns: list[Turn] = []

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self):
        return iter(self._turns)

    @property
    def turns(self) -> list[Turn]:
        return list(self._turns)

    def append(self, role: Role, text: str) -> None:
        self._turns.append(Turn(role=role, text=text))
        if self.limit and len(self._turns) > self.limit:
            del self._turns[: len(self._turns) - self.limit]
            # Replayed context always opens on a User turn
            while self._turns and self._turns[0].role is Role.ASSISTANT:
                del self._turns[0]

    def add_user(self, text: str) -> None:
        self.append(Role.USER, text)

    def add_assistant(self, text: str) -> None:
        self.append(Role.ASSISTANT, text)

    def clear(self) -> None:
        self._turns.clear()

    def to_json(self) -> str:
        """Serialize as ``[{"User": "..."}, {"Assistant": "..."}]``."""
        try:
            return json.dumps(
                [{t.role.value: t.text} for t in self._turns], ensure_ascii=False
            )
        except (TypeError, ValueError) as exc:
            raise SerializationFailure(f"Failed to serialize history: {exc}") from exc

    @classmethod
    def from_json(cls, text: str, limit: int = 0) -> "ConversationHistory":
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise HistoryFormatError(f"History is not valid JSON: {exc}") from exc
        if not isinstance(raw, list):
            raise HistoryFormatError(
                f"History must be a JSON array, got {type(raw).__name__}"
            )

        history = cls(limit=limit)
        for i, entry in enumerate(raw):
            if not isinstance(entry, dict) or len(entry) != 1:
                raise HistoryFormatError(f"History entry {i} must be a single-key object")
            (key, value), = entry.items()
            try:
                role = Role(key)
            except ValueError as exc:
                raise HistoryFormatError(f"History entry {i} has unknown role {key!r}") from exc
            if not isinstance(value, str):
                raise HistoryFormatError(f"History entry {i} text must be a string")
            history.append(role, value)
        return history

    def augment(self, prompt: str) -> str:
        """Prefix *prompt* with the serialized history.

        Must be called before the prompt's own User turn is appended, or the
        prompt ends up in the context twice.
        """
        return f"{HISTORY_FENCE}\n{self.to_json()}\n```\n\n\n{prompt}"
