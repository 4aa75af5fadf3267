"""Per-connection chat session state machine.

A session alternates between waiting for a prompt and draining one
generation stream::

    AWAITING_INPUT --prompt--> GENERATING --stream exhausted--> AWAITING_INPUT
          |                         |
          +--"exit"--> CLOSED <-----+-- engine failure / abandoned turn

While generating, ``<think>`` and ``</think>`` fragments are translated into
thinking events.  Only the text produced after the last ``</think>`` of a turn
is stored as the assistant's reply.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from enum import Enum
from typing import AsyncIterator, Protocol

from .errors import EngineTimeout
from .events import (
    THINK_CLOSE,
    THINK_OPEN,
    Done,
    Event,
    ThinkingEnded,
    ThinkingStarted,
    Token,
)
from .history import ConversationHistory

logger = logging.getLogger("thinkrelay.session")

EXIT_COMMAND = "exit"


class Engine(Protocol):
    def generate(self, model: str, prompt: str) -> AsyncIterator[str]: ...

    async def ensure_model(self, model: str) -> None: ...


class SessionState(str, Enum):
    AWAITING_INPUT = "awaiting_input"
    GENERATING = "generating"
    CLOSED = "closed"


class Session:
    def __init__(
        self,
        engine: Engine,
        model: str,
        history_limit: int = 0,
        stream_thinking: bool = True,
        turn_timeout: float | None = None,
    ):
        self.engine = engine
        self.model = model
        self.history = ConversationHistory(limit=history_limit)
        self.stream_thinking = stream_thinking
        self.turn_timeout = turn_timeout
        self.state = SessionState.AWAITING_INPUT
        self.thinking = False
        self.turns = 0
        self._buffer: list[str] = []

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def close(self) -> None:
        if self.state is not SessionState.CLOSED:
            logger.debug("Session closed after %d turn(s)", self.turns)
        self.state = SessionState.CLOSED
        self.thinking = False
        self._buffer.clear()

    @property
    def visible_text(self) -> str:
        return "".join(self._buffer)

    def feed(self, fragment: str) -> Event | None:
        """Translate one engine fragment into at most one outbound event."""
        if self.state is not SessionState.GENERATING:
            raise RuntimeError(f"Cannot feed fragments while {self.state.value}")

        if fragment == THINK_OPEN:
            self.thinking = True
            return ThinkingStarted()
        if fragment == THINK_CLOSE:
            self.thinking = False
            # Anything before the closing marker is reasoning, not the answer.
            self._buffer.clear()
            return ThinkingEnded()

        if self.thinking:
            return Token(fragment) if self.stream_thinking else None
        self._buffer.append(fragment)
        return Token(fragment)

    def finish_turn(self) -> Done:
        """Store the visible reply and return to awaiting input."""
        if self.state is not SessionState.GENERATING:
            raise RuntimeError(f"Cannot finish a turn while {self.state.value}")
        self.history.add_assistant(self.visible_text)
        self._buffer.clear()
        self.thinking = False
        self.turns += 1
        self.state = SessionState.AWAITING_INPUT
        return Done()

    async def handle(self, text: str) -> AsyncIterator[Event]:
        """Process one inbound text frame, yielding the turn's events.

        Yields nothing for ``exit``, which closes the session.  If the caller
        stops iterating early (a failed send) or the engine fails, the session
        is closed.
        """
        if self.state is not SessionState.AWAITING_INPUT:
            raise RuntimeError(f"Cannot accept input while {self.state.value}")

        if text.strip() == EXIT_COMMAND:
            logger.info("Client sent exit")
            self.close()
            return

        augmented = self.history.augment(text)
        self.history.add_user(text)
        self.state = SessionState.GENERATING
        self.thinking = False
        self._buffer.clear()

        completed = False
        try:
            async with aclosing(self._fragments(augmented)) as fragments:
                async for fragment in fragments:
                    event = self.feed(fragment)
                    if event is not None:
                        yield event
            done = self.finish_turn()
            completed = True
        finally:
            if not completed:
                self.close()
        yield done

    async def _fragments(self, prompt: str) -> AsyncIterator[str]:
        async with aclosing(self.engine.generate(self.model, prompt)) as stream:
            if self.turn_timeout is None:
                async for fragment in stream:
                    yield fragment
                return

            loop = asyncio.get_running_loop()
            deadline = loop.time() + self.turn_timeout

            async def next_fragment() -> str:
                return await stream.__anext__()

            while True:
                remaining = deadline - loop.time()
                try:
                    if remaining <= 0:
                        raise asyncio.TimeoutError
                    fragment = await asyncio.wait_for(next_fragment(), remaining)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError:
                    raise EngineTimeout(
                        f"Turn exceeded {self.turn_timeout:g}s without finishing"
                    ) from None
                yield fragment
