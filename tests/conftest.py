"""Shared fakes for relay tests."""

import pytest
from starlette.websockets import WebSocketState

from thinkrelay.relay import reset_relay_state


class FakeEngine:
    """Scripted stand-in for OllamaClient.

    Each positional argument is the fragment list for one turn; the last one
    repeats for any further turns.  An exception instance inside a script is
    raised at that point of the stream.
    """

    def __init__(self, *turns, pull_error=None, health=None):
        self.turns = [list(t) for t in turns]
        self.pull_error = pull_error
        self.health = health or {"alive": True, "status": "Ollama is running"}
        self.prompts: list[str] = []
        self.pulled: list[str] = []
        self.closed = False

    async def ensure_model(self, model):
        if self.pull_error is not None:
            raise self.pull_error
        self.pulled.append(model)

    async def generate(self, model, prompt):
        self.prompts.append(prompt)
        if len(self.turns) > 1:
            fragments = self.turns.pop(0)
        else:
            fragments = self.turns[0] if self.turns else []
        for fragment in fragments:
            if isinstance(fragment, BaseException):
                raise fragment
            yield fragment

    async def check_health(self):
        return self.health

    async def close(self):
        self.closed = True


class FakeWebSocket:
    """Minimal object with the WebSocket surface relay_session uses."""

    def __init__(self, inbound, fail_after=None):
        self.inbound = list(inbound)
        self.fail_after = fail_after
        self.sent: list[str] = []
        self.closed = False
        self.application_state = WebSocketState.CONNECTING
        self.client_state = WebSocketState.CONNECTING

    async def accept(self):
        self.application_state = WebSocketState.CONNECTED
        self.client_state = WebSocketState.CONNECTED

    async def receive(self):
        if self.inbound:
            return self.inbound.pop(0)
        self.client_state = WebSocketState.DISCONNECTED
        return {"type": "websocket.disconnect", "code": 1000}

    async def send_text(self, data):
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            self.client_state = WebSocketState.DISCONNECTED
            raise RuntimeError("client went away")
        self.sent.append(data)

    async def close(self, code=1000):
        self.closed = True
        self.application_state = WebSocketState.DISCONNECTED


def text_frame(text):
    return {"type": "websocket.receive", "text": text}


@pytest.fixture(autouse=True)
def _reset_relay():
    yield
    reset_relay_state()
