"""Websocket chat relay in front of the local inference engine."""

from __future__ import annotations

import logging
import time
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse
from starlette.routing import Mount, Route, WebSocketRoute
from starlette.staticfiles import StaticFiles
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from .chat_ui import CHAT_HTML
from .config import RelayConfig
from .engine import OllamaClient
from .errors import ClientGone, MalformedInbound, RelayError
from .events import Error, Event, encode
from .session import Engine, Session

logger = logging.getLogger("thinkrelay.relay")


@dataclass
class RelayStats:
    active_sessions: int = 0
    total_sessions: int = 0
    total_turns: int = 0
    failed_sessions: int = 0
    start_time: float = 0.0

    def __post_init__(self):
        if not self.start_time:
            self.start_time = time.monotonic()

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self.start_time

    def to_dict(self) -> dict:
        return {
            "active_sessions": self.active_sessions,
            "total_sessions": self.total_sessions,
            "total_turns": self.total_turns,
            "failed_sessions": self.failed_sessions,
            "uptime_seconds": round(self.uptime_seconds, 1),
        }


class ChatRelay:
    """Process-wide relay state: config, the shared engine handle, stats."""

    def __init__(self, config: RelayConfig, engine: Engine | None = None):
        self.config = config
        self.engine = engine if engine is not None else OllamaClient(config.engine_url)
        self.stats = RelayStats()

    async def close(self):
        close = getattr(self.engine, "close", None)
        if close is not None:
            await close()

    def new_session(self) -> Session:
        return Session(
            engine=self.engine,
            model=self.config.model,
            history_limit=self.config.history_limit,
            stream_thinking=self.config.stream_thinking,
            turn_timeout=self.config.turn_timeout,
        )


async def send_event(websocket: WebSocket, event: Event) -> None:
    """Send one event as a text frame; a failed send means the client is gone."""
    frame = encode(event)
    try:
        await websocket.send_text(frame)
    except (WebSocketDisconnect, RuntimeError, OSError) as exc:
        raise ClientGone(f"Failed to send message to client: {exc!r}") from exc


async def _report(websocket: WebSocket, exc: RelayError) -> None:
    try:
        await send_event(websocket, Error.from_exception(exc))
    except RelayError as send_exc:
        logger.debug("Could not report %s to client: %s", exc.kind, send_exc)


async def _close_quietly(websocket: WebSocket) -> None:
    if (
        websocket.application_state != WebSocketState.CONNECTED
        or websocket.client_state != WebSocketState.CONNECTED
    ):
        return
    try:
        await websocket.close()
    except (RuntimeError, OSError) as exc:
        logger.debug("Socket already gone during close: %r", exc)


async def relay_session(websocket: WebSocket, relay: ChatRelay) -> None:
    """Drive one session to completion over *websocket*.

    Returns normally on ``exit`` or disconnect.  Raises ``RelayError``
    subclasses for failures, after the socket has been closed.
    """
    await websocket.accept()
    session = relay.new_session()
    stats = relay.stats
    stats.active_sessions += 1
    stats.total_sessions += 1
    turns_before = 0
    try:
        try:
            await relay.engine.ensure_model(session.model)
            logger.info("Entering websocket REPL...")
            while not session.closed:
                try:
                    message = await websocket.receive()
                except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                    logger.debug("Read failed, treating as disconnect: %r", exc)
                    break
                if message["type"] == "websocket.disconnect":
                    logger.info("Client disconnected")
                    break
                text = message.get("text")
                if text is None:
                    raise MalformedInbound("Received a non-text frame")

                logger.info("Taking user input...")
                async with aclosing(session.handle(text)) as events:
                    async for event in events:
                        await send_event(websocket, event)
                stats.total_turns += session.turns - turns_before
                turns_before = session.turns
        except RelayError as exc:
            stats.failed_sessions += 1
            if exc.reportable:
                await _report(websocket, exc)
            raise
    finally:
        session.close()
        stats.active_sessions -= 1
        await _close_quietly(websocket)


# --- Starlette app ---

# Module-level singleton for the active relay, mirroring how the ASGI app is
# created once per process.  ``reset_relay_state()`` is the teardown path for
# tests.
_relay: ChatRelay | None = None


def reset_relay_state() -> None:
    global _relay
    _relay = None


def _get_relay() -> ChatRelay:
    if _relay is None:
        raise RuntimeError("Relay not initialized")
    return _relay


async def handle_socket(websocket: WebSocket):
    """Websocket endpoint.  Failures end this session and are only logged."""
    relay = _get_relay()
    try:
        await relay_session(websocket, relay)
    except (ClientGone, MalformedInbound) as exc:
        logger.info("Session ended by client: %s", exc.message)
    except RelayError as exc:
        logger.error("Failed to handle socket! %s: %s", exc.kind, exc.message)
    except Exception:
        relay.stats.failed_sessions += 1
        logger.exception("Unexpected failure in websocket session")


async def handle_chat_ui(request: Request):
    return HTMLResponse(CHAT_HTML)


async def handle_status(request: Request):
    relay = _get_relay()
    health = {"alive": False}
    check = getattr(relay.engine, "check_health", None)
    if check is not None:
        health = await check()
    return JSONResponse({
        "engine": {
            "url": relay.config.engine_url,
            "health": health,
        },
        "model": relay.config.model,
        "config": {
            "history_limit": relay.config.history_limit,
            "turn_timeout": relay.config.turn_timeout,
            "stream_thinking": relay.config.stream_thinking,
        },
        "stats": relay.stats.to_dict(),
    })


def create_app(config: RelayConfig, engine: Engine | None = None) -> Starlette:
    """Create the relay ASGI application.

    *engine* replaces the default ``OllamaClient``; it is shared by every
    session.  Sets the module-level relay singleton.
    """
    global _relay
    if _relay is not None:
        logger.warning(
            "create_app() called while a relay instance already exists; "
            "replacing it.  Call reset_relay_state() first to make this explicit."
        )
    _relay = ChatRelay(config, engine)

    @asynccontextmanager
    async def lifespan(app):
        logger.info(
            "Relaying model '%s' from %s", config.model, config.engine_url
        )
        yield
        if _relay:
            await _relay.close()

    routes = [
        Route("/", handle_chat_ui, methods=["GET"]),
        Route("/v1/relay/status", handle_status, methods=["GET"]),
        WebSocketRoute("/ws", handle_socket),
    ]
    if config.public_dir and Path(config.public_dir).is_dir():
        routes.append(
            Mount("/public", app=StaticFiles(directory=config.public_dir), name="public")
        )
    else:
        logger.debug("No public directory at %r, skipping static files", config.public_dir)

    return Starlette(routes=routes, lifespan=lifespan)
