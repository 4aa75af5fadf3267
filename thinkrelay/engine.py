"""Async client for the local Ollama inference engine."""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

import httpx

from .errors import EngineError, EngineUnreachable, ModelUnavailable

logger = logging.getLogger("thinkrelay.engine")

DEFAULT_TIMEOUT = httpx.Timeout(300.0, connect=5.0)


def _error_detail(resp: httpx.Response) -> str:
    """Pull Ollama's ``{"error": ...}`` message out of a failed response."""
    try:
        data = resp.json()
    except ValueError:
        return resp.text.strip() or f"HTTP {resp.status_code}"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"HTTP {resp.status_code}"


class OllamaClient:
    """Shared handle to the engine's HTTP API.

    Holds no per-session state, so one instance serves every connection.
    """

    def __init__(
        self,
        base_url: str,
        timeout: httpx.Timeout | float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    async def close(self):
        await self.client.aclose()

    async def check_health(self) -> dict:
        # Ollama answers GET / with "Ollama is running"
        try:
            resp = await self.client.get("/", timeout=5.0)
        except httpx.HTTPError as e:
            return {"alive": False, "error": str(e)}
        if resp.status_code == 200:
            return {"alive": True, "status": resp.text.strip()}
        return {"alive": False, "error": f"HTTP {resp.status_code}"}

    async def list_models(self) -> list[str]:
        """Names of models already present on the engine."""
        try:
            resp = await self.client.get("/api/tags", timeout=5.0)
        except httpx.TransportError as exc:
            raise EngineUnreachable(f"Cannot reach engine at {self.base_url}: {exc}") from exc
        if resp.status_code != 200:
            raise EngineError(f"Failed to list models: {_error_detail(resp)}")
        return [m.get("name", "") for m in resp.json().get("models", [])]

    async def ensure_model(self, model: str) -> None:
        """Pull *model* if the engine does not have it yet.

        Raises ``ModelUnavailable`` on any failure; callers treat that as
        fatal for the whole session.
        """
        logger.info("Pulling model '%s'...", model)
        try:
            resp = await self.client.post(
                "/api/pull",
                json={"model": model, "stream": False},
                timeout=httpx.Timeout(None, connect=5.0),
            )
        except httpx.HTTPError as exc:
            raise ModelUnavailable(f"Failed to pull model {model!r}: {exc}") from exc

        if resp.status_code != 200:
            raise ModelUnavailable(
                f"Failed to pull model {model!r}: {_error_detail(resp)}"
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise ModelUnavailable(
                f"Failed to pull model {model!r}: malformed response"
            ) from exc
        if data.get("error"):
            raise ModelUnavailable(f"Failed to pull model {model!r}: {data['error']}")
        if data.get("status") != "success":
            raise ModelUnavailable(
                f"Failed to pull model {model!r}: status {data.get('status')!r}"
            )

    async def generate(self, model: str, prompt: str) -> AsyncIterator[str]:
        """Stream text fragments for *prompt* from ``/api/generate``.

        The engine replies with newline-delimited JSON objects, each carrying
        one ``response`` fragment, until an object with ``"done": true``.
        """
        body = {"model": model, "prompt": prompt, "stream": True}
        connected = False
        try:
            async with self.client.stream("POST", "/api/generate", json=body) as resp:
                connected = True
                if resp.status_code != 200:
                    await resp.aread()
                    raise EngineError(
                        f"Failed to generate completion: {_error_detail(resp)}"
                    )
                async for line in resp.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError as exc:
                        raise EngineError(
                            f"Failed to get next response: malformed line {line[:80]!r}"
                        ) from exc
                    if chunk.get("error"):
                        raise EngineError(
                            f"Failed to get next response: {chunk['error']}"
                        )
                    fragment = chunk.get("response", "")
                    if fragment:
                        yield fragment
                    if chunk.get("done"):
                        return
        except httpx.TransportError as exc:
            if not connected:
                raise EngineUnreachable(
                    f"Cannot reach engine at {self.base_url}: {exc}"
                ) from exc
            raise EngineError(f"Failed to get next response: {exc}") from exc
