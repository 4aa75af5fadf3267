"""Tests for the per-connection session state machine."""

import asyncio
import json

import httpx
import pytest

from conftest import FakeEngine
from thinkrelay.engine import OllamaClient
from thinkrelay.errors import EngineError, EngineTimeout
from thinkrelay.events import Done, ThinkingEnded, ThinkingStarted, Token
from thinkrelay.history import HISTORY_FENCE, Role, Turn
from thinkrelay.session import Session, SessionState


async def collect(session, text):
    return [event async for event in session.handle(text)]


def make_session(*turns, **kwargs):
    engine = FakeEngine(*turns)
    return engine, Session(engine, model="deepseek-r1:8b", **kwargs)


class TestTurns:
    @pytest.mark.asyncio
    async def test_hello_scenario(self):
        engine, session = make_session(["Hi", " there"])

        events = await collect(session, "Hello")

        assert events == [Token("Hi"), Token(" there"), Done()]
        assert session.history.turns == [
            Turn(Role.USER, "Hello"),
            Turn(Role.ASSISTANT, "Hi there"),
        ]
        assert session.state is SessionState.AWAITING_INPUT
        assert session.turns == 1

    @pytest.mark.asyncio
    async def test_think_scenario_without_streaming_thoughts(self):
        engine, session = make_session(
            ["<think>", "reasoning", "</think>", "Answer"], stream_thinking=False
        )

        events = await collect(session, "Question")

        assert events == [ThinkingStarted(), ThinkingEnded(), Token("Answer"), Done()]
        assert session.history.turns[-1] == Turn(Role.ASSISTANT, "Answer")

    @pytest.mark.asyncio
    async def test_think_scenario_streams_thoughts_by_default(self):
        engine, session = make_session(["<think>", "reasoning", "</think>", "Answer"])

        events = await collect(session, "Question")

        assert events == [
            ThinkingStarted(),
            Token("reasoning"),
            ThinkingEnded(),
            Token("Answer"),
            Done(),
        ]
        assert session.history.turns[-1] == Turn(Role.ASSISTANT, "Answer")

    @pytest.mark.asyncio
    async def test_text_before_closing_marker_is_dropped(self):
        engine, session = make_session(["Pre", "<think>", "x", "</think>", "An", "swer"])

        await collect(session, "Q")

        assert session.history.turns[-1].text == "Answer"

    @pytest.mark.asyncio
    async def test_markers_never_emitted_as_tokens(self):
        engine, session = make_session(
            ["<think>", "a", "</think>", "<think>", "b", "</think>", "c"]
        )

        events = await collect(session, "Q")

        tokens = [e.text for e in events if isinstance(e, Token)]
        assert "<think>" not in tokens
        assert "</think>" not in tokens
        assert events.count(ThinkingStarted()) == 2
        assert events.count(ThinkingEnded()) == 2
        assert session.history.turns[-1].text == "c"

    @pytest.mark.asyncio
    async def test_thinking_flag_cleared_after_turn(self):
        # Unterminated think span: nothing visible, flag must not leak
        engine, session = make_session(["<think>", "still thinking"], ["Visible"])

        await collect(session, "one")
        assert session.thinking is False
        assert session.history.turns[-1].text == ""

        events = await collect(session, "two")
        assert events == [Token("Visible"), Done()]
        assert session.history.turns[-1].text == "Visible"

    @pytest.mark.asyncio
    async def test_done_count_matches_prompts(self):
        engine, session = make_session(["ok"])

        done = 0
        for prompt in ["a", "b", "c", "d"]:
            done += sum(isinstance(e, Done) for e in await collect(session, prompt))

        assert done == 4
        assert len(engine.prompts) == 4
        assert len(session.history) == 8


class TestExit:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["exit", "  exit\n", "\texit "])
    async def test_exit_closes_without_events(self, text):
        engine, session = make_session(["never"])

        events = await collect(session, text)

        assert events == []
        assert session.closed
        assert engine.prompts == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["Exit", "EXIT", "exit now"])
    async def test_exit_is_exact_and_case_sensitive(self, text):
        engine, session = make_session(["sure"])

        events = await collect(session, text)

        assert events[-1] == Done()
        assert not session.closed

    @pytest.mark.asyncio
    async def test_input_rejected_after_close(self):
        engine, session = make_session(["x"])
        await collect(session, "exit")

        with pytest.raises(RuntimeError):
            await collect(session, "Hello")


class TestAugmentedPrompt:
    @pytest.mark.asyncio
    async def test_first_prompt_has_empty_history(self):
        engine, session = make_session(["Hi"])

        await collect(session, "Hello")

        assert engine.prompts[0] == f"{HISTORY_FENCE}\n[]\n```\n\n\nHello"

    @pytest.mark.asyncio
    async def test_prefix_excludes_current_prompt(self):
        engine, session = make_session(["Hi there"], ["Fine"])

        await collect(session, "Hello")
        await collect(session, "How are you?")

        prompt = engine.prompts[1]
        assert prompt.endswith("\n\n\nHow are you?")
        history_json = prompt[len(HISTORY_FENCE) + 1:].split("\n```", 1)[0]
        assert json.loads(history_json) == [{"User": "Hello"}, {"Assistant": "Hi there"}]
        assert prompt.count("How are you?") == 1

    @pytest.mark.asyncio
    async def test_thinking_text_not_replayed(self):
        engine, session = make_session(
            ["<think>", "secret plan", "</think>", "Answer"], ["Next"]
        )

        await collect(session, "Q1")
        await collect(session, "Q2")

        assert "secret plan" not in engine.prompts[1]
        assert "Answer" in engine.prompts[1]

    @pytest.mark.asyncio
    async def test_history_limit_bounds_context(self):
        engine, session = make_session(["r"], history_limit=2)

        for prompt in ["a", "b", "c"]:
            await collect(session, prompt)

        assert session.history.turns == [Turn(Role.USER, "c"), Turn(Role.ASSISTANT, "r")]


class TestFailures:
    @pytest.mark.asyncio
    async def test_engine_error_closes_session(self):
        engine, session = make_session(["Hi", EngineError("stream broke")])

        seen = []
        with pytest.raises(EngineError):
            async for event in session.handle("Hello"):
                seen.append(event)

        assert seen == [Token("Hi")]
        assert session.closed
        assert session.history.turns == [Turn(Role.USER, "Hello")]

    @pytest.mark.asyncio
    async def test_abandoned_turn_closes_session(self):
        engine, session = make_session(["Hi", " there"])

        events = session.handle("Hello")
        first = await events.__anext__()
        await events.aclose()

        assert first == Token("Hi")
        assert session.closed
        assert len(session.history) == 1

    @pytest.mark.asyncio
    async def test_turn_timeout(self):
        class SlowEngine(FakeEngine):
            async def generate(self, model, prompt):
                yield "start"
                await asyncio.sleep(5)
                yield "never"

        session = Session(SlowEngine(), model="m", turn_timeout=0.05)

        with pytest.raises(EngineTimeout):
            await collect(session, "Hello")
        assert session.closed

    @pytest.mark.asyncio
    async def test_turn_timeout_with_stalled_engine_stream(self):
        async def stalled_body():
            yield json.dumps({"response": "a", "done": False}).encode() + b"\n"
            await asyncio.sleep(30)
            yield json.dumps({"response": "", "done": True}).encode() + b"\n"

        def handler(request):
            return httpx.Response(200, content=stalled_body())

        client = OllamaClient(
            "http://engine:11434", transport=httpx.MockTransport(handler)
        )
        session = Session(client, model="m", turn_timeout=0.1)

        seen = []
        with pytest.raises(EngineTimeout):
            async for event in session.handle("Hello"):
                seen.append(event)

        assert seen == [Token("a")]
        assert session.state is SessionState.CLOSED
        await client.close()

    def test_feed_requires_generating(self):
        engine, session = make_session(["x"])
        with pytest.raises(RuntimeError):
            session.feed("token")
