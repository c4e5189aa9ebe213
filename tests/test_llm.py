import asyncio
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from rewind import (
    GenerationProvider, OpenAIProvider, MemoryStore, MessageLog, ResponseParser,
    ProviderError, CancelledError, make_message, LOCAL, REMOTE, SYSTEM,
)
from rewind.llm import build_system_message
from rewind import config


class StaticProvider(GenerationProvider):
    def __init__(self, raw="", messages=None, error=None):
        self.raw = raw
        self.messages = messages or []
        self.error = error

    async def generate(self, conversation_id, pending, cancel_event):
        if self.error:
            raise self.error
        return self.raw

    def parse(self, raw_text, conversation_id):
        return list(self.messages)


def _collect(provider, abort_after=None):
    """Run invoke() to completion, returning everything the callbacks saw."""
    seen = {"messages": [], "raw": [], "complete": 0, "errors": []}

    async def scenario():
        holder = {}

        def on_message(msg):
            seen["messages"].append(msg)
            if abort_after is not None and len(seen["messages"]) == abort_after:
                holder["handle"].abort()

        def on_complete():
            seen["complete"] += 1

        handle = provider.invoke("c", {}, on_message, on_complete, seen["errors"].append, seen["raw"].append)
        holder["handle"] = handle
        await handle.wait()
        assert handle.done()

    asyncio.run(scenario())
    return seen

def test_invoke_delivers_and_completes():
    seen = _collect(StaticProvider("raw text", [{"id": "1"}, {"id": "2"}]))
    assert [m["id"] for m in seen["messages"]] == ["1", "2"]
    assert seen["raw"] == ["raw text"]
    assert seen["complete"] == 1
    assert seen["errors"] == []

def test_empty_response_is_an_error():
    seen = _collect(StaticProvider(""))
    assert seen["complete"] == 0
    assert isinstance(seen["errors"][0], ProviderError)
    assert seen["raw"] == ["Error: Provider returned an empty response"]

def test_empty_parse_is_an_error():
    seen = _collect(StaticProvider("unparseable", []))
    assert seen["raw"] == ["unparseable"]
    assert isinstance(seen["errors"][0], ProviderError)

def test_unexpected_exception_becomes_provider_error():
    seen = _collect(StaticProvider(error=RuntimeError("connection reset")))
    err = seen["errors"][0]
    assert isinstance(err, ProviderError)
    assert "connection reset" in str(err)
    assert seen["raw"] == ["Error: connection reset"]

def test_abort_stops_further_deliveries():
    seen = _collect(StaticProvider("raw", [{"id": "1"}, {"id": "2"}, {"id": "3"}]), abort_after=1)
    assert [m["id"] for m in seen["messages"]] == ["1"]
    assert seen["complete"] == 0
    assert isinstance(seen["errors"][0], CancelledError)

def test_abort_while_generating():
    class SlowProvider(StaticProvider):
        async def generate(self, conversation_id, pending, cancel_event):
            await asyncio.sleep(10)
            return "too late"

    errors = []

    async def scenario():
        handle = SlowProvider().invoke("c", {}, lambda m: None, lambda: None, errors.append)
        await asyncio.sleep(0)
        handle.abort()
        await asyncio.wait_for(handle.wait(), timeout=2)

    asyncio.run(scenario())
    assert isinstance(errors[0], CancelledError)

def test_async_callbacks_are_awaited():
    seen = []

    async def on_message(msg):
        await asyncio.sleep(0)
        seen.append(msg["id"])

    async def scenario():
        handle = StaticProvider("raw", [{"id": "1"}]).invoke("c", {}, on_message, lambda: None, lambda e: None)
        await handle.wait()

    asyncio.run(scenario())
    assert seen == ["1"]


def _chunk(text):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])

def _mock_client(create):
    client = MagicMock()
    client.chat.completions.create = create
    return client

class TestOpenAIProvider:
    def test_build_messages_numbers_history(self):
        log = MessageLog(MemoryStore())
        first = make_message(LOCAL, content="are you free?")
        log.append("c", first)
        log.append("c", make_message(REMOTE, content="maybe"))
        provider = OpenAIProvider(log)

        pending = {
            "c": [{"content": "are you free?", "id": first["id"]}, {"content": "unlogged note"}],
            "bob": [{"content": "hi bob"}],
        }
        messages = provider.build_messages("c", pending)

        assert messages[0]["role"] == "system"
        assert messages[1] == {"role": "user", "content": "#1 are you free?"}
        assert messages[2] == {"role": "assistant", "content": "#2 maybe"}
        assert messages[3]["content"] == "unlogged note\n(to bob) hi bob"

    def test_system_entries_are_not_sent_as_assistant_turns(self):
        log = MessageLog(MemoryStore())
        log.append("c", make_message(SYSTEM, content="Alice changed her status"))
        log.append("c", make_message(REMOTE, content="hello"))
        messages = OpenAIProvider(log).build_messages("c", {})

        assert messages[1] == {"role": "system", "content": "#1 Alice changed her status"}
        assert messages[2] == {"role": "assistant", "content": "#2 hello"}

    def test_system_message_includes_custom_instructions(self, monkeypatch):
        monkeypatch.setattr(config, "extra_system_prompt", "Be brief.")
        msg = build_system_message("Alice")
        assert "[char-<name>]" in msg
        assert "Alice" in msg
        assert "Be brief." in msg

    def test_streaming_generation(self, reply, monkeypatch):
        monkeypatch.setattr(config, "stream", True)
        raw = reply("hello", "[emoji]smile")

        async def stream():
            for piece in (raw[:10], raw[10:]):
                yield _chunk(piece)
            yield SimpleNamespace(choices=[])

        create = AsyncMock(return_value=stream())
        log = MessageLog(MemoryStore())
        provider = OpenAIProvider(log, client_factory=lambda: _mock_client(create))

        delivered, raws, errors = [], [], []

        async def scenario():
            handle = provider.invoke("c", {"c": [{"content": "hey"}]}, delivered.append, lambda: None,
                                     errors.append, raws.append)
            await handle.wait()

        asyncio.run(scenario())

        assert errors == []
        assert raws == [raw]
        assert [m["type"] for m in delivered] == ["text", "emoji"]
        assert create.call_args.kwargs["stream"] is True
        assert create.call_args.kwargs["model"] == config.model

    def test_non_streaming_generation(self, reply, monkeypatch):
        monkeypatch.setattr(config, "stream", False)
        raw = reply("ok")
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=raw))])
        create = AsyncMock(return_value=response)
        provider = OpenAIProvider(MessageLog(MemoryStore()), client_factory=lambda: _mock_client(create))

        text = asyncio.run(provider.generate("c", {}, asyncio.Event()))
        assert text == raw

    def test_malformed_response_is_rejected(self):
        provider = OpenAIProvider(MessageLog(MemoryStore()), ResponseParser())
        with pytest.raises(ProviderError):
            provider.parse("no tags at all", "c")

    def test_stream_stops_when_cancelled(self, monkeypatch):
        monkeypatch.setattr(config, "stream", True)

        async def stream():
            yield _chunk("partial")

        create = AsyncMock(return_value=stream())
        provider = OpenAIProvider(MessageLog(MemoryStore()), client_factory=lambda: _mock_client(create))

        async def scenario():
            event = asyncio.Event()
            event.set()
            return await provider.generate("c", {}, event)

        with pytest.raises(CancelledError):
            asyncio.run(scenario())
