import asyncio
import importlib
import pytest

import application_state
from rewind import GenerationProvider, MemoryStore, build_number_map

# rewind.config is shadowed by the config object on the package
config_module = importlib.import_module("rewind.config")


class ScriptedProvider(GenerationProvider):
    """Returns queued raw responses in order. An Exception in the queue is raised instead."""

    def __init__(self, log, parser, responses=None):
        self.log = log
        self.parser = parser
        self.responses = list(responses or [])
        self.calls = []
        self.gate: asyncio.Event | None = None

    async def generate(self, conversation_id, pending, cancel_event):
        self.calls.append((conversation_id, pending))
        if self.gate is not None:
            await self.gate.wait()
        if not self.responses:
            return ""
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def parse(self, raw_text, conversation_id):
        return self.parser.parse(raw_text, conversation_id, build_number_map(self.log.load(conversation_id)))


def make_reply(*lines: str, name: str = "Alice") -> str:
    body = "\n".join(lines)
    return f"[char-{name}]\n[messages]\n{body}\n[/messages]"


@pytest.fixture(autouse=True)
def mock_app_data(tmp_path, monkeypatch):
    """Redirect all AppData writes to a temp directory."""
    temp_app_data = tmp_path / "rewind_test_appdata"
    temp_app_data.mkdir(parents=True, exist_ok=True)

    monkeypatch.setattr(config_module, "_settings", {})
    monkeypatch.setattr(config_module.config, "default_handler_priority", 50)
    monkeypatch.setattr(config_module.config, "store_dir", str(temp_app_data / "store"))
    monkeypatch.setattr(config_module.config, "stream", True)
    monkeypatch.setattr(config_module.config, "extra_system_prompt", "")

    monkeypatch.setattr(config_module, "APP_DATA_DIR", temp_app_data)
    monkeypatch.setattr(config_module, "SETTINGS_PATH", temp_app_data / "settings.json")
    monkeypatch.setattr(application_state, "APP_DATA_DIR", temp_app_data)
    return temp_app_data

@pytest.fixture
def reply():
    return make_reply

@pytest.fixture
def app():
    """Fresh app state on an in-memory store with a scripted provider."""
    st = application_state.init_app_state(
        MemoryStore(), provider_factory=lambda log, parser: ScriptedProvider(log, parser)
    )
    yield st
    application_state.init_app_state(MemoryStore())
