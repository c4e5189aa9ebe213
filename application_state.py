"""Application state: wires the store, log, view, flow and subsystems together."""
import logging
import queue
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from typing import Any, Callable

from rewind import (
    APP_DATA_DIR, config, KeyValueStore, JsonFileStore, MessageLog, RenderLedger,
    TranscriptView, PendingBuffer, DebugStateBook, ConversationDebugState,
    RollbackRegistry, RollbackCoordinator, ResponseParser, GenerationProvider,
    OpenAIProvider, GenerationFlow, PlanBook, Wallet, SignatureHistory,
)
from rewind.registry import registry as global_registry

DEBUG_KEY_PREFIX = "debug/"

ProviderFactory = Callable[[MessageLog, ResponseParser], GenerationProvider]


@dataclass
class AppState:
    """Global application state."""
    store: Any = None
    log: Any = None
    ledger: Any = None
    view: Any = None
    pending: Any = None
    states: Any = None
    registry: Any = None
    coordinator: Any = None
    parser: Any = None
    provider: Any = None
    flow: Any = None

    plans: Any = None
    wallet: Any = None
    signatures: Any = None

    # Flow events (generation-start, reroll-end, ...) for whatever front end is attached
    events: queue.Queue = field(default_factory=queue.Queue)
    loaded_conversations: set = field(default_factory=set)

# Global state instance
state: AppState = AppState()

def _build_registry() -> RollbackRegistry:
    # Per-app entries on top of the process-wide registry, which is read live on every rollback
    return RollbackRegistry(parent=global_registry)

def init_app_state(store: KeyValueStore | None = None, provider_factory: ProviderFactory | None = None,
                   strict_references: bool = False) -> AppState:
    """Initialize or reset the global app state."""
    new_state = AppState()
    new_state.store = store if store is not None else JsonFileStore(config.store_dir)
    new_state.log = MessageLog(new_state.store)
    new_state.ledger = RenderLedger()
    new_state.view = TranscriptView(new_state.ledger)
    new_state.pending = PendingBuffer(new_state.store)
    new_state.states = DebugStateBook()
    new_state.registry = _build_registry()
    new_state.coordinator = RollbackCoordinator(
        new_state.log, new_state.ledger, new_state.view, new_state.states, new_state.registry
    )
    new_state.parser = ResponseParser(new_state.log, strict=strict_references)
    factory = provider_factory or (lambda log, parser: OpenAIProvider(log, parser))
    new_state.provider = factory(new_state.log, new_state.parser)
    new_state.flow = GenerationFlow(
        new_state.log, new_state.ledger, new_state.view, new_state.pending,
        new_state.states, new_state.coordinator, new_state.provider, new_state.parser,
    )

    new_state.plans = PlanBook(new_state.store)
    new_state.wallet = Wallet(new_state.store)
    new_state.signatures = SignatureHistory(new_state.store)
    for subsystem in (new_state.plans, new_state.wallet, new_state.signatures):
        subsystem.register_rollback_handler(new_state.registry)
        new_state.flow.add_observer(subsystem.observe)
    new_state.flow.add_listener(new_state.events.put)

    # Reset the existing state object in-place to preserve references held by other modules
    state.__dict__.clear()
    state.__dict__.update(new_state.__dict__)
    return state

def _debug_key(conversation_id: str) -> str:
    return f"{DEBUG_KEY_PREFIX}{conversation_id}"

def save_debug_state(conversation_id: str) -> None:
    """Persist a conversation's versions and snapshot so a later process can reroll."""
    debug_state = state.states.get(conversation_id)
    if debug_state is None:
        state.store.delete(_debug_key(conversation_id))
        return
    state.store.save(_debug_key(conversation_id), debug_state.to_dict())

def load_debug_state(conversation_id: str) -> ConversationDebugState | None:
    data = state.store.load(_debug_key(conversation_id))
    if not data:
        return None
    debug_state = ConversationDebugState(conversation_id)
    debug_state.from_dict(data)
    state.states.put(debug_state)
    logging.debug(f"Loaded debug state for {conversation_id}: {len(debug_state.versions)} version(s)")
    return debug_state

def load_conversation(conversation_id: str) -> None:
    """Rebuild the transcript view and render ledger from the persisted log."""
    if conversation_id in state.loaded_conversations:
        return
    state.view.rebuild(conversation_id, state.log.load(conversation_id))
    load_debug_state(conversation_id)
    state.loaded_conversations.add(conversation_id)

def queue_local_message(conversation_id: str, text: str) -> dict:
    load_conversation(conversation_id)
    return state.flow.queue_local_message(conversation_id, text)

def clear_conversation(conversation_id: str) -> int:
    """Drop history, pending messages and debug state for one conversation."""
    count = state.log.clear(conversation_id)
    state.pending.clear(conversation_id)
    state.states.clear_debug_state(conversation_id)
    state.store.delete(_debug_key(conversation_id))
    state.ledger.reset(conversation_id)
    state.view.rebuild(conversation_id, [])
    return count

def drain_events() -> list[dict]:
    events = []
    while not state.events.empty():
        try:
            events.append(state.events.get_nowait())
        except queue.Empty:
            break
    return events

def setup_logging():
    """Configure application logging to a rotating file."""
    log_dir = APP_DATA_DIR / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "rewind.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Silence noisy libraries
    for lib in ["urllib3", "httpcore", "httpx", "openai"]:
        logging.getLogger(lib).setLevel(logging.WARNING)

    # Remove existing handlers to avoid duplicates on restart
    for h in root_logger.handlers[:]:
        root_logger.removeHandler(h)

    file_handler = RotatingFileHandler(log_file, maxBytes=1024*1024*5, backupCount=3, encoding='utf-8')
    file_fmt = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    file_handler.setFormatter(file_fmt)
    root_logger.addHandler(file_handler)
