"""Facade for the rewind package."""

from .config import (
    config, APP_DATA_DIR, STORE_DIR, SETTINGS_PATH, DEFAULT_HANDLER_PRIORITY,
    load_json_file, save_json_file,
)

from .errors import (
    RewindError, NoSnapshotError, PersistenceError, EmptyParseError,
    UnresolvedReferenceError, GenerationInFlightError, ProviderError,
    CancelledError, HandlerError,
)

from .store import KeyValueStore, MemoryStore, JsonFileStore

from .messages import (
    LOCAL, REMOTE, SYSTEM, MessageLog, make_message, describe_message,
    generate_message_id,
)

from .ledger import RenderLedger
from .view import ViewLayer, TranscriptView, ChatBubble
from .pending import PendingBuffer

from .versions import (
    VersionRecord, Snapshot, ConversationDebugState, DebugStateBook,
)

from .snapshot import capture_snapshot

from .registry import (
    RollbackHandler, RollbackRegistry, RollbackReport, registry,
    register_rollback_handler,
)

from .rollback import RollbackCoordinator, RollbackResult, split_at_snapshot

from .numbering import build_number_map, resolve_reference, number_lines

from .parser import ResponseParser, check_response_format

from .llm import GenerationProvider, GenerationHandle, OpenAIProvider

from .workflow import GenerationFlow, GenerationOutcome

from .plans import PlanBook, Plan
from .wallet import Wallet, Transaction
from .signatures import SignatureHistory
