"""Per-conversation debug state: raw response versions, navigation, and the snapshot."""
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class VersionRecord:
    raw_text: str
    captured_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {"raw_text": self.raw_text, "captured_at": self.captured_at}

    @classmethod
    def from_dict(cls, data: dict) -> "VersionRecord":
        return cls(raw_text=data.get("raw_text", ""), captured_at=data.get("captured_at", 0.0))


@dataclass
class Snapshot:
    """Checkpoint taken right before a generation attempt."""
    conversation_id: str
    log_length: int
    pending_by_conversation: dict = field(default_factory=dict)
    captured_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "log_length": self.log_length,
            "pending_by_conversation": self.pending_by_conversation,
            "captured_at": self.captured_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Snapshot":
        return cls(
            conversation_id=data["conversation_id"],
            log_length=int(data.get("log_length", 0)),
            pending_by_conversation=data.get("pending_by_conversation") or {},
            captured_at=data.get("captured_at", 0.0),
        )


@dataclass
class ConversationDebugState:
    """Lives for one generation cycle of one conversation."""
    conversation_id: str
    versions: list = field(default_factory=list)
    current_index: int = 0
    snapshot: Snapshot | None = None

    def add_version(self, raw_text: str) -> VersionRecord:
        record = VersionRecord(raw_text)
        self.versions.append(record)
        self.current_index = len(self.versions) - 1
        logger.info(f"Saved version {len(self.versions)} for {self.conversation_id} ({len(raw_text)} chars)")
        return record

    def _clamp(self, index: int) -> int:
        if not self.versions:
            return 0
        return max(0, min(index, len(self.versions) - 1))

    def current(self) -> VersionRecord | None:
        if not self.versions:
            return None
        self.current_index = self._clamp(self.current_index)
        return self.versions[self.current_index]

    def move(self, direction: int) -> VersionRecord | None:
        self.current_index = self._clamp(self.current_index + direction)
        return self.current()

    def select(self, index: int) -> VersionRecord | None:
        self.current_index = self._clamp(index)
        return self.current()

    def position(self) -> tuple[int, int]:
        """1-based (current, total) for a 'n/m' indicator."""
        if not self.versions:
            return 0, 0
        return self._clamp(self.current_index) + 1, len(self.versions)

    def can_go_back(self) -> bool:
        return bool(self.versions) and self._clamp(self.current_index) > 0

    def can_go_forward(self) -> bool:
        return bool(self.versions) and self._clamp(self.current_index) < len(self.versions) - 1

    def to_dict(self) -> dict:
        return {
            "conversation_id": self.conversation_id,
            "versions": [v.to_dict() for v in self.versions],
            "current_index": self.current_index,
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
        }

    def from_dict(self, data: dict) -> None:
        self.versions = [VersionRecord.from_dict(v) for v in data.get("versions", [])]
        self.current_index = self._clamp(data.get("current_index", 0))
        snap = data.get("snapshot")
        self.snapshot = Snapshot.from_dict(snap) if snap else None


class DebugStateBook:
    """Explicit owner of every conversation's debug state."""

    def __init__(self):
        self._states: dict[str, ConversationDebugState] = {}

    def get(self, conversation_id: str) -> ConversationDebugState | None:
        return self._states.get(conversation_id)

    def ensure(self, conversation_id: str) -> ConversationDebugState:
        state = self._states.get(conversation_id)
        if state is None:
            state = ConversationDebugState(conversation_id)
            self._states[conversation_id] = state
        return state

    def put(self, state: ConversationDebugState) -> None:
        self._states[state.conversation_id] = state

    def clear_debug_state(self, conversation_id: str) -> None:
        self._states.pop(conversation_id, None)
        logger.debug(f"Cleared debug state for {conversation_id}")

    def save_version(self, conversation_id: str, raw_text: str) -> VersionRecord:
        return self.ensure(conversation_id).add_version(raw_text)

    def conversation_ids(self) -> list[str]:
        return list(self._states)
