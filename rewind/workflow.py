"""Generation cycles: send, reroll, reapply and cancellation."""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from .errors import CancelledError, EmptyParseError, GenerationInFlightError, ProviderError
from .ledger import RenderLedger
from .llm import GenerationHandle, GenerationProvider
from .messages import LOCAL, REMOTE, MessageLog, make_message
from .numbering import build_number_map
from .parser import ResponseParser
from .pending import PendingBuffer
from .rollback import RollbackCoordinator, RollbackResult
from .snapshot import capture_snapshot
from .versions import DebugStateBook
from .view import ViewLayer

logger = logging.getLogger(__name__)

COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

Observer = Callable[[str, dict], Any]
Listener = Callable[[dict], Any]


@dataclass
class GenerationOutcome:
    conversation_id: str
    status: str = ""
    messages: list = field(default_factory=list)
    error: ProviderError | None = None
    rollback: RollbackResult | None = None

    @property
    def ok(self) -> bool:
        return self.status == COMPLETED


class GenerationFlow:
    def __init__(
        self,
        log: MessageLog,
        ledger: RenderLedger,
        view: ViewLayer | None,
        pending: PendingBuffer,
        states: DebugStateBook,
        coordinator: RollbackCoordinator,
        provider: GenerationProvider,
        parser: ResponseParser,
    ):
        self.log = log
        self.ledger = ledger
        self.view = view
        self.pending = pending
        self.states = states
        self.coordinator = coordinator
        self.provider = provider
        self.parser = parser
        self.observers: list[Observer] = []
        self.listeners: list[Listener] = []
        self._in_flight: dict[str, GenerationHandle] = {}

    def add_observer(self, observer: Observer) -> None:
        """Called with (conversation_id, message) for every newly appended remote message."""
        self.observers.append(observer)

    def add_listener(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def _emit(self, event_type: str, conversation_id: str, **detail) -> None:
        event = {"type": event_type, "conversation_id": conversation_id, **detail}
        for listener in self.listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Listener failed on {event_type}: {e}")

    def is_generating(self, conversation_id: str) -> bool:
        return conversation_id in self._in_flight

    def cancel(self, conversation_id: str) -> bool:
        handle = self._in_flight.pop(conversation_id, None)
        if handle is None:
            return False
        handle.abort()
        self._emit("generation-cancelled", conversation_id)
        return True

    def queue_local_message(self, conversation_id: str, content: str) -> dict:
        """Log and render a message typed by the local participant and stage it for the next send."""
        msg = make_message(LOCAL, "text", content=content)
        self._deliver(conversation_id, msg)
        self.pending.add(conversation_id, content, msg["timestamp"], message_id=msg["id"])
        return msg

    def _deliver(self, conversation_id: str, msg: dict) -> bool:
        if not self.log.append(conversation_id, msg):
            return False
        if self.view is not None:
            self.view.append(conversation_id, msg)
        if msg.get("id"):
            self.ledger.mark_rendered(conversation_id, msg["id"])
        if msg.get("sender") == REMOTE:
            for observer in self.observers:
                observer(conversation_id, msg)
        return True

    async def _run_generation(self, conversation_id: str, pending: dict) -> GenerationOutcome:
        outcome = GenerationOutcome(conversation_id)

        def on_message(msg: dict):
            if self._deliver(conversation_id, msg):
                outcome.messages.append(msg)

        def on_complete():
            outcome.status = COMPLETED

        def on_error(err: ProviderError):
            outcome.status = CANCELLED if isinstance(err, CancelledError) else FAILED
            outcome.error = err

        def on_raw(raw_text: str):
            self.states.save_version(conversation_id, raw_text)

        handle = self.provider.invoke(conversation_id, pending, on_message, on_complete, on_error, on_raw)
        self._in_flight[conversation_id] = handle
        self._emit("generation-start", conversation_id)
        try:
            await handle.wait()
        finally:
            if self._in_flight.get(conversation_id) is handle:
                del self._in_flight[conversation_id]

        if not outcome.status:
            outcome.status = CANCELLED if handle.aborted else FAILED
        if outcome.status == COMPLETED:
            self._emit("generation-complete", conversation_id, count=len(outcome.messages))
        else:
            self._emit("generation-error", conversation_id, status=outcome.status, error=str(outcome.error or ""))
        return outcome

    async def send(self, conversation_id: str) -> GenerationOutcome:
        """Start a new generation cycle for a conversation."""
        if self.is_generating(conversation_id):
            raise GenerationInFlightError(f"Generation already running for '{conversation_id}'")
        self.states.clear_debug_state(conversation_id)
        snapshot = capture_snapshot(conversation_id, self.log, self.pending, self.states)

        outcome = await self._run_generation(conversation_id, snapshot.pending_by_conversation)
        # Replies land in this conversation only; other conversations keep their staged messages
        if outcome.ok:
            self.pending.clear(conversation_id)
        return outcome

    async def reroll(self, conversation_id: str) -> GenerationOutcome:
        """Discard the last attempt and ask the provider again with the same staged messages.

        If a generation is already in flight for the conversation it is
        cancelled instead and a cancelled outcome is returned.
        """
        if self.is_generating(conversation_id):
            logger.info(f"Reroll requested while generating for {conversation_id}, cancelling instead")
            self.cancel(conversation_id)
            return GenerationOutcome(conversation_id, status=CANCELLED, error=CancelledError("Cancelled by reroll"))

        self._emit("reroll-start", conversation_id)
        try:
            result = await self.coordinator.rollback_to_snapshot(conversation_id)
            snapshot = self.coordinator.snapshot_for(conversation_id)
            outcome = await self._run_generation(conversation_id, snapshot.pending_by_conversation)
            outcome.rollback = result
            return outcome
        finally:
            self._emit("reroll-end", conversation_id)

    async def reapply(self, conversation_id: str, edited_text: str) -> list[dict]:
        """Discard the last attempt and replace it with messages parsed from edited raw text."""
        if self.is_generating(conversation_id):
            raise GenerationInFlightError(f"Cannot reapply while generating for '{conversation_id}'")

        await self.coordinator.rollback_to_snapshot(conversation_id)
        number_map = build_number_map(self.log.load(conversation_id))
        parsed = self.parser.parse(edited_text, conversation_id, number_map)
        if not parsed:
            raise EmptyParseError("Parsing produced no messages")

        applied = []
        for msg in parsed:
            msg_id = msg.get("id")
            if msg_id and self.ledger.is_rendered(conversation_id, msg_id):
                logger.debug(f"Message {msg_id} already rendered, skipping")
                continue
            if self._deliver(conversation_id, msg):
                applied.append(msg)
        logger.info(f"Reapplied {len(applied)} message(s) to {conversation_id}")
        return applied
