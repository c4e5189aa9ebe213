"""Selective rollback of provider-authored messages to the last snapshot."""
import logging
from dataclasses import dataclass, field

from .errors import NoSnapshotError
from .ledger import RenderLedger
from .messages import REMOTE, MessageLog
from .registry import RollbackRegistry, RollbackReport
from .versions import DebugStateBook, Snapshot
from .view import ViewLayer

logger = logging.getLogger(__name__)


@dataclass
class RollbackResult:
    conversation_id: str
    kept: list = field(default_factory=list)
    removed: list = field(default_factory=list)
    removed_ids: list = field(default_factory=list)
    report: RollbackReport = field(default_factory=RollbackReport)


def split_at_snapshot(entries: list[dict], log_length: int) -> tuple[list[dict], list[dict], list[dict]]:
    """Return (before, kept, removed) for a log and a checkpoint length.

    Post-checkpoint entries are classified by sender, not position: remote
    entries are removed, local and system entries survive in order.
    """
    boundary = max(0, min(log_length, len(entries)))
    before = entries[:boundary]
    after = entries[boundary:]
    removed = [m for m in after if m.get("sender") == REMOTE]
    kept = [m for m in after if m.get("sender") != REMOTE]
    return before, kept, removed


class RollbackCoordinator:
    def __init__(
        self,
        log: MessageLog,
        ledger: RenderLedger,
        view: ViewLayer | None,
        states: DebugStateBook,
        registry: RollbackRegistry,
    ):
        self.log = log
        self.ledger = ledger
        self.view = view
        self.states = states
        self.registry = registry

    def snapshot_for(self, conversation_id: str) -> Snapshot:
        state = self.states.get(conversation_id)
        snapshot = state.snapshot if state else None
        if snapshot is None:
            raise NoSnapshotError(f"No snapshot captured for conversation '{conversation_id}'")
        if snapshot.conversation_id != conversation_id:
            raise NoSnapshotError(
                f"Snapshot belongs to '{snapshot.conversation_id}', not '{conversation_id}'"
            )
        return snapshot

    async def rollback_to_snapshot(self, conversation_id: str) -> RollbackResult:
        snapshot = self.snapshot_for(conversation_id)
        logger.info(f"Rolling back {conversation_id} to log_length={snapshot.log_length}")

        entries = self.log.load(conversation_id)
        before, kept, removed = split_at_snapshot(entries, snapshot.log_length)
        removed_ids = [m["id"] for m in removed if m.get("id")]

        logger.info(
            f"After checkpoint: {len(removed)} remote removed, {len(kept)} kept "
            f"(log {len(entries)} -> {len(before) + len(kept)})"
        )
        if removed_ids:
            logger.debug(f"Removed ids: {', '.join(removed_ids)}")

        # Only log mutation of a rollback. PersistenceError propagates to the caller.
        self.log.replace(conversation_id, before + kept)

        if self.view is not None:
            for msg_id in removed_ids:
                self.view.remove_by_id(conversation_id, msg_id)
        self.ledger.forget(conversation_id, removed_ids)

        report = await self.registry.run(conversation_id, removed)

        logger.info(f"Rollback of {conversation_id} complete")
        return RollbackResult(
            conversation_id=conversation_id,
            kept=kept,
            removed=removed,
            removed_ids=removed_ids,
            report=report,
        )
