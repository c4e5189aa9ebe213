"""Checkpoint capture before a generation attempt."""
import logging

from .messages import MessageLog
from .pending import PendingBuffer
from .versions import DebugStateBook, Snapshot

logger = logging.getLogger(__name__)


def capture_snapshot(conversation_id: str, log: MessageLog, pending: PendingBuffer, states: DebugStateBook) -> Snapshot:
    """Record the log length and the whole pending buffer, overwriting any earlier snapshot.

    Must run once per generation attempt, before the provider is invoked.
    """
    snapshot = Snapshot(
        conversation_id=conversation_id,
        log_length=log.length(conversation_id),
        pending_by_conversation=pending.snapshot(),
    )
    states.ensure(conversation_id).snapshot = snapshot
    logger.debug(
        f"Snapshot for {conversation_id}: log_length={snapshot.log_length}, "
        f"pending conversations={len(snapshot.pending_by_conversation)}"
    )
    return snapshot
