"""Render ledger: which message ids are already materialized in the view."""
import logging
from typing import Iterable

logger = logging.getLogger(__name__)


class RenderLedger:
    def __init__(self):
        self._rendered: dict[str, set[str]] = {}

    def is_rendered(self, conversation_id: str, message_id: str) -> bool:
        return message_id in self._rendered.get(conversation_id, ())

    def mark_rendered(self, conversation_id: str, message_id: str) -> bool:
        """Record a rendered id. Returns False if it was already recorded."""
        ids = self._rendered.setdefault(conversation_id, set())
        if message_id in ids:
            return False
        ids.add(message_id)
        return True

    def forget(self, conversation_id: str, message_ids: Iterable[str]) -> int:
        ids = self._rendered.get(conversation_id)
        if not ids:
            return 0
        count = 0
        for mid in message_ids:
            if mid in ids:
                ids.discard(mid)
                count += 1
        return count

    def reset(self, conversation_id: str) -> None:
        """Clear every id for a conversation (page rebuild / conversation reset)."""
        self._rendered.pop(conversation_id, None)
        logger.debug(f"Render ledger reset for {conversation_id}")

    def rendered_ids(self, conversation_id: str) -> set[str]:
        return set(self._rendered.get(conversation_id, ()))
