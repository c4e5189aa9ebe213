"""Outbound messages staged by the local participant but not yet sent to the provider."""
import copy
import logging
import time

logger = logging.getLogger(__name__)

PENDING_KEY = "pending/messages"


class PendingBuffer:
    """Multi-conversation pending queue: conversation id -> ordered messages."""

    def __init__(self, store=None):
        self.store = store
        self._messages: dict[str, list[dict]] = {}
        if store is not None:
            data = store.load(PENDING_KEY)
            if isinstance(data, dict):
                self._messages = {k: list(v) for k, v in data.items() if isinstance(v, list)}

    def _persist(self) -> None:
        if self.store is not None:
            self.store.save(PENDING_KEY, self._messages)

    def add(self, conversation_id: str, content: str, timestamp: int | None = None, message_id: str | None = None) -> dict:
        item = {
            "content": content,
            "timestamp": int(time.time()) if timestamp is None else int(timestamp),
            "type": "text",
        }
        if message_id:
            item["id"] = message_id
        self._messages.setdefault(conversation_id, []).append(item)
        self._persist()
        logger.debug(f"Queued pending message for {conversation_id}: {content[:20]}")
        return item

    def get(self, conversation_id: str) -> list[dict]:
        return list(self._messages.get(conversation_id, []))

    def snapshot(self) -> dict[str, list[dict]]:
        """Deep copy of the whole buffer, safe to keep after the buffer changes."""
        return copy.deepcopy(self._messages)

    def clear(self, conversation_id: str) -> None:
        if self._messages.pop(conversation_id, None) is not None:
            self._persist()
            logger.debug(f"Cleared pending messages for {conversation_id}")

    def clear_all(self) -> None:
        self._messages = {}
        self._persist()

    def has_pending(self) -> bool:
        return any(self._messages.values())

    def conversation_ids(self) -> list[str]:
        return [k for k, v in self._messages.items() if v]
