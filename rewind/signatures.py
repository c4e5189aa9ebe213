"""Status-line ("signature") history per conversation."""
import logging
import time

from .registry import RollbackRegistry
from .store import KeyValueStore

logger = logging.getLogger(__name__)

SIGNATURE_KEY_PREFIX = "signatures/"
SIGNATURE_ROLLBACK_PRIORITY = 20


class SignatureHistory:
    def __init__(self, store: KeyValueStore):
        self.store = store

    def _key(self, conversation_id: str) -> str:
        return f"{SIGNATURE_KEY_PREFIX}{conversation_id}"

    def history(self, conversation_id: str) -> list[dict]:
        return self.store.load(self._key(conversation_id)) or []

    def current(self, conversation_id: str) -> str | None:
        records = self.history(conversation_id)
        return records[-1]["content"] if records else None

    def add(self, conversation_id: str, content: str, message_id: str | None = None) -> dict:
        records = self.history(conversation_id)
        record = {"content": content, "message_id": message_id, "changed_at": time.time()}
        records.append(record)
        self.store.save(self._key(conversation_id), records)
        logger.info(f"Signature for {conversation_id} changed to '{content}'")
        return record

    def observe(self, conversation_id: str, message: dict) -> dict | None:
        if message.get("type") != "signature":
            return None
        return self.add(conversation_id, message.get("content", ""), message.get("id"))

    def rollback(self, conversation_id: str, removed_entries: list, removed_ids: list) -> int:
        removed = set(removed_ids)
        records = self.history(conversation_id)
        remaining = [r for r in records if r.get("message_id") not in removed]
        count = len(records) - len(remaining)
        if count:
            self.store.save(self._key(conversation_id), remaining)
            logger.info(f"Rollback deleted {count} signature record(s) for {conversation_id}")
        else:
            logger.debug("No signatures to roll back")
        return count

    def register_rollback_handler(self, registry: RollbackRegistry) -> bool:
        return registry.register_rollback_handler("signatures", self.rollback, SIGNATURE_ROLLBACK_PRIORITY)
