"""Message entries and the per-conversation message log."""
import logging
import secrets
import time
from typing import Any

from .store import KeyValueStore

logger = logging.getLogger(__name__)

LOCAL = "local"
REMOTE = "remote"
SYSTEM = "system"
SENDERS = (LOCAL, REMOTE, SYSTEM)

MESSAGE_TYPES = ("text", "emoji", "image", "quote", "transfer", "plan", "signature", "recalled")

LOG_KEY_PREFIX = "chat/"

def generate_message_id() -> str:
    return f"msg_{int(time.time())}_{secrets.token_hex(6)}"

def make_message(sender: str, msg_type: str = "text", timestamp: int | None = None, **payload: Any) -> dict:
    """Build a new message entry with a fresh id."""
    if sender not in SENDERS:
        raise ValueError(f"Unknown sender: {sender!r}")
    if msg_type not in MESSAGE_TYPES:
        raise ValueError(f"Unknown message type: {msg_type!r}")
    msg = {
        "id": generate_message_id(),
        "sender": sender,
        "type": msg_type,
        "timestamp": int(time.time()) if timestamp is None else int(timestamp),
    }
    msg.update(payload)
    return msg

def describe_message(msg: dict) -> str:
    """Short one-line summary used in logs and the CLI."""
    t = msg.get("type", "text")
    if t == "emoji":
        return f"[emoji] {msg.get('name', '')}"
    if t == "image":
        return f"[image] {msg.get('description', '')}"
    if t == "quote":
        quoted = msg.get("quoted") or {}
        return f"[quote {quoted.get('id', '?')}] {msg.get('reply', '')}"
    if t == "transfer":
        note = f" ({msg['note']})" if msg.get("note") else ""
        return f"[transfer] {msg.get('amount', 0)}{note}"
    if t == "plan":
        return f"[plan] {msg.get('title', '')}"
    if t == "signature":
        return f"[signature] {msg.get('content', '')}"
    if t == "recalled":
        return "[recalled]"
    return str(msg.get("content", ""))


class MessageLog:
    """Ordered, persisted message entries per conversation. Append/read/replace only."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _key(self, conversation_id: str) -> str:
        return f"{LOG_KEY_PREFIX}{conversation_id}"

    def load(self, conversation_id: str) -> list[dict]:
        data = self.store.load(self._key(conversation_id))
        if not isinstance(data, list):
            return []
        return data

    def length(self, conversation_id: str) -> int:
        return len(self.load(conversation_id))

    def replace(self, conversation_id: str, entries: list[dict]) -> None:
        self.store.save(self._key(conversation_id), list(entries))

    def append(self, conversation_id: str, entry: dict) -> bool:
        """Append one entry. Returns False if an entry with the same id is already present."""
        entries = self.load(conversation_id)
        msg_id = entry.get("id")
        if msg_id and any(e.get("id") == msg_id for e in entries):
            logger.warning(f"Refusing duplicate message id {msg_id} in {conversation_id}")
            return False
        entries.append(entry)
        self.replace(conversation_id, entries)
        return True

    def find(self, conversation_id: str, message_id: str) -> dict | None:
        for entry in self.load(conversation_id):
            if entry.get("id") == message_id:
                return entry
        return None

    def clear(self, conversation_id: str) -> int:
        """Explicit 'clear history'. Returns the number of entries dropped."""
        count = self.length(conversation_id)
        self.store.delete(self._key(conversation_id))
        logger.info(f"Cleared {count} message(s) from {conversation_id}")
        return count
