"""View layer interface and an in-memory transcript implementation."""
import logging
from dataclasses import dataclass

from .ledger import RenderLedger
from .messages import describe_message

logger = logging.getLogger(__name__)


class ViewLayer:
    """What the engine needs from whatever draws chat bubbles."""

    def append(self, conversation_id: str, message: dict) -> bool:
        raise NotImplementedError

    def remove_by_id(self, conversation_id: str, message_id: str) -> bool:
        raise NotImplementedError

    def is_rendered(self, conversation_id: str, message_id: str) -> bool:
        raise NotImplementedError


@dataclass
class ChatBubble:
    message_id: str | None
    sender: str
    text: str

    def render(self) -> str:
        return f"{self.sender:>6} | {self.text}"


class TranscriptView(ViewLayer):
    """Keeps one ordered bubble list per conversation. Idempotent through the render ledger."""

    def __init__(self, ledger: RenderLedger):
        self.ledger = ledger
        self._bubbles: dict[str, list[ChatBubble]] = {}

    def append(self, conversation_id: str, message: dict) -> bool:
        msg_id = message.get("id")
        if msg_id and self.ledger.is_rendered(conversation_id, msg_id):
            logger.debug(f"Skipping already rendered message {msg_id}")
            return False
        bubble = ChatBubble(msg_id, message.get("sender", "remote"), describe_message(message))
        self._bubbles.setdefault(conversation_id, []).append(bubble)
        if msg_id:
            self.ledger.mark_rendered(conversation_id, msg_id)
        return True

    def remove_by_id(self, conversation_id: str, message_id: str) -> bool:
        bubbles = self._bubbles.get(conversation_id, [])
        for i, bubble in enumerate(bubbles):
            if bubble.message_id == message_id:
                del bubbles[i]
                logger.debug(f"Removed bubble {message_id}")
                return True
        return False

    def is_rendered(self, conversation_id: str, message_id: str) -> bool:
        return self.ledger.is_rendered(conversation_id, message_id)

    def bubbles(self, conversation_id: str) -> list[ChatBubble]:
        return list(self._bubbles.get(conversation_id, []))

    def rebuild(self, conversation_id: str, entries: list[dict]) -> None:
        """Rebuild bubbles from a persisted log."""
        self._bubbles[conversation_id] = []
        self.ledger.reset(conversation_id)
        for entry in entries:
            self.append(conversation_id, entry)

    def render_text(self, conversation_id: str) -> str:
        return "\n".join(b.render() for b in self._bubbles.get(conversation_id, []))
