"""Turns raw generated text into structured message entries."""
import logging
import time

from pattern import (
    role_tag_pattern, messages_open_tag, messages_boundary_tags, quote_pattern,
    legacy_quote_pattern, emoji_pattern, image_pattern, transfer_pattern,
    plan_pattern, signature_pattern, recall_pattern,
)
from .errors import UnresolvedReferenceError
from .messages import REMOTE, MessageLog, describe_message, generate_message_id
from .numbering import resolve_reference

logger = logging.getLogger(__name__)


def extract_role_blocks(text: str) -> list[tuple[str, str]]:
    """Split on [char-NAME] lines. Blocks need no closing tag."""
    blocks = []
    current_role = None
    current_lines: list[str] = []
    for line in text.splitlines():
        m = role_tag_pattern.match(line)
        if m:
            if current_role is not None:
                blocks.append((current_role, "\n".join(current_lines)))
            current_role = m.group(1).strip()
            current_lines = []
        elif current_role is not None:
            current_lines.append(line)
    if current_role is not None:
        blocks.append((current_role, "\n".join(current_lines)))
    return blocks

def extract_messages_content(block: str) -> str | None:
    start = block.find(messages_open_tag)
    if start == -1:
        return None
    start += len(messages_open_tag)
    ends = [i for i in (block.find(tag, start) for tag in messages_boundary_tags) if i != -1]
    return block[start:min(ends)] if ends else block[start:]

def parse_bubble(bubble: str, role: str) -> dict:
    """Classify one line. Quotes come back as a placeholder with 'ref'."""
    m = recall_pattern.match(bubble)
    if m:
        return {"role": role, "type": "recalled", "content": m.group(1).strip()}

    m = quote_pattern.match(bubble)
    if m:
        return {"role": role, "type": "quote", "ref": int(m.group(1)), "reply": m.group(2).strip()}

    m = legacy_quote_pattern.match(bubble)
    if m:
        logger.warning("Quote without a message number, keeping it as text")
        return {"role": role, "type": "text", "content": bubble}

    m = emoji_pattern.match(bubble)
    if m:
        return {"role": role, "type": "emoji", "name": m.group(1).strip()}

    m = image_pattern.match(bubble)
    if m:
        return {"role": role, "type": "image", "description": m.group(1).strip()}

    m = transfer_pattern.match(bubble)
    if m:
        return {"role": role, "type": "transfer", "amount": float(m.group(1)), "note": (m.group(2) or "").strip()}

    m = plan_pattern.match(bubble)
    if m:
        return {"role": role, "type": "plan", "title": m.group(1).strip()}

    m = signature_pattern.match(bubble)
    if m:
        return {"role": role, "type": "signature", "content": m.group(1).strip()}

    return {"role": role, "type": "text", "content": bubble}

def check_response_format(text: str, expected_name: str | None = None) -> list[str]:
    """Return a list of format problems; empty means the text looks parseable."""
    problems = []
    roles = role_tag_pattern.findall(text or "")
    if not roles:
        problems.append("Missing [char-NAME] tag")
    elif expected_name and roles[0].strip() != expected_name:
        problems.append(f"Character name mismatch: expected '{expected_name}', got '{roles[0].strip()}'")
    if messages_open_tag not in (text or ""):
        problems.append(f"Missing {messages_open_tag} tag")
    return problems


class ResponseParser:
    """Default parser for the tag format in pattern.py.

    Quote references are resolved through the number map. A number that is not
    in the map degrades to a text bubble tagged with 'unresolved_ref', unless
    strict is set, in which case UnresolvedReferenceError is raised.
    """

    def __init__(self, log: MessageLog | None = None, strict: bool = False):
        self.log = log
        self.strict = strict

    def parse(self, raw_text: str, conversation_id: str, number_map: dict[int, str]) -> list[dict]:
        logger.info(f"Parsing {len(raw_text or '')} chars for {conversation_id}, number map size {len(number_map)}")
        messages = []
        now = int(time.time())
        for role, block in extract_role_blocks(raw_text or ""):
            content = extract_messages_content(block)
            if content is None:
                logger.warning(f"No {messages_open_tag} section for '{role}', skipping")
                continue
            for line in content.splitlines():
                bubble = line.strip()
                if not bubble:
                    continue
                parsed = parse_bubble(bubble, role)
                parsed["id"] = generate_message_id()
                parsed["sender"] = REMOTE
                parsed["timestamp"] = now
                messages.append(parsed)

        for i, msg in enumerate(messages):
            if msg["type"] == "quote":
                messages[i] = self._resolve_quote(msg, conversation_id, number_map)

        logger.info(f"Parsed {len(messages)} message(s)")
        return messages

    def _resolve_quote(self, msg: dict, conversation_id: str, number_map: dict[int, str]) -> dict:
        ref = msg.pop("ref")
        try:
            quoted_id = resolve_reference(number_map, ref)
        except UnresolvedReferenceError:
            if self.strict:
                raise
            logger.warning(f"Quote reference #{ref} is out of range, keeping it as text")
            return self._degraded(msg, ref)

        quoted = {"id": quoted_id}
        if self.log is not None:
            original = self.log.find(conversation_id, quoted_id)
            if original is None:
                if self.strict:
                    raise UnresolvedReferenceError(f"Message #{ref} ({quoted_id}) no longer exists")
                logger.warning(f"Quoted message {quoted_id} no longer exists, keeping it as text")
                return self._degraded(msg, ref)
            quoted.update({
                "sender": original.get("sender"),
                "type": original.get("type", "text"),
                "timestamp": original.get("timestamp"),
                "summary": describe_message(original),
            })
        msg["quoted"] = quoted
        return msg

    @staticmethod
    def _degraded(msg: dict, ref: int) -> dict:
        return {
            "id": msg["id"],
            "sender": msg["sender"],
            "timestamp": msg["timestamp"],
            "role": msg.get("role"),
            "type": "text",
            "content": f"[quote]#{ref}[reply]{msg.get('reply', '')}",
            "unresolved_ref": ref,
        }
