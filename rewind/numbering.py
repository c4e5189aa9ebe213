"""Sequence-number -> message-id map used to resolve "message #N" references."""
import logging

from .errors import UnresolvedReferenceError

logger = logging.getLogger(__name__)


def build_number_map(entries: list[dict]) -> dict[int, str]:
    """Number every entry that has an id, starting at 1, in log order.

    Entries without an id (legacy data) are skipped and do not consume a number.
    Must be rebuilt after every rollback since removals shift the numbering.
    """
    number_map: dict[int, str] = {}
    n = 1
    for entry in entries:
        msg_id = entry.get("id")
        if msg_id:
            number_map[n] = msg_id
            n += 1
    logger.debug(f"Built number map with {len(number_map)} entries")
    return number_map

def resolve_reference(number_map: dict[int, str], number: int) -> str:
    try:
        return number_map[number]
    except KeyError:
        raise UnresolvedReferenceError(f"Message #{number} does not exist (1..{len(number_map)})") from None

def number_lines(entries: list[dict]) -> list[tuple[int | None, dict]]:
    """Pair entries with the number a reference would use; None for entries without an id."""
    out = []
    n = 1
    for entry in entries:
        if entry.get("id"):
            out.append((n, entry))
            n += 1
        else:
            out.append((None, entry))
    return out
