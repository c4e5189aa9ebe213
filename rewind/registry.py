"""Rollback handler registry.

Subsystems that keep state keyed by message id register a cleanup callback
here. Whenever a rollback removes messages, every handler is run in
ascending priority order (registration order breaks ties) with
``(conversation_id, removed_entries, removed_ids)``.

Handlers may be plain functions or coroutine functions. A handler that
raises is logged and counted; the remaining handlers still run.
"""
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from .config import config
from .errors import HandlerError

logger = logging.getLogger(__name__)

RollbackFunc = Callable[[str, list, list], Any]


@dataclass
class RollbackHandler:
    name: str
    priority: int
    rollback: RollbackFunc


@dataclass
class RollbackReport:
    succeeded: int = 0
    failed: int = 0
    total: int = 0
    errors: list = field(default_factory=list)


class RollbackRegistry:
    """Handlers in priority order. With a parent, the parent's handlers are read live
    and an entry registered here shadows a parent entry of the same name."""

    def __init__(self, parent: "RollbackRegistry | None" = None):
        self._handlers: list[RollbackHandler] = []
        self.parent = parent

    def register(self, handler: RollbackHandler) -> bool:
        if not handler.name:
            raise ValueError("Rollback handler needs a name")
        if not callable(handler.rollback):
            raise ValueError(f"Rollback handler '{handler.name}' is not callable")
        if any(h.name == handler.name for h in self._handlers):
            logger.warning(f"Rollback handler '{handler.name}' already registered, skipping")
            return False
        self._handlers.append(handler)
        logger.info(f"Registered rollback handler '{handler.name}' (priority {handler.priority})")
        return True

    def register_rollback_handler(self, name: str, rollback: RollbackFunc, priority: int | None = None) -> bool:
        if priority is None:
            priority = config.default_handler_priority
        return self.register(RollbackHandler(name=name, priority=priority, rollback=rollback))

    def handlers(self) -> list[RollbackHandler]:
        own_names = {h.name for h in self._handlers}
        inherited = []
        if self.parent is not None:
            inherited = [h for h in self.parent.handlers() if h.name not in own_names]
        # sorted() is stable, so equal priorities keep registration order
        return sorted(inherited + self._handlers, key=lambda h: h.priority)

    def describe(self) -> list[tuple[str, int]]:
        return [(h.name, h.priority) for h in self.handlers()]

    def __len__(self) -> int:
        return len(self.handlers())

    async def run(self, conversation_id: str, removed_entries: list[dict]) -> RollbackReport:
        handlers = self.handlers()
        report = RollbackReport(total=len(handlers))
        if not handlers:
            logger.debug("No rollback handlers registered")
            return report

        removed_ids = [m["id"] for m in removed_entries if m.get("id")]
        logger.info(
            f"Running {len(handlers)} rollback handler(s) for {conversation_id}, "
            f"{len(removed_entries)} removed message(s)"
        )

        for handler in handlers:
            try:
                result = handler.rollback(conversation_id, list(removed_entries), list(removed_ids))
                if inspect.isawaitable(result):
                    await result
                report.succeeded += 1
                logger.debug(f"Rollback handler '{handler.name}' done")
            except Exception as e:
                err = HandlerError(handler.name, e)
                logger.exception(str(err))
                report.errors.append(err)
                report.failed += 1

        logger.info(f"Rollback handlers: {report.succeeded} ok, {report.failed} failed, {report.total} total")
        return report


# Process-wide registry; subsystems register at startup and are never removed.
registry = RollbackRegistry()

def register_rollback_handler(name: str, rollback: RollbackFunc, priority: int | None = None) -> bool:
    return registry.register_rollback_handler(name, rollback, priority)
