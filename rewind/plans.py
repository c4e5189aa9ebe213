"""Scheduled plans created by [plan] messages."""
import logging
import secrets
import time
from dataclasses import dataclass, field

from .registry import RollbackRegistry
from .store import KeyValueStore

logger = logging.getLogger(__name__)

PLAN_KEY_PREFIX = "plans/"
PLAN_ROLLBACK_PRIORITY = 10

PLAN_STATUSES = ("pending", "accepted", "rejected", "completed")


@dataclass
class Plan:
    id: str
    message_id: str
    title: str
    status: str = "pending"
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "message_id": self.message_id,
            "title": self.title,
            "status": self.status,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Plan":
        return cls(
            id=data["id"],
            message_id=data.get("message_id", ""),
            title=data.get("title", ""),
            status=data.get("status", "pending"),
            created_at=data.get("created_at", 0.0),
        )


class PlanBook:
    def __init__(self, store: KeyValueStore):
        self.store = store

    def _key(self, conversation_id: str) -> str:
        return f"{PLAN_KEY_PREFIX}{conversation_id}"

    def plans(self, conversation_id: str) -> list[Plan]:
        data = self.store.load(self._key(conversation_id)) or []
        return [Plan.from_dict(p) for p in data]

    def _save(self, conversation_id: str, plans: list[Plan]) -> None:
        self.store.save(self._key(conversation_id), [p.to_dict() for p in plans])

    def create(self, conversation_id: str, message_id: str, title: str) -> Plan:
        plans = self.plans(conversation_id)
        plan = Plan(id=f"plan_{int(time.time())}_{secrets.token_hex(4)}", message_id=message_id, title=title)
        plans.append(plan)
        self._save(conversation_id, plans)
        logger.info(f"Created plan '{title}' for {conversation_id} from {message_id}")
        return plan

    def get_by_message_id(self, conversation_id: str, message_id: str) -> Plan | None:
        for plan in self.plans(conversation_id):
            if plan.message_id == message_id:
                return plan
        return None

    def set_status(self, conversation_id: str, plan_id: str, status: str) -> bool:
        if status not in PLAN_STATUSES:
            raise ValueError(f"Unknown plan status: {status!r}")
        plans = self.plans(conversation_id)
        for plan in plans:
            if plan.id == plan_id:
                plan.status = status
                self._save(conversation_id, plans)
                return True
        return False

    def delete(self, conversation_id: str, plan_id: str) -> bool:
        plans = self.plans(conversation_id)
        remaining = [p for p in plans if p.id != plan_id]
        if len(remaining) == len(plans):
            return False
        self._save(conversation_id, remaining)
        return True

    def observe(self, conversation_id: str, message: dict) -> Plan | None:
        if message.get("type") != "plan" or not message.get("id"):
            return None
        return self.create(conversation_id, message["id"], message.get("title", ""))

    def rollback(self, conversation_id: str, removed_entries: list, removed_ids: list) -> int:
        removed = set(removed_ids)
        plans = self.plans(conversation_id)
        remaining = [p for p in plans if p.message_id not in removed]
        deleted = [p.title for p in plans if p.message_id in removed]
        if deleted:
            self._save(conversation_id, remaining)
            logger.info(f"Rollback deleted {len(deleted)} plan(s): {', '.join(deleted)}")
        else:
            logger.debug("No plans to roll back")
        return len(deleted)

    def register_rollback_handler(self, registry: RollbackRegistry) -> bool:
        return registry.register_rollback_handler("plans", self.rollback, PLAN_ROLLBACK_PRIORITY)
