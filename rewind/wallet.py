"""Wallet balance and the transfers that moved it."""
import logging
import secrets
import time
from dataclasses import dataclass, field

from .messages import REMOTE
from .registry import RollbackRegistry
from .store import KeyValueStore

logger = logging.getLogger(__name__)

WALLET_KEY = "wallet/data"
WALLET_ROLLBACK_PRIORITY = 5

RECEIVED = "received"
SENT = "sent"


@dataclass
class Transaction:
    id: str
    conversation_id: str
    message_id: str | None
    direction: str
    amount: float
    note: str = ""
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "message_id": self.message_id,
            "direction": self.direction,
            "amount": self.amount,
            "note": self.note,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Transaction":
        return cls(
            id=data["id"],
            conversation_id=data.get("conversation_id", ""),
            message_id=data.get("message_id"),
            direction=data.get("direction", RECEIVED),
            amount=float(data.get("amount", 0)),
            note=data.get("note", ""),
            created_at=data.get("created_at", 0.0),
        )


class Wallet:
    """One balance shared by every conversation. Deleting a transaction undoes its effect."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _load(self) -> dict:
        data = self.store.load(WALLET_KEY) or {}
        balance = data.get("balance", 0)
        return {
            "balance": balance if isinstance(balance, (int, float)) else 0,
            "transactions": data.get("transactions", []),
        }

    def _save(self, balance: float, transactions: list[Transaction]) -> None:
        self.store.save(WALLET_KEY, {"balance": balance, "transactions": [t.to_dict() for t in transactions]})

    @property
    def balance(self) -> float:
        return self._load()["balance"]

    def transactions(self, conversation_id: str | None = None) -> list[Transaction]:
        items = [Transaction.from_dict(t) for t in self._load()["transactions"]]
        if conversation_id is None:
            return items
        return [t for t in items if t.conversation_id == conversation_id]

    def record(self, conversation_id: str, amount: float, direction: str, note: str = "",
               message_id: str | None = None) -> Transaction:
        if amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {amount}")
        if direction not in (RECEIVED, SENT):
            raise ValueError(f"Unknown transfer direction: {direction!r}")
        data = self._load()
        balance = data["balance"]
        if direction == SENT and balance < amount:
            raise ValueError(f"Insufficient balance: {balance} < {amount}")

        transactions = [Transaction.from_dict(t) for t in data["transactions"]]
        existing = next(
            (t for t in transactions if message_id and t.conversation_id == conversation_id and t.message_id == message_id),
            None,
        )
        if existing is not None:
            logger.warning(f"Transfer for message {message_id} in {conversation_id} already recorded, skipping")
            return existing

        tx = Transaction(
            id=f"tx_{int(time.time())}_{secrets.token_hex(4)}",
            conversation_id=conversation_id,
            message_id=message_id,
            direction=direction,
            amount=amount,
            note=note,
        )
        transactions.append(tx)
        balance = balance + amount if direction == RECEIVED else balance - amount
        self._save(balance, transactions)
        logger.info(f"Transfer {direction} {amount} for {conversation_id}, balance now {balance}")
        return tx

    def delete(self, transaction_id: str) -> Transaction | None:
        """Remove a transaction and restore the balance it changed."""
        data = self._load()
        transactions = [Transaction.from_dict(t) for t in data["transactions"]]
        deleted = next((t for t in transactions if t.id == transaction_id), None)
        if deleted is None:
            return None
        balance = data["balance"]
        if deleted.direction == RECEIVED:
            balance = max(0, balance - deleted.amount)
        else:
            balance += deleted.amount
        self._save(balance, [t for t in transactions if t.id != transaction_id])
        logger.info(f"Deleted transaction {transaction_id}, balance restored to {balance}")
        return deleted

    def observe(self, conversation_id: str, message: dict) -> Transaction | None:
        """Record a transfer the other side sent. Outgoing transfers go through record()."""
        if message.get("type") != "transfer" or message.get("sender") != REMOTE:
            return None
        amount = float(message.get("amount", 0))
        if amount <= 0:
            logger.warning(f"Ignoring transfer of {amount} in message {message.get('id')}")
            return None
        return self.record(
            conversation_id,
            amount,
            RECEIVED,
            note=message.get("note", ""),
            message_id=message.get("id"),
        )

    def rollback(self, conversation_id: str, removed_entries: list, removed_ids: list) -> int:
        removed = set(removed_ids)
        count = 0
        for tx in self.transactions(conversation_id):
            if tx.message_id in removed and self.delete(tx.id):
                count += 1
        if count:
            logger.info(f"Rollback undid {count} transfer(s), balance {self.balance}")
        else:
            logger.debug("No transfers to roll back")
        return count

    def register_rollback_handler(self, registry: RollbackRegistry) -> bool:
        return registry.register_rollback_handler("wallet", self.rollback, WALLET_ROLLBACK_PRIORITY)
