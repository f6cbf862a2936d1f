"""Registry of explicit transactions opened through ``begin_transaction``."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dal.errors import TransactionNotFoundError


@dataclass
class ActiveTransaction:
    """An open transaction holding one leased connection exclusively."""

    transaction_id: str
    lease: Any
    server: str
    database: str
    schema: str
    name: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_monotonic: float = field(default_factory=time.monotonic)

    @property
    def connection(self) -> Any:
        return self.lease.connection

    def age_seconds(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.started_monotonic

    def as_dict(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "transaction_id": self.transaction_id,
            "server": self.server,
            "database": self.database,
            "schema": self.schema,
            "started_at": self.started_at.isoformat(),
        }
        if self.name:
            info["name"] = self.name
        return info


def new_transaction_id() -> str:
    return str(uuid.uuid4())


class TransactionRegistry:
    """Maps transaction ids to open transactions."""

    def __init__(self) -> None:
        self._transactions: Dict[str, ActiveTransaction] = {}

    def __len__(self) -> int:
        return len(self._transactions)

    def add(self, transaction: ActiveTransaction) -> None:
        self._transactions[transaction.transaction_id] = transaction

    def get(self, transaction_id: str) -> ActiveTransaction:
        """Return the open transaction or raise TransactionNotFoundError."""
        transaction = self._transactions.get(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        return transaction

    def pop(self, transaction_id: str) -> ActiveTransaction:
        """Remove and return the open transaction or raise TransactionNotFoundError."""
        transaction = self._transactions.pop(transaction_id, None)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        return transaction

    def list(self) -> List[ActiveTransaction]:
        return sorted(self._transactions.values(), key=lambda t: t.started_monotonic)

    def expired(self, max_age_seconds: float, now: Optional[float] = None) -> List[ActiveTransaction]:
        return [t for t in self.list() if t.age_seconds(now) > max_age_seconds]

    def drain(self) -> List[ActiveTransaction]:
        """Remove and return every open transaction."""
        transactions = self.list()
        self._transactions.clear()
        return transactions
