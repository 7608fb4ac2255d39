"""
Per-user prepaid balance accounting.
"""

import math
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.logging import get_logger
from shared.errors import FormatError, InsufficientBalanceError, NotFoundError
from shared.metrics import MetricsCollector
from ..store.redis_store import RedisStore


class Direction(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class User(BaseModel):
    """A user's balance as served on the wire: ``{"ID": 1, "Balance": 2.5}``."""

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(alias="ID")
    balance: float = Field(alias="Balance")

    def to_dict(self):
        return self.model_dump(by_alias=True)


def balance_key(user_id: int) -> str:
    return f"user-{user_id}"


def format_balance(value: float) -> str:
    # Six fixed decimals, the format existing records are written in.
    return "%f" % value


def parse_balance(raw: str, key: str) -> float:
    """Parse a stored balance; a corrupt record is a server-side fault."""
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise FormatError(
            f"Stored balance is not a number: {key}",
            details={"key": key, "value": raw},
            status_code=500,
        )
    if not math.isfinite(value):
        raise FormatError(
            f"Stored balance is not finite: {key}",
            details={"key": key, "value": raw},
            status_code=500,
        )
    return value


class BalanceLedger:
    """Reads and adjusts balances stored under ``user-{id}``.

    Adjustments run inside :meth:`RedisStore.transact`, so concurrent
    credits and debits for one user are serialized by Redis rather than
    racing on a read-then-write.
    """

    def __init__(
        self,
        store: RedisStore,
        metrics: Optional[MetricsCollector] = None,
        allow_negative_balance: bool = True,
    ):
        self.store = store
        self.metrics = metrics
        self.allow_negative_balance = allow_negative_balance
        self.logger = get_logger("proxy.ledger")

    async def get_balance(self, user_id: int) -> User:
        key = balance_key(user_id)
        raw = await self.store.get(key)
        return User(id=user_id, balance=parse_balance(raw, key))

    async def adjust(self, user_id: int, amount: float, direction: Direction) -> User:
        """Credit or debit ``amount`` and return the updated balance.

        A credit creates a missing balance entry starting from zero; a debit
        against a missing entry raises :class:`NotFoundError`.
        """
        direction = Direction(direction)
        if not math.isfinite(amount) or amount < 0:
            raise FormatError(
                "Amount must be a finite, non-negative number",
                details={"amount": str(amount)}
            )

        key = balance_key(user_id)

        def apply(current: Optional[str]) -> str:
            if current is None:
                if direction is Direction.DEBIT:
                    raise NotFoundError(f"Key not found: {key}", details={"key": key})
                balance = 0.0
            else:
                balance = parse_balance(current, key)

            if direction is Direction.CREDIT:
                new_balance = balance + amount
            else:
                new_balance = balance - amount
                if new_balance < 0 and not self.allow_negative_balance:
                    raise InsufficientBalanceError(
                        details={"user_id": user_id, "balance": balance, "amount": amount}
                    )
            return format_balance(new_balance)

        stored = await self.store.transact(key, apply)

        if self.metrics:
            self.metrics.increment_counter("balance_adjustments_total", direction=direction.value)
            self.metrics.record_business_event(f"balance_{direction.value}")

        user = User(id=user_id, balance=float(stored))
        self.logger.info(
            "Balance adjusted",
            user_id=user_id,
            direction=direction.value,
            amount=amount,
            balance=user.balance
        )
        return user
