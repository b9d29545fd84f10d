"""Plan and execution records.

Amounts are kept as decimal strings so the persisted JSON round-trips exactly;
arithmetic goes through ``Decimal`` and derived amounts are written with eight
fractional digits.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from near_swap.data.audit import utc_now

AMOUNT_PLACES = Decimal("0.00000001")
AMOUNT_TOLERANCE = Decimal("0.00000001")
AT_PRICE_TOLERANCE = Decimal("0.005")
DATE_FORMAT = "%Y-%m-%d"


class PriceCondition(str, Enum):
    above = "above"
    below = "below"
    at = "at"


class PlanStatus(str, Enum):
    active = "active"
    paused = "paused"
    completed = "completed"
    cancelled = "cancelled"


class ExecutionStatus(str, Enum):
    pending = "pending"
    deposited = "deposited"
    completed = "completed"
    failed = "failed"


# Executions whose amount counts against the plan's progress.
COUNTED_STATUSES = frozenset({ExecutionStatus.deposited.value, ExecutionStatus.completed.value})

SETTLED_OK = frozenset({"SUCCESS", "COMPLETED"})
SETTLED_FAILED = frozenset({"FAILED", "REFUNDED"})


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Decimal:
    """Parse an amount; falls back to ``default`` (or raises) on bad input."""
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        if default is not None:
            return default
        raise ValueError(f"invalid decimal: {value!r}") from None
    if not d.is_finite():
        if default is not None:
            return default
        raise ValueError(f"invalid decimal: {value!r}")
    return d


def format_amount(value: Decimal) -> str:
    return format(value.quantize(AMOUNT_PLACES), "f")


def today_str(now: Optional[datetime] = None) -> str:
    """Wall-clock (local) calendar date used for the daily cap."""
    return (now or datetime.now()).strftime(DATE_FORMAT)


def local_date_str(ts: datetime) -> str:
    if ts.tzinfo is not None:
        ts = ts.astimezone()
    return ts.strftime(DATE_FORMAT)


class Execution(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True, validate_assignment=True)

    id: str = ""
    timestamp: Optional[datetime] = None
    amount: str
    trigger_price: str = ""
    actual_price: str = ""
    deposit_address: str = ""
    tx_hash: str = ""
    status: ExecutionStatus = ExecutionStatus.pending
    error_message: str = ""
    estimated_output: str = ""
    actual_output: str = ""
    destination_tx_hash: str = ""
    completion_time: Optional[datetime] = None
    swap_status: str = ""

    @property
    def counted(self) -> bool:
        return self.status in COUNTED_STATUSES

    @property
    def amount_decimal(self) -> Decimal:
        return to_decimal(self.amount, Decimal(0))


class PlanSummary(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    name: str
    source_token: str
    dest_token: str
    total_amount: str
    remaining_amount: str
    trigger_price: str
    price_condition: PriceCondition
    status: PlanStatus
    execution_count: int
    created: datetime


class Plan(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True, validate_assignment=True)

    # Identity
    name: str
    description: str = ""
    created: datetime = Field(default_factory=utc_now)
    last_updated: datetime = Field(default_factory=utc_now)

    # Strategy
    source_token: str
    dest_token: str
    source_chain: str
    dest_chain: str
    total_amount: str
    amount_per_trade: str
    amount_per_day: str
    trigger_price: str
    price_condition: PriceCondition
    recipient_addr: str
    refund_addr: str = ""

    # Progress
    status: PlanStatus = PlanStatus.paused
    total_executed: str = "0"
    remaining_amount: str = "0"
    execution_history: List[Execution] = Field(default_factory=list)
    execution_count: int = 0
    last_execution_date: str = ""
    today_executed: str = "0"

    @property
    def is_active(self) -> bool:
        return self.status == PlanStatus.active

    @property
    def is_completed(self) -> bool:
        return self.status == PlanStatus.completed

    def can_execute(self) -> bool:
        return self.is_active and to_decimal(self.remaining_amount, Decimal(0)) > 0

    def today_executed_amount(self, today: Optional[str] = None) -> Decimal:
        if self.last_execution_date != (today or today_str()):
            return Decimal(0)
        return to_decimal(self.today_executed, Decimal(0))

    def remaining_daily_amount(self, today: Optional[str] = None) -> Decimal:
        """How much can still be executed on ``today``; never negative."""
        remaining = to_decimal(self.amount_per_day, Decimal(0)) - self.today_executed_amount(today)
        return remaining if remaining > 0 else Decimal(0)

    def can_execute_today(self, today: Optional[str] = None) -> bool:
        if not self.can_execute():
            return False
        return self.remaining_daily_amount(today) > 0

    def find_execution(self, execution_id: str) -> Optional[Execution]:
        return next((e for e in self.execution_history if e.id == execution_id), None)

    def to_summary(self) -> PlanSummary:
        return PlanSummary(
            name=self.name,
            source_token=self.source_token,
            dest_token=self.dest_token,
            total_amount=self.total_amount,
            remaining_amount=self.remaining_amount,
            trigger_price=self.trigger_price,
            price_condition=self.price_condition,
            status=self.status,
            execution_count=self.execution_count,
            created=self.created,
        )


class PlanStats(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    plan_name: str
    status: PlanStatus
    source_token: str
    dest_token: str
    total_swaps: int
    completed_swaps: int
    pending_swaps: int
    total_deposited: str
    total_received: str
    remaining_amount: str
    page: int = 1
    page_size: int = 10
    total_pages: int = 0
    transactions: List[Execution] = Field(default_factory=list)


__all__ = [
    "AMOUNT_TOLERANCE",
    "AT_PRICE_TOLERANCE",
    "COUNTED_STATUSES",
    "Execution",
    "ExecutionStatus",
    "Plan",
    "PlanStats",
    "PlanStatus",
    "PlanSummary",
    "PriceCondition",
    "SETTLED_FAILED",
    "SETTLED_OK",
    "format_amount",
    "local_date_str",
    "to_decimal",
    "today_str",
]
