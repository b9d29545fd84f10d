"""Plan registry: validation, lifecycle transitions and execution bookkeeping.

The manager is the only path to plan mutation. Every call is synchronous,
reads a fresh copy from the store, applies one change and writes it back.
There is no compare-and-swap across calls.

Status machine::

    paused --start--> active --stop--> paused
                      active --cancel--> cancelled   (terminal)
                      active --(remaining hits 0)--> completed   (terminal)
"""

from __future__ import annotations

import math
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Union
from uuid import uuid4

from near_swap.data.audit import AuditContext, AuditManager, utc_now
from near_swap.data.store import PlanExistsError, PlanStore
from near_swap.plans.schemas import (
    AMOUNT_TOLERANCE,
    SETTLED_FAILED,
    SETTLED_OK,
    Execution,
    ExecutionStatus,
    Plan,
    PlanStats,
    PlanStatus,
    PriceCondition,
    format_amount,
    local_date_str,
    to_decimal,
    today_str,
)


class PlanValidationError(ValueError):
    pass


class PlanStateError(RuntimeError):
    """Raised when a lifecycle transition is not allowed from the current status."""


class ExecutionNotFoundError(LookupError):
    def __init__(self, plan_name: str, execution_id: str):
        super().__init__(f"execution '{execution_id}' not found in plan '{plan_name}'")
        self.plan_name = plan_name
        self.execution_id = execution_id


def validate_amount(amount: str, label: str) -> Decimal:
    if amount is None or str(amount).strip() == "":
        raise PlanValidationError(f"invalid {label}: amount cannot be empty")
    try:
        value = to_decimal(amount)
    except ValueError as e:
        raise PlanValidationError(f"invalid {label}: invalid amount format {amount!r}") from e
    if value <= 0:
        raise PlanValidationError(f"invalid {label}: amount must be greater than 0")
    return value


def _require(value: str, message: str) -> str:
    value = (value or "").strip()
    if not value:
        raise PlanValidationError(message)
    return value


def _adjust(amount: str, delta: Decimal) -> Decimal:
    out = to_decimal(amount, Decimal(0)) + delta
    return out if out > 0 else Decimal(0)


class PlanManager:
    def __init__(
        self,
        store: Optional[PlanStore] = None,
        *,
        storage_path: Optional[Union[str, Path]] = None,
        audit: Optional[AuditManager] = None,
    ):
        self.store = store or PlanStore(storage_path)
        self.audit = audit or AuditManager("near_swap.plans.manager")
        self._ctx = AuditContext(component="manager")

    # ---- CRUD ---------------------------------------------------------------

    def create_plan(
        self,
        name: str,
        *,
        source_token: str,
        dest_token: str,
        source_chain: str,
        dest_chain: str,
        total_amount: str,
        amount_per_trade: str,
        amount_per_day: str,
        trigger_price: str,
        price_condition: Union[PriceCondition, str],
        recipient_addr: str,
        refund_addr: str = "",
        description: str = "",
    ) -> Plan:
        """Validate and persist a new plan in ``paused`` status."""
        name = _require(name, "plan name is required")
        if self.store.exists(name):
            raise PlanExistsError(name)

        total = validate_amount(total_amount, "total amount")
        per_trade = validate_amount(amount_per_trade, "amount per trade")
        per_day = validate_amount(amount_per_day, "amount per day")
        validate_amount(trigger_price, "trigger price")

        if per_trade > per_day:
            raise PlanValidationError("amount per trade cannot be greater than amount per day")
        if per_day > total:
            raise PlanValidationError("amount per day cannot be greater than total amount")

        try:
            condition = PriceCondition(str(getattr(price_condition, "value", price_condition)).strip().lower())
        except ValueError:
            raise PlanValidationError("price condition must be 'above', 'below', or 'at'") from None

        now = utc_now()
        plan = Plan(
            name=name,
            description=description or "",
            created=now,
            last_updated=now,
            source_token=_require(source_token, "source token is required"),
            dest_token=_require(dest_token, "destination token is required"),
            source_chain=_require(source_chain, "source chain is required"),
            dest_chain=_require(dest_chain, "destination chain is required"),
            total_amount=str(total_amount).strip(),
            amount_per_trade=str(amount_per_trade).strip(),
            amount_per_day=str(amount_per_day).strip(),
            trigger_price=str(trigger_price).strip(),
            price_condition=condition,
            recipient_addr=_require(recipient_addr, "recipient address is required"),
            refund_addr=(refund_addr or "").strip(),
            status=PlanStatus.paused,
            total_executed="0",
            remaining_amount=str(total_amount).strip(),
            execution_history=[],
            execution_count=0,
            last_execution_date="",
            today_executed="0",
        )
        self.store.create(plan)
        self.audit.log("plan_created", {"summary": plan.to_summary()}, ctx=self._ctx, plan_name=name)
        return plan

    def get_plan(self, name: str) -> Plan:
        return self.store.get(name)

    def list_plans(self) -> List[Plan]:
        return self.store.list()

    def list_plans_by_status(self, status: Union[PlanStatus, str]) -> List[Plan]:
        return self.store.list_where(status)

    def active_plans(self) -> List[Plan]:
        return self.store.list_where(PlanStatus.active)

    def update_plan(self, plan: Plan) -> None:
        plan.last_updated = utc_now()
        self.store.update(plan)

    def delete_plan(self, name: str) -> None:
        plan = self.store.get(name)
        if plan.is_active:
            raise PlanStateError(f"cannot delete active plan '{name}', stop it first")
        self.store.delete(name)
        self.audit.log("plan_deleted", {"status": plan.status}, ctx=self._ctx, plan_name=name)

    # ---- lifecycle ----------------------------------------------------------

    def start_plan(self, name: str) -> Plan:
        plan = self.store.get(name)
        if plan.is_active:
            raise PlanStateError(f"plan '{name}' is already active")
        if plan.status == PlanStatus.completed:
            raise PlanStateError(f"plan '{name}' has already completed all trades")
        if plan.status == PlanStatus.cancelled:
            raise PlanStateError(f"plan '{name}' was cancelled")
        if to_decimal(plan.remaining_amount, Decimal(0)) <= AMOUNT_TOLERANCE:
            raise PlanStateError(f"plan '{name}' has nothing left to execute")
        return self._set_status(plan, PlanStatus.active)

    def stop_plan(self, name: str) -> Plan:
        plan = self.store.get(name)
        if not plan.is_active:
            raise PlanStateError(f"plan '{name}' is not active")
        return self._set_status(plan, PlanStatus.paused)

    def cancel_plan(self, name: str) -> Plan:
        plan = self.store.get(name)
        if not plan.is_active:
            raise PlanStateError(f"plan '{name}' is not active")
        return self._set_status(plan, PlanStatus.cancelled)

    def _set_status(self, plan: Plan, status: PlanStatus) -> Plan:
        previous = plan.status
        plan.status = status
        self.update_plan(plan)
        self.audit.log(
            "plan_status_changed",
            {"from": previous, "to": status},
            ctx=self._ctx,
            plan_name=plan.name,
        )
        return plan

    # ---- executions ---------------------------------------------------------

    def add_execution(self, name: str, execution: Execution) -> str:
        """Append an execution and return its id.

        A ``deposited``/``completed`` execution counts against the plan
        immediately; a ``pending`` one counts once it is patched into a
        counted status.
        """
        plan = self.store.get(name)

        execution = execution.model_copy(deep=True)
        execution.id = str(uuid4())
        execution.timestamp = utc_now()
        plan.execution_history.append(execution)
        plan.execution_count += 1

        today = today_str()
        if plan.last_execution_date != today:
            plan.last_execution_date = today
            plan.today_executed = "0"

        if execution.counted:
            self._apply_progress(plan, execution, execution.amount_decimal)

        self.update_plan(plan)
        self.audit.log(
            "execution_recorded",
            {"amount": execution.amount, "status": execution.status, "plan_status": plan.status},
            ctx=self._ctx,
            plan_name=name,
            execution_id=execution.id,
        )
        return execution.id

    def update_execution_status(
        self,
        name: str,
        execution_id: str,
        status: Union[ExecutionStatus, str],
        tx_hash: str = "",
        error: str = "",
    ) -> Execution:
        plan = self.store.get(name)
        execution = plan.find_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(name, execution_id)

        was_counted = execution.counted
        execution.status = status
        if tx_hash:
            execution.tx_hash = tx_hash
        if error:
            execution.error_message = error
        self._on_count_change(plan, execution, was_counted)

        self.update_plan(plan)
        return execution

    def update_execution_settlement(
        self,
        name: str,
        execution_id: str,
        swap_status: str,
        actual_output: str = "",
        destination_tx_hash: str = "",
    ) -> Execution:
        """Patch an execution with the quote API's settlement view."""
        plan = self.store.get(name)
        execution = plan.find_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(name, execution_id)

        was_counted = execution.counted
        execution.swap_status = swap_status
        if actual_output:
            execution.actual_output = actual_output
        if destination_tx_hash:
            execution.destination_tx_hash = destination_tx_hash

        normalized = (swap_status or "").strip().upper()
        if normalized in SETTLED_OK:
            execution.status = ExecutionStatus.completed
            execution.completion_time = utc_now()
        elif normalized in SETTLED_FAILED:
            execution.status = ExecutionStatus.failed
        self._on_count_change(plan, execution, was_counted)

        self.update_plan(plan)
        return execution

    def _on_count_change(self, plan: Plan, execution: Execution, was_counted: bool) -> None:
        if execution.counted == was_counted:
            return
        amount = execution.amount_decimal
        self._apply_progress(plan, execution, amount if execution.counted else -amount)

    def _apply_progress(self, plan: Plan, execution: Execution, delta: Decimal) -> None:
        total = to_decimal(plan.total_amount, Decimal(0))
        executed = _adjust(plan.total_executed, delta)
        remaining = total - executed
        plan.total_executed = format_amount(executed)
        plan.remaining_amount = format_amount(remaining if remaining > 0 else Decimal(0))

        # Only the current day's bucket is tracked.
        stamp = execution.timestamp
        if stamp is not None and local_date_str(stamp) == plan.last_execution_date:
            plan.today_executed = format_amount(_adjust(plan.today_executed, delta))

        if remaining <= AMOUNT_TOLERANCE and plan.is_active:
            plan.status = PlanStatus.completed
            plan.remaining_amount = "0"
            self.audit.log(
                "plan_completed",
                {"total_executed": plan.total_executed},
                ctx=self._ctx,
                plan_name=plan.name,
            )

    # ---- reporting ----------------------------------------------------------

    def execution_history(self, name: str) -> List[Execution]:
        return self.store.get(name).execution_history

    def plan_stats(self, name: str, *, page: int = 1, page_size: int = 10) -> PlanStats:
        """Aggregate totals plus one page of executions, newest first."""
        plan = self.store.get(name)
        history = plan.execution_history

        completed = sum(1 for e in history if e.status == ExecutionStatus.completed)
        deposited = sum((e.amount_decimal for e in history), Decimal(0))
        received = sum(
            (to_decimal(e.actual_output, Decimal(0)) for e in history if e.actual_output),
            Decimal(0),
        )

        page_size = max(1, int(page_size))
        total_pages = math.ceil(len(history) / page_size) if history else 0
        page = min(max(1, int(page)), max(1, total_pages))
        newest_first = list(reversed(history))
        start = (page - 1) * page_size

        return PlanStats(
            plan_name=plan.name,
            status=plan.status,
            source_token=plan.source_token,
            dest_token=plan.dest_token,
            total_swaps=len(history),
            completed_swaps=completed,
            pending_swaps=len(history) - completed,
            total_deposited=format_amount(deposited),
            total_received=format_amount(received),
            remaining_amount=plan.remaining_amount,
            page=page,
            page_size=page_size,
            total_pages=total_pages,
            transactions=newest_first[start : start + page_size],
        )


__all__ = [
    "ExecutionNotFoundError",
    "PlanManager",
    "PlanStateError",
    "PlanValidationError",
    "validate_amount",
]
