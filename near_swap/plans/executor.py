"""Plan scheduler.

One asyncio task per active plan polls the price and dispatches partial
trades. Two APScheduler interval jobs run alongside:

- ``plan_reconcile``: start monitors for plans activated elsewhere, stop
  monitors whose plan was stopped, cancelled, completed or deleted
- ``swap_verification``: poll settlement for recent pending/deposited trades

Every successful deposit also gets a short-lived fast verifier. Blocking
quote and wallet calls run in worker threads so one slow plan never delays
another.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import ROUND_DOWN, Decimal
from typing import Dict, List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from near_swap.data.audit import AuditContext, AuditManager, utc_now
from near_swap.data.store import PlanNotFoundError, StoreError
from near_swap.execution.schemas import Depositor, Quote, QuoteService, SwapRequest
from near_swap.plans.manager import ExecutionNotFoundError, PlanManager
from near_swap.plans.pricer import PriceInfo, Pricer, PricingError, price_from_amounts
from near_swap.plans.schemas import (
    AMOUNT_PLACES,
    SETTLED_FAILED,
    SETTLED_OK,
    Execution,
    ExecutionStatus,
    Plan,
    format_amount,
    to_decimal,
)

VERIFIABLE_STATUSES = frozenset({ExecutionStatus.pending.value, ExecutionStatus.deposited.value})


@dataclass(frozen=True)
class ExecutorConfig:
    check_interval_s: float = 30.0
    min_check_interval_s: float = 10.0  # quote API rate limits
    reload_interval_s: float = 60.0
    verify_interval_s: float = 45.0
    fast_verify_interval_s: float = 30.0
    fast_verify_max_attempts: int = 120
    verify_lookback_hours: float = 24.0


class ExecutorError(RuntimeError):
    pass


@dataclass
class _PlanMonitor:
    plan_name: str
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def trade_amount(plan: Plan) -> Decimal:
    """Smallest of one trade, what is left today, and what is left overall."""
    return min(
        to_decimal(plan.amount_per_trade, Decimal(0)),
        plan.remaining_daily_amount(),
        to_decimal(plan.remaining_amount, Decimal(0)),
    )


class PlanExecutor:
    def __init__(
        self,
        *,
        manager: PlanManager,
        quote_service: QuoteService,
        depositor: Optional[Depositor] = None,
        config: Optional[ExecutorConfig] = None,
        audit: Optional[AuditManager] = None,
    ):
        self.manager = manager
        self.quote_service = quote_service
        self.depositor = depositor
        self.config = config or ExecutorConfig()
        self.pricer = Pricer(quote_service)
        self.audit = audit or AuditManager("near_swap.plans.executor")
        self._ctx = AuditContext(component="executor")

        self._check_interval_s = max(self.config.check_interval_s, self.config.min_check_interval_s)
        self._monitors: Dict[str, _PlanMonitor] = {}
        self._retiring: Dict[str, asyncio.Task] = {}
        self._verifiers: Set[asyncio.Task] = set()
        self._stop_event: Optional[asyncio.Event] = None
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    # ---- lifecycle ----------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def check_interval_s(self) -> float:
        return self._check_interval_s

    def set_check_interval(self, seconds: float) -> None:
        """Takes effect at each monitor's next wait; clamped to the minimum."""
        self._check_interval_s = max(float(seconds), self.config.min_check_interval_s)

    async def start(self) -> None:
        if self._running:
            raise ExecutorError("executor is already running")

        active = await asyncio.to_thread(self.manager.active_plans)
        self._stop_event = asyncio.Event()
        self._running = True
        for plan in active:
            self._spawn_monitor(plan.name)

        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self.reconcile,
            trigger="interval",
            seconds=self.config.reload_interval_s,
            id="plan_reconcile",
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.verify_pending,
            trigger="interval",
            seconds=self.config.verify_interval_s,
            id="swap_verification",
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler

        self.audit.log(
            "executor_start",
            {
                "plans": sorted(self._monitors),
                "check_interval_s": self._check_interval_s,
                "auto_deposit": self.depositor is not None,
            },
            ctx=self._ctx,
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        monitors = list(self._monitors.values())
        self._monitors.clear()
        for mon in monitors:
            mon.stop_event.set()

        tasks = [m.task for m in monitors if m.task is not None]
        tasks += list(self._retiring.values()) + list(self._verifiers)
        current = asyncio.current_task()
        tasks = [t for t in tasks if t is not current]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.audit.log("executor_stop", {"plans": [m.plan_name for m in monitors]}, ctx=self._ctx)

    # ---- plan monitors ------------------------------------------------------

    def running_plans(self) -> List[str]:
        return sorted(self._monitors)

    def is_plan_running(self, name: str) -> bool:
        return name in self._monitors

    def start_plan(self, name: str) -> None:
        if not self._running:
            raise ExecutorError("executor is not running")
        if name in self._monitors:
            raise ExecutorError(f"plan '{name}' is already running")
        if self._is_retiring(name):
            raise ExecutorError(f"plan '{name}' is still stopping")
        plan = self.manager.get_plan(name)
        if not plan.is_active:
            raise ExecutorError(f"plan '{name}' is not active")
        self._spawn_monitor(name)

    def stop_plan(self, name: str) -> None:
        if name not in self._monitors:
            raise ExecutorError(f"plan '{name}' is not running")
        self._retire_monitor(name)

    def _spawn_monitor(self, name: str) -> None:
        mon = _PlanMonitor(plan_name=name)
        mon.task = asyncio.create_task(self._monitor(mon), name=f"plan-monitor:{name}")
        self._monitors[name] = mon
        self.audit.log("plan_monitor_started", ctx=self._ctx, plan_name=name)

    def _retire_monitor(self, name: str) -> None:
        # Never awaits: may be called from inside the monitor's own task.
        mon = self._monitors.pop(name, None)
        if mon is None:
            return
        mon.stop_event.set()
        task = mon.task
        if task is not None and not task.done():
            # Held until the tick in flight finishes; no respawn before then.
            self._retiring[name] = task
            task.add_done_callback(lambda t, n=name: self._forget_retired(n, t))
        self.audit.log("plan_monitor_stopped", ctx=self._ctx, plan_name=name)

    def _forget_retired(self, name: str, task: asyncio.Task) -> None:
        if self._retiring.get(name) is task:
            del self._retiring[name]

    def _is_retiring(self, name: str) -> bool:
        task = self._retiring.get(name)
        return task is not None and not task.done()

    async def _monitor(self, mon: _PlanMonitor) -> None:
        while not mon.stop_event.is_set():
            try:
                await asyncio.wait_for(mon.stop_event.wait(), timeout=self._check_interval_s)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self.check_and_execute(mon.plan_name)
            except Exception as e:  # pylint: disable=broad-exception-caught
                # Store/registry failures: retry next tick.
                self.audit.error(
                    "plan_check_error",
                    {"error": e},
                    ctx=self._ctx,
                    plan_name=mon.plan_name,
                )

    async def reconcile(self) -> None:
        if not self._running:
            return
        active = {p.name for p in await asyncio.to_thread(self.manager.active_plans)}
        running = set(self._monitors)
        for name in sorted(active - running):
            if self._is_retiring(name):
                continue
            self.audit.log("plan_detected_active", ctx=self._ctx, plan_name=name)
            self._spawn_monitor(name)
        for name in sorted(running - active):
            self.audit.log("plan_detected_inactive", ctx=self._ctx, plan_name=name)
            self._retire_monitor(name)

    # ---- trading ------------------------------------------------------------

    async def check_and_execute(self, name: str) -> Optional[str]:
        """One monitor tick. Returns the new execution id when a trade fired."""
        plan = await asyncio.to_thread(self.manager.get_plan, name)
        if not plan.can_execute_today():
            return None

        try:
            triggered, info = await asyncio.to_thread(self.pricer.should_execute, plan)
        except PricingError as e:
            self.audit.warning("price_check_failed", {"error": e}, ctx=self._ctx, plan_name=name)
            return None
        if not triggered or info is None:
            self.audit.debug(
                "price_checked",
                {"price": info.price_str if info else None, "trigger": plan.trigger_price},
                ctx=self._ctx,
                plan_name=name,
            )
            return None

        self.audit.log(
            "trigger_met",
            {"price": info.price_str, "pair": info.pair, "condition": plan.price_condition, "trigger": plan.trigger_price},
            ctx=self._ctx,
            plan_name=name,
        )
        try:
            execution_id = await self.execute_trade(plan, info)
        except ExecutorError as e:
            self.audit.warning("trade_failed", {"error": e}, ctx=self._ctx, plan_name=name)
            return None

        current = await asyncio.to_thread(self.manager.get_plan, name)
        if current.is_completed:
            self.audit.log("plan_all_trades_done", ctx=self._ctx, plan_name=name)
            self._retire_monitor(name)
        return execution_id

    async def execute_trade(self, plan: Plan, info: PriceInfo) -> str:
        # Truncate so the trade never exceeds any of the three limits.
        amount = trade_amount(plan).quantize(AMOUNT_PLACES, rounding=ROUND_DOWN)
        if amount <= 0:
            raise ExecutorError(f"nothing left to trade for plan '{plan.name}'")
        amount_str = format_amount(amount)

        request = SwapRequest(
            source_token=plan.source_token,
            dest_token=plan.dest_token,
            source_chain=plan.source_chain,
            dest_chain=plan.dest_chain,
            amount=amount_str,
            recipient_addr=plan.recipient_addr,
            refund_addr=plan.refund_addr,
            dry=False,
        )
        try:
            quote: Quote = await asyncio.to_thread(self.quote_service.get_quote, request)
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise ExecutorError(f"failed to get quote: {e}") from e
        if not quote.deposit_address:
            raise ExecutorError("quote returned no deposit address")

        try:
            actual_price = price_from_amounts(quote.amount_in, quote.amount_out)
        except PricingError:
            actual_price = info.price

        execution_id = await asyncio.to_thread(
            self.manager.add_execution,
            plan.name,
            Execution(
                amount=amount_str,
                trigger_price=info.price_str,
                actual_price=format_amount(actual_price),
                deposit_address=quote.deposit_address,
                status=ExecutionStatus.pending,
                estimated_output=quote.amount_out,
            ),
        )
        self.audit.log(
            "trade_dispatched",
            {
                "amount": amount_str,
                "source_token": plan.source_token,
                "dest_token": plan.dest_token,
                "deposit_address": quote.deposit_address,
                "estimated_output": quote.amount_out,
            },
            ctx=self._ctx,
            plan_name=plan.name,
            execution_id=execution_id,
        )

        if self.depositor is None or not self.depositor.is_enabled_for(plan.source_chain):
            self.audit.warning(
                "manual_deposit_required",
                {
                    "amount": amount_str,
                    "token": plan.source_token,
                    "chain": plan.source_chain,
                    "deposit_address": quote.deposit_address,
                    "memo": quote.memo,
                },
                ctx=self._ctx,
                plan_name=plan.name,
                execution_id=execution_id,
            )
            return execution_id

        try:
            txid = await asyncio.to_thread(self.depositor.send, plan.source_chain, quote.deposit_address, amount_str)
        except Exception as e:  # pylint: disable=broad-exception-caught
            await asyncio.to_thread(
                self.manager.update_execution_status,
                plan.name,
                execution_id,
                ExecutionStatus.failed,
                error=str(e),
            )
            self.audit.error(
                "deposit_failed",
                {"error": e, "deposit_address": quote.deposit_address, "amount": amount_str},
                ctx=self._ctx,
                plan_name=plan.name,
                execution_id=execution_id,
            )
            return execution_id

        await asyncio.to_thread(
            self.manager.update_execution_status,
            plan.name,
            execution_id,
            ExecutionStatus.deposited,
            tx_hash=txid,
        )
        self.audit.log(
            "deposit_confirmed",
            {"tx_hash": txid},
            ctx=self._ctx,
            plan_name=plan.name,
            execution_id=execution_id,
        )
        await self._submit_deposit(plan.name, quote.deposit_address, txid)
        self._spawn_verifier(plan.name, execution_id, quote.deposit_address)
        return execution_id

    async def _submit_deposit(self, name: str, deposit_address: str, txid: str) -> None:
        submit = getattr(self.quote_service, "submit_deposit_tx", None)
        if submit is None:
            return
        try:
            await asyncio.to_thread(submit, deposit_address, txid)
        except Exception as e:  # pylint: disable=broad-exception-caught
            # Settlement still happens without the hint.
            self.audit.warning("deposit_submit_failed", {"error": e}, ctx=self._ctx, plan_name=name)

    # ---- settlement ---------------------------------------------------------

    async def check_swap_status(self, name: str, execution_id: str, deposit_address: str) -> bool:
        """Patch one execution from the quote API; True once settlement is terminal."""
        try:
            status = await asyncio.to_thread(self.quote_service.get_status, deposit_address)
        except Exception as e:  # pylint: disable=broad-exception-caught
            self.audit.debug(
                "swap_status_unavailable",
                {"error": e},
                ctx=self._ctx,
                plan_name=name,
                execution_id=execution_id,
            )
            return False

        dest_tx = status.destination_tx_hashes[0] if status.destination_tx_hashes else ""
        try:
            await asyncio.to_thread(
                self.manager.update_execution_settlement,
                name,
                execution_id,
                status.status,
                actual_output=status.amount_out or "",
                destination_tx_hash=dest_tx,
            )
        except (PlanNotFoundError, ExecutionNotFoundError, StoreError) as e:
            self.audit.warning(
                "settlement_update_failed",
                {"error": e},
                ctx=self._ctx,
                plan_name=name,
                execution_id=execution_id,
            )
            return False

        normalized = status.status.strip().upper()
        if normalized in SETTLED_OK:
            self.audit.log(
                "swap_completed",
                {"actual_output": status.amount_out, "destination_tx_hash": dest_tx},
                ctx=self._ctx,
                plan_name=name,
                execution_id=execution_id,
            )
            return True
        if normalized in SETTLED_FAILED:
            self.audit.warning(
                "swap_failed",
                {"swap_status": normalized},
                ctx=self._ctx,
                plan_name=name,
                execution_id=execution_id,
            )
            return True
        return False

    async def verify_pending(self) -> int:
        """Check every recent unsettled execution once; returns how many were checked."""
        cutoff = utc_now() - timedelta(hours=self.config.verify_lookback_hours)
        checked = 0
        for plan in await asyncio.to_thread(self.manager.list_plans):
            for e in plan.execution_history:
                if e.status not in VERIFIABLE_STATUSES or not e.deposit_address:
                    continue
                if e.timestamp is None or _aware(e.timestamp) < cutoff:
                    continue
                await self.check_swap_status(plan.name, e.id, e.deposit_address)
                checked += 1
        return checked

    def _spawn_verifier(self, name: str, execution_id: str, deposit_address: str) -> None:
        task = asyncio.create_task(
            self._fast_verify(name, execution_id, deposit_address),
            name=f"swap-verify:{execution_id}",
        )
        self._verifiers.add(task)
        task.add_done_callback(self._verifiers.discard)

    async def _fast_verify(self, name: str, execution_id: str, deposit_address: str) -> None:
        stop_event = self._stop_event or asyncio.Event()
        for _ in range(self.config.fast_verify_max_attempts):
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.config.fast_verify_interval_s)
                return
            except asyncio.TimeoutError:
                pass
            if await self.check_swap_status(name, execution_id, deposit_address):
                return


__all__ = ["ExecutorConfig", "ExecutorError", "PlanExecutor", "trade_amount"]
