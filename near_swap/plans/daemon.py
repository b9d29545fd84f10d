"""Process loop around the scheduler.

Supports:
- run once (one price check per active plan plus one settlement pass)
- run continuously until SIGINT/SIGTERM
"""

from __future__ import annotations

import asyncio
import signal
from typing import Dict, Optional

from near_swap.data.audit import AuditContext, AuditManager
from near_swap.plans.executor import PlanExecutor

_CTX = AuditContext(component="daemon")


async def run_once(*, executor: PlanExecutor, audit: Optional[AuditManager] = None) -> Dict[str, Optional[str]]:
    """Returns ``{plan_name: execution_id or None}`` for the active plans checked."""
    audit = audit or AuditManager("near_swap.plans.daemon")
    results: Dict[str, Optional[str]] = {}
    for plan in executor.manager.active_plans():
        try:
            results[plan.name] = await executor.check_and_execute(plan.name)
        except Exception as e:  # pylint: disable=broad-exception-caught
            audit.error("plan_check_error", {"error": e}, ctx=_CTX, plan_name=plan.name)
            results[plan.name] = None
    checked = await executor.verify_pending()
    audit.log(
        "run_once_complete",
        {"plans": len(results), "trades": sum(1 for v in results.values() if v), "verified": checked},
        ctx=_CTX,
    )
    return results


async def run_forever(
    *,
    executor: PlanExecutor,
    stop_event: Optional[asyncio.Event] = None,
    audit: Optional[AuditManager] = None,
) -> None:
    audit = audit or AuditManager("near_swap.plans.daemon")
    stop_event = stop_event or asyncio.Event()

    def _request_stop(*_args: object) -> None:
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop)
        except (NotImplementedError, RuntimeError):
            signal.signal(sig, lambda *_a: loop.call_soon_threadsafe(_request_stop))

    await executor.start()
    audit.log("daemon_start", {"plans": executor.running_plans()}, ctx=_CTX)
    try:
        await stop_event.wait()
    finally:
        await executor.stop()
        # Every plan mutation was already persisted by the store.
        audit.log("daemon_stop", ctx=_CTX)


__all__ = ["run_forever", "run_once"]
