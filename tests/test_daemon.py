import asyncio

from conftest import FakeQuoteService, create_plan
from near_swap.plans.daemon import run_forever, run_once
from near_swap.plans.executor import ExecutorConfig, PlanExecutor
from near_swap.plans.schemas import ExecutionStatus

IDLE = ExecutorConfig(check_interval_s=3600, reload_interval_s=3600, verify_interval_s=3600, fast_verify_max_attempts=0)


def run_async(coro):
    return asyncio.run(coro)


def test_run_once_checks_active_plans_and_verifies(manager, depositor):
    create_plan(manager, name="fires")
    create_plan(manager, name="waits", trigger_price="1000")
    create_plan(manager, name="paused")
    manager.start_plan("fires")
    manager.start_plan("waits")
    quotes = FakeQuoteService(price="2900")
    executor = PlanExecutor(manager=manager, quote_service=quotes, depositor=depositor, config=IDLE)

    results = run_async(run_once(executor=executor))

    assert set(results) == {"fires", "waits"}
    assert results["waits"] is None
    execution = manager.get_plan("fires").find_execution(results["fires"])
    assert execution.status == ExecutionStatus.deposited
    # the fresh deposit was polled once by the verification pass
    assert quotes.status_calls == ["dep-addr-1"]


def test_run_forever_stops_on_event(manager, quotes):
    create_plan(manager)
    manager.start_plan("btc-dca")
    executor = PlanExecutor(manager=manager, quote_service=quotes, config=IDLE)

    async def _test():
        stop_event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, stop_event.set)
        await run_forever(executor=executor, stop_event=stop_event)

    run_async(_test())
    assert not executor.is_running
    assert executor.running_plans() == []
