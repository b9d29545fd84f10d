"""Run the near-swap plan scheduler (daemon entrypoint).

Defaults:
- Plans are read from ``~/.near-swap-plans.json`` (override with
  NEAR_SWAP_PLAN_STORAGE_PATH or --storage-path).
- Auto-deposit is off unless NEAR_SWAP_AUTO_DEPOSIT_ENABLED and a chain
  wallet are configured; otherwise each trade logs a manual deposit request.
"""

from __future__ import annotations

import argparse
import asyncio

from dotenv import load_dotenv

from near_swap.config import load_config
from near_swap.data.audit import AuditContext, AuditManager, configure_logging
from near_swap.data.store import PlanStore
from near_swap.execution.deposit import DepositManager
from near_swap.execution.oneclick_client import OneClickClient
from near_swap.plans.daemon import run_forever, run_once
from near_swap.plans.executor import ExecutorConfig, PlanExecutor
from near_swap.plans.manager import PlanManager


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="near-swap plan scheduler")
    p.add_argument("--storage-path", default=None, help="Plan storage file (default from env/config)")
    p.add_argument(
        "--check-interval",
        type=float,
        default=None,
        help="Seconds between price checks per plan (minimum 10; default from env/config)",
    )
    p.add_argument("--log-level", default=None, help="Logging level (default from env/config)")
    p.add_argument(
        "--once",
        action="store_true",
        help="Check every active plan once, verify pending swaps, and exit.",
    )
    return p


async def _amain() -> int:
    load_dotenv()
    args = _build_arg_parser().parse_args()

    cfg = load_config()
    configure_logging(args.log_level or cfg.log_level)
    audit = AuditManager("near_swap.run")
    ctx = AuditContext(component="run")

    store = PlanStore(args.storage_path or cfg.plan_storage_path)
    manager = PlanManager(store)
    client = OneClickClient(cfg.oneclick)
    depositor = DepositManager(cfg.auto_deposit) if cfg.auto_deposit.enabled else None

    executor = PlanExecutor(
        manager=manager,
        quote_service=client,
        depositor=depositor,
        config=ExecutorConfig(check_interval_s=args.check_interval or cfg.check_interval_s),
    )

    audit.log(
        "startup",
        {
            "storage_path": str(store.file_path),
            "plans": store.count(),
            "check_interval_s": executor.check_interval_s,
            "base_url": cfg.oneclick.base_url,
            "auto_deposit_chains": depositor.supported_chains() if depositor else [],
        },
        ctx=ctx,
    )

    if args.once:
        await run_once(executor=executor)
        return 0

    await run_forever(executor=executor)
    return 0


def main() -> None:
    raise SystemExit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
