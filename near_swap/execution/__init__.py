"""Execution layer (only place that talks to the quote API and wallets).

Keep this package `__init__` lightweight to avoid import cycles.
Import concrete modules directly, e.g.:
  - `from near_swap.execution.oneclick_client import OneClickClient`
  - `from near_swap.execution.deposit import DepositManager`
"""

__all__: list[str] = []
