"""Plan lifecycle: registry, pricing and the scheduler.

Import concrete modules directly, e.g.:
  - `from near_swap.plans.manager import PlanManager`
  - `from near_swap.plans.executor import PlanExecutor`
"""

__all__: list[str] = []
