"""Data layer package.

Keep this package `__init__` lightweight to avoid import cycles.
Import concrete modules directly, e.g.:
  - `from near_swap.data.store import PlanStore`
  - `from near_swap.data.audit import AuditManager`
"""

__all__: list[str] = []
