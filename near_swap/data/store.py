"""JSON-file persistence for plans.

The whole plan set is one document ``{"plans": {name: plan}}``. Every mutation
rewrites a temp file next to the target and atomically replaces it, so a crash
mid-write leaves either the old or the new document on disk, never a torn one.

One lock guards the in-memory map. Writers hold it only to mutate the map and
take a snapshot; file I/O happens after release under a separate I/O lock.
Snapshots carry a version so an older snapshot never overwrites a newer one.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from near_swap.plans.schemas import Plan, PlanStatus

DEFAULT_STORAGE_FILENAME = ".near-swap-plans.json"


class StoreError(RuntimeError):
    """Persistence failure (unreadable document, disk write failure)."""


class PlanNotFoundError(LookupError):
    def __init__(self, name: str):
        super().__init__(f"plan '{name}' not found")
        self.name = name


class PlanExistsError(ValueError):
    def __init__(self, name: str):
        super().__init__(f"plan '{name}' already exists")
        self.name = name


def default_storage_path() -> Path:
    return Path.home() / DEFAULT_STORAGE_FILENAME


class PlanStore:
    """Thread-safe plan map backed by one atomically-replaced JSON file."""

    def __init__(self, file_path: Optional[Union[str, Path]] = None):
        self.file_path = Path(file_path).expanduser() if file_path else default_storage_path()
        self._lock = threading.RLock()
        self._io_lock = threading.Lock()
        self._plans: Dict[str, Plan] = {}
        self._version = 0
        self._flushed_version = 0
        self._load()

    def _load(self) -> None:
        if not self.file_path.exists():
            return
        try:
            raw = self.file_path.read_text(encoding="utf-8")
        except OSError as e:
            raise StoreError(f"failed to read plans from {self.file_path}: {e}") from e
        if not raw.strip():
            return
        try:
            doc = json.loads(raw)
            plans = {
                str(name): Plan.model_validate(body)
                for name, body in ((doc or {}).get("plans") or {}).items()
            }
        except (json.JSONDecodeError, ValidationError, AttributeError) as e:
            raise StoreError(f"failed to parse plans in {self.file_path}: {e}") from e
        with self._lock:
            self._plans = plans

    def _snapshot(self) -> Tuple[int, str]:
        # Caller holds self._lock.
        self._version += 1
        doc = {"plans": {name: plan.model_dump(mode="json") for name, plan in self._plans.items()}}
        return self._version, json.dumps(doc, indent=2, sort_keys=True)

    def _write(self, version: int, payload: str) -> None:
        with self._io_lock:
            if version <= self._flushed_version:
                return
            tmp = self.file_path.with_name(self.file_path.name + ".tmp")
            try:
                self.file_path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, self.file_path)
            except OSError as e:
                raise StoreError(f"failed to write plans to {self.file_path}: {e}") from e
            self._flushed_version = version

    def get(self, name: str) -> Plan:
        with self._lock:
            plan = self._plans.get(name)
            if plan is None:
                raise PlanNotFoundError(name)
            return plan.model_copy(deep=True)

    def list(self) -> List[Plan]:
        with self._lock:
            plans = [p.model_copy(deep=True) for p in self._plans.values()]
        return sorted(plans, key=lambda p: (p.created, p.name))

    def list_where(self, status: Union[PlanStatus, str]) -> List[Plan]:
        wanted = status.value if isinstance(status, PlanStatus) else str(status)
        return [p for p in self.list() if p.status == wanted]

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._plans

    def count(self) -> int:
        with self._lock:
            return len(self._plans)

    def create(self, plan: Plan) -> None:
        with self._lock:
            if plan.name in self._plans:
                raise PlanExistsError(plan.name)
            self._plans[plan.name] = plan.model_copy(deep=True)
            version, payload = self._snapshot()
        self._write(version, payload)

    def update(self, plan: Plan) -> None:
        with self._lock:
            if plan.name not in self._plans:
                raise PlanNotFoundError(plan.name)
            self._plans[plan.name] = plan.model_copy(deep=True)
            version, payload = self._snapshot()
        self._write(version, payload)

    def delete(self, name: str) -> None:
        with self._lock:
            if name not in self._plans:
                raise PlanNotFoundError(name)
            del self._plans[name]
            version, payload = self._snapshot()
        self._write(version, payload)


__all__ = [
    "DEFAULT_STORAGE_FILENAME",
    "PlanExistsError",
    "PlanNotFoundError",
    "PlanStore",
    "StoreError",
    "default_storage_path",
]
