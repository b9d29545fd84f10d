"""Audit logging helpers.

Every scheduler decision and side effect is emitted as a structured audit
event: an event type plus a JSON payload, written through stdlib ``logging``.
Plan state itself lives in the store; the audit stream is for operators.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    """UTC timestamp helper."""
    return datetime.now(timezone.utc)


def configure_logging(level: str = "INFO") -> None:
    """Configure one stdout format for the whole process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stdout,
        force=True,
    )
    # apscheduler logs every job run at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def jsonify(value: Any) -> Any:
    """Best-effort conversion to JSON-safe types."""
    # pylint: disable=too-many-return-statements,broad-exception-caught
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except Exception:
            return value.hex()
    if isinstance(value, (list, tuple, set)):
        return [jsonify(v) for v in value]
    if isinstance(value, dict):
        return {str(k): jsonify(v) for k, v in value.items()}
    # Pydantic v2
    if hasattr(value, "model_dump"):
        try:
            return jsonify(value.model_dump(mode="json"))
        except Exception:
            pass
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    try:
        return jsonify(vars(value))
    except Exception:
        return str(value)


@dataclass(frozen=True)
class AuditContext:
    component: Optional[str] = None
    plan_name: Optional[str] = None
    execution_id: Optional[str] = None


class AuditManager:
    """Thin structured-event wrapper over a stdlib logger."""

    def __init__(self, name: str = "near_swap"):
        self.logger = logging.getLogger(name)

    def log(
        self,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        ctx: Optional[AuditContext] = None,
        level: int = logging.INFO,
        plan_name: Optional[str] = None,
        execution_id: Optional[str] = None,
    ) -> None:
        c = ctx or AuditContext()
        record: Dict[str, Any] = {"event": event_type}
        if c.component:
            record["component"] = c.component
        if plan_name or c.plan_name:
            record["plan"] = plan_name or c.plan_name
        if execution_id or c.execution_id:
            record["execution_id"] = execution_id or c.execution_id
        if payload:
            record["payload"] = jsonify(payload)
        try:
            self.logger.log(level, json.dumps(record, sort_keys=True, default=str))
        except Exception:  # pylint: disable=broad-exception-caught
            # Best-effort: never fail a scheduler loop due to audit logging.
            return

    def warning(self, event_type: str, payload: Optional[Dict[str, Any]] = None, **kwargs: Any) -> None:
        self.log(event_type, payload, level=logging.WARNING, **kwargs)

    def error(self, event_type: str, payload: Optional[Dict[str, Any]] = None, **kwargs: Any) -> None:
        self.log(event_type, payload, level=logging.ERROR, **kwargs)

    def debug(self, event_type: str, payload: Optional[Dict[str, Any]] = None, **kwargs: Any) -> None:
        self.log(event_type, payload, level=logging.DEBUG, **kwargs)


__all__ = ["AuditContext", "AuditManager", "configure_logging", "jsonify", "utc_now"]
