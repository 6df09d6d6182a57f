"""Persistent audit record of each pipeline run."""

import logging
from datetime import date, datetime, timezone
from typing import Any, Optional

from .errors import StorageError
from .models import RunLog, RunStatus
from .storage.base import RowStore

logger = logging.getLogger(__name__)

RUN_LOG_TABLE = "riyad_statement_auto_imports"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunLogRecorder:
    """Creates, updates and finalizes one RunLog row.

    Once the log reaches a terminal status it is frozen: later update() or
    finish() calls are ignored with a warning. Storage errors are logged and
    never propagate, the in-memory log stays authoritative for the run.
    """

    def __init__(self, store: RowStore, table: str = RUN_LOG_TABLE):
        self.store = store
        self.table = table
        self.log = RunLog()
        self._row_id = None  # As returned by the store (int or uuid)

    def start(self, target_date: Optional[date], is_manual: bool) -> RunLog:
        """Create the record with status processing."""
        now = _utcnow()
        self.log = RunLog(
            status=RunStatus.PROCESSING,
            current_step="starting",
            target_date=target_date,
            is_manual=is_manual,
            created_at=now,
            updated_at=now,
        )

        row = self.log.model_dump(mode="json", exclude={"id"}, exclude_none=True)
        try:
            stored = self.store.insert_rows(self.table, [row])
        except StorageError as e:
            logger.error(f"Could not create run log: {e}")
            return self.log

        if stored and stored[0].get("id") is not None:
            self._row_id = stored[0]["id"]
            self.log.id = str(self._row_id)
        logger.info(f"Run log {self.log.id} created for {target_date}")
        return self.log

    def update(self, **fields: Any) -> RunLog:
        """Apply and persist field changes while the run is still processing."""
        if self.log.status.is_terminal:
            logger.warning(f"Run log already {self.log.status.value}, ignoring update {sorted(fields)}")
            return self.log
        if "status" in fields and RunStatus(fields["status"]).is_terminal:
            raise ValueError("Use finish() to set a terminal status")
        return self._apply(fields)

    def finish(self, status: RunStatus, **fields: Any) -> RunLog:
        """Set a terminal status (plus final fields). Only the first call wins."""
        if self.log.status.is_terminal:
            logger.warning(f"Run log already {self.log.status.value}, ignoring finish({status.value})")
            return self.log
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")

        self._apply({**fields, "status": status})
        logger.info(f"Run log {self.log.id} finished: {status.value}")
        return self.log

    def _apply(self, fields: dict[str, Any]) -> RunLog:
        fields = {**fields, "updated_at": _utcnow()}
        for name, value in fields.items():
            setattr(self.log, name, value)

        if self._row_id is None:
            return self.log

        values = self.log.model_dump(mode="json", include=set(fields))
        try:
            self.store.update_where(self.table, values, {"id": self._row_id})
        except StorageError as e:
            logger.error(f"Could not update run log {self.log.id}: {e}")
        return self.log
