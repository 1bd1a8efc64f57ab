"""
Call history: insert-once stores of CallRecords.

At most one record exists per user. A second insert raises
PolicyViolation instead of overwriting. ``CallRecordStore`` keeps records
in memory; ``SqlCallRecordStore`` persists them through SQLAlchemy with
the primary key enforcing the same rule in the database.
"""

import json
import logging
import threading
from typing import Protocol

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from .errors import PolicyViolation
from .models import CallRecord

logger = logging.getLogger("reengage.outreach.call_history")

CALL_RECORDS_TABLE = "call_records"

CALL_RECORDS_DDL = f"""
CREATE TABLE IF NOT EXISTS {CALL_RECORDS_TABLE} (
    user_id VARCHAR(255) PRIMARY KEY,
    created_at VARCHAR(64) NOT NULL,
    dispatch_id VARCHAR(255),
    success BOOLEAN NOT NULL,
    destination VARCHAR(64),
    record_json TEXT NOT NULL
)
"""


class CallHistory(Protocol):
    """Interface shared by the call record stores."""

    def insert(self, record: CallRecord) -> None: ...
    def get(self, user_id: str) -> CallRecord | None: ...
    def has(self, user_id: str) -> bool: ...
    def all(self) -> list[CallRecord]: ...
    def remove(self, user_id: str) -> bool: ...


class CallRecordStore:
    """In-memory call history."""

    def __init__(self):
        self._records: dict[str, CallRecord] = {}
        self._lock = threading.Lock()

    def insert(self, record: CallRecord) -> None:
        """Store a record.

        Raises:
            PolicyViolation: If the user already has a record.
        """
        with self._lock:
            if record.user_id in self._records:
                raise PolicyViolation(record.user_id)
            self._records[record.user_id] = record
        logger.info(f"Recorded call for {record.user_id}")

    def get(self, user_id: str) -> CallRecord | None:
        with self._lock:
            return self._records.get(user_id)

    def has(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._records

    def all(self) -> list[CallRecord]:
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: r.created_at)

    def remove(self, user_id: str) -> bool:
        """Delete a user's record. Only exposed through the testing admin action."""
        with self._lock:
            removed = self._records.pop(user_id, None) is not None
        if removed:
            logger.warning(f"Removed call record for {user_id}")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class SqlCallRecordStore:
    """Call history persisted in the ``call_records`` table."""

    def __init__(self, engine: Engine, create: bool = True):
        self.engine = engine
        if create:
            self.create_table()

    def create_table(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(text(CALL_RECORDS_DDL))

    def insert(self, record: CallRecord) -> None:
        """Store a record.

        Raises:
            PolicyViolation: If the user already has a record.
        """
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    text(
                        f"INSERT INTO {CALL_RECORDS_TABLE} "
                        "(user_id, created_at, dispatch_id, success, destination, record_json) "
                        "VALUES (:user_id, :created_at, :dispatch_id, :success, "
                        ":destination, :record_json)"
                    ),
                    {
                        "user_id": record.user_id,
                        "created_at": record.created_at.isoformat(),
                        "dispatch_id": record.dispatch.dispatch_id,
                        "success": record.dispatch.success,
                        "destination": record.destination,
                        "record_json": json.dumps(record.to_dict()),
                    },
                )
        except IntegrityError as e:
            raise PolicyViolation(record.user_id) from e
        logger.info(f"Persisted call record for {record.user_id}")

    def get(self, user_id: str) -> CallRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                text(f"SELECT record_json FROM {CALL_RECORDS_TABLE} WHERE user_id = :user_id"),
                {"user_id": user_id},
            ).fetchone()
        if row is None:
            return None
        return CallRecord.from_dict(json.loads(row[0]))

    def has(self, user_id: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                text(f"SELECT 1 FROM {CALL_RECORDS_TABLE} WHERE user_id = :user_id"),
                {"user_id": user_id},
            ).fetchone()
        return row is not None

    def all(self) -> list[CallRecord]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(f"SELECT record_json FROM {CALL_RECORDS_TABLE} ORDER BY created_at")
            ).fetchall()
        return [CallRecord.from_dict(json.loads(row[0])) for row in rows]

    def remove(self, user_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                text(f"DELETE FROM {CALL_RECORDS_TABLE} WHERE user_id = :user_id"),
                {"user_id": user_id},
            )
        removed = result.rowcount > 0
        if removed:
            logger.warning(f"Removed call record for {user_id}")
        return removed

    def __len__(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(
                text(f"SELECT COUNT(*) FROM {CALL_RECORDS_TABLE}")
            ).scalar_one()
