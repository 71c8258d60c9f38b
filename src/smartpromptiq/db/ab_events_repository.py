"""Repository functions for tracked A/B test events."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from typing import Any

from smartpromptiq.db.database import get_db


@dataclass
class ABEventRecord:
    """A stored A/B test event."""

    event_id: int
    user_id: str
    test_id: str
    variant_id: str
    event_type: str
    event_data: dict[str, Any] | None
    created_at: str


def _row_to_record(row: sqlite3.Row) -> ABEventRecord:
    return ABEventRecord(
        event_id=row["event_id"],
        user_id=row["user_id"],
        test_id=row["test_id"],
        variant_id=row["variant_id"],
        event_type=row["event_type"],
        event_data=json.loads(row["event_data"]) if row["event_data"] else None,
        created_at=row["created_at"],
    )


def insert_event(
    user_id: str,
    test_id: str,
    variant_id: str,
    event_type: str,
    event_data: dict[str, Any] | None,
    created_at: str,
) -> int:
    """Store an event. Returns its id."""
    with get_db() as conn:
        cursor = conn.execute(
            """
            INSERT INTO ab_test_events (user_id, test_id, variant_id, event_type, event_data, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                test_id,
                variant_id,
                event_type,
                json.dumps(event_data) if event_data is not None else None,
                created_at,
            ),
        )
    return cursor.lastrowid


def list_events(test_id: str) -> list[ABEventRecord]:
    """All events of a test, oldest first."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM ab_test_events WHERE test_id = ? ORDER BY event_id",
            (test_id,),
        ).fetchall()
    return [_row_to_record(row) for row in rows]
