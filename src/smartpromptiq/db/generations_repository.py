"""Repository functions for the generations history table."""

from __future__ import annotations

from dataclasses import dataclass

from smartpromptiq.db.database import get_db


@dataclass
class GenerationRecord:
    """A stored prompt generation."""

    generation_id: int
    user_id: str | None
    kind: str
    category: str
    complexity: str
    tokens_used: int
    content: str
    model: str | None
    created_at: str


def insert_generation(
    user_id: str | None,
    kind: str,
    category: str,
    complexity: str,
    tokens_used: int,
    content: str,
    model: str | None = None,
) -> int:
    """Store a generation. Returns its id."""
    with get_db() as conn:
        cursor = conn.execute(
            """
            INSERT INTO generations (user_id, kind, category, complexity, tokens_used, content, model)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (user_id, kind, category, complexity, tokens_used, content, model),
        )
    return cursor.lastrowid


def list_generations(user_id: str, limit: int = 20) -> list[GenerationRecord]:
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT * FROM generations
            WHERE user_id = ?
            ORDER BY generation_id DESC
            LIMIT ?
            """,
            (user_id, limit),
        ).fetchall()
    return [
        GenerationRecord(
            generation_id=row["generation_id"],
            user_id=row["user_id"],
            kind=row["kind"],
            category=row["category"],
            complexity=row["complexity"],
            tokens_used=row["tokens_used"],
            content=row["content"],
            model=row["model"],
            created_at=row["created_at"],
        )
        for row in rows
    ]
