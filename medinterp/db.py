"""
Lightweight database helper using SQLAlchemy.

Provides a thin statement wrapper around the configured engine and the
conversation repository used to persist finished sessions:
- conversations: one row per saved session (turns, summary, actions as JSON)
- conversation_actions: one row per detected action, for per-action queries
"""

from __future__ import annotations

import json
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine, Result

from medinterp.config import settings
from medinterp.logger import get_logger

logger = get_logger(__name__)

_engine: Optional[Engine] = None


def get_engine(url: Optional[str] = None) -> Engine:
    """Get a singleton SQLAlchemy engine, or a fresh one for an explicit URL."""
    global _engine
    if url is not None:
        return create_engine(url, pool_pre_ping=True)
    if _engine is None:
        _engine = create_engine(
            settings.database.url,
            pool_pre_ping=True,
        )
        logger.info("Database engine initialized")
    return _engine


class Database:
    """Thin wrapper around SQLAlchemy engine for common operations."""

    def __init__(self, engine: Optional[Engine] = None) -> None:
        self.engine = engine or get_engine()

    def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Result:
        with self.engine.begin() as conn:
            return conn.execute(text(sql), params or {})

    def fetch_one(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        with self.engine.connect() as conn:
            row = conn.execute(text(sql), params or {}).mappings().first()
        return dict(row) if row else None

    def fetch_all(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = conn.execute(text(sql), params or {}).mappings().all()
        return [dict(r) for r in rows]


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id VARCHAR(32) PRIMARY KEY,
        created_at VARCHAR(40) NOT NULL,
        created_ns BIGINT NOT NULL,
        conversation TEXT NOT NULL,
        summary TEXT NOT NULL,
        actions TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversation_actions (
        id VARCHAR(32) PRIMARY KEY,
        conversation_id VARCHAR(32) NOT NULL,
        position INTEGER NOT NULL,
        action_type VARCHAR(100) NOT NULL,
        action_data TEXT NOT NULL,
        occurred_at VARCHAR(40)
    )
    """,
)


def _as_dict(item: Any) -> Dict[str, Any]:
    if hasattr(item, "to_dict"):
        return item.to_dict()
    return dict(item)


def _row_to_record(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "timestamp": row["created_at"],
        "conversation": json.loads(row["conversation"]),
        "summary": row["summary"],
        "actions": json.loads(row["actions"]),
    }


class ConversationRepository:
    """
    Stores `{conversation, summary, actions}` records.

    Usage:
        repo = ConversationRepository()
        conversation_id = repo.insert(turns, summary, actions)
        latest = repo.latest()
    """

    def __init__(self, database: Optional[Database] = None) -> None:
        self.db = database or Database()
        self._schema_ready = False

    def ensure_schema(self) -> None:
        if self._schema_ready:
            return
        with self.db.engine.begin() as conn:
            for statement in _SCHEMA:
                conn.execute(text(statement))
        self._schema_ready = True

    def insert(
        self,
        conversation: Iterable[Any],
        summary: Optional[str] = "",
        actions: Optional[Iterable[Any]] = None,
    ) -> str:
        """Persist a finished conversation and return its id."""
        self.ensure_schema()
        turns = [_as_dict(t) for t in conversation]
        action_list = [_as_dict(a) for a in (actions or [])]
        conversation_id = secrets.token_hex(16)

        with self.db.engine.begin() as conn:
            conn.execute(
                text(
                    """
                    INSERT INTO conversations (id, created_at, created_ns, conversation, summary, actions)
                    VALUES (:id, :created_at, :created_ns, :conversation, :summary, :actions)
                    """
                ),
                {
                    "id": conversation_id,
                    "created_at": datetime.now(timezone.utc).isoformat(),
                    "created_ns": time.time_ns(),
                    "conversation": json.dumps(turns),
                    "summary": summary or "",
                    "actions": json.dumps(action_list),
                },
            )
            self._insert_actions(conn, conversation_id, action_list)

        logger.info(f"Conversation saved: {conversation_id} ({len(turns)} turns, {len(action_list)} actions)")
        return conversation_id

    @staticmethod
    def _insert_actions(conn: Connection, conversation_id: str, actions: Sequence[Dict[str, Any]]) -> None:
        for position, action in enumerate(actions):
            conn.execute(
                text(
                    """
                    INSERT INTO conversation_actions
                        (id, conversation_id, position, action_type, action_data, occurred_at)
                    VALUES (:id, :conversation_id, :position, :action_type, :action_data, :occurred_at)
                    """
                ),
                {
                    "id": secrets.token_hex(16),
                    "conversation_id": conversation_id,
                    "position": position,
                    "action_type": action.get("type", "unknown"),
                    "action_data": json.dumps(action.get("data") or {}),
                    "occurred_at": action.get("timestamp"),
                },
            )

    def latest(self) -> Optional[Dict[str, Any]]:
        self.ensure_schema()
        row = self.db.fetch_one("SELECT * FROM conversations ORDER BY created_ns DESC LIMIT 1")
        return _row_to_record(row) if row else None

    def get(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        self.ensure_schema()
        row = self.db.fetch_one(
            "SELECT * FROM conversations WHERE id = :id",
            {"id": conversation_id},
        )
        return _row_to_record(row) if row else None

    def all(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """All conversations, newest first."""
        self.ensure_schema()
        sql = "SELECT * FROM conversations ORDER BY created_ns DESC"
        params: Dict[str, Any] = {}
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit
        return [_row_to_record(r) for r in self.db.fetch_all(sql, params)]

    def actions_of_type(self, action_type: str) -> List[Dict[str, Any]]:
        """Detected actions of one type across all conversations, newest first."""
        self.ensure_schema()
        rows = self.db.fetch_all(
            """
            SELECT a.conversation_id, a.action_type, a.action_data, a.occurred_at
            FROM conversation_actions a
            JOIN conversations c ON c.id = a.conversation_id
            WHERE a.action_type = :action_type
            ORDER BY c.created_ns DESC, a.position ASC
            """,
            {"action_type": action_type},
        )
        return [
            {
                "conversationId": r["conversation_id"],
                "type": r["action_type"],
                "data": json.loads(r["action_data"]),
                "timestamp": r["occurred_at"],
            }
            for r in rows
        ]
