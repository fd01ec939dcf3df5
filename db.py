import json
import logging
import os
import sqlite3
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from db_pool import SQLiteConnectionPool
from engines.errors import ConcurrencyConflict
from schemas import DailyQuizSession, LearnerProgress, WrongAnswer

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "progress.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str)


def init():
    with _conn() as con:
        con.executescript(
            """
            CREATE TABLE IF NOT EXISTS learner_progress (
              learner_id  TEXT PRIMARY KEY,
              snapshot    TEXT NOT NULL,
              version     INTEGER NOT NULL DEFAULT 1,
              created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS daily_quiz_sessions (
              learner_id    TEXT NOT NULL,
              quiz_date     TEXT NOT NULL,
              snapshot      TEXT NOT NULL,
              is_completed  INTEGER NOT NULL DEFAULT 0,
              updated_at    TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              PRIMARY KEY (learner_id, quiz_date),
              FOREIGN KEY(learner_id) REFERENCES learner_progress(learner_id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS wrong_answers (
              id              INTEGER PRIMARY KEY AUTOINCREMENT,
              learner_id      TEXT NOT NULL,
              question        TEXT NOT NULL,
              options         TEXT,
              correct_answer  TEXT NOT NULL,
              user_answer     TEXT NOT NULL,
              subject         TEXT NOT NULL,
              topic           TEXT,
              difficulty      TEXT,
              explanation     TEXT,
              created_at      TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_wrong_answers_learner ON wrong_answers(learner_id, created_at);

            CREATE TABLE IF NOT EXISTS progress_events (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              learner_id  TEXT NOT NULL,
              command     TEXT NOT NULL,
              payload     TEXT,
              version     INTEGER,
              created_at  TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_progress_events_learner ON progress_events(learner_id, id);
            """
        )
        con.commit()


# -------------- learner progress --------------
def create_learner(progress: LearnerProgress) -> bool:
    """Insert ``progress`` unless the learner already exists. Returns True when created."""
    with _conn() as con:
        cur = con.execute(
            """
            INSERT OR IGNORE INTO learner_progress (learner_id, snapshot, version, created_at, updated_at)
            VALUES (?, ?, 1, ?, ?)
            """,
            (progress.learner_id, progress.model_dump_json(), _now_iso(), _now_iso()),
        )
        con.commit()
        return cur.rowcount > 0


def load_progress(learner_id: str) -> Optional[Tuple[LearnerProgress, int]]:
    """Return the stored snapshot and its version, or ``None`` for unknown learners."""
    rows = _query(
        "SELECT snapshot, version FROM learner_progress WHERE learner_id = ?",
        [learner_id],
    )
    if not rows:
        return None
    row = rows[0]
    return LearnerProgress.model_validate_json(row["snapshot"]), int(row["version"])


def load_quiz_session(learner_id: str, quiz_date: date) -> Optional[DailyQuizSession]:
    rows = _query(
        "SELECT snapshot FROM daily_quiz_sessions WHERE learner_id = ? AND quiz_date = ?",
        [learner_id, quiz_date.isoformat()],
    )
    if not rows:
        return None
    return DailyQuizSession.model_validate_json(rows[0]["snapshot"])


def save_learner_state(
    progress: LearnerProgress,
    expected_version: int,
    *,
    quiz_session: Optional[DailyQuizSession] = None,
    wrong_answers: Sequence[WrongAnswer] = (),
    events: Sequence[Tuple[str, Dict[str, Any]]] = (),
) -> int:
    """Compare-and-swap the learner snapshot together with its side records.

    Everything is written in one transaction. Raises ``ConcurrencyConflict``
    when the stored version is no longer ``expected_version``; nothing is
    written in that case.
    """
    new_version = expected_version + 1
    with _conn() as con:
        try:
            cur = con.execute(
                """
                UPDATE learner_progress
                SET snapshot = ?, version = ?, updated_at = ?
                WHERE learner_id = ? AND version = ?
                """,
                (progress.model_dump_json(), new_version, _now_iso(), progress.learner_id, expected_version),
            )
            if cur.rowcount != 1:
                con.rollback()
                raise ConcurrencyConflict(
                    f"learner {progress.learner_id} changed since version {expected_version}",
                    details={"learner_id": progress.learner_id, "expected_version": expected_version},
                )

            if quiz_session is not None:
                con.execute(
                    """
                    INSERT INTO daily_quiz_sessions (learner_id, quiz_date, snapshot, is_completed, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(learner_id, quiz_date) DO UPDATE SET
                        snapshot = excluded.snapshot,
                        is_completed = excluded.is_completed,
                        updated_at = excluded.updated_at
                    """,
                    (
                        quiz_session.learner_id,
                        quiz_session.quiz_date.isoformat(),
                        quiz_session.model_dump_json(),
                        int(quiz_session.is_completed),
                        _now_iso(),
                    ),
                )

            for wrong in wrong_answers:
                con.execute(
                    """
                    INSERT INTO wrong_answers (
                        learner_id, question, options, correct_answer, user_answer,
                        subject, topic, difficulty, explanation, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        wrong.learner_id,
                        wrong.question,
                        json_dumps(wrong.options),
                        json_dumps(wrong.correct_answer),
                        json_dumps(wrong.user_answer),
                        wrong.subject,
                        wrong.topic,
                        wrong.difficulty,
                        wrong.explanation,
                        wrong.created_at.isoformat(),
                    ),
                )

            for command, payload in events:
                con.execute(
                    """
                    INSERT INTO progress_events (learner_id, command, payload, version, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (progress.learner_id, command, json_dumps(payload), new_version, _now_iso()),
                )
            con.commit()
        except sqlite3.Error:
            con.rollback()
            logger.exception("Failed to persist state for learner %s", progress.learner_id)
            raise
    return new_version


# -------------- read models --------------
def list_wrong_answers(learner_id: str, limit: int = 20) -> list[WrongAnswer]:
    rows = _query(
        """
        SELECT * FROM wrong_answers
        WHERE learner_id = ?
        ORDER BY created_at DESC, id DESC
        LIMIT ?
        """,
        [learner_id, int(limit)],
    )
    return [
        WrongAnswer(
            learner_id=row["learner_id"],
            question=row["question"],
            options=json.loads(row["options"] or "[]"),
            correct_answer=json.loads(row["correct_answer"]),
            user_answer=json.loads(row["user_answer"]),
            subject=row["subject"],
            topic=row["topic"] or row["subject"],
            difficulty=row["difficulty"] or "",
            explanation=row["explanation"] or "",
            created_at=datetime.fromisoformat(row["created_at"]),
        )
        for row in rows
    ]


def list_progress_events(learner_id: Optional[str] = None, limit: int = 100) -> list[Dict[str, Any]]:
    if learner_id:
        rows = _query(
            "SELECT * FROM progress_events WHERE learner_id = ? ORDER BY id DESC LIMIT ?",
            [learner_id, int(limit)],
        )
    else:
        rows = _query("SELECT * FROM progress_events ORDER BY id DESC LIMIT ?", [int(limit)])
    events = []
    for row in rows:
        try:
            payload = json.loads(row["payload"]) if row["payload"] else {}
        except json.JSONDecodeError:
            payload = {}
        events.append(
            {
                "id": row["id"],
                "learner_id": row["learner_id"],
                "command": row["command"],
                "payload": payload,
                "version": row["version"],
                "created_at": row["created_at"],
            }
        )
    return events
