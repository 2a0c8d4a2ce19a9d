"""
PostgreSQL call-log store.
Writes are upserts keyed by session id, run on a worker thread so the event loop
never blocks; failures surface as PersistenceError for the caller's fallback.
Reads return an empty list on failure.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

import psycopg2
import psycopg2.extras
import psycopg2.pool
from loguru import logger

# A finished row, or one holding a longer transcript, is never replaced by an older snapshot
UPSERT_CALL_LOG_SQL = '''INSERT INTO call_logs
   (id, student_id, tpo_id, contact_type, contact_name, call_type, duration, status, notes,
    transcript, jotform_sent, teams_scheduled, evaluation, scheduled_at, completed_at)
   VALUES (%(id)s, %(student_id)s, %(tpo_id)s, %(contact_type)s, %(contact_name)s, %(call_type)s,
           %(duration)s, %(status)s, %(notes)s, %(transcript)s, %(jotform_sent)s,
           %(teams_scheduled)s, %(evaluation)s, %(scheduled_at)s, %(completed_at)s)
   ON CONFLICT (id) DO UPDATE SET
     duration = EXCLUDED.duration,
     status = EXCLUDED.status,
     notes = EXCLUDED.notes,
     transcript = EXCLUDED.transcript,
     jotform_sent = EXCLUDED.jotform_sent,
     teams_scheduled = EXCLUDED.teams_scheduled,
     evaluation = EXCLUDED.evaluation,
     completed_at = EXCLUDED.completed_at
   WHERE call_logs.status = 'active'
     AND jsonb_array_length(EXCLUDED.transcript) >= jsonb_array_length(call_logs.transcript)'''

# Evaluation is written once; an existing evaluation is never overwritten
UPDATE_EVALUATION_SQL = '''UPDATE students
   SET evaluation = %s, evaluated_at = %s, updated_at = %s
   WHERE id = %s AND evaluation IS NULL'''

LIST_CALL_LOGS_SQL = (
    "SELECT id, student_id, tpo_id, contact_type, contact_name, call_type, duration, status, notes, "
    "transcript, jotform_sent, teams_scheduled, evaluation, scheduled_at, completed_at, created_at "
    "FROM call_logs ORDER BY created_at DESC LIMIT %s"
)


class PersistenceError(Exception):
    """A call-log or evaluation write did not reach the database"""


def call_log_row(record: Dict[str, Any]) -> Dict[str, Any]:
    """Map a serialized CallSession onto call_logs columns"""
    is_student = record.get("contact_type") == "student"
    evaluation = record.get("evaluation")
    return {
        "id": record["id"],
        "student_id": record.get("contact_id") if is_student else None,
        "tpo_id": None if is_student else record.get("contact_id"),
        "contact_type": record.get("contact_type"),
        "contact_name": record.get("contact_name"),
        "call_type": record.get("call_type"),
        "duration": int(record.get("duration") or 0),
        "status": record.get("status"),
        "notes": record.get("notes") or "",
        "transcript": psycopg2.extras.Json(record.get("transcript") or []),
        "jotform_sent": bool(record.get("jotform_sent")),
        "teams_scheduled": bool(record.get("teams_scheduled")),
        "evaluation": psycopg2.extras.Json(evaluation) if evaluation else None,
        "scheduled_at": record.get("start_time"),
        "completed_at": record.get("end_time"),
    }


class CallLogStore:
    def __init__(self, dsn: str):
        self._dsn = dsn
        self._pool: Optional[psycopg2.pool.SimpleConnectionPool] = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_pool(self) -> psycopg2.pool.SimpleConnectionPool:
        if not self._dsn:
            raise PersistenceError("DATABASE_URL is not set")
        if self._pool is None:
            self._pool = psycopg2.pool.SimpleConnectionPool(minconn=1, maxconn=5, dsn=self._dsn)
        return self._pool

    def _get_conn(self):
        pool = self._get_pool()
        conn = pool.getconn()
        # Validate - discard and reconnect if the connection went stale
        try:
            conn.cursor().execute("SELECT 1")
            conn.rollback()
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            logger.warning("DB pool: stale connection detected - replacing")
            pool.putconn(conn, close=True)
            conn = pool.getconn()
        return conn

    def _execute(self, sql: str, params) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            rowcount = cur.rowcount
            conn.commit()
            cur.close()
            return rowcount
        except psycopg2.Error:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def _fetch_all(self, sql: str, params) -> List[Dict[str, Any]]:
        conn = self._get_conn()
        try:
            cur = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            cur.execute(sql, params)
            rows = cur.fetchall()
            cur.close()
            conn.rollback()
        finally:
            self._pool.putconn(conn)
        return [dict(row) for row in rows]

    # ==================================================================
    # Call logs
    # ==================================================================

    async def upsert_call_log(self, record: Dict[str, Any]):
        """Insert or update the row for one session (idempotent per session id)"""
        try:
            await asyncio.to_thread(self._execute, UPSERT_CALL_LOG_SQL, call_log_row(record))
        except PersistenceError:
            raise
        except (psycopg2.Error, KeyError) as e:
            raise PersistenceError(f"Call log write failed for {record.get('id')}: {e}") from e

    async def list_call_logs(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Call-log rows newest first, every row when limit is None (LIMIT NULL);
        empty list when the database is unreachable"""
        try:
            rows = await asyncio.to_thread(self._fetch_all, LIST_CALL_LOGS_SQL, (limit,))
        except (PersistenceError, psycopg2.Error) as e:
            logger.warning(f"Could not list call logs: {e}")
            return []
        for row in rows:
            for key in ("scheduled_at", "completed_at", "created_at"):
                if isinstance(row.get(key), datetime):
                    row[key] = row[key].isoformat()
        return rows

    # ==================================================================
    # Students
    # ==================================================================

    async def save_evaluation(self, student_id: str, evaluation: Dict[str, Any]) -> bool:
        """Write an interview evaluation onto a student record; False if one already exists"""
        now = datetime.now().isoformat()
        try:
            updated = await asyncio.to_thread(
                self._execute, UPDATE_EVALUATION_SQL,
                (psycopg2.extras.Json(evaluation), now, now, student_id),
            )
        except PersistenceError:
            raise
        except psycopg2.Error as e:
            raise PersistenceError(f"Evaluation write failed for student {student_id}: {e}") from e
        return updated > 0

    def close(self):
        if self._pool:
            self._pool.closeall()
            self._pool = None
