"""Database layer. SQLite file by default (DATABASE_URL overrides the location).
Startup ensures the activity table exists; on failure logs verbosely and falls back to in-memory SQLite so the app can start."""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from converter import config as app_config

logger = logging.getLogger("converter.db")

_engine: Optional[Engine] = None

REQUIRED_TABLES = ("conversion_activities",)


def _is_sqlite() -> bool:
    return "sqlite" in app_config.DATABASE_URL


def _is_memory() -> bool:
    return app_config.DATABASE_URL.endswith(":memory:")


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        kwargs = {}
        if _is_sqlite():
            kwargs["connect_args"] = {"check_same_thread": False}
        if _is_memory():
            # One shared connection, otherwise every connection sees an empty database
            kwargs["poolclass"] = StaticPool
        _engine = create_engine(app_config.DATABASE_URL, **kwargs)
        logger.info("Database engine created (%s)", _engine.dialect.name)
    return _engine


def _create_tables(conn) -> None:
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS conversion_activities (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id VARCHAR(255) NOT NULL,
            job_id VARCHAR(255) NOT NULL,
            filename VARCHAR(512),
            target_format VARCHAR(16),
            input_bytes BIGINT,
            output_bytes BIGINT,
            status VARCHAR(50) NOT NULL,
            error_code VARCHAR(64),
            created_at VARCHAR(50) NOT NULL,
            duration_seconds FLOAT
        )
    """))
    conn.commit()


def init_db() -> None:
    """Prepare database at startup. On failure, fall back to in-memory SQLite so the app can start."""
    global _engine
    logger.info("Database init: preparing %s (tables: %s)", app_config.DATABASE_URL, ", ".join(REQUIRED_TABLES))
    try:
        with get_engine().connect() as conn:
            _create_tables(conn)
        logger.info("Database ready")
        return
    except SQLAlchemyError as e:
        logger.exception("Database init failed: %s. Using in-memory SQLite.", e)

    app_config.DATABASE_URL = "sqlite:///:memory:"
    _engine = None
    with get_engine().connect() as conn:
        _create_tables(conn)
    logger.warning("Database unavailable. Using in-memory SQLite. History will not persist across restarts.")


@contextmanager
def session():
    with get_engine().connect() as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def record_activity(
    session_id: str,
    job_id: str,
    filename: str,
    status: str,
    *,
    target_format: Optional[str] = None,
    input_bytes: Optional[int] = None,
    output_bytes: Optional[int] = None,
    error_code: Optional[str] = None,
    duration_seconds: Optional[float] = None,
) -> None:
    params = {
        "session_id": session_id,
        "job_id": job_id,
        "filename": filename,
        "target_format": target_format,
        "input_bytes": input_bytes,
        "output_bytes": output_bytes,
        "status": status,
        "error_code": error_code,
        "created_at": _now_iso(),
        "duration_seconds": duration_seconds,
    }
    with session() as conn:
        conn.execute(
            text("""
                INSERT INTO conversion_activities (session_id, job_id, filename, target_format, input_bytes, output_bytes, status, error_code, created_at, duration_seconds)
                VALUES (:session_id, :job_id, :filename, :target_format, :input_bytes, :output_bytes, :status, :error_code, :created_at, :duration_seconds)
            """),
            params,
        )


def get_session_stats(session_id: str) -> dict:
    """Aggregate stats for a session: conversions, failures, bytes in/out, size change, time spent."""
    with get_engine().connect() as conn:
        row = conn.execute(
            text("""
                SELECT
                    COUNT(*) AS conversions,
                    COALESCE(SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END), 0) AS failed,
                    COALESCE(SUM(input_bytes), 0) AS total_input_bytes,
                    COALESCE(SUM(output_bytes), 0) AS total_output_bytes,
                    COALESCE(SUM(duration_seconds), 0) AS time_spent_seconds
                FROM conversion_activities WHERE session_id = :sid
            """),
            {"sid": session_id},
        ).fetchone()
    if not row or row[0] == 0:
        return {
            "conversions": 0,
            "failed": 0,
            "total_input_bytes": 0,
            "total_output_bytes": 0,
            "compression_percent": 0.0,
            "time_spent_seconds": 0.0,
        }
    total_input = int(row[2])
    total_output = int(row[3])
    compression_percent = 0.0
    if total_input > 0:
        compression_percent = round((1.0 - total_output / total_input) * 100.0, 1)
    return {
        "conversions": int(row[0]),
        "failed": int(row[1]),
        "total_input_bytes": total_input,
        "total_output_bytes": total_output,
        "compression_percent": compression_percent,
        "time_spent_seconds": float(row[4]),
    }


def get_session_activities(session_id: str, limit: int = 100) -> list[dict]:
    """Recent activities for the session, newest first."""
    with get_engine().connect() as conn:
        rows = conn.execute(
            text("""
                SELECT job_id, filename, target_format, input_bytes, output_bytes, status, error_code, created_at, duration_seconds
                FROM conversion_activities WHERE session_id = :sid ORDER BY id DESC LIMIT :lim
            """),
            {"sid": session_id, "lim": limit},
        ).fetchall()
    return [
        {
            "job_id": r[0],
            "filename": r[1],
            "target_format": r[2],
            "input_bytes": r[3],
            "output_bytes": r[4],
            "status": r[5],
            "error_code": r[6],
            "created_at": r[7],
            "duration_seconds": r[8],
        }
        for r in rows
    ]


def delete_session_data(session_id: str) -> int:
    """Delete all activities for the session. Returns the number of rows removed."""
    with session() as conn:
        result = conn.execute(
            text("DELETE FROM conversion_activities WHERE session_id = :sid"),
            {"sid": session_id},
        )
    return result.rowcount
