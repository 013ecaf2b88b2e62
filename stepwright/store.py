"""Playback run history stored in sqlite."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import aiosqlite

from stepwright.model.results import PlaybackResult
from stepwright.settings import data_dir

logger = logging.getLogger("stepwright.store")

DB_FILENAME = "stepwright.db"


async def get_db_path(db_path: Path | None = None) -> Path:
    """Ensure the directory exists and return the DB path."""
    path = Path(db_path) if db_path is not None else data_dir() / DB_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


async def init_db(db_path: Path | None = None) -> Path:
    """Create the run history tables."""
    path = await get_db_path(db_path)
    logger.info("Initializing run history database at %s", path)
    async with aiosqlite.connect(path) as db:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS runs (
                run_id TEXT PRIMARY KEY,
                scenario_id TEXT NOT NULL,
                scenario_path TEXT,
                state TEXT NOT NULL,
                success INTEGER NOT NULL,
                total_steps INTEGER NOT NULL,
                passed INTEGER NOT NULL,
                failed INTEGER NOT NULL,
                skipped INTEGER NOT NULL,
                duration_ms REAL NOT NULL,
                started_at TEXT NOT NULL,
                finished_at TEXT NOT NULL,
                result TEXT NOT NULL
            )
        """)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS step_results (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT NOT NULL,
                step_index INTEGER NOT NULL,
                step_id TEXT NOT NULL,
                status TEXT NOT NULL,
                duration_ms REAL NOT NULL,
                error_code TEXT,
                error_message TEXT,
                fingerprint TEXT,
                screenshot_path TEXT,
                FOREIGN KEY(run_id) REFERENCES runs(run_id)
            )
        """)
        await db.execute("CREATE INDEX IF NOT EXISTS idx_step_results_run ON step_results(run_id)")
        await db.commit()
    return path


async def get_db(db_path: Path | None = None):
    """Yield a connection with row access by column name."""
    path = await get_db_path(db_path)
    async with aiosqlite.connect(path) as db:
        db.row_factory = aiosqlite.Row
        yield db


def _iso(epoch_ms: float) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat()


async def save_run(result: PlaybackResult, *, scenario_path: str = "", db_path: Path | None = None) -> str:
    """Persist one playback run and its step results; returns the run id."""
    await init_db(db_path)
    run_id = f"run-{uuid4().hex[:12]}"
    summary = result.summary
    async for db in get_db(db_path):
        await db.execute(
            """
            INSERT INTO runs (
                run_id, scenario_id, scenario_path, state, success, total_steps,
                passed, failed, skipped, duration_ms, started_at, finished_at, result
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                run_id,
                result.scenario_id,
                scenario_path,
                result.state,
                int(result.success),
                summary.total_steps,
                summary.passed,
                summary.failed,
                summary.skipped,
                summary.duration,
                _iso(result.start_time),
                _iso(result.end_time),
                json.dumps(result.to_dict()),
            ),
        )
        await db.executemany(
            """
            INSERT INTO step_results (
                run_id, step_index, step_id, status, duration_ms,
                error_code, error_message, fingerprint, screenshot_path
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    run_id,
                    step.index,
                    step.step_id,
                    step.status,
                    step.duration,
                    step.error.error_code if step.error else None,
                    step.error.message if step.error else None,
                    step.error.fingerprint if step.error else None,
                    step.screenshot_path,
                )
                for step in result.step_results
            ],
        )
        await db.commit()
    logger.info("Saved run %s for scenario %s (%s)", run_id, result.scenario_id, result.state)
    return run_id


async def list_runs(limit: int = 20, *, db_path: Path | None = None) -> list[dict]:
    """Most recent runs first."""
    await init_db(db_path)
    rows = []
    async for db in get_db(db_path):
        async with db.execute(
            """
            SELECT run_id, scenario_id, scenario_path, state, success, total_steps,
                   passed, failed, skipped, duration_ms, started_at, finished_at
            FROM runs
            ORDER BY started_at DESC, rowid DESC
            LIMIT ?
            """,
            (limit,),
        ) as cursor:
            rows = [dict(row) for row in await cursor.fetchall()]
    for row in rows:
        row["success"] = bool(row["success"])
    return rows


async def get_run_steps(run_id: str, *, db_path: Path | None = None) -> list[dict]:
    await init_db(db_path)
    rows = []
    async for db in get_db(db_path):
        async with db.execute(
            """
            SELECT step_index, step_id, status, duration_ms, error_code, error_message,
                   fingerprint, screenshot_path
            FROM step_results
            WHERE run_id = ?
            ORDER BY step_index
            """,
            (run_id,),
        ) as cursor:
            rows = [dict(row) for row in await cursor.fetchall()]
    return rows
