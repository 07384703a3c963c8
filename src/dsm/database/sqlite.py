# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""SQLite persistence for analysis run snapshots."""

import logging
import sqlite3

from datetime import datetime, timezone
from pathlib import Path

from dsm.persistence import (
    PersistRunInput,
    PersistRunResult,
    PersistenceError,
    RunStatus,
)

logger = logging.getLogger(__name__)


class SQLitePersistence:
    """Persist run snapshots to a SQLite database."""

    def __init__(self, db_path: Path) -> None:
        """Initialize persistence backend.

        Args:
            db_path: SQLite database file path.
        """
        self._db_path = db_path

    def persist_run(self, payload: PersistRunInput) -> PersistRunResult:
        """Persist one run with its measures and violations atomically.

        Args:
            payload: Run payload to persist.

        Returns:
            Persisted run summary.

        Raises:
            PersistenceError: If schema setup or write operations fail.
        """
        measure_count = len(payload.measures)
        violation_count = len(payload.violations)
        status: RunStatus = (
            "completed_with_errors" if payload.analyzer_error_count > 0 else "completed"
        )
        started_at = datetime.now(tz=timezone.utc).isoformat()

        connection = sqlite3.connect(self._db_path)
        try:
            connection.execute("PRAGMA foreign_keys = ON")
            self._ensure_schema(connection=connection)
            connection.execute("BEGIN")
            finished_at = datetime.now(tz=timezone.utc).isoformat()
            run_cursor = connection.execute(
                "INSERT INTO runs ("
                "started_at, finished_at, root_path, project_names, status, "
                "analyzer_error_count, measure_count, violation_count"
                ") VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    started_at,
                    finished_at,
                    payload.root_path,
                    ",".join(payload.project_names),
                    status,
                    payload.analyzer_error_count,
                    measure_count,
                    violation_count,
                ),
            )
            row_id = run_cursor.lastrowid
            if row_id is None:
                logger.warning(f"SQLite did not return a run id (db_path={self._db_path})")
                raise PersistenceError("SQLite did not return a run id.")
            run_id = int(row_id)
            connection.executemany(
                "INSERT INTO measures (run_id, resource_key, metric, value_num, value_text) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    (
                        run_id,
                        measure.resource_key,
                        measure.metric,
                        None if isinstance(measure.value, str) else float(measure.value),
                        measure.value if isinstance(measure.value, str) else None,
                    )
                    for measure in payload.measures
                ],
            )
            connection.executemany(
                "INSERT INTO violations (run_id, resource_key, rule_key, line, message) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    (
                        run_id,
                        violation.resource_key,
                        violation.rule_key,
                        violation.line,
                        violation.message,
                    )
                    for violation in payload.violations
                ],
            )
            connection.commit()
            logger.info(
                f"Run persisted (run_id={run_id} measures={measure_count} "
                f"violations={violation_count})"
            )
            return PersistRunResult(
                run_id=run_id,
                measure_count=measure_count,
                violation_count=violation_count,
                analyzer_error_count=payload.analyzer_error_count,
                status=status,
            )
        except sqlite3.DatabaseError as exc:
            connection.rollback()
            logger.warning(f"SQLite persistence failed (db_path={self._db_path} error={exc})")
            raise PersistenceError(str(exc)) from exc
        finally:
            connection.close()

    def _ensure_schema(self, connection: sqlite3.Connection) -> None:
        """Create required tables and indexes when missing.

        Args:
            connection: Open SQLite connection.
        """
        connection.execute(
            "CREATE TABLE IF NOT EXISTS runs ("
            "id INTEGER PRIMARY KEY, "
            "started_at TEXT NOT NULL, "
            "finished_at TEXT NOT NULL, "
            "root_path TEXT NOT NULL, "
            "project_names TEXT NOT NULL, "
            "status TEXT NOT NULL, "
            "analyzer_error_count INTEGER NOT NULL, "
            "measure_count INTEGER NOT NULL, "
            "violation_count INTEGER NOT NULL"
            ")"
        )
        connection.execute(
            "CREATE TABLE IF NOT EXISTS measures ("
            "id INTEGER PRIMARY KEY, "
            "run_id INTEGER NOT NULL REFERENCES runs(id), "
            "resource_key TEXT NOT NULL, "
            "metric TEXT NOT NULL, "
            "value_num REAL, "
            "value_text TEXT, "
            "UNIQUE (run_id, resource_key, metric)"
            ")"
        )
        connection.execute(
            "CREATE TABLE IF NOT EXISTS violations ("
            "id INTEGER PRIMARY KEY, "
            "run_id INTEGER NOT NULL REFERENCES runs(id), "
            "resource_key TEXT NOT NULL, "
            "rule_key TEXT NOT NULL, "
            "line INTEGER NOT NULL, "
            "message TEXT NOT NULL"
            ")"
        )
        connection.execute("CREATE INDEX IF NOT EXISTS idx_measures_run_id ON measures(run_id)")
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_measures_resource_key ON measures(resource_key)"
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_violations_run_id ON violations(run_id)"
        )
