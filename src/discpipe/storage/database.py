"""SQLite persistence for jobs, tracks, config snapshots and notifications."""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from discpipe.config import JobConfig
from discpipe.jobs.models import JOB_FIELDS, Job, Notification, Track
from discpipe.jobs.state import JobStatus

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS job (
        job_id INTEGER PRIMARY KEY AUTOINCREMENT,
        crc_id TEXT,
        logfile TEXT,
        start_time TIMESTAMP,
        stop_time TIMESTAMP,
        job_length TEXT,
        status TEXT NOT NULL DEFAULT 'active',
        stage TEXT,
        title TEXT DEFAULT '',
        title_auto TEXT,
        title_manual TEXT,
        year TEXT DEFAULT '',
        year_auto TEXT,
        year_manual TEXT,
        video_type TEXT DEFAULT '',
        video_type_auto TEXT,
        video_type_manual TEXT,
        imdb_id TEXT DEFAULT '',
        imdb_id_auto TEXT,
        imdb_id_manual TEXT,
        poster_url TEXT DEFAULT '',
        poster_url_auto TEXT,
        poster_url_manual TEXT,
        devpath TEXT,
        mountpoint TEXT,
        label TEXT,
        disctype TEXT DEFAULT 'unknown',
        hasnicetitle BOOLEAN DEFAULT 0,
        no_of_titles INTEGER,
        path TEXT,
        config_id INTEGER,
        errors TEXT,
        pid INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS track (
        track_id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_id INTEGER REFERENCES job(job_id),
        track_number INTEGER,
        length INTEGER,
        aspect_ratio TEXT,
        fps REAL,
        main_feature BOOLEAN DEFAULT 0,
        basename TEXT,
        filename TEXT,
        new_filename TEXT,
        orig_filename TEXT,
        ripped BOOLEAN DEFAULT 0,
        process BOOLEAN DEFAULT 1,
        source TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS config (
        config_id INTEGER PRIMARY KEY AUTOINCREMENT,
        created_at TIMESTAMP,
        settings_json TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT,
        message TEXT,
        seen BOOLEAN DEFAULT 0,
        trigger_time TIMESTAMP,
        dismiss_time TIMESTAMP,
        cleared BOOLEAN DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_job_status ON job(status)",
    "CREATE INDEX IF NOT EXISTS idx_job_crc ON job(crc_id)",
    "CREATE INDEX IF NOT EXISTS idx_track_job ON track(job_id)",
)

# Credentials are not written into the snapshot table
_SECRET_SETTINGS = frozenset(
    {
        "ai_api_key",
        "omdb_api_key",
        "tmdb_api_key",
        "emby_api_key",
        "plex_token",
        "pb_key",
        "ifttt_key",
        "po_user_key",
        "po_app_key",
    },
)


class JobDatabase:
    """Durable job storage backed by SQLite."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._init_database()

    def _datetime_to_str(self, dt: datetime | None) -> str | None:
        if dt is None:
            return None
        return dt.isoformat()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection that is properly closed with transaction support."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_database(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._get_connection() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    # -- jobs ----------------------------------------------------------

    def add_job(self, job: Job) -> Job:
        record = job.to_record()
        record.pop("job_id")
        columns = ", ".join(record)
        placeholders = ", ".join("?" for _ in record)

        with self._get_connection() as conn:
            cursor = conn.execute(
                f"INSERT INTO job ({columns}) VALUES ({placeholders})",  # noqa: S608
                tuple(record.values()),
            )
            job.job_id = cursor.lastrowid

        logger.info("Created job %s for %s", job.job_id, job.devpath)
        return job

    def update_job(self, job: Job) -> None:
        """Write every job column."""
        if job.job_id is None:
            msg = "Cannot update a job that was never added"
            raise ValueError(msg)

        record = job.to_record()
        job_id = record.pop("job_id")
        assignments = ", ".join(f"{name} = ?" for name in record)

        with self._get_connection() as conn:
            conn.execute(
                f"UPDATE job SET {assignments} WHERE job_id = ?",  # noqa: S608
                (*record.values(), job_id),
            )

        logger.debug("Updated job: %s", job)

    def get_job(self, job_id: int) -> Job | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM job WHERE job_id = ?",
                (job_id,),
            ).fetchone()
        if not row:
            return None
        return Job.from_record({k: row[k] for k in row.keys() if k in JOB_FIELDS})

    def get_jobs_by_status(self, status: JobStatus) -> list[Job]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM job WHERE status = ? ORDER BY start_time",
                (status.value,),
            ).fetchall()
        return [Job.from_record(dict(row)) for row in rows]

    def find_successful_duplicate(self, job: Job) -> Job | None:
        """Return an earlier successful job for the same disc fingerprint."""
        if not job.crc_id:
            return None

        with self._get_connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM job
                WHERE crc_id = ? AND job_id != ? AND status = ?
                ORDER BY start_time DESC LIMIT 1
                """,
                (job.crc_id, job.job_id or 0, JobStatus.SUCCESS.value),
            ).fetchone()
        return Job.from_record(dict(row)) if row else None

    # -- tracks --------------------------------------------------------

    def add_track(self, track: Track) -> Track:
        record = track.to_record()
        record.pop("track_id")
        columns = ", ".join(record)
        placeholders = ", ".join("?" for _ in record)

        with self._get_connection() as conn:
            cursor = conn.execute(
                f"INSERT INTO track ({columns}) VALUES ({placeholders})",  # noqa: S608
                tuple(record.values()),
            )
            track.track_id = cursor.lastrowid
        return track

    def update_track(self, track: Track) -> None:
        record = track.to_record()
        track_id = record.pop("track_id")
        assignments = ", ".join(f"{name} = ?" for name in record)

        with self._get_connection() as conn:
            conn.execute(
                f"UPDATE track SET {assignments} WHERE track_id = ?",  # noqa: S608
                (*record.values(), track_id),
            )

    def get_tracks(self, job_id: int) -> list[Track]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM track WHERE job_id = ? ORDER BY track_number",
                (job_id,),
            ).fetchall()
        return [Track.from_record(dict(row)) for row in rows]

    # -- config snapshots ----------------------------------------------

    def save_config_snapshot(self, config: JobConfig) -> int:
        settings = {
            key: value
            for key, value in config.model_dump(mode="json").items()
            if key not in _SECRET_SETTINGS
        }
        with self._get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO config (created_at, settings_json) VALUES (?, ?)",
                (
                    self._datetime_to_str(datetime.now(UTC)),
                    json.dumps(settings, sort_keys=True),
                ),
            )
            config_id = cursor.lastrowid
        return config_id

    def get_config_snapshot(self, config_id: int) -> dict[str, Any] | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT settings_json FROM config WHERE config_id = ?",
                (config_id,),
            ).fetchone()
        return json.loads(row["settings_json"]) if row else None

    # -- notifications -------------------------------------------------

    def add_notification(self, notification: Notification) -> Notification:
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO notifications
                    (title, message, seen, trigger_time, dismiss_time, cleared)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    notification.title,
                    notification.message,
                    notification.seen,
                    self._datetime_to_str(notification.trigger_time),
                    self._datetime_to_str(notification.dismiss_time),
                    notification.cleared,
                ),
            )
            notification.id = cursor.lastrowid
        return notification

    def get_notifications(self, *, unseen_only: bool = False) -> list[Notification]:
        query = "SELECT * FROM notifications"
        if unseen_only:
            query += " WHERE seen = 0"
        query += " ORDER BY trigger_time DESC"

        with self._get_connection() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_notification(row) for row in rows]

    def mark_notification_read(self, notification_id: int) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE notifications SET seen = 1, dismiss_time = ? WHERE id = ?",
                (self._datetime_to_str(datetime.now(UTC)), notification_id),
            )

    def clear_notifications(self) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE notifications SET seen = 1, cleared = 1, dismiss_time = ?",
                (self._datetime_to_str(datetime.now(UTC)),),
            )

    def _row_to_notification(self, row: sqlite3.Row) -> Notification:
        dismiss = row["dismiss_time"]
        return Notification(
            id=row["id"],
            title=row["title"],
            message=row["message"],
            seen=bool(row["seen"]),
            cleared=bool(row["cleared"]),
            trigger_time=datetime.fromisoformat(row["trigger_time"]),
            dismiss_time=datetime.fromisoformat(dismiss) if dismiss else None,
        )
