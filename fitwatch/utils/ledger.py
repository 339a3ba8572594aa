"""
SQLite ledger of discovered artifacts and their delivery state.

Provides:
- Schema creation (WAL journal, foreign keys, uniqueness constraints)
- Short per-operation transactions
- Duplicate detection by path and fingerprint
- Delivery state transitions and the retry sweep
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from loguru import logger

from fitwatch.models.errors import LedgerError
from fitwatch.models.schemas import (
    ActivityMetadata,
    Artifact,
    DeliveryRecord,
    DeliveryStatus,
    LedgerStats,
)
from fitwatch.utils.config import get_settings
from fitwatch.utils.helpers import now_utc, parse_iso_timestamp, to_iso


METADATA_COLUMNS = [
    "activity_type", "activity_name", "started_at", "duration_secs",
    "distance_m", "calories", "avg_power_w", "max_power_w", "norm_power_w",
    "avg_hr", "max_hr", "avg_cadence", "avg_speed_mps", "total_ascent_m",
    "device_name", "software_version",
]

ARTIFACT_COLUMNS = [
    "id", "path", "fingerprint", "size", "discovered_at", "source",
] + METADATA_COLUMNS

RECORD_COLUMNS = [
    "id", "artifact_id", "destination", "status", "attempted_at",
    "completed_at", "remote_id", "remote_url", "error", "retries",
]

SCHEMA = """
CREATE TABLE IF NOT EXISTS artifacts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    path TEXT UNIQUE NOT NULL,
    fingerprint TEXT NOT NULL,
    size INTEGER NOT NULL,
    discovered_at TEXT NOT NULL,
    source TEXT NOT NULL DEFAULT 'watch',

    activity_type TEXT,
    activity_name TEXT,
    started_at TEXT,
    duration_secs INTEGER,
    distance_m REAL,
    calories INTEGER,
    avg_power_w INTEGER,
    max_power_w INTEGER,
    norm_power_w INTEGER,
    avg_hr INTEGER,
    max_hr INTEGER,
    avg_cadence INTEGER,
    avg_speed_mps REAL,
    total_ascent_m REAL,
    device_name TEXT,
    software_version TEXT
);

CREATE TABLE IF NOT EXISTS delivery_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    artifact_id INTEGER NOT NULL REFERENCES artifacts(id),
    destination TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'succeeded', 'failed')),
    attempted_at TEXT,
    completed_at TEXT,
    remote_id TEXT,
    remote_url TEXT,
    error TEXT,
    retries INTEGER NOT NULL DEFAULT 0,
    UNIQUE (artifact_id, destination)
);

CREATE INDEX IF NOT EXISTS idx_artifacts_fingerprint ON artifacts(fingerprint);
CREATE INDEX IF NOT EXISTS idx_artifacts_started ON artifacts(started_at);
CREATE INDEX IF NOT EXISTS idx_artifacts_type ON artifacts(activity_type);
CREATE INDEX IF NOT EXISTS idx_delivery_pending
    ON delivery_records(destination, status) WHERE status = 'pending';
CREATE INDEX IF NOT EXISTS idx_delivery_failed
    ON delivery_records(status) WHERE status = 'failed';
"""


class Ledger:
    """Durable store of artifacts and per-destination delivery records."""

    def __init__(self, path: Path = None):
        """Initialize ledger; nothing touches disk until ``connect``."""
        settings = get_settings()
        self.path = Path(path).expanduser() if path else settings.get_ledger_path()
        self._ready = False

    def connect(self):
        """Create the database file and apply the schema."""
        if self._ready:
            return

        logger.info(f"Opening ledger at {self.path}...")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._open()
            try:
                conn.executescript(SCHEMA)
                conn.execute("SELECT COUNT(*) FROM artifacts").fetchone()
            finally:
                conn.close()
        except (OSError, sqlite3.Error) as e:
            raise LedgerError(f"cannot open ledger {self.path}: {e}") from e

        self._ready = True
        logger.success("Ledger ready")

    def close(self):
        """Mark the ledger closed; connections are per operation."""
        if self._ready:
            logger.info("Closing ledger...")
            self._ready = False

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.path), timeout=30.0)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def session(self) -> Iterator[sqlite3.Connection]:
        """Context manager for one transaction: commit on success, roll back on error."""
        if not self._ready:
            self.connect()
        conn = self._open()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def record_artifact(self, artifact: Artifact) -> Optional[int]:
        """
        Insert a newly discovered artifact.

        A path that is already recorded is left untouched.

        Returns:
            New row id, or None if the path was already known
        """
        values = _artifact_values(artifact)
        cols = ", ".join(values.keys())
        placeholders = ", ".join(["?"] * len(values))

        with self.session() as conn:
            cursor = conn.execute(
                f"INSERT INTO artifacts ({cols}) VALUES ({placeholders}) "
                "ON CONFLICT(path) DO NOTHING",
                list(values.values()),
            )
            if cursor.rowcount == 0:
                logger.warning(f"Artifact already recorded, insert ignored: {artifact.path}")
                return None
            return cursor.lastrowid

    def find_by_path(self, path: str) -> Optional[Artifact]:
        """Find an artifact by absolute path."""
        with self.session() as conn:
            row = conn.execute(
                f"SELECT {', '.join(ARTIFACT_COLUMNS)} FROM artifacts WHERE path = ?",
                (path,),
            ).fetchone()
        return _row_to_artifact(row) if row else None

    def find_by_fingerprint(self, fingerprint: str) -> Optional[Artifact]:
        """Find the first artifact recorded with this content fingerprint."""
        with self.session() as conn:
            row = conn.execute(
                f"SELECT {', '.join(ARTIFACT_COLUMNS)} FROM artifacts "
                "WHERE fingerprint = ? ORDER BY id LIMIT 1",
                (fingerprint,),
            ).fetchone()
        return _row_to_artifact(row) if row else None

    def exists(self, path: str, fingerprint: str) -> bool:
        """True if either the path or the content fingerprint is already known."""
        with self.session() as conn:
            count = conn.execute(
                "SELECT COUNT(*) FROM artifacts WHERE path = ? OR fingerprint = ?",
                (path, fingerprint),
            ).fetchone()[0]
        return count > 0

    def list_artifacts(self, limit: int = 100) -> List[Artifact]:
        """List artifacts, most recent activity first."""
        with self.session() as conn:
            rows = conn.execute(
                f"SELECT {', '.join(ARTIFACT_COLUMNS)} FROM artifacts "
                "ORDER BY started_at DESC, discovered_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [_row_to_artifact(row) for row in rows]

    # ------------------------------------------------------------------
    # Delivery records
    # ------------------------------------------------------------------

    def create_delivery_record(self, artifact_id: int, destination: str) -> bool:
        """
        Queue an artifact for a destination.

        Returns:
            True if a new pending record was created, False if one existed
        """
        with self.session() as conn:
            cursor = conn.execute(
                """
                INSERT INTO delivery_records (artifact_id, destination, status)
                VALUES (?, ?, 'pending')
                ON CONFLICT(artifact_id, destination) DO NOTHING
                """,
                (artifact_id, destination),
            )
            return cursor.rowcount > 0

    def get_delivery_record(self, artifact_id: int, destination: str) -> Optional[DeliveryRecord]:
        """Fetch the record for one (artifact, destination) pair."""
        with self.session() as conn:
            row = conn.execute(
                f"SELECT {', '.join(RECORD_COLUMNS)} FROM delivery_records "
                "WHERE artifact_id = ? AND destination = ?",
                (artifact_id, destination),
            ).fetchone()
        return _row_to_record(row) if row else None

    def mark_attempted(self, artifact_id: int, destination: str):
        """Stamp the last-attempted time without changing state."""
        with self.session() as conn:
            conn.execute(
                "UPDATE delivery_records SET attempted_at = ? "
                "WHERE artifact_id = ? AND destination = ?",
                (to_iso(now_utc()), artifact_id, destination),
            )

    def mark_succeeded(
        self,
        artifact_id: int,
        destination: str,
        remote_id: Optional[str] = None,
        remote_url: Optional[str] = None,
    ):
        """Move a delivery to its terminal succeeded state."""
        now = to_iso(now_utc())
        with self.session() as conn:
            conn.execute(
                """
                UPDATE delivery_records
                SET status = 'succeeded', attempted_at = ?, completed_at = ?,
                    remote_id = ?, remote_url = ?, error = NULL
                WHERE artifact_id = ? AND destination = ?
                """,
                (now, now, remote_id, remote_url, artifact_id, destination),
            )

    def mark_failed(self, artifact_id: int, destination: str, error: str):
        """Record a failed delivery and bump its retry counter."""
        with self.session() as conn:
            conn.execute(
                """
                UPDATE delivery_records
                SET status = 'failed', attempted_at = ?, error = ?, retries = retries + 1
                WHERE artifact_id = ? AND destination = ? AND status != 'succeeded'
                """,
                (to_iso(now_utc()), error, artifact_id, destination),
            )

    def pending_for(self, destination: str) -> List[Artifact]:
        """Artifacts awaiting delivery to ``destination``, oldest activity first."""
        cols = ", ".join(f"a.{c}" for c in ARTIFACT_COLUMNS)
        with self.session() as conn:
            rows = conn.execute(
                f"""
                SELECT {cols}
                FROM artifacts a
                JOIN delivery_records d ON d.artifact_id = a.id
                WHERE d.destination = ? AND d.status = 'pending'
                ORDER BY a.started_at IS NULL, a.started_at ASC, a.discovered_at ASC, a.id ASC
                """,
                (destination,),
            ).fetchall()
        return [_row_to_artifact(row) for row in rows]

    def retry_eligible(self, destination: str, max_retries: int) -> List[DeliveryRecord]:
        """Failed records for ``destination`` still under the retry ceiling."""
        with self.session() as conn:
            rows = conn.execute(
                f"""
                SELECT {', '.join(RECORD_COLUMNS)} FROM delivery_records
                WHERE destination = ? AND status = 'failed' AND retries < ?
                ORDER BY attempted_at ASC
                """,
                (destination, max_retries),
            ).fetchall()
        return [_row_to_record(row) for row in rows]

    def reset_to_retry(self, destination: str, max_retries: int) -> int:
        """
        Re-queue failed deliveries under the retry ceiling.

        Returns:
            Number of records moved back to pending
        """
        with self.session() as conn:
            cursor = conn.execute(
                """
                UPDATE delivery_records SET status = 'pending'
                WHERE destination = ? AND status = 'failed' AND retries < ?
                """,
                (destination, max_retries),
            )
            count = cursor.rowcount

        if count:
            logger.info(f"Re-queued {count} failed deliveries for {destination}")
        return count

    def stats(self) -> LedgerStats:
        """Aggregate counts across the ledger."""
        stats = LedgerStats()
        buckets = {
            DeliveryStatus.PENDING.value: stats.pending_by_destination,
            DeliveryStatus.SUCCEEDED.value: stats.succeeded_by_destination,
            DeliveryStatus.FAILED.value: stats.failed_by_destination,
        }

        with self.session() as conn:
            stats.total_artifacts = conn.execute("SELECT COUNT(*) FROM artifacts").fetchone()[0]
            stats.total_deliveries = conn.execute(
                "SELECT COUNT(*) FROM delivery_records"
            ).fetchone()[0]
            rows = conn.execute(
                """
                SELECT destination, status, COUNT(*) AS cnt
                FROM delivery_records
                GROUP BY destination, status
                """
            ).fetchall()

        for row in rows:
            buckets[row["status"]][row["destination"]] = row["cnt"]

        return stats


def _metadata_values(metadata: ActivityMetadata) -> Dict[str, Any]:
    values = metadata.model_dump()
    values["started_at"] = to_iso(metadata.started_at)
    return {col: values[col] for col in METADATA_COLUMNS}


def _artifact_values(artifact: Artifact) -> Dict[str, Any]:
    values = {
        "path": artifact.path,
        "fingerprint": artifact.fingerprint,
        "size": artifact.size,
        "discovered_at": to_iso(artifact.discovered_at),
        "source": artifact.source.value,
    }
    values.update(_metadata_values(artifact.metadata))
    return values


def _row_to_artifact(row: sqlite3.Row) -> Artifact:
    d = dict(row)
    meta = {col: d[col] for col in METADATA_COLUMNS}
    meta["started_at"] = parse_iso_timestamp(meta["started_at"])
    return Artifact(
        id=d["id"],
        path=d["path"],
        fingerprint=d["fingerprint"],
        size=d["size"],
        discovered_at=parse_iso_timestamp(d["discovered_at"]),
        source=d["source"],
        metadata=ActivityMetadata(**meta),
    )


def _row_to_record(row: sqlite3.Row) -> DeliveryRecord:
    d = dict(row)
    d["attempted_at"] = parse_iso_timestamp(d["attempted_at"])
    d["completed_at"] = parse_iso_timestamp(d["completed_at"])
    return DeliveryRecord(**d)


# Global ledger instance
_ledger: Optional[Ledger] = None


def get_ledger() -> Ledger:
    """Get global ledger instance."""
    global _ledger
    if _ledger is None:
        ledger = Ledger()
        ledger.connect()
        _ledger = ledger
    return _ledger


def close_ledger():
    """Close global ledger."""
    global _ledger
    if _ledger:
        _ledger.close()
        _ledger = None
