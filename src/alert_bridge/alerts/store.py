# SPDX-License-Identifier: MIT
# src/alert_bridge/alerts/store.py
"""
Bridge storage and state management.
"""
from __future__ import annotations
import sqlite3
import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from ..errors import PersistenceError
from ..models import AlertOccurrence, DetailEntry, NewsItem, Summary
from ..utils.time_utils import from_iso, to_utc_iso, utc_now

logger = logging.getLogger(__name__)


class BridgeStore:
    """
    Single SQLite database holding every piece of pipeline state.

    Tables:
    - bridge_state: key/value scalars (the chat cursor)
    - seen_keys: dedup keys already alerted in the current epoch
    - pending_occurrences: repeat alerts waiting for the hourly summary
    - error_summaries: sent summaries and their drill-down detail
    - sent_fingerprints: (destination, content hash) of every dispatch
    - news_items: scraped announcements awaiting or past their posting

    Writes run inside ``BEGIN IMMEDIATE`` transactions behind a process-wide
    lock, so scheduler threads never interleave conflicting writes.
    """

    def __init__(self, db_path: Optional[Path] = None, timeout: float = 30.0):
        """
        Initialize the bridge store.

        Args:
            db_path: Path to SQLite database file (default: data/state/bridge.db)
            timeout: Seconds to wait on a locked database before failing
        """
        if db_path is None:
            db_path = Path("data/state/bridge.db")

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self._lock = threading.RLock()
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        with self._write() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS bridge_state (
                    key             TEXT    PRIMARY KEY,
                    value           TEXT    NOT NULL,
                    updated_at      TEXT    NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS seen_keys (
                    dedup_key       TEXT    PRIMARY KEY,
                    item_id         TEXT,
                    first_seen_at   TEXT    NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS pending_occurrences (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    item_id         TEXT    NOT NULL UNIQUE,
                    category        TEXT    NOT NULL,
                    embedded_id     TEXT,
                    subject         TEXT,
                    occurred_at     TEXT    NOT NULL,
                    recorded_at     TEXT    NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS error_summaries (
                    summary_id      TEXT    PRIMARY KEY,
                    chat_id         TEXT    NOT NULL,
                    message_id      TEXT    NOT NULL,
                    summary_text    TEXT    NOT NULL,
                    details_json    TEXT    NOT NULL,
                    created_at      TEXT    NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sent_fingerprints (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    destination     TEXT    NOT NULL,
                    content_hash    TEXT    NOT NULL,
                    sent_at         TEXT    NOT NULL,
                    UNIQUE(destination, content_hash)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS news_items (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    source          TEXT    NOT NULL,
                    external_id     TEXT    NOT NULL,
                    title           TEXT    NOT NULL,
                    raw_date        TEXT,
                    url             TEXT,
                    content         TEXT,
                    summary         TEXT,
                    created_at      TEXT    NOT NULL,
                    planned_at      TEXT,
                    posted          INTEGER NOT NULL DEFAULT 0,
                    posted_at       TEXT,
                    failed_hash     TEXT,
                    UNIQUE(source, external_id)
                )
            """)

            # Indexes
            conn.execute("CREATE INDEX IF NOT EXISTS idx_summaries_created ON error_summaries(created_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_news_due ON news_items(posted, planned_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_news_created ON news_items(created_at)")

            # ---- Lightweight migrations (add columns if missing) ----
            for table, column in (("seen_keys", "item_id"), ("news_items", "failed_hash")):
                cols = {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
                if column not in cols:
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} TEXT")
                    logger.info(f"Added column {table}.{column}")

    # ------------------------------------------------------------------
    # Connection helpers

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            raise PersistenceError(str(e)) from e
        finally:
            conn.close()

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """
        Open an immediate transaction. ``sqlite3.IntegrityError`` propagates
        unchanged so callers can treat unique-key hits as a normal outcome;
        every other sqlite error becomes ``PersistenceError``.
        """
        with self._lock:
            try:
                conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
            except sqlite3.Error as e:
                raise PersistenceError(f"Cannot open {self.db_path}: {e}") from e
            conn.row_factory = sqlite3.Row
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except sqlite3.IntegrityError:
                conn.execute("ROLLBACK")
                raise
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise PersistenceError(str(e)) from e
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

    # ------------------------------------------------------------------
    # Key/value state

    def get_state(self, key: str) -> Optional[str]:
        with self._read() as conn:
            row = conn.execute("SELECT value FROM bridge_state WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_state_if(self, key: str, value: str, should_replace: Callable[[Optional[str]], bool]) -> bool:
        """
        Atomically write ``value`` when ``should_replace(current)`` is true.

        Returns:
            True if the value was written
        """
        with self._write() as conn:
            row = conn.execute("SELECT value FROM bridge_state WHERE key = ?", (key,)).fetchone()
            current = row["value"] if row else None
            if not should_replace(current):
                return False
            conn.execute("""
                INSERT OR REPLACE INTO bridge_state (key, value, updated_at)
                VALUES (?, ?, ?)
            """, (key, value, to_utc_iso(utc_now())))
        logger.debug(f"State {key}: {current!r} -> {value!r}")
        return True

    # ------------------------------------------------------------------
    # Seen keys (dedup epoch)

    def has_seen(self, dedup_key: str) -> bool:
        with self._read() as conn:
            row = conn.execute("SELECT 1 FROM seen_keys WHERE dedup_key = ?", (dedup_key,)).fetchone()
        return row is not None

    def mark_seen(self, dedup_key: str, item_id: Optional[str] = None) -> bool:
        with self._write() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO seen_keys (dedup_key, item_id, first_seen_at) VALUES (?, ?, ?)",
                (dedup_key, item_id, to_utc_iso(utc_now())),
            )
            return cur.rowcount == 1

    def seen_item_id(self, dedup_key: str) -> Optional[str]:
        """Source item that first raised ``dedup_key`` this epoch, if recorded."""
        with self._read() as conn:
            row = conn.execute("SELECT item_id FROM seen_keys WHERE dedup_key = ?", (dedup_key,)).fetchone()
        return row["item_id"] if row else None

    def clear_seen(self) -> int:
        with self._write() as conn:
            cur = conn.execute("DELETE FROM seen_keys")
            return cur.rowcount

    # ------------------------------------------------------------------
    # Pending occurrences

    def add_pending(self, occurrence: AlertOccurrence) -> bool:
        """
        Record a repeat alert. Re-recording the same source item is a no-op.

        Returns:
            True if a new row was added
        """
        with self._write() as conn:
            cur = conn.execute("""
                INSERT OR IGNORE INTO pending_occurrences (
                    item_id, category, embedded_id, subject, occurred_at, recorded_at
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, (
                occurrence.item_id,
                occurrence.category,
                occurrence.embedded_id,
                occurrence.subject,
                to_utc_iso(occurrence.timestamp),
                to_utc_iso(utc_now()),
            ))
            return cur.rowcount == 1

    def list_pending(self) -> List[Tuple[int, AlertOccurrence]]:
        """Pending occurrences in arrival order, with their row ids."""
        with self._read() as conn:
            rows = conn.execute("SELECT * FROM pending_occurrences ORDER BY id").fetchall()
        return [
            (row["id"], AlertOccurrence(
                item_id=row["item_id"],
                category=row["category"],
                embedded_id=row["embedded_id"],
                subject=row["subject"] or "",
                timestamp=from_iso(row["occurred_at"]),
            ))
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Summaries

    def commit_summary(self, summary: Summary, pending_ids: List[int]) -> None:
        """Persist a sent summary and drop the occurrences it covered, atomically."""
        with self._write() as conn:
            conn.execute("""
                INSERT INTO error_summaries (
                    summary_id, chat_id, message_id, summary_text, details_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, (
                summary.summary_id,
                summary.chat_id,
                summary.message_id,
                summary.summary_text,
                json.dumps([d.to_dict() for d in summary.details], ensure_ascii=False),
                to_utc_iso(summary.created_at),
            ))
            conn.executemany(
                "DELETE FROM pending_occurrences WHERE id = ?",
                [(pid,) for pid in pending_ids],
            )
        logger.info(f"Saved summary {summary.summary_id} ({len(pending_ids)} occurrences cleared)")

    def get_summary(self, summary_id: str) -> Optional[Summary]:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM error_summaries WHERE summary_id = ?", (summary_id,)
            ).fetchone()
        if not row:
            return None
        return Summary(
            summary_id=row["summary_id"],
            chat_id=row["chat_id"],
            message_id=row["message_id"],
            summary_text=row["summary_text"],
            details=[DetailEntry.from_dict(d) for d in json.loads(row["details_json"])],
            created_at=from_iso(row["created_at"]),
        )

    def delete_summaries_before(self, cutoff: datetime) -> int:
        with self._write() as conn:
            cur = conn.execute(
                "DELETE FROM error_summaries WHERE created_at < ?", (to_utc_iso(cutoff),)
            )
            return cur.rowcount

    # ------------------------------------------------------------------
    # Sent fingerprints

    def insert_fingerprint(self, destination: str, content_hash: str) -> bool:
        """
        Claim (destination, content_hash).

        Returns:
            True if claimed now, False if it already existed
        """
        try:
            with self._write() as conn:
                conn.execute("""
                    INSERT INTO sent_fingerprints (destination, content_hash, sent_at)
                    VALUES (?, ?, ?)
                """, (destination, content_hash, to_utc_iso(utc_now())))
            return True
        except sqlite3.IntegrityError:
            logger.debug(f"Fingerprint {content_hash[:12]} already recorded for {destination}")
            return False

    # ------------------------------------------------------------------
    # News items

    def news_exists(self, source: str, external_id: str) -> bool:
        with self._read() as conn:
            row = conn.execute(
                "SELECT 1 FROM news_items WHERE source = ? AND external_id = ?",
                (source, external_id),
            ).fetchone()
        return row is not None

    def insert_news(self, item: NewsItem) -> bool:
        """
        Insert a news item with posted=false.

        Returns:
            True if inserted, False if (source, external_id) already exists
        """
        try:
            with self._write() as conn:
                cur = conn.execute("""
                    INSERT INTO news_items (
                        source, external_id, title, raw_date, url, content,
                        summary, created_at, planned_at, posted
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
                """, (
                    item.source,
                    item.external_id,
                    item.title,
                    item.raw_date,
                    item.url,
                    item.content,
                    item.summary,
                    to_utc_iso(item.created_at),
                    to_utc_iso(item.planned_at) if item.planned_at else None,
                ))
                item.id = cur.lastrowid
            logger.info(f"Saved news item {item.source}/{item.external_id}")
            return True
        except sqlite3.IntegrityError:
            logger.debug(f"News item {item.source}/{item.external_id} already exists")
            return False

    def due_news(self, now: datetime) -> List[NewsItem]:
        """Unposted items whose planned instant is at or before ``now``."""
        with self._read() as conn:
            rows = conn.execute("""
                SELECT * FROM news_items
                WHERE posted = 0 AND planned_at IS NOT NULL AND planned_at <= ?
                ORDER BY planned_at, id
            """, (to_utc_iso(now),)).fetchall()
        return [self._row_to_news(row) for row in rows]

    def record_news_failure(self, news_id: int, content_hash: str) -> None:
        """Remember the hash whose fingerprint a failed post already claimed."""
        with self._write() as conn:
            conn.execute("UPDATE news_items SET failed_hash = ? WHERE id = ?", (content_hash, news_id))

    def mark_news_posted(self, news_id: int, posted_at: datetime) -> bool:
        """Flip posted false -> true. Returns False if it was already posted."""
        with self._write() as conn:
            cur = conn.execute(
                "UPDATE news_items SET posted = 1, posted_at = ? WHERE id = ? AND posted = 0",
                (to_utc_iso(posted_at), news_id),
            )
            return cur.rowcount == 1

    def get_news(self, source: str, external_id: str) -> Optional[NewsItem]:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM news_items WHERE source = ? AND external_id = ?",
                (source, external_id),
            ).fetchone()
        return self._row_to_news(row) if row else None

    def delete_news_before(self, cutoff: datetime) -> int:
        with self._write() as conn:
            cur = conn.execute(
                "DELETE FROM news_items WHERE created_at < ?", (to_utc_iso(cutoff),)
            )
            return cur.rowcount

    @staticmethod
    def _row_to_news(row: sqlite3.Row) -> NewsItem:
        return NewsItem(
            id=row["id"],
            source=row["source"],
            external_id=row["external_id"],
            title=row["title"],
            raw_date=row["raw_date"] or "",
            url=row["url"] or "",
            content=row["content"] or "",
            summary=row["summary"] or "",
            created_at=from_iso(row["created_at"]),
            planned_at=from_iso(row["planned_at"]),
            posted=bool(row["posted"]),
            posted_at=from_iso(row["posted_at"]),
            failed_hash=row["failed_hash"],
        )
