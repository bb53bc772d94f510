"""
SQLite-backed versioned timeline store.

One row per (slug, version). The row keeps the fields the store filters and
sorts on as columns and the timeline content (entries and predictions) as a
camelCase JSON document. Timestamps are ISO-8601 UTC strings.

  save          edit the latest version in place (or create version 1)
  save_version  append version N+1, guarded by the (slug, version) primary key
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_random

from .errors import PersistenceConflictError, VersionConflictError
from .models import Prediction, TimelineEntry, TimelineVersion, Visibility, VersionSummary
from .slugify import generate_slug

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS timeline_versions (
        slug TEXT NOT NULL,
        version INTEGER NOT NULL,
        topic TEXT NOT NULL,
        value_label TEXT NOT NULL,
        user_id TEXT,
        visibility TEXT NOT NULL DEFAULT 'private',
        view_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        present_value REAL NOT NULL,
        document TEXT NOT NULL,
        PRIMARY KEY (slug, version)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_timeline_versions_user ON timeline_versions(user_id)",
)

# the max-version row of every slug
_LATEST = """
    SELECT t.* FROM timeline_versions t
    JOIN (SELECT slug, MAX(version) AS version FROM timeline_versions GROUP BY slug) m
      ON t.slug = m.slug AND t.version = m.version
"""

SHARED_VISIBILITIES = (Visibility.PUBLIC.value, Visibility.PREMIUM.value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _document(
    past_entries: Sequence[TimelineEntry],
    present_entry: TimelineEntry,
    predictions: Sequence[Prediction],
) -> str:
    return json.dumps(
        {
            "pastEntries": [e.model_dump(mode="json", by_alias=True) for e in sorted(past_entries, key=lambda e: e.date)],
            "presentEntry": present_entry.model_dump(mode="json", by_alias=True),
            "predictions": [p.model_dump(mode="json", by_alias=True) for p in predictions],
        },
        ensure_ascii=False,
    )


class TimelineStore:
    def __init__(
        self,
        db_path: Union[str, Path],
        *,
        retry_attempts: int = 5,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.db_path = Path(db_path)
        self.retry_attempts = max(1, retry_attempts)
        self._now = now or _now
        self._lock = threading.Lock()

        if str(db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False, timeout=5.0)
        self._conn.row_factory = sqlite3.Row
        self._conn.create_function("py_lower", 1, lambda s: s.lower() if s is not None else None, deterministic=True)
        with self._conn:
            for stmt in _SCHEMA:
                self._conn.execute(stmt)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "TimelineStore":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # rows
    # ------------------------------------------------------------------

    @staticmethod
    def _to_version(row: sqlite3.Row) -> TimelineVersion:
        doc = json.loads(row["document"])
        return TimelineVersion.model_validate(
            {
                "slug": row["slug"],
                "version": row["version"],
                "topic": row["topic"],
                "valueLabel": row["value_label"],
                "userId": row["user_id"],
                "visibility": row["visibility"],
                "viewCount": row["view_count"],
                "createdAt": row["created_at"],
                "updatedAt": row["updated_at"],
                **doc,
            }
        )

    def _row(self, slug: str, version: Optional[int] = None) -> Optional[sqlite3.Row]:
        if version is None:
            return self._conn.execute(
                "SELECT * FROM timeline_versions WHERE slug = ? ORDER BY version DESC LIMIT 1", (slug,)
            ).fetchone()
        return self._conn.execute(
            "SELECT * FROM timeline_versions WHERE slug = ? AND version = ?", (slug, version)
        ).fetchone()

    def _max_version(self, slug: str) -> Optional[int]:
        row = self._conn.execute("SELECT MAX(version) FROM timeline_versions WHERE slug = ?", (slug,)).fetchone()
        return row[0] if row else None

    def _insert(
        self,
        slug: str,
        version: int,
        topic: str,
        value_label: str,
        past_entries: Sequence[TimelineEntry],
        present_entry: TimelineEntry,
        predictions: Sequence[Prediction],
        user_id: Optional[str],
        visibility: Visibility,
        created_at: str,
        updated_at: str,
    ) -> None:
        self._conn.execute(
            """
            INSERT INTO timeline_versions
                (slug, version, topic, value_label, user_id, visibility, view_count,
                 created_at, updated_at, present_value, document)
            VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?)
            """,
            (
                slug,
                version,
                topic,
                value_label,
                user_id,
                Visibility(visibility).value,
                created_at,
                updated_at,
                present_entry.value,
                _document(past_entries, present_entry, predictions),
            ),
        )

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    def save(
        self,
        topic: str,
        value_label: str,
        past_entries: Sequence[TimelineEntry],
        present_entry: TimelineEntry,
        predictions: Sequence[Prediction],
        user_id: Optional[str] = None,
        visibility: Visibility = Visibility.PRIVATE,
        slug: Optional[str] = None,
    ) -> TimelineVersion:
        """
        Create version 1 of a new slug, or overwrite the latest version of an
        existing one in place. An overwrite keeps the version number,
        createdAt, viewCount, owner and visibility; only the content and
        updatedAt change.
        """
        with self._lock:
            if slug is None:
                slug = generate_slug(topic)
                while self._max_version(slug) is not None:
                    slug = generate_slug(topic)

            now = _ts(self._now())
            with self._conn:
                current = self._max_version(slug)
                if current is None:
                    self._insert(slug, 1, topic, value_label, past_entries, present_entry, predictions,
                                 user_id, visibility, now, now)
                    version = 1
                    logger.info("store: created %s v1", slug)
                else:
                    self._conn.execute(
                        """
                        UPDATE timeline_versions
                           SET topic = ?, value_label = ?, present_value = ?, document = ?, updated_at = ?
                         WHERE slug = ? AND version = ?
                        """,
                        (
                            topic,
                            value_label,
                            present_entry.value,
                            _document(past_entries, present_entry, predictions),
                            now,
                            slug,
                            current,
                        ),
                    )
                    version = current
                    logger.info("store: overwrote %s v%d in place", slug, current)
            return self._to_version(self._row(slug, version))

    def save_version(
        self,
        slug: str,
        topic: str,
        value_label: str,
        past_entries: Sequence[TimelineEntry],
        present_entry: TimelineEntry,
        predictions: Sequence[Prediction],
        user_id: Optional[str] = None,
        visibility: Optional[Visibility] = None,
    ) -> TimelineVersion:
        """
        Append version max+1 for *slug*. createdAt is copied from version 1 and
        viewCount starts at 0. Owner and visibility default to the latest
        version's.

        If another writer takes the same number first, the insert is retried
        with a fresh read; PersistenceConflictError when retries run out.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_random(0, 0.05),
            retry=retry_if_exception_type(VersionConflictError),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    return self._append(slug, topic, value_label, past_entries, present_entry, predictions,
                                        user_id, visibility)
        except VersionConflictError as e:
            raise PersistenceConflictError(
                f"could not append a version to {slug} after {self.retry_attempts} attempts"
            ) from e

    def _append(
        self,
        slug: str,
        topic: str,
        value_label: str,
        past_entries: Sequence[TimelineEntry],
        present_entry: TimelineEntry,
        predictions: Sequence[Prediction],
        user_id: Optional[str],
        visibility: Optional[Visibility],
    ) -> TimelineVersion:
        with self._lock:
            current = self._max_version(slug)
            now = _ts(self._now())
            if current is None:
                version, created_at = 1, now
            else:
                first = self._conn.execute(
                    "SELECT created_at FROM timeline_versions WHERE slug = ? ORDER BY version ASC LIMIT 1", (slug,)
                ).fetchone()
                latest = self._row(slug)
                version = current + 1
                created_at = first["created_at"] if first else now
                if user_id is None and latest is not None:
                    user_id = latest["user_id"]
                if visibility is None and latest is not None:
                    visibility = Visibility(latest["visibility"])

            try:
                with self._conn:
                    self._insert(slug, version, topic, value_label, past_entries, present_entry, predictions,
                                 user_id, visibility or Visibility.PRIVATE, created_at, now)
            except sqlite3.IntegrityError as e:
                logger.warning("store: version conflict on %s v%d, retrying", slug, version)
                raise VersionConflictError(f"{slug} v{version} already exists") from e

            logger.info("store: appended %s v%d", slug, version)
            return self._to_version(self._row(slug, version))

    def update_visibility(self, slug: str, user_id: Optional[str], visibility: Visibility) -> Optional[TimelineVersion]:
        """
        Set *visibility* on every version of *slug*. Only the owner of the
        latest version may do this; anonymous timelines have no owner.
        Returns the latest version, or None when not found / not permitted.
        """
        visibility = Visibility(visibility)
        with self._lock:
            latest = self._row(slug)
            if latest is None or user_id is None or latest["user_id"] != user_id:
                return None
            with self._conn:
                self._conn.execute("UPDATE timeline_versions SET visibility = ? WHERE slug = ?", (visibility.value, slug))
            logger.info("store: %s visibility -> %s", slug, visibility.value)
            return self._to_version(self._row(slug))

    def delete(self, slug: str, user_id: Optional[str]) -> bool:
        """All versions, in one transaction. Owner only, and only while private."""
        with self._lock:
            latest = self._row(slug)
            if latest is None or user_id is None or latest["user_id"] != user_id:
                return False
            if latest["visibility"] != Visibility.PRIVATE.value:
                return False
            with self._conn:
                cur = self._conn.execute("DELETE FROM timeline_versions WHERE slug = ?", (slug,))
            logger.info("store: deleted %s (%d versions)", slug, cur.rowcount)
            return cur.rowcount > 0

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def get_by_slug(self, slug: str, version: Optional[int] = None, *, count_view: bool = True) -> Optional[TimelineVersion]:
        """
        The given version, or the latest. Each read bumps that version's
        viewCount and returns the post-increment value.
        """
        with self._lock:
            row = self._row(slug, version)
            if row is None:
                return None
            if count_view:
                with self._conn:
                    self._conn.execute(
                        "UPDATE timeline_versions SET view_count = view_count + 1 WHERE slug = ? AND version = ?",
                        (slug, row["version"]),
                    )
                row = self._row(slug, row["version"])
            return self._to_version(row)

    def exists(self, slug: str) -> bool:
        with self._lock:
            return self._max_version(slug) is not None

    def list_versions(self, slug: str) -> List[VersionSummary]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT version, created_at, present_value FROM timeline_versions WHERE slug = ? ORDER BY version DESC",
                (slug,),
            ).fetchall()
        return [
            VersionSummary(version=r["version"], created_at=r["created_at"], present_value=r["present_value"])
            for r in rows
        ]

    def search(self, query: str, limit: int = 20, offset: int = 0) -> Tuple[List[TimelineVersion], int]:
        """
        Case-insensitive substring match on topic or slug, latest version per
        slug only. Ranked exact topic > topic prefix > topic substring > slug
        only, then most recently updated. Returns (page, total matches); a blank
        query matches nothing.
        """
        q = (query or "").strip().lower()
        if not q:
            # instr(x, '') is 1, so a blank query would match everything
            return [], 0
        where = "WHERE instr(py_lower(topic), :q) > 0 OR instr(py_lower(slug), :q) > 0"
        rank = """
            CASE
                WHEN py_lower(topic) = :q THEN 0
                WHEN instr(py_lower(topic), :q) = 1 THEN 1
                WHEN instr(py_lower(topic), :q) > 0 THEN 2
                ELSE 3
            END
        """
        with self._lock:
            total = self._conn.execute(f"SELECT COUNT(*) FROM ({_LATEST}) {where}", {"q": q}).fetchone()[0]
            rows = self._conn.execute(
                f"SELECT * FROM ({_LATEST}) {where} ORDER BY {rank}, updated_at DESC LIMIT :limit OFFSET :offset",
                {"q": q, "limit": limit, "offset": offset},
            ).fetchall()
        return [self._to_version(r) for r in rows], int(total)

    def list_by_user(self, user_id: str) -> List[TimelineVersion]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM ({_LATEST}) WHERE user_id = ? ORDER BY updated_at DESC", (user_id,)
            ).fetchall()
        return [self._to_version(r) for r in rows]

    def list_popular(self, limit: int = 20) -> List[TimelineVersion]:
        """Public and premium timelines by viewCount of their latest version, then recency."""
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM ({_LATEST}) WHERE visibility IN (?, ?) ORDER BY view_count DESC, updated_at DESC LIMIT ?",
                (*SHARED_VISIBILITIES, limit),
            ).fetchall()
        return [self._to_version(r) for r in rows]

    def counts(self) -> Dict[str, int]:
        with self._lock:
            row = self._conn.execute("SELECT COUNT(DISTINCT slug), COUNT(*) FROM timeline_versions").fetchone()
        return {"timelines": int(row[0]), "versions": int(row[1])}
