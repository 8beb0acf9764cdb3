"""SQLite structured storage: email messages and per-thread summaries."""

import json
import logging
import sqlite3
from dataclasses import replace
from pathlib import Path

from mailsage.storage.dates import normalize_date
from mailsage.storage.models import (
    ALL_TABLES,
    EmailRow,
    LabelCount,
    RawEmail,
    StoredSummary,
    ThreadReference,
)

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = Path("data/mailsage.db")

_EMAIL_COLUMNS = (
    "id, thread_id, sender, recipient, subject, snippet, body, date, labels, stored_at"
)


class EmailDatabase:
    """Wraps SQLite for message storage and the summary cache table.

    Designed for single-threaded use from an async event loop — all calls are
    synchronous/blocking but fast enough for personal email volume.

    Usage::

        db = EmailDatabase()
        db.save(raw_email)
        rows = db.get_thread_messages("thread_1")
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def close(self) -> None:
        """Close the underlying database connection."""
        self._conn.close()

    # ── Messages ────────────────────────────────────────────────────────────────

    def save(self, email: RawEmail) -> bool:
        """Insert or update an email row.  Returns True if the email is new.

        The date is stored in canonical UTC ISO-8601 form (unparseable dates
        become NULL) so text ordering in SQL is chronological.  A new message
        arriving in a thread invalidates that thread's stored summary in the
        same transaction, so the next summary request regenerates it from the
        full thread.
        """
        email = replace(email, date=normalize_date(email.date))
        with self._conn:
            is_new = self._conn.execute(
                "SELECT 1 FROM emails WHERE id = ?", (email.id,)
            ).fetchone() is None
            self._upsert_email(email)
            if is_new:
                deleted = self._conn.execute(
                    "DELETE FROM summaries WHERE thread_id = ?", (email.thread_id,)
                ).rowcount
                if deleted:
                    logger.info(
                        "New message %s invalidated summary for thread %s",
                        email.id,
                        email.thread_id,
                    )
        return is_new

    def get_email_by_id(self, email_id: str) -> EmailRow | None:
        """Return the stored email row for email_id, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_EMAIL_COLUMNS} FROM emails WHERE id = ?",
            (email_id,),
        ).fetchone()
        return EmailRow(**dict(row)) if row else None

    def get_emails_by_ids(self, email_ids: list[str]) -> list[EmailRow]:
        """Return rows for email_ids in the order given, skipping unknown IDs."""
        if not email_ids:
            return []
        placeholders = ", ".join("?" for _ in email_ids)
        rows = self._conn.execute(
            f"SELECT {_EMAIL_COLUMNS} FROM emails WHERE id IN ({placeholders})",
            list(email_ids),
        ).fetchall()
        by_id = {r["id"]: EmailRow(**dict(r)) for r in rows}
        return [by_id[eid] for eid in email_ids if eid in by_id]

    def get_thread_messages(self, thread_id: str) -> list[EmailRow]:
        """Return all messages in a thread, oldest first."""
        rows = self._conn.execute(
            f"SELECT {_EMAIL_COLUMNS} FROM emails WHERE thread_id = ? "
            "ORDER BY date IS NULL, date, stored_at, id",
            (thread_id,),
        ).fetchall()
        return [EmailRow(**dict(r)) for r in rows]

    def get_threads_by_ids(self, thread_ids: list[str]) -> list[ThreadReference]:
        """Describe each known thread: subject of its first message, participants, count.

        Result order is unspecified; callers that need ranking reorder it.
        """
        if not thread_ids:
            return []
        placeholders = ", ".join("?" for _ in thread_ids)
        rows = self._conn.execute(
            f"SELECT thread_id, subject, sender FROM emails "
            f"WHERE thread_id IN ({placeholders}) "
            "ORDER BY thread_id, date IS NULL, date, stored_at, id",
            list(thread_ids),
        ).fetchall()

        subjects: dict[str, str] = {}
        participants: dict[str, list[str]] = {}
        counts: dict[str, int] = {}
        for row in rows:
            tid = row["thread_id"]
            subjects.setdefault(tid, row["subject"])
            senders = participants.setdefault(tid, [])
            if row["sender"] not in senders:
                senders.append(row["sender"])
            counts[tid] = counts.get(tid, 0) + 1

        return [
            ThreadReference(
                thread_id=tid,
                subject=subjects[tid],
                participants=tuple(participants[tid]),
                message_count=counts[tid],
            )
            for tid in subjects
        ]

    def get_recent_emails(
        self, limit: int = 50, offset: int = 0, label: str | None = None
    ) -> list[EmailRow]:
        """Return one page of emails, newest first, optionally only those carrying label."""
        where, params = "", []
        if label is not None:
            where = "WHERE EXISTS (SELECT 1 FROM json_each(emails.labels) WHERE value = ?) "
            params.append(label)
        rows = self._conn.execute(
            f"SELECT {_EMAIL_COLUMNS} FROM emails {where}"
            "ORDER BY date DESC, stored_at DESC, id LIMIT ? OFFSET ?",
            (*params, limit, offset),
        ).fetchall()
        return [EmailRow(**dict(r)) for r in rows]

    def get_label_counts(self) -> list[LabelCount]:
        """Return every label in use with its email count, most used first."""
        rows = self._conn.execute(
            "SELECT j.value AS label, COUNT(*) AS count "
            "FROM emails, json_each(emails.labels) AS j "
            "GROUP BY j.value ORDER BY count DESC, label"
        ).fetchall()
        return [LabelCount(**dict(r)) for r in rows]

    def get_all_emails(self) -> list[EmailRow]:
        """Return every stored email, oldest first."""
        rows = self._conn.execute(
            f"SELECT {_EMAIL_COLUMNS} FROM emails ORDER BY date IS NULL, date, stored_at, id"
        ).fetchall()
        return [EmailRow(**dict(r)) for r in rows]

    # ── Summaries ───────────────────────────────────────────────────────────────

    def get_summary(self, thread_id: str) -> StoredSummary | None:
        """Return the stored summary for a thread, or None."""
        row = self._conn.execute(
            "SELECT thread_id, text, generated_at FROM summaries WHERE thread_id = ?",
            (thread_id,),
        ).fetchone()
        return StoredSummary(**dict(row)) if row else None

    def put_summary(
        self,
        thread_id: str,
        text: str,
        overwrite: bool = False,
        message_count: int | None = None,
    ) -> bool:
        """Store a summary.  Returns False if nothing was written.

        Nothing is written when a summary already exists and overwrite is off,
        or when message_count is given and the thread no longer holds exactly
        that many messages (a message arrived while the summary was being
        generated).  Both checks and the insert are one statement against the
        unique thread_id, so two concurrent writers can never both succeed.
        """
        guard, params = "1", [thread_id, text]
        if message_count is not None:
            guard = "(SELECT COUNT(*) FROM emails WHERE thread_id = ?) = ?"
            params += [thread_id, message_count]
        if overwrite:
            on_conflict = (
                "DO UPDATE SET text = excluded.text, generated_at = datetime('now')"
            )
        else:
            on_conflict = "DO NOTHING"
        sql = (
            "INSERT INTO summaries (thread_id, text) SELECT ?, ? "
            f"WHERE {guard} "
            f"ON CONFLICT(thread_id) {on_conflict}"
        )
        with self._conn:
            cursor = self._conn.execute(sql, params)
        return cursor.rowcount == 1

    def delete_summary(self, thread_id: str) -> bool:
        """Remove a thread's summary.  Returns True if one was removed."""
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM summaries WHERE thread_id = ?", (thread_id,)
            )
        return cursor.rowcount > 0

    # ── Private ─────────────────────────────────────────────────────────────────

    def _create_tables(self) -> None:
        with self._conn:
            for ddl in ALL_TABLES:
                self._conn.execute(ddl)

    def _upsert_email(self, email: RawEmail) -> None:
        self._conn.execute(
            """
            INSERT INTO emails
                (id, thread_id, sender, recipient, subject, snippet, body, date, labels)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                subject = excluded.subject,
                snippet = excluded.snippet,
                body    = excluded.body,
                labels  = excluded.labels
            """,
            (
                email.id,
                email.thread_id,
                email.sender,
                email.recipient,
                email.subject,
                email.snippet,
                email.body,
                email.date,
                json.dumps(email.labels),
            ),
        )
