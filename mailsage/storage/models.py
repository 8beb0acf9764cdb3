"""SQLite table schemas and the typed records passed between storage and the core."""

from dataclasses import dataclass, field


# ── DDL ────────────────────────────────────────────────────────────────────────

_CREATE_EMAILS = """
CREATE TABLE IF NOT EXISTS emails (
    id          TEXT PRIMARY KEY,
    thread_id   TEXT NOT NULL,
    sender      TEXT NOT NULL,
    recipient   TEXT,
    subject     TEXT NOT NULL,
    snippet     TEXT NOT NULL,
    body        TEXT,
    date        TEXT,
    labels      TEXT NOT NULL DEFAULT '[]',
    stored_at   TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_EMAILS_THREAD_INDEX = """
CREATE INDEX IF NOT EXISTS idx_emails_thread ON emails (thread_id, date)
"""

# thread_id is UNIQUE so that "write if absent" is a single conditional insert.
_CREATE_SUMMARIES = """
CREATE TABLE IF NOT EXISTS summaries (
    thread_id     TEXT PRIMARY KEY,
    text          TEXT NOT NULL,
    generated_at  TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

#: All DDL statements in creation order.
ALL_TABLES: list[str] = [
    _CREATE_EMAILS,
    _CREATE_EMAILS_THREAD_INDEX,
    _CREATE_SUMMARIES,
]


# ── Write-side input ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RawEmail:
    """An email as handed over by the mail sync collaborator.

    ``date`` may be ISO-8601 or an RFC 2822 ``Date:`` header value; storage
    normalises it to UTC ISO-8601.
    """

    id: str
    thread_id: str
    sender: str
    subject: str
    snippet: str
    labels: list[str] = field(default_factory=list)
    body: str | None = None
    recipient: str | None = None
    date: str | None = None


@dataclass(frozen=True)
class EmailRow:
    """A full row from the emails table."""

    id: str
    thread_id: str
    sender: str
    recipient: str | None
    subject: str
    snippet: str
    body: str | None
    date: str | None
    labels: str  # JSON-encoded list[str]
    stored_at: str


# ── Retrieval records ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EmailRef:
    """One nearest-neighbor hit: which email, which thread, and how similar."""

    email_id: str
    thread_id: str
    similarity_score: float
    date: str | None = None


@dataclass(frozen=True)
class ThreadReference:
    """Lightweight thread descriptor sent to the consumer before generation starts."""

    thread_id: str
    subject: str
    participants: tuple[str, ...]
    message_count: int

    def to_dict(self) -> dict[str, object]:
        return {
            "thread_id": self.thread_id,
            "subject": self.subject,
            "participants": list(self.participants),
            "message_count": self.message_count,
        }


@dataclass(frozen=True)
class StoredSummary:
    """A row from the summaries table."""

    thread_id: str
    text: str
    generated_at: str


@dataclass(frozen=True)
class LabelCount:
    """A label and how many stored emails carry it."""

    label: str
    count: int
