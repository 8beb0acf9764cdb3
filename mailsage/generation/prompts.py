"""Prompt builders for the search-answer, summary, and compose flows."""

from html.parser import HTMLParser

from mailsage.generation.types import ComposeMode, Prompt
from mailsage.storage.dates import timestamp
from mailsage.storage.models import EmailRow

# Maximum characters of each email body sent to the model, applied after HTML
# stripping, so this represents actual text content rather than raw markup.
BODY_CHAR_LIMIT = 4_000

_TRUNCATION_MARKER = "[… email truncated …]"


# ── HTML stripper ───────────────────────────────────────────────────────────────


class _HTMLStripper(HTMLParser):
    """Minimal HTMLParser subclass that collects visible text nodes."""

    _SKIP = {"script", "style"}

    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []
        self._skipping = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in self._SKIP:
            self._skipping += 1

    def handle_endtag(self, tag: str) -> None:
        if tag in self._SKIP and self._skipping:
            self._skipping -= 1

    def handle_data(self, data: str) -> None:
        text = data.strip()
        if text and not self._skipping:
            self._parts.append(text)

    def get_text(self) -> str:
        return " ".join(self._parts)


def strip_html(text: str) -> str:
    """Return plain text from an HTML string.

    If the input doesn't look like HTML, or stripping produces nothing useful,
    the original string is returned unchanged.
    """
    if "<" not in text:
        return text
    stripper = _HTMLStripper()
    try:
        stripper.feed(text)
        result = stripper.get_text()
        # Stripping away >90% of the content means the input was not really HTML.
        return result if len(result) > len(text) * 0.1 else text
    except Exception:  # noqa: BLE001
        return text


def _plain_body(row: EmailRow) -> str:
    """Stripped, truncated body (falling back to the snippet)."""
    plain = strip_html(row.body or row.snippet or "")
    if len(plain) > BODY_CHAR_LIMIT:
        return plain[:BODY_CHAR_LIMIT] + "\n" + _TRUNCATION_MARKER
    return plain


def _format_email(row: EmailRow) -> str:
    return (
        f"From: {row.sender}\n"
        f"Date: {row.date or 'unknown'}\n"
        f"Subject: {row.subject}\n\n"
        f"{_plain_body(row)}"
    )


def _chronological(row: EmailRow) -> tuple[bool, float]:
    ts = timestamp(row.date)
    return (ts == float("-inf"), ts)


# ── Search answer ──────────────────────────────────────────────────────────────

_SEARCH_SYSTEM = (
    "You answer questions about the user's own mailbox. Use only the emails "
    "provided. If they do not contain the answer, say so plainly instead of "
    "guessing. Mention senders and dates when they help the user find the email."
)


def build_search_prompt(query: str, emails: list[EmailRow]) -> Prompt:
    """Grounded-answer prompt.  Emails keep their retrieval rank order."""
    context = "\n\n---\n\n".join(
        f"[{i}] {_format_email(row)}" for i, row in enumerate(emails, start=1)
    )
    return Prompt(
        system=_SEARCH_SYSTEM,
        user=(
            f"Here are {len(emails)} email(s) from my mailbox, most relevant first:\n\n"
            f"{context}\n\n"
            f"Question: {query}"
        ),
    )


# ── Thread summary ─────────────────────────────────────────────────────────────

_SUMMARY_SYSTEM = (
    "You summarise email threads. Be concise and specific: cover the current "
    "state, decisions made, open questions, and who needs to act next. "
    "Reference actual names, dates, and details from the messages."
)


def build_summary_prompt(messages: list[EmailRow] | tuple[EmailRow, ...]) -> Prompt:
    """Summary prompt built from the thread's messages, oldest first.

    Messages are re-sorted by parsed date (stable, undated last) so the prompt
    is identical for the same thread regardless of the order the caller
    passed them in, and mixed UTC offsets still come out chronological.
    """
    ordered = sorted(messages, key=_chronological)
    subject = ordered[0].subject if ordered else ""
    body = "\n\n---\n\n".join(_format_email(row) for row in ordered)
    return Prompt(
        system=_SUMMARY_SYSTEM,
        user=(
            f"Summarise this email thread ({len(ordered)} message(s)), "
            f"subject {subject!r}:\n\n{body}"
        ),
    )


# ── Compose ────────────────────────────────────────────────────────────────────

_COMPOSE_SYSTEM = (
    "You write clear, friendly, professional emails. Reply with the email body "
    "only — no subject line, no commentary, no surrounding quotes."
)

_COMPOSE_INSTRUCTIONS: dict[ComposeMode, str] = {
    ComposeMode.WRITE: "Write an email based on this brief:",
    ComposeMode.IMPROVE: (
        "Improve this email draft. Keep its meaning and intent; fix grammar, "
        "tighten wording, and make the tone appropriate:"
    ),
}


def build_compose_prompt(body: str, mode: ComposeMode) -> Prompt:
    return Prompt(
        system=_COMPOSE_SYSTEM,
        user=f"{_COMPOSE_INSTRUCTIONS[mode]}\n\n{strip_html(body)}",
    )
