# site_dispatch/core/visits/clarification.py
"""
Clarification exchange: word bounds and the append-only notes trail.

An approver sends a free-text clarification note (no length bound); the
requester answers with a response of at most 500 words, which is appended
to the visit notes as a timestamped block.  Earlier notes are never
rewritten.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from site_dispatch.core.visits.errors import ValidationError

CLARIFICATION_RESPONSE_WORD_LIMIT = 500
REQUEST_NOTES_WORD_LIMIT = 300

_RESPONSE_HEADER = "Clarification Response:"
_RESPONSE_BLOCK_RE = re.compile(
    r"^\[[^\]\n]+\] " + re.escape(_RESPONSE_HEADER) + r"$",
    re.MULTILINE,
)


def count_words(text: Optional[str]) -> int:
    """Number of whitespace-delimited non-empty tokens."""
    if not text:
        return 0
    return len(text.split())


def check_request_notes(notes: Optional[str]) -> Optional[str]:
    """Validate the optional notes a requester attaches to a request."""
    if notes is None:
        return None
    words = count_words(notes)
    if words > REQUEST_NOTES_WORD_LIMIT:
        raise ValidationError(
            f"Notes exceed {REQUEST_NOTES_WORD_LIMIT} words ({words} given).",
            field="notes",
        )
    return notes.strip() or None


def check_response(response: Optional[str]) -> str:
    """Validate a requester's clarification response and return it trimmed."""
    words = count_words(response)
    if words == 0:
        raise ValidationError("Please provide a clarification response.", field="response")
    if words > CLARIFICATION_RESPONSE_WORD_LIMIT:
        raise ValidationError(
            f"Clarification response exceeds {CLARIFICATION_RESPONSE_WORD_LIMIT} words ({words} given).",
            field="response",
        )
    return response.strip()


def _append(existing: Optional[str], block: str) -> str:
    if existing:
        return f"{existing}\n\n{block}"
    return block


def format_response_block(response: str, at: datetime) -> str:
    return f"[{at.strftime('%Y-%m-%d %H:%M:%S')} UTC] {_RESPONSE_HEADER}\n{response}"


def append_response(existing_notes: Optional[str], response: str, at: datetime) -> str:
    """Return the notes with ``response`` appended as a new timestamped block."""
    return _append(existing_notes, format_response_block(response, at))


def append_approval_note(existing_notes: Optional[str], note: str) -> str:
    return _append(existing_notes, f"[Approved]: {note}")


def has_response_history(notes: Optional[str]) -> bool:
    """True once at least one clarification round has been recorded in the notes."""
    if not notes:
        return False
    return _RESPONSE_BLOCK_RE.search(notes) is not None
