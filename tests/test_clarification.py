# tests/test_clarification.py
"""Tests for clarification word bounds and the notes trail"""
from datetime import datetime, timezone

import pytest

from site_dispatch.core.visits import clarification
from site_dispatch.core.visits.errors import ValidationError


def _words(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n))


class TestWordCount:
    def test_counts_whitespace_delimited_tokens(self):
        assert clarification.count_words("  one   two\nthree\t") == 3

    def test_empty(self):
        assert clarification.count_words("") == 0
        assert clarification.count_words(None) == 0
        assert clarification.count_words("   \n ") == 0


class TestResponseBounds:
    def test_exactly_500_words_accepted(self):
        text = _words(500)
        assert clarification.check_response(text) == text

    def test_501_words_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            clarification.check_response(_words(501))
        assert exc_info.value.field == "response"
        assert "501" in exc_info.value.detail

    def test_blank_response_rejected(self):
        with pytest.raises(ValidationError, match="provide a clarification response"):
            clarification.check_response("   ")

    def test_response_is_trimmed(self):
        assert clarification.check_response("  fine by me \n") == "fine by me"


class TestRequestNotesBounds:
    def test_300_words_accepted(self):
        assert clarification.check_request_notes(_words(300)) == _words(300)

    def test_301_words_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            clarification.check_request_notes(_words(301))
        assert exc_info.value.field == "notes"

    def test_none_and_blank(self):
        assert clarification.check_request_notes(None) is None
        assert clarification.check_request_notes("   ") is None


class TestNotesTrail:
    at = datetime(2025, 3, 8, 9, 15, 0, tzinfo=timezone.utc)

    def test_response_block_format(self):
        block = clarification.format_response_block("Gate 2, not gate 1", self.at)
        assert block == "[2025-03-08 09:15:00 UTC] Clarification Response:\nGate 2, not gate 1"

    def test_append_keeps_original_first(self):
        notes = clarification.append_response("Original notes", "More detail", self.at)
        assert notes.startswith("Original notes\n\n[2025-03-08 09:15:00 UTC]")
        assert notes.endswith("More detail")

    def test_append_to_empty_notes(self):
        notes = clarification.append_response(None, "More detail", self.at)
        assert notes.startswith("[2025-03-08")

    def test_rounds_accumulate_in_order(self):
        later = datetime(2025, 3, 9, 9, 0, 0, tzinfo=timezone.utc)
        notes = clarification.append_response("Original", "first answer", self.at)
        notes = clarification.append_response(notes, "second answer", later)
        assert notes.index("Original") < notes.index("first answer") < notes.index("second answer")

    def test_approval_note(self):
        assert clarification.append_approval_note("Notes", "Take the SUV") == "Notes\n\n[Approved]: Take the SUV"
        assert clarification.append_approval_note(None, "Take the SUV") == "[Approved]: Take the SUV"

    def test_has_response_history(self):
        assert clarification.has_response_history(None) is False
        assert clarification.has_response_history("Clarification Response: inline mention") is False
        notes = clarification.append_response("x", "y", self.at)
        assert clarification.has_response_history(notes) is True
