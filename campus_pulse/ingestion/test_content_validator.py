"""
Free-text screening tests.
"""

import pytest

from campus_pulse.ingestion.content_validator import is_meaningful, is_meaningful_commentary


class TestIsMeaningful:
    @pytest.mark.parametrize("value", ["no", "NA", "  None ", "nil", "No"])
    def test_placeholders_rejected(self, value):
        assert not is_meaningful(value)

    @pytest.mark.parametrize("value", ["", "   ", "ok", "x"])
    def test_short_or_blank_rejected(self, value):
        assert not is_meaningful(value)

    @pytest.mark.parametrize("value", [None, 42, 3.5, ["water leak"]])
    def test_non_string_rejected(self, value):
        assert not is_meaningful(value)

    def test_short_sentence_accepted(self):
        assert is_meaningful("yes issue")

    def test_real_issue_accepted(self):
        assert is_meaningful("Water leak in dorm")

    def test_three_characters_is_enough(self):
        assert is_meaningful("fan")

    def test_plain_negative_sentence_still_passes(self):
        """No intent reading: a sentence is accepted even when it means 'nothing'."""
        assert is_meaningful("no issues here")


class TestIsMeaningfulCommentary:
    def test_short_comment_rejected(self):
        assert not is_meaningful_commentary("good")

    def test_na_rejected(self):
        assert not is_meaningful_commentary("  NA  ")

    def test_sentence_accepted(self):
        assert is_meaningful_commentary("Students run the gratitude circle daily")

    def test_non_string_rejected(self):
        assert not is_meaningful_commentary(None)
