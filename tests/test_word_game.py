"""
Test suite for word game feedback and the word list
"""

import pytest

from classroom_economy.word_game import WordList, compute_feedback, is_win, BUILTIN_WORDS
from classroom_economy.errors import EconomyValidationError


class TestFeedback:

    def test_exact_match(self):
        feedback = compute_feedback("crane", "crane")
        assert feedback == [2, 2, 2, 2, 2]
        assert is_win(feedback)

    def test_no_common_letters(self):
        assert compute_feedback("fuzzy", "crane") == [0, 0, 0, 0, 0]

    def test_misplaced_letters(self):
        # r, a, e present but misplaced; c in place
        assert compute_feedback("caret", "crane") == [2, 1, 1, 1, 0]

    def test_duplicate_guess_letter_counts_once(self):
        # target has one l; the exact match claims it
        assert compute_feedback("hello", "world") == [0, 0, 0, 2, 1]

    def test_exact_match_claims_letter_first(self):
        # the only e in the target is matched in place
        assert compute_feedback("eerie", "crane") == [0, 0, 1, 0, 2]

    def test_duplicate_letter_not_double_marked(self):
        # one e in the target, so only the first misplaced e gets credit
        assert compute_feedback("speed", "abide") == [0, 0, 1, 0, 1]

    def test_case_insensitive(self):
        assert compute_feedback("CRANE", "crane") == [2, 2, 2, 2, 2]

    def test_wrong_length_rejected(self):
        with pytest.raises(EconomyValidationError):
            compute_feedback("cranes", "crane")


class TestWordList:

    def test_builtin_words_are_five_letters(self):
        words = WordList()
        assert len(words) == len(set(BUILTIN_WORDS))
        assert all(len(w) == 5 for w in BUILTIN_WORDS)

    def test_filters_to_five_letter_words(self):
        words = WordList(["Crane", "cat", "slate", "elephant", "crane"])
        assert len(words) == 2
        assert "crane" in words
        assert "cat" not in words

    def test_empty_list_rejected(self):
        with pytest.raises(ValueError):
            WordList(["cat", "dog"])

    def test_validate_guess(self):
        words = WordList(["crane", "slate"])
        assert words.validate_guess(" SLATE ") == "slate"

        with pytest.raises(EconomyValidationError, match="Not a valid word"):
            words.validate_guess("zzzzz")
        with pytest.raises(EconomyValidationError):
            words.validate_guess("cr4ne")
        with pytest.raises(EconomyValidationError):
            words.validate_guess(12345)

    def test_from_file(self, tmp_path):
        path = tmp_path / "words.txt"
        path.write_text("crane\nslate\nbanana\n", encoding="utf-8")

        words = WordList.from_file(path)
        assert len(words) == 2
        assert words.random_word() in ("crane", "slate")
