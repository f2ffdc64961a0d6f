"""
Unit tests for objective answer comparison and the band table.
"""

import pytest

from ielts_backend.services.exam_service import band_score, compare_answers


class TestCompareAnswers:
    """Answer matching never raises and follows the per-shape rules."""

    @pytest.mark.parametrize("user, correct", [
        ("B", "B"),
        ("  b ", "B"),
        ("cat", "Cat"),
        (3, "3"),
    ])
    def test_string_keys_trim_and_ignore_case(self, user, correct):
        assert compare_answers(user, correct) is True

    def test_string_mismatch(self):
        assert compare_answers("C", "B") is False

    def test_list_order_and_case_insensitive(self):
        assert compare_answers(["France", "Paris"], ["paris", "france"]) is True

    def test_list_trims_members(self):
        assert compare_answers([" paris ", "FRANCE"], ["paris", "france"]) is True

    @pytest.mark.parametrize("user", [
        ["paris"],
        ["paris", "france", "lyon"],
        ["paris", "paris"],
        "paris, france",
        None,
    ])
    def test_list_requires_every_value(self, user):
        assert compare_answers(user, ["paris", "france"]) is False

    def test_list_with_unhashable_values(self):
        assert compare_answers([{"a": 1}, "x"], ["x", "y"]) is False

    @pytest.mark.parametrize("user, expected", [
        (True, True),
        (False, False),
        ("true", True),
        ("TRUE", True),
        (" True ", True),
        ("false", False),
        (1, False),
        ("yes", False),
    ])
    def test_bool_keys(self, user, expected):
        assert compare_answers(user, True) is expected

    def test_bool_false_key(self):
        assert compare_answers(False, False) is True
        assert compare_answers("False", False) is True
        assert compare_answers(0, False) is False

    @pytest.mark.parametrize("correct", [None, 42, {"a": 1}, 3.5])
    def test_other_key_shapes_are_incorrect(self, correct):
        assert compare_answers("anything", correct) is False


class TestBandScore:
    @pytest.mark.parametrize("correct, total, band", [
        (40, 40, 9.0),
        (39, 40, 8.5),
        (36, 40, 8.5),
        (35, 40, 8.0),
        (32, 40, 8.0),
        (28, 40, 7.5),
        (24, 40, 7.0),
        (20, 40, 6.5),
        (16, 40, 6.0),
        (12, 40, 5.5),
        (8, 40, 5.0),
        (4, 40, 4.5),
        (3, 40, 4.0),
        (1, 40, 4.0),
        (0, 40, 0.0),
    ])
    def test_table(self, correct, total, band):
        assert band_score(correct, total) == band

    def test_three_of_four(self):
        assert band_score(3, 4) == 7.5

    def test_no_questions(self):
        assert band_score(0, 0) == 0.0

    def test_decile_is_not_rounded_up(self):
        # 69.9% stays in the 60s band
        assert band_score(699, 1000) == 7.0
