"""
Test suite for math problem generation and scoring
"""

import random
import pytest

from classroom_economy.math_game import (
    Difficulty,
    MathProblem,
    OPERAND_RANGES,
    count_correct,
    generate_problems,
    parse_difficulty,
)
from classroom_economy.errors import EconomyValidationError


class TestProblemGeneration:

    @pytest.mark.parametrize("difficulty", list(Difficulty))
    def test_generated_answers_are_correct(self, difficulty):
        problems = generate_problems(difficulty, 200, random.Random(42))

        for p in problems:
            if p.operation == "+":
                assert p.num1 + p.num2 == p.answer
            elif p.operation == "-":
                assert p.num1 - p.num2 == p.answer
                assert p.answer >= 0
            elif p.operation == "×":
                assert p.num1 * p.num2 == p.answer
            else:
                assert p.num2 * p.answer == p.num1
                assert p.num2 >= 2

    def test_operands_stay_in_range(self):
        for p in generate_problems(Difficulty.EASY, 200, random.Random(7)):
            low, high = OPERAND_RANGES[Difficulty.EASY][p.operation]
            if p.operation == "÷":
                assert low <= p.num2 <= high
                assert low <= p.answer <= high
            else:
                assert low <= p.num1 <= high
                assert low <= p.num2 <= high

    def test_seeded_generation_is_reproducible(self):
        first = generate_problems(Difficulty.HARD, 10, random.Random(3))
        second = generate_problems(Difficulty.HARD, 10, random.Random(3))
        assert first == second

    def test_public_dict_hides_answer(self):
        problem = MathProblem(num1=3, num2=4, operation="+", answer=7)
        public = problem.public_dict()

        assert "answer" not in public
        assert public["display"] == "3 + 4 ="
        assert MathProblem.from_dict(problem.to_dict()) == problem

    def test_parse_difficulty(self):
        assert parse_difficulty("MEDIUM") == Difficulty.MEDIUM
        assert parse_difficulty(Difficulty.HARD) == Difficulty.HARD
        with pytest.raises(EconomyValidationError):
            parse_difficulty("impossible")


class TestScoring:

    def setup_method(self):
        self.problems = [
            MathProblem(1, 1, "+", 2),
            MathProblem(5, 3, "-", 2),
            MathProblem(3, 4, "×", 12),
            MathProblem(12, 3, "÷", 4),
        ]

    def test_all_correct(self):
        assert count_correct(self.problems, [2, 2, 12, 4]) == 4

    def test_answers_compared_by_position(self):
        assert count_correct(self.problems, [2, 12, 2, 4]) == 2

    def test_string_and_float_answers_are_accepted(self):
        assert count_correct(self.problems, ["2", " 2 ", 12.0, "4"]) == 4

    def test_unparseable_answers_are_wrong(self):
        assert count_correct(self.problems, ["two", None, 12.5, True]) == 0

    def test_malformed_digit_strings_are_wrong(self):
        assert count_correct(self.problems, ["--2", "\u00b2", "1\u00b2", "-"]) == 0

    def test_negative_answers_parse(self):
        problems = [MathProblem(3, 5, "-", -2)]
        assert count_correct(problems, ["-2"]) == 1

    def test_partial_answer_list(self):
        assert count_correct(self.problems, [2]) == 1
        assert count_correct(self.problems, []) == 0

    def test_too_many_answers_rejected(self):
        with pytest.raises(EconomyValidationError):
            count_correct(self.problems, [2, 2, 12, 4, 9])

    def test_answers_must_be_a_list(self):
        with pytest.raises(EconomyValidationError):
            count_correct(self.problems, "2,2,12,4")
