"""
Math Game

Server-side problem generation and scoring. The whole problem set is drawn
when a session starts and stored with it; settlement only receives the
player's raw answers and scores them against the stored answers.
"""

import random
import re
from dataclasses import dataclass, asdict
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .errors import EconomyValidationError


class Difficulty(Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


DIFFICULTY_MULTIPLIERS = {
    Difficulty.EASY: Decimal("1.0"),
    Difficulty.MEDIUM: Decimal("1.2"),
    Difficulty.HARD: Decimal("1.5"),
}

# (min, max) operand ranges per difficulty; division draws quotient and divisor
OPERAND_RANGES = {
    Difficulty.EASY: {"+": (1, 20), "-": (1, 20), "×": (1, 12), "÷": (2, 12)},
    Difficulty.MEDIUM: {"+": (1, 50), "-": (1, 50), "×": (1, 15), "÷": (2, 15)},
    Difficulty.HARD: {"+": (1, 100), "-": (1, 100), "×": (1, 20), "÷": (2, 20)},
}

OPERATIONS = ("+", "-", "×", "÷")

_INTEGER_PATTERN = re.compile(r"-?[0-9]+")


@dataclass(frozen=True)
class MathProblem:
    num1: int
    num2: int
    operation: str
    answer: int

    @property
    def display(self) -> str:
        return f"{self.num1} {self.operation} {self.num2} ="

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MathProblem':
        return cls(
            num1=data["num1"],
            num2=data["num2"],
            operation=data["operation"],
            answer=data["answer"]
        )

    def public_dict(self) -> Dict[str, Any]:
        """Problem as shown to the player, without the answer"""
        return {
            "num1": self.num1,
            "num2": self.num2,
            "operation": self.operation,
            "display": self.display
        }


def parse_difficulty(value) -> Difficulty:
    if isinstance(value, Difficulty):
        return value
    try:
        return Difficulty(str(value).lower())
    except ValueError:
        raise EconomyValidationError(f"Unknown difficulty: {value!r}")


def generate_problem(difficulty: Difficulty, rng: random.Random) -> MathProblem:
    ranges = OPERAND_RANGES[difficulty]
    operation = rng.choice(OPERATIONS)
    low, high = ranges[operation]

    if operation == "+":
        num1, num2 = rng.randint(low, high), rng.randint(low, high)
        answer = num1 + num2
    elif operation == "-":
        num1, num2 = rng.randint(low, high), rng.randint(low, high)
        # Never negative
        if num1 < num2:
            num1, num2 = num2, num1
        answer = num1 - num2
    elif operation == "×":
        num1, num2 = rng.randint(low, high), rng.randint(low, high)
        answer = num1 * num2
    else:
        # Exact division: draw the quotient and divisor, derive the dividend
        answer, num2 = rng.randint(low, high), rng.randint(low, high)
        num1 = answer * num2

    return MathProblem(num1=num1, num2=num2, operation=operation, answer=answer)


def generate_problems(difficulty: Difficulty, count: int, rng: Optional[random.Random] = None) -> List[MathProblem]:
    rng = rng or random.SystemRandom()
    return [generate_problem(difficulty, rng) for _ in range(count)]


def _coerce_answer(raw) -> Optional[int]:
    """Submitted answer as int; anything unparseable counts as unanswered"""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() else None
    if isinstance(raw, str):
        text = raw.strip()
        if _INTEGER_PATTERN.fullmatch(text):
            return int(text)
    return None


def count_correct(problems: Sequence[MathProblem], answers: Sequence) -> int:
    """
    Number of answers matching the stored problem answers, position by position.

    Raises:
        EconomyValidationError: If answers is not a list or is longer than the problem set
    """
    if not isinstance(answers, (list, tuple)):
        raise EconomyValidationError("answers must be a list")
    if len(answers) > len(problems):
        raise EconomyValidationError(
            f"Received {len(answers)} answers for {len(problems)} problems"
        )
    return sum(
        1 for problem, raw in zip(problems, answers)
        if _coerce_answer(raw) == problem.answer
    )
