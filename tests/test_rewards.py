"""
Test suite for the reward engine

Covers session start and daily quotas, server-side scoring, doubles day,
settlement idempotency and the word game flow.
"""

import random
import pytest
from decimal import Decimal
from datetime import datetime, timedelta, timezone

from classroom_economy.config import EconomyConfig
from classroom_economy.storage import InMemoryStorage
from classroom_economy.audit import AuditTrail, AuditEventType
from classroom_economy.accounts import AccountManager
from classroom_economy.ledger import LedgerStore, TransactionType
from classroom_economy.bank_settings import BankSettings
from classroom_economy.daily_window import DailyPlayTracker
from classroom_economy.rewards import RewardEngine, SessionStatus, compute_earnings
from classroom_economy.word_game import WordList
from classroom_economy.errors import (
    AlreadySettledError,
    DailyLimitExceededError,
    EconomyValidationError,
    GameDisabledError,
    InvalidStateTransitionError,
    NotFoundError,
)


class TestComputeEarnings:

    def test_units_times_rate_times_multiplier(self):
        assert compute_earnings(10, Decimal("1"), Decimal("1.2"), Decimal("150"), False) == Decimal("12.00")

    def test_cap_applies_before_doubling(self):
        assert compute_earnings(30, Decimal("10"), Decimal("1.5"), Decimal("150"), False) == Decimal("150.00")
        assert compute_earnings(30, Decimal("10"), Decimal("1.5"), Decimal("150"), True) == Decimal("300.00")

    def test_rounds_to_cents(self):
        assert compute_earnings(1, Decimal("0.333"), Decimal("1.5"), Decimal("150"), False) == Decimal("0.50")


class RewardEngineTestBase:

    words = ["crane", "slate", "pride", "ghost", "flame"]

    def setup_method(self):
        self.now = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)
        clock = lambda: self.now
        self.config = EconomyConfig(
            math_problems_per_session=5,
            conflict_backoff_base=0,
            timezone="Africa/Johannesburg"
        )
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.accounts = AccountManager(self.storage, self.audit, clock=clock)
        self.ledger = LedgerStore(self.storage, self.accounts, self.audit, clock=clock)
        self.settings = BankSettings(self.storage, self.audit, clock=clock)
        self.tracker = DailyPlayTracker(self.storage, self.config.timezone, clock=clock)
        self.engine = RewardEngine(
            self.storage, self.accounts, self.ledger, self.settings, self.tracker, self.audit,
            config=self.config, word_list=WordList(self.words), clock=clock, rng=random.Random(1)
        )
        self.account = self.accounts.open_account("alice", class_name="6A")

    def balance(self) -> Decimal:
        return self.ledger.get_balance(self.account.id).amount

    def answers_for(self, session_id, correct):
        """Stored answers for the first ``correct`` problems, wrong ones after"""
        problems = self.engine.get_session(session_id).performance["problems"]
        return [p["answer"] if i < correct else p["answer"] + 1 for i, p in enumerate(problems)]


class TestMathSessions(RewardEngineTestBase):

    def test_start_session_hides_answers(self):
        start = self.engine.start_session("alice", "math", "easy")

        assert start.started is True
        assert start.remaining_plays == 2
        assert start.time_limit_seconds == 60
        assert len(start.problems) == 5
        assert all("answer" not in p for p in start.problems)

        session = self.engine.get_session(start.session_id)
        assert session.status == SessionStatus.IN_PROGRESS
        assert session.game_day == "2025-03-10"

    def test_doubles_day_scenario(self):
        self.settings.set_setting("doubles_day", "true")
        start = self.engine.start_session("alice", "math", "easy")

        result = self.engine.settle_session(start.session_id, {"answers": self.answers_for(start.session_id, 5)})

        assert result.correct_units == 5
        assert result.doubles_day is True
        assert result.earnings == Decimal("10.00")
        assert self.balance() == Decimal("10.00")

        txn = self.ledger.get_transaction(result.transaction_id)
        assert txn.transaction_type == TransactionType.GAME_REWARD
        assert txn.metadata["doubles_day"] is True
        assert txn.metadata["settings_version"] == result.settings_version

    def test_difficulty_multiplier(self):
        start = self.engine.start_session("alice", "math", "hard")
        result = self.engine.settle_session(start.session_id, {"answers": self.answers_for(start.session_id, 4)})

        assert result.earnings == Decimal("6.00")

    def test_client_reported_score_is_ignored(self):
        start = self.engine.start_session("alice", "math", "easy")
        result = self.engine.settle_session(
            start.session_id, {"answers": [], "score": 30, "earnings": "999"}
        )

        assert result.correct_units == 0
        assert result.earnings == Decimal("0.00")
        assert result.transaction_id is None
        assert self.balance() == Decimal("0.00")

    def test_malformed_answers_score_as_wrong(self):
        start = self.engine.start_session("alice", "math", "easy")
        answers = self.answers_for(start.session_id, 5)
        answers[0] = "--" + str(answers[0])
        answers[1] = "\u00b2"

        result = self.engine.settle_session(start.session_id, {"answers": answers})

        assert result.correct_units == 3
        assert result.earnings == Decimal("3.00")

    def test_settlement_is_idempotent(self):
        start = self.engine.start_session("alice", "math", "easy")
        answers = self.answers_for(start.session_id, 3)
        first = self.engine.settle_session(start.session_id, {"answers": answers})

        with pytest.raises(AlreadySettledError) as exc_info:
            self.engine.settle_session(start.session_id, {"answers": answers})

        assert exc_info.value.result == first
        assert self.balance() == Decimal("3.00")
        assert len(self.ledger.get_transactions(account_id=self.account.id)) == 1

    def test_toggle_after_settlement_is_not_retroactive(self):
        start = self.engine.start_session("alice", "math", "easy")
        self.engine.settle_session(start.session_id, {"answers": self.answers_for(start.session_id, 5)})

        self.settings.set_setting("doubles_day", "true")

        with pytest.raises(AlreadySettledError) as exc_info:
            self.engine.settle_session(start.session_id, {"answers": self.answers_for(start.session_id, 5)})
        assert exc_info.value.result.earnings == Decimal("5.00")
        assert exc_info.value.result.doubles_day is False
        assert self.balance() == Decimal("5.00")

    def test_late_settlement_earns_nothing(self):
        start = self.engine.start_session("alice", "math", "easy")
        self.now += timedelta(seconds=91)

        result = self.engine.settle_session(start.session_id, {"answers": self.answers_for(start.session_id, 5)})

        assert result.timed_out is True
        assert result.earnings == Decimal("0.00")
        assert self.engine.get_session(start.session_id).is_settled

    def test_grace_period_is_honoured(self):
        start = self.engine.start_session("alice", "math", "easy")
        self.now += timedelta(seconds=85)

        result = self.engine.settle_session(start.session_id, {"answers": self.answers_for(start.session_id, 2)})

        assert result.timed_out is False
        assert result.earnings == Decimal("2.00")

    def test_high_scores(self):
        first = self.engine.start_session("alice", "math", "easy")
        result = self.engine.settle_session(first.session_id, {"answers": self.answers_for(first.session_id, 4)})
        assert result.is_new_high_score is True

        second = self.engine.start_session("alice", "math", "easy")
        result = self.engine.settle_session(second.session_id, {"answers": self.answers_for(second.session_id, 2)})
        assert result.is_new_high_score is False

        assert self.engine.get_high_scores("alice", "math") == {"easy": 4}

    def test_other_users_session_not_found(self):
        self.accounts.open_account("bob")
        start = self.engine.start_session("alice", "math", "easy")

        with pytest.raises(NotFoundError):
            self.engine.settle_session(start.session_id, {"answers": []}, user_id="bob")

    def test_settlement_audited(self):
        start = self.engine.start_session("alice", "math", "easy")
        self.engine.settle_session(start.session_id, {"answers": self.answers_for(start.session_id, 1)})

        events = self.audit.get_events_for_entity("game_session", start.session_id)
        types = [e.event_type for e in events]
        assert AuditEventType.GAME_SESSION_STARTED in types
        assert AuditEventType.GAME_SESSION_SETTLED in types


class TestQuotasAndToggles(RewardEngineTestBase):

    def test_daily_limit(self):
        for _ in range(3):
            self.engine.start_session("alice", "math", "easy")

        with pytest.raises(DailyLimitExceededError) as exc_info:
            self.engine.start_session("alice", "math", "easy")
        assert exc_info.value.remaining == 0

        # Other game has its own quota
        assert self.engine.start_session("alice", "wordle").started is True

    def test_limit_resets_at_game_day_boundary(self):
        self.settings.set_setting("math_game_daily_limit", "1")
        self.engine.start_session("alice", "math", "easy")

        self.now = datetime(2025, 3, 11, 3, 59, tzinfo=timezone.utc)  # 05:59 local
        with pytest.raises(DailyLimitExceededError):
            self.engine.start_session("alice", "math", "easy")

        self.now = datetime(2025, 3, 11, 4, 0, tzinfo=timezone.utc)  # 06:00 local
        assert self.engine.start_session("alice", "math", "easy").remaining_plays == 0

    def test_disabled_game(self):
        self.settings.set_setting("math_game_enabled", "false")

        with pytest.raises(GameDisabledError):
            self.engine.start_session("alice", "math", "easy")
        assert self.tracker.count("alice", "math", 6) == 0

    def test_status(self):
        self.engine.start_session("alice", "math", "easy")
        status = self.engine.get_status("alice", "math")

        assert status["enabled"] is True
        assert status["daily_limit"] == 3
        assert status["plays_today"] == 1
        assert status["remaining_plays"] == 2
        assert len(status["recent_sessions"]) == 1

    def test_unknown_game_and_difficulty(self):
        with pytest.raises(EconomyValidationError):
            self.engine.start_session("alice", "chess")
        with pytest.raises(EconomyValidationError):
            self.engine.start_session("alice", "math", "impossible")

    def test_user_without_account(self):
        with pytest.raises(NotFoundError):
            self.engine.start_session("nobody", "math", "easy")


class TestWordGame(RewardEngineTestBase):

    def start_word_game(self):
        start = self.engine.start_session("alice", "wordle")
        target = self.engine.get_session(start.session_id).performance["target"]
        return start.session_id, target

    def wrong_words(self, target):
        return [w for w in self.words if w != target]

    def test_win_on_third_guess(self):
        session_id, target = self.start_word_game()
        wrong = self.wrong_words(target)

        self.engine.submit_guess(session_id, wrong[0])
        self.engine.submit_guess(session_id, wrong[1])
        response = self.engine.submit_guess(session_id, target)

        assert response["outcome"] == "won"
        assert response["feedback"] == [2, 2, 2, 2, 2]
        assert response["target_word"] == target

        result = self.engine.settle_session(session_id)
        assert result.correct_units == 8
        assert result.earnings == Decimal("8.00")
        assert self.balance() == Decimal("8.00")

    def test_guesses_can_be_sent_with_settlement(self):
        session_id, target = self.start_word_game()

        result = self.engine.settle_session(session_id, {"guesses": [target]})

        assert result.correct_units == 10
        assert result.earnings == Decimal("10.00")

    def test_loss_earns_nothing(self):
        session_id, target = self.start_word_game()
        wrong = self.wrong_words(target)
        guesses = (wrong * 2)[:6]

        for guess in guesses[:-1]:
            self.engine.submit_guess(session_id, guess)
        response = self.engine.submit_guess(session_id, guesses[-1])
        assert response["outcome"] == "lost"
        assert response["guesses_remaining"] == 0

        result = self.engine.settle_session(session_id)
        assert result.earnings == Decimal("0.00")
        assert result.transaction_id is None

    def test_cannot_settle_unfinished_game(self):
        session_id, target = self.start_word_game()
        self.engine.submit_guess(session_id, self.wrong_words(target)[0])

        with pytest.raises(InvalidStateTransitionError):
            self.engine.settle_session(session_id)
        assert not self.engine.get_session(session_id).is_settled

    def test_no_guesses_after_finish(self):
        session_id, target = self.start_word_game()
        self.engine.submit_guess(session_id, target)

        with pytest.raises(InvalidStateTransitionError):
            self.engine.submit_guess(session_id, target)

    def test_invalid_guess_does_not_use_a_turn(self):
        session_id, _ = self.start_word_game()

        with pytest.raises(EconomyValidationError):
            self.engine.submit_guess(session_id, "zzzzz")
        assert self.engine.get_session(session_id).performance["guesses"] == []

    def test_public_view_hides_target_until_finished(self):
        session_id, target = self.start_word_game()
        assert "target_word" not in self.engine.get_session(session_id).public_view()

        self.engine.submit_guess(session_id, target)
        assert self.engine.get_session(session_id).public_view()["target_word"] == target

    def test_guess_on_math_session_rejected(self):
        start = self.engine.start_session("alice", "math", "easy")

        with pytest.raises(InvalidStateTransitionError):
            self.engine.submit_guess(start.session_id, "crane")
