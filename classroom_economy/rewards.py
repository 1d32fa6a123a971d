"""
Reward Engine Module

Skill-game sessions (math, word game) and their one-time settlement into
ledger credits. The server generates every problem and target word, keeps
them with the session, and scores settlement from the player's raw inputs
only. Client-reported scores or earnings are ignored.

Session lifecycle: in_progress -> settled. Settlement happens exactly once
per session; a repeated call raises AlreadySettledError carrying the
original result.
"""

import random
from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import AccountManager
from .ledger import LedgerStore, TransactionType
from .bank_settings import BankSettings, SettingsSnapshot
from .daily_window import DailyPlayTracker, game_day, next_reset
from .config import EconomyConfig, get_config
from .clock import Clock, utc_now
from .errors import (
    AlreadySettledError,
    EconomyValidationError,
    GameDisabledError,
    InvalidStateTransitionError,
    NotFoundError,
)
from .retry import retry_on_conflict
from .logging_config import get_logger, log_action
from . import math_game
from .math_game import Difficulty, MathProblem
from .word_game import WordList, MAX_GUESSES, UNITS_BY_GUESSES, compute_feedback, is_win


class GameType(Enum):
    MATH = "math"
    WORDLE = "wordle"


class SessionStatus(Enum):
    IN_PROGRESS = "in_progress"
    SETTLED = "settled"


class WordOutcome(Enum):
    ACTIVE = "active"
    WON = "won"
    LOST = "lost"


WORDLE_DIFFICULTY = "normal"
WORDLE_MULTIPLIER = Decimal("1.0")


@dataclass(frozen=True)
class GameRules:
    """Settings keys and limits that govern one game type"""
    game_type: GameType
    enabled_key: str
    daily_limit_key: str
    base_rate_key: str
    reset_hour: int
    max_earnings: Decimal


@dataclass
class GameSession(StorageRecord):
    """One play of a game; performance holds the server-side state and raw inputs"""
    user_id: str
    game_type: GameType
    difficulty: str
    game_day: str
    started_at: datetime
    status: SessionStatus = SessionStatus.IN_PROGRESS
    performance: Dict[str, Any] = field(default_factory=dict)
    earnings: Decimal = Decimal("0")
    settled_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None

    @property
    def is_settled(self) -> bool:
        return self.status == SessionStatus.SETTLED

    def public_view(self) -> Dict[str, Any]:
        """Session as shown to the player: no answers, no target word while in play"""
        view = {
            "session_id": self.id,
            "game_type": self.game_type.value,
            "difficulty": self.difficulty,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "earnings": str(self.earnings),
        }
        if self.game_type == GameType.MATH:
            view["problems"] = [
                MathProblem.from_dict(p).public_dict() for p in self.performance.get("problems", [])
            ]
        else:
            outcome = self.performance.get("outcome", WordOutcome.ACTIVE.value)
            view["guesses"] = self.performance.get("guesses", [])
            view["feedback"] = self.performance.get("feedback", [])
            view["outcome"] = outcome
            if outcome != WordOutcome.ACTIVE.value:
                view["target_word"] = self.performance.get("target")
        return view


@dataclass
class SessionStart:
    started: bool
    remaining_plays: int
    session_id: Optional[str] = None
    game_type: Optional[str] = None
    difficulty: Optional[str] = None
    problems: List[Dict[str, Any]] = field(default_factory=list)
    time_limit_seconds: Optional[int] = None
    max_guesses: Optional[int] = None


@dataclass
class SettlementResult:
    session_id: str
    game_type: str
    difficulty: str
    correct_units: int
    earnings: Decimal
    doubles_day: bool
    settings_version: int
    timed_out: bool
    is_new_high_score: bool
    remaining_plays: int
    transaction_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["earnings"] = str(self.earnings)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SettlementResult':
        data = dict(data)
        data["earnings"] = Decimal(data["earnings"])
        return cls(**data)


def compute_earnings(
    correct_units: int,
    base_rate: Decimal,
    multiplier: Decimal,
    max_earnings: Decimal,
    doubles_day: bool
) -> Decimal:
    """
    units x base_rate x difficulty multiplier, capped per game, then doubled
    on Doubles Day. Rounded to cents.
    """
    earnings = Decimal(correct_units) * base_rate * multiplier
    if earnings > max_earnings:
        earnings = max_earnings
    if doubles_day:
        earnings *= 2
    return earnings.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class RewardEngine:
    """
    Starts, plays and settles game sessions.
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        ledger: LedgerStore,
        bank_settings: BankSettings,
        play_tracker: DailyPlayTracker,
        audit_trail: AuditTrail,
        config: Optional[EconomyConfig] = None,
        word_list: Optional[WordList] = None,
        clock: Clock = utc_now,
        rng: Optional[random.Random] = None
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.ledger = ledger
        self.bank_settings = bank_settings
        self.play_tracker = play_tracker
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.word_list = word_list or WordList()
        self.clock = clock
        self.rng = rng or random.SystemRandom()
        self.sessions_table = "game_sessions"
        self.high_scores_table = "game_high_scores"
        self.logger = get_logger("classroom_economy.rewards")

        self.rules = {
            GameType.MATH: GameRules(
                game_type=GameType.MATH,
                enabled_key="math_game_enabled",
                daily_limit_key="math_game_daily_limit",
                base_rate_key="math_base_rate",
                reset_hour=self.config.math_reset_hour,
                max_earnings=Decimal(self.config.max_math_earnings)
            ),
            GameType.WORDLE: GameRules(
                game_type=GameType.WORDLE,
                enabled_key="wordle_chores_enabled",
                daily_limit_key="wordle_game_daily_limit",
                base_rate_key="wordle_base_rate",
                reset_hour=self.config.wordle_reset_hour,
                max_earnings=Decimal(self.config.max_wordle_earnings)
            ),
        }

    def _run(self, operation):
        return retry_on_conflict(
            self.storage, operation,
            self.config.conflict_max_retries, self.config.conflict_backoff_base
        )

    @staticmethod
    def parse_game_type(value) -> GameType:
        if isinstance(value, GameType):
            return value
        try:
            return GameType(str(value).lower())
        except ValueError:
            raise EconomyValidationError(f"Unknown game type: {value!r}")

    # ------------------------------------------------------------------
    # Session start
    # ------------------------------------------------------------------

    def start_session(self, user_id: str, game_type, difficulty=None) -> SessionStart:
        """
        Consume one daily play and open a new session.

        Raises:
            GameDisabledError: The game is switched off in bank settings
            DailyLimitExceededError: No plays left today (remaining is 0)
        """
        game_type = self.parse_game_type(game_type)
        rules = self.rules[game_type]
        if game_type == GameType.MATH:
            level = math_game.parse_difficulty(difficulty or Difficulty.EASY.value).value
        else:
            level = WORDLE_DIFFICULTY

        account = self.account_manager.get_account_by_owner(user_id)
        if not account:
            raise NotFoundError(f"No account for user {user_id}")

        snapshot = self.bank_settings.snapshot()
        if not snapshot.get_bool(rules.enabled_key, True):
            raise GameDisabledError(f"The {game_type.value} game is currently disabled")
        limit = snapshot.get_int(rules.daily_limit_key, 3)

        # Content is drawn before the transaction; nothing random happens under the lock
        if game_type == GameType.MATH:
            problems = math_game.generate_problems(
                Difficulty(level), self.config.math_problems_per_session, self.rng
            )
            performance = {"problems": [p.to_dict() for p in problems], "answers": []}
        else:
            performance = {
                "target": self.word_list.random_word(self.rng),
                "guesses": [],
                "feedback": [],
                "outcome": WordOutcome.ACTIVE.value
            }

        def _start():
            with self.storage.atomic():
                now = self.clock()
                remaining = self.play_tracker.try_consume(
                    user_id, game_type.value, limit, rules.reset_hour, now
                )
                session = GameSession(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    user_id=user_id,
                    game_type=game_type,
                    difficulty=level,
                    game_day=game_day(now, rules.reset_hour, self.play_tracker.timezone).isoformat(),
                    started_at=now,
                    performance=performance
                )
                self._save_session(session)
                self.audit_trail.log_event(
                    event_type=AuditEventType.GAME_SESSION_STARTED,
                    entity_type="game_session",
                    entity_id=session.id,
                    metadata={
                        "game_type": game_type.value,
                        "difficulty": level,
                        "game_day": session.game_day,
                        "remaining_plays": remaining
                    },
                    user_id=user_id
                )
                return session, remaining

        session, remaining = self._run(_start)

        log_action(
            self.logger, "info", f"{game_type.value} session started",
            user_id=user_id, action="start_session", resource=f"game_session:{session.id}",
            extra={"difficulty": level, "remaining_plays": remaining}
        )

        view = session.public_view()
        return SessionStart(
            started=True,
            remaining_plays=remaining,
            session_id=session.id,
            game_type=game_type.value,
            difficulty=level,
            problems=view.get("problems", []),
            time_limit_seconds=self.config.math_time_limit_seconds if game_type == GameType.MATH else None,
            max_guesses=MAX_GUESSES if game_type == GameType.WORDLE else None
        )

    # ------------------------------------------------------------------
    # Word game play
    # ------------------------------------------------------------------

    def submit_guess(self, session_id: str, guess: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Record one word-game guess and return its feedback.

        Raises:
            InvalidStateTransitionError: Game finished, settled, or not a word game
            EconomyValidationError: Not a five-letter dictionary word
        """
        normalized = self.word_list.validate_guess(guess)

        def _guess():
            with self.storage.atomic():
                session = self._require_session(session_id, user_id)
                feedback = self._apply_guess(session, normalized)
                session.updated_at = self.clock()
                self._save_session(session)
                return session, feedback

        session, feedback = self._run(_guess)
        outcome = session.performance["outcome"]
        response = {
            "session_id": session.id,
            "guess": normalized,
            "feedback": feedback,
            "guesses_used": len(session.performance["guesses"]),
            "guesses_remaining": MAX_GUESSES - len(session.performance["guesses"]),
            "outcome": outcome
        }
        if outcome != WordOutcome.ACTIVE.value:
            response["target_word"] = session.performance["target"]
        return response

    def _apply_guess(self, session: GameSession, normalized: str) -> List[int]:
        if session.game_type != GameType.WORDLE:
            raise InvalidStateTransitionError("Guesses are only accepted for word game sessions")
        if session.is_settled:
            raise InvalidStateTransitionError(f"Session {session.id} is already settled")
        perf = session.performance
        if perf["outcome"] != WordOutcome.ACTIVE.value:
            raise InvalidStateTransitionError("Game already finished")
        if len(perf["guesses"]) >= MAX_GUESSES:
            raise InvalidStateTransitionError("No guesses remaining")

        feedback = compute_feedback(normalized, perf["target"])
        perf["guesses"].append(normalized)
        perf["feedback"].append(feedback)
        if is_win(feedback):
            perf["outcome"] = WordOutcome.WON.value
        elif len(perf["guesses"]) >= MAX_GUESSES:
            perf["outcome"] = WordOutcome.LOST.value
        return feedback

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def settle_session(
        self,
        session_id: str,
        raw_inputs: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> SettlementResult:
        """
        Score a session from its raw inputs and credit the earnings once.

        Math raw inputs: {"answers": [...]} in problem order.
        Word game raw inputs: optional {"guesses": [...]} not yet submitted.

        Raises:
            AlreadySettledError: Session was settled before (carries the original result)
            InvalidStateTransitionError: Word game still in play
        """
        raw_inputs = raw_inputs or {}
        if not isinstance(raw_inputs, dict):
            raise EconomyValidationError("raw inputs must be an object")
        ignored = sorted({"score", "earnings", "correct", "correct_answers"} & set(raw_inputs))
        if ignored:
            log_action(
                self.logger, "warning", "Ignoring client-reported score fields",
                user_id=user_id, action="settle_session", resource=f"game_session:{session_id}",
                extra={"fields": ignored}
            )

        result = self._run(lambda: self._settle(session_id, raw_inputs, user_id))

        log_action(
            self.logger, "info", f"{result.game_type} session settled",
            user_id=user_id, action="settle_session", resource=f"game_session:{session_id}",
            extra={
                "correct_units": result.correct_units,
                "earnings": str(result.earnings),
                "doubles_day": result.doubles_day,
                "settings_version": result.settings_version,
                "timed_out": result.timed_out
            }
        )
        return result

    def _settle(self, session_id: str, raw_inputs: Dict[str, Any], user_id: Optional[str]) -> SettlementResult:
        with self.storage.atomic():
            session = self._require_session(session_id, user_id)
            if session.is_settled:
                original = SettlementResult.from_dict(session.result) if session.result else None
                raise AlreadySettledError(session.id, original)

            rules = self.rules[session.game_type]
            snapshot = self.bank_settings.snapshot()
            now = self.clock()

            if session.game_type == GameType.MATH:
                units, multiplier, timed_out = self._score_math(session, raw_inputs, now)
            else:
                units, multiplier, timed_out = self._score_word_game(session, raw_inputs), WORDLE_MULTIPLIER, False

            doubles_day = snapshot.get_bool("doubles_day")
            earnings = compute_earnings(
                units,
                snapshot.get_decimal(rules.base_rate_key, Decimal("1")),
                multiplier,
                rules.max_earnings,
                doubles_day
            )

            transaction_id = None
            if earnings > 0:
                account = self.account_manager.get_account_by_owner(session.user_id)
                if not account:
                    raise NotFoundError(f"No account for user {session.user_id}")
                txn = self.ledger.credit(
                    account.id, earnings, TransactionType.GAME_REWARD,
                    self._reward_description(session, units, doubles_day, snapshot),
                    performed_by=session.user_id,
                    metadata={
                        "session_id": session.id,
                        "game_type": session.game_type.value,
                        "difficulty": session.difficulty,
                        "correct_units": units,
                        "doubles_day": doubles_day,
                        "settings_version": snapshot.version
                    }
                )
                transaction_id = txn.id

            is_new_high_score = self._record_high_score(session, units, now)
            remaining = self.play_tracker.remaining(
                session.user_id, session.game_type.value,
                snapshot.get_int(rules.daily_limit_key, 3), rules.reset_hour, now
            )

            result = SettlementResult(
                session_id=session.id,
                game_type=session.game_type.value,
                difficulty=session.difficulty,
                correct_units=units,
                earnings=earnings,
                doubles_day=doubles_day,
                settings_version=snapshot.version,
                timed_out=timed_out,
                is_new_high_score=is_new_high_score,
                remaining_plays=remaining,
                transaction_id=transaction_id
            )

            session.status = SessionStatus.SETTLED
            session.earnings = earnings
            session.settled_at = now
            session.updated_at = now
            session.result = result.to_dict()
            self._save_session(session)

            self.audit_trail.log_event(
                event_type=AuditEventType.GAME_SESSION_SETTLED,
                entity_type="game_session",
                entity_id=session.id,
                metadata={
                    "correct_units": units,
                    "earnings": earnings,
                    "doubles_day": doubles_day,
                    "settings_version": snapshot.version,
                    "transaction_id": transaction_id
                },
                user_id=session.user_id
            )
            return result

    def _score_math(self, session: GameSession, raw_inputs: Dict[str, Any], now: datetime):
        problems = [MathProblem.from_dict(p) for p in session.performance["problems"]]
        answers = raw_inputs.get("answers", [])
        correct = math_game.count_correct(problems, answers)
        session.performance["answers"] = list(answers)

        elapsed = (now - session.started_at).total_seconds()
        session.performance["elapsed_seconds"] = elapsed
        allowed = self.config.math_time_limit_seconds + self.config.game_grace_seconds
        multiplier = math_game.DIFFICULTY_MULTIPLIERS[Difficulty(session.difficulty)]

        if elapsed > allowed:
            log_action(
                self.logger, "warning", "Math session settled after the time limit",
                user_id=session.user_id, action="settle_session",
                resource=f"game_session:{session.id}",
                extra={"elapsed_seconds": elapsed, "allowed_seconds": allowed}
            )
            return 0, multiplier, True
        return correct, multiplier, False

    def _score_word_game(self, session: GameSession, raw_inputs: Dict[str, Any]) -> int:
        guesses = raw_inputs.get("guesses", [])
        if not isinstance(guesses, (list, tuple)):
            raise EconomyValidationError("guesses must be a list")
        for guess in guesses:
            if session.performance["outcome"] != WordOutcome.ACTIVE.value:
                break
            self._apply_guess(session, self.word_list.validate_guess(guess))

        outcome = session.performance["outcome"]
        if outcome == WordOutcome.ACTIVE.value:
            raise InvalidStateTransitionError("Game is not finished yet")
        if outcome == WordOutcome.LOST.value:
            return 0
        return UNITS_BY_GUESSES[len(session.performance["guesses"])]

    @staticmethod
    def _reward_description(session: GameSession, units: int, doubles_day: bool,
                            snapshot: SettingsSnapshot) -> str:
        label = "Math game" if session.game_type == GameType.MATH else "Word game"
        doubles = "on" if doubles_day else "off"
        return (f"{label} reward: {units} units ({session.difficulty}) "
                f"[doubles day {doubles}, settings v{snapshot.version}]")

    # ------------------------------------------------------------------
    # High scores and status
    # ------------------------------------------------------------------

    def _record_high_score(self, session: GameSession, score: int, now: datetime) -> bool:
        record_id = f"{session.user_id}:{session.game_type.value}:{session.difficulty}"
        existing = self.storage.load(self.high_scores_table, record_id)
        if existing and existing["best_score"] >= score:
            return False
        if not existing and score <= 0:
            return False

        self.storage.save(self.high_scores_table, record_id, {
            "user_id": session.user_id,
            "game_type": session.game_type.value,
            "difficulty": session.difficulty,
            "best_score": score,
            "session_id": session.id,
            "achieved_at": now.isoformat()
        })
        self.audit_trail.log_event(
            event_type=AuditEventType.HIGH_SCORE_RECORDED,
            entity_type="game_session",
            entity_id=session.id,
            metadata={"difficulty": session.difficulty, "best_score": score},
            user_id=session.user_id
        )
        return True

    def get_high_scores(self, user_id: str, game_type) -> Dict[str, int]:
        game_type = self.parse_game_type(game_type)
        rows = self.storage.find(self.high_scores_table, {"user_id": user_id, "game_type": game_type.value})
        return {row["difficulty"]: row["best_score"] for row in rows}

    def get_status(self, user_id: str, game_type) -> Dict[str, Any]:
        """Enabled flag, quota, high scores and the latest sessions for one game"""
        game_type = self.parse_game_type(game_type)
        rules = self.rules[game_type]
        snapshot = self.bank_settings.snapshot()
        limit = snapshot.get_int(rules.daily_limit_key, 3)
        now = self.clock()
        tz = self.play_tracker.timezone

        sessions = self.list_sessions(user_id, game_type)
        return {
            "game_type": game_type.value,
            "enabled": snapshot.get_bool(rules.enabled_key, True),
            "doubles_day": snapshot.get_bool("doubles_day"),
            "daily_limit": limit,
            "plays_today": self.play_tracker.count(user_id, game_type.value, rules.reset_hour, now),
            "remaining_plays": self.play_tracker.remaining(user_id, game_type.value, limit, rules.reset_hour, now),
            "game_day": game_day(now, rules.reset_hour, tz).isoformat(),
            "next_reset": next_reset(now, rules.reset_hour, tz).isoformat(),
            "high_scores": self.get_high_scores(user_id, game_type),
            "recent_sessions": [
                {
                    "session_id": s.id,
                    "difficulty": s.difficulty,
                    "status": s.status.value,
                    "earnings": str(s.earnings),
                    "started_at": s.started_at.isoformat()
                }
                for s in sessions[:5]
            ]
        }

    def get_session(self, session_id: str) -> Optional[GameSession]:
        data = self.storage.load(self.sessions_table, session_id)
        return self._session_from_dict(data) if data else None

    def list_sessions(self, user_id: str, game_type=None) -> List[GameSession]:
        """Sessions for a user, newest first"""
        filters = {"user_id": user_id}
        if game_type is not None:
            filters["game_type"] = self.parse_game_type(game_type).value
        sessions = [self._session_from_dict(d) for d in self.storage.find(self.sessions_table, filters)]
        sessions.reverse()
        return sessions

    def _require_session(self, session_id: str, user_id: Optional[str]) -> GameSession:
        session = self.get_session(session_id)
        if not session or (user_id is not None and session.user_id != user_id):
            raise NotFoundError(f"Game session {session_id} not found")
        return session

    def _save_session(self, session: GameSession) -> None:
        self.storage.save(self.sessions_table, session.id, self._session_to_dict(session))

    def _session_to_dict(self, session: GameSession) -> Dict:
        result = session.to_dict()
        result["game_type"] = session.game_type.value
        result["status"] = session.status.value
        result["started_at"] = session.started_at.isoformat()
        result["earnings"] = str(session.earnings)
        result["settled_at"] = session.settled_at.isoformat() if session.settled_at else None
        return result

    def _session_from_dict(self, data: Dict) -> GameSession:
        return GameSession(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            user_id=data["user_id"],
            game_type=GameType(data["game_type"]),
            difficulty=data["difficulty"],
            game_day=data["game_day"],
            started_at=datetime.fromisoformat(data["started_at"]),
            status=SessionStatus(data["status"]),
            performance=data.get("performance", {}),
            earnings=Decimal(data.get("earnings", "0")),
            settled_at=datetime.fromisoformat(data["settled_at"]) if data.get("settled_at") else None,
            result=data.get("result")
        )
