"""Domain exceptions for the economy engine"""

from typing import Any, Optional


class EconomyError(Exception):
    """Base exception for routine business conditions"""

    pass


class EconomyValidationError(EconomyError, ValueError):
    """Input is malformed or outside the allowed bounds"""

    pass


class NotFoundError(EconomyError):
    """Referenced account, session, loan or template does not exist"""

    pass


class InsufficientFundsError(EconomyError):
    """A debit would take an account below its floor"""

    def __init__(self, account_id: str, balance, amount):
        self.account_id = account_id
        self.balance = balance
        self.amount = amount
        super().__init__(
            f"Insufficient funds in account {account_id}: balance {balance}, required {amount}"
        )


class DailyLimitExceededError(EconomyError):
    """The caller has no plays left in the current game day"""

    def __init__(self, game_type: str, limit: int):
        self.game_type = game_type
        self.limit = limit
        self.remaining = 0
        super().__init__(f"No {game_type} plays remaining today (limit {limit})")


class AlreadySettledError(EconomyError):
    """A game session was settled before; carries the original result"""

    def __init__(self, session_id: str, result: Optional[Any] = None):
        self.session_id = session_id
        self.result = result
        super().__init__(f"Game session {session_id} has already been settled")


class InvalidStateTransitionError(EconomyError):
    """Operation is not valid in the entity's current lifecycle state"""

    pass


class ConcurrentModificationError(EconomyError):
    """Transient store-level conflict; safe to retry"""

    pass


class NoSalaryError(EconomyError):
    """The user has no salary to price insurance against"""

    pass


class GameDisabledError(EconomyError):
    """The requested game type is switched off in bank settings"""

    pass
