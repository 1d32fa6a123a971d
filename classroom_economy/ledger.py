"""
Ledger Store Module

Durable account and transaction log. All money movement in the economy
passes through LedgerStore: each mutation re-reads the account rows inside
one store transaction, appends the Transaction record, updates the stored
balances and commits, or rolls everything back.

Conservation: for every account, balance == initial_balance + credits - debits
over its transaction history. ``replay_balance`` and ``verify_conservation``
recompute this from the log.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .currency import Money, Currency, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import Account, AccountManager
from .clock import Clock, utc_now
from .errors import (
    EconomyValidationError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    NotFoundError,
)
from .retry import retry_on_conflict
from .logging_config import get_logger, log_action


class TransactionType(Enum):
    """Types of ledger transactions"""
    TRANSFER = "transfer"
    SALARY = "salary"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    LOAN_DISBURSEMENT = "loan_disbursement"
    LOAN_PAYMENT = "loan_payment"
    GAME_REWARD = "game_reward"
    PURCHASE = "purchase"
    INSURANCE_PREMIUM = "insurance_premium"
    DISASTER_ADJUSTMENT = "disaster_adjustment"
    BULK_PAYMENT = "bulk_payment"
    BULK_REMOVAL = "bulk_removal"


# Debit types that may take a balance below zero when the caller asks for it
OVERDRAFT_TYPES = frozenset({
    TransactionType.LOAN_PAYMENT,
    TransactionType.DISASTER_ADJUSTMENT,
    TransactionType.INSURANCE_PREMIUM,
})


@dataclass
class Transaction(StorageRecord):
    """
    Immutable ledger entry. At least one side is set; amount is always positive.
    """
    transaction_type: TransactionType
    from_account_id: Optional[str]
    to_account_id: Optional[str]
    amount: Money
    description: str
    reference: str
    performed_by: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.from_account_id and not self.to_account_id:
            raise ValueError("Transaction must have at least one account (from_account_id or to_account_id)")
        if not self.amount.is_positive():
            raise ValueError("Transaction amount must be positive")

    def delta_for(self, account_id: str) -> Decimal:
        """Signed effect of this transaction on one account's balance"""
        delta = Decimal("0")
        if self.to_account_id == account_id:
            delta += self.amount.amount
        if self.from_account_id == account_id:
            delta -= self.amount.amount
        return delta


class LedgerStore:
    """
    Transactional primitives for balance mutation: transfer, credit, debit.
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        audit_trail: AuditTrail,
        clock: Clock = utc_now,
        max_retries: int = 5,
        backoff_base: float = 0.05
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.audit_trail = audit_trail
        self.clock = clock
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.table_name = "transactions"
        self.logger = get_logger("classroom_economy.ledger")

    @property
    def currency(self) -> Currency:
        return self.account_manager.currency

    def money(self, amount) -> Money:
        """Coerce an incoming amount to a positive Money in the ledger currency"""
        if isinstance(amount, Money):
            value = amount
        else:
            try:
                requested = to_decimal(amount)
            except ValueError as e:
                raise EconomyValidationError(str(e))
            value = Money(requested, self.currency)
            if value.amount != requested:
                raise EconomyValidationError(f"Amount {requested} has more precision than {self.currency.code} allows")
        if not value.is_positive():
            raise EconomyValidationError(f"Amount must be positive, got {value.amount}")
        return value

    def _run(self, operation):
        return retry_on_conflict(self.storage, operation, self.max_retries, self.backoff_base)

    # ------------------------------------------------------------------
    # Public primitives
    # ------------------------------------------------------------------

    def transfer(
        self,
        from_account_id: str,
        to_account_id: str,
        amount,
        description: str,
        transaction_type: TransactionType = TransactionType.TRANSFER,
        performed_by: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Transaction:
        """
        Debit one account and credit another atomically.

        Raises:
            InsufficientFundsError: If the source would drop below zero
        """
        if from_account_id == to_account_id:
            raise EconomyValidationError("Cannot transfer to the same account")
        value = self.money(amount)
        return self._run(lambda: self._post(
            transaction_type, value, description,
            from_account_id=from_account_id, to_account_id=to_account_id,
            performed_by=performed_by, metadata=metadata
        ))

    def credit(
        self,
        account_id: str,
        amount,
        transaction_type: TransactionType,
        description: str,
        performed_by: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Transaction:
        """One-sided credit used by salaries, rewards, loan disbursement and bulk pay"""
        value = self.money(amount)
        return self._run(lambda: self._post(
            transaction_type, value, description,
            to_account_id=account_id, performed_by=performed_by, metadata=metadata
        ))

    def debit(
        self,
        account_id: str,
        amount,
        transaction_type: TransactionType,
        description: str,
        allow_overdraft: bool = False,
        performed_by: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Transaction:
        """
        One-sided debit.

        ``allow_overdraft`` is only honoured for loan payments, disaster
        adjustments and insurance premiums; every other debit keeps a zero floor.
        """
        value = self.money(amount)
        return self._run(lambda: self._post(
            transaction_type, value, description,
            from_account_id=account_id, allow_overdraft=allow_overdraft,
            performed_by=performed_by, metadata=metadata
        ))

    def deposit(self, account_id: str, amount, description: str, performed_by: Optional[str] = None) -> Transaction:
        """Teacher deposit into a student account"""
        return self.credit(account_id, amount, TransactionType.DEPOSIT, description, performed_by=performed_by)

    def withdraw(self, account_id: str, amount, description: str, performed_by: Optional[str] = None) -> Transaction:
        """Teacher withdrawal from a student account; never overdraws"""
        return self.debit(account_id, amount, TransactionType.WITHDRAWAL, description, performed_by=performed_by)

    def transfer_between_owners(
        self,
        caller_owner_id: str,
        to_account: str,
        amount,
        description: str
    ) -> Transaction:
        """
        Student-initiated transfer from the caller's own account.

        ``to_account`` may be an account id or an account number.
        """
        source = self.account_manager.get_account_by_owner(caller_owner_id)
        if not source:
            raise NotFoundError(f"No account for user {caller_owner_id}")

        target = self.account_manager.get_account(to_account) or \
            self.account_manager.get_account_by_number(to_account)
        if not target:
            raise NotFoundError(f"Recipient account {to_account} not found")
        if target.id == source.id:
            raise EconomyValidationError("Cannot transfer to your own account")
        if source.is_negative:
            raise InsufficientFundsError(source.id, source.balance.amount, to_decimal(amount))

        return self.transfer(
            source.id, target.id, amount, description,
            performed_by=caller_owner_id,
            metadata={"recipient_owner_id": target.owner_id}
        )

    def can_transact(self, owner_id: str) -> bool:
        """A user may initiate transactions only while their balance is not negative"""
        account = self.account_manager.get_account_by_owner(owner_id)
        return bool(account and not account.orphaned and not account.is_negative)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self, account_id: str) -> Money:
        return self.account_manager.require_account(account_id).balance

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        data = self.storage.load(self.table_name, transaction_id)
        return self._transaction_from_dict(data) if data else None

    def get_transactions(
        self,
        account_id: Optional[str] = None,
        transaction_type: Optional[TransactionType] = None,
        limit: Optional[int] = None
    ) -> List[Transaction]:
        """Transaction history, newest first"""
        transactions = [self._transaction_from_dict(d) for d in self.storage.load_all(self.table_name)]
        if account_id:
            transactions = [t for t in transactions
                            if account_id in (t.from_account_id, t.to_account_id)]
        if transaction_type:
            transactions = [t for t in transactions if t.transaction_type == transaction_type]
        transactions.reverse()
        if limit is not None:
            transactions = transactions[:limit]
        return transactions

    def replay_balance(self, account_id: str) -> Money:
        """Recompute a balance from the opening balance and the transaction log"""
        account = self.account_manager.require_account(account_id)
        total = account.initial_balance.amount
        for txn in self.get_transactions(account_id=account_id):
            total += txn.delta_for(account_id)
        return Money(total, account.currency)

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Replay every account and compare against its stored balance

        Returns:
            Dictionary with ``valid``, ``accounts_checked`` and ``mismatches``
        """
        with self.storage.atomic():
            accounts = self.account_manager.find_accounts(include_orphaned=True)
            mismatches = []
            for account in accounts:
                replayed = self.replay_balance(account.id)
                if replayed != account.balance:
                    mismatches.append({
                        "account_id": account.id,
                        "stored": str(account.balance.amount),
                        "replayed": str(replayed.amount)
                    })

        if mismatches:
            self.logger.error("Conservation check failed for %d accounts", len(mismatches))
        return {
            "valid": not mismatches,
            "accounts_checked": len(accounts),
            "mismatches": mismatches
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _post(
        self,
        transaction_type: TransactionType,
        amount: Money,
        description: str,
        from_account_id: Optional[str] = None,
        to_account_id: Optional[str] = None,
        allow_overdraft: bool = False,
        performed_by: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Transaction:
        with self.storage.atomic():
            # Rows are read inside the transaction so the balance check sees committed state
            source = self._load_for_update(from_account_id) if from_account_id else None
            target = self._load_for_update(to_account_id) if to_account_id else None

            if source is not None:
                overdraft_ok = allow_overdraft and transaction_type in OVERDRAFT_TYPES
                new_balance = source.balance - amount
                if new_balance.is_negative() and not overdraft_ok:
                    raise InsufficientFundsError(source.id, source.balance.amount, amount.amount)

            now = self.clock()
            txn_id = str(uuid.uuid4())
            txn = Transaction(
                id=txn_id,
                created_at=now,
                updated_at=now,
                transaction_type=transaction_type,
                from_account_id=from_account_id,
                to_account_id=to_account_id,
                amount=amount,
                description=description,
                reference=f"{transaction_type.value.upper()}-{txn_id[:8]}",
                performed_by=performed_by,
                metadata=metadata or {}
            )
            self.storage.save(self.table_name, txn.id, self._transaction_to_dict(txn))

            if source is not None:
                source.balance = source.balance - amount
                source.updated_at = now
                self.account_manager.save_account(source)
            if target is not None:
                target.balance = target.balance + amount
                target.updated_at = now
                self.account_manager.save_account(target)

            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSFER_COMPLETED if source and target
                else AuditEventType.TRANSACTION_POSTED,
                entity_type="transaction",
                entity_id=txn.id,
                metadata={
                    "transaction_type": transaction_type.value,
                    "amount": amount.amount,
                    "from_account": from_account_id,
                    "to_account": to_account_id,
                    "description": description
                },
                user_id=performed_by
            )

        log_action(
            self.logger, "info", f"Transaction posted: {transaction_type.value}",
            user_id=performed_by, action="post_transaction", resource=f"transaction:{txn.id}",
            extra={
                "amount": amount.to_string(),
                "from_account": from_account_id,
                "to_account": to_account_id
            }
        )
        return txn

    def _load_for_update(self, account_id: str) -> Account:
        account = self.account_manager.require_account(account_id)
        if account.orphaned:
            raise InvalidStateTransitionError(f"Account {account_id} is orphaned and cannot transact")
        return account

    def _transaction_to_dict(self, transaction: Transaction) -> Dict:
        """Convert Transaction to dictionary for storage"""
        result = transaction.to_dict()
        result['transaction_type'] = transaction.transaction_type.value
        result['amount'] = str(transaction.amount.amount)
        result['currency'] = transaction.amount.currency.code
        return result

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        """Convert dictionary to Transaction"""
        return Transaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            transaction_type=TransactionType(data['transaction_type']),
            from_account_id=data.get('from_account_id'),
            to_account_id=data.get('to_account_id'),
            amount=Money(Decimal(data['amount']), Currency[data['currency']]),
            description=data['description'],
            reference=data['reference'],
            performed_by=data.get('performed_by'),
            metadata=data.get('metadata', {})
        )
