"""
Account Management Module

Every student (and teacher) owns exactly one ledger account. Accounts are
created when the owner is provisioned, mutated only through the ledger, and
never deleted: removing the owner marks the account orphaned.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional
import secrets
import uuid

from .currency import Money, Currency, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .clock import Clock, utc_now
from .errors import EconomyValidationError, NotFoundError
from .logging_config import get_logger, log_action


@dataclass
class Account(StorageRecord):
    """Ledger account owned by one user"""
    account_number: str
    owner_id: str
    currency: Currency
    balance: Money
    initial_balance: Money
    class_name: Optional[str] = None
    orphaned: bool = False

    @property
    def is_negative(self) -> bool:
        return self.balance.is_negative()


class AccountManager:
    """
    Manages account provisioning and lookup.

    Balance changes are the ledger's job; this class only writes the
    account row when it is opened or orphaned.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        currency: Currency = Currency.ZAR,
        clock: Clock = utc_now
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.currency = currency
        self.clock = clock
        self.accounts_table = "accounts"
        self.logger = get_logger("classroom_economy.accounts")

    def open_account(
        self,
        owner_id: str,
        class_name: Optional[str] = None,
        initial_balance=Decimal("0"),
        account_number: Optional[str] = None
    ) -> Account:
        """
        Open the ledger account for a newly provisioned user

        Args:
            owner_id: ID of the user who owns the account
            class_name: Class the owner belongs to (used for bulk scopes)
            initial_balance: Opening balance; the replay baseline for conservation
            account_number: Specific account number (generated if not provided)

        Returns:
            Created Account object
        """
        opening = Money(to_decimal(initial_balance), self.currency)

        with self.storage.atomic():
            if self.storage.find(self.accounts_table, {"owner_id": owner_id}):
                raise EconomyValidationError(f"User {owner_id} already has an account")

            now = self.clock()
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_number=account_number or self._generate_account_number(),
                owner_id=owner_id,
                currency=self.currency,
                balance=opening,
                initial_balance=opening,
                class_name=class_name
            )
            self.save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_OPENED,
                entity_type="account",
                entity_id=account.id,
                metadata={
                    "account_number": account.account_number,
                    "owner_id": owner_id,
                    "class_name": class_name,
                    "initial_balance": opening.amount
                }
            )

        log_action(
            self.logger, "info", "Account opened",
            user_id=owner_id, action="open_account", resource=f"account:{account.id}",
            extra={"class_name": class_name, "initial_balance": str(opening.amount)}
        )
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        data = self.storage.load(self.accounts_table, account_id)
        return self._account_from_dict(data) if data else None

    def require_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if not account:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    def get_account_by_owner(self, owner_id: str) -> Optional[Account]:
        found = self.storage.find(self.accounts_table, {"owner_id": owner_id})
        return self._account_from_dict(found[0]) if found else None

    def get_account_by_number(self, account_number: str) -> Optional[Account]:
        found = self.storage.find(self.accounts_table, {"account_number": account_number})
        return self._account_from_dict(found[0]) if found else None

    def find_accounts(self, class_name: Optional[str] = None, include_orphaned: bool = False) -> List[Account]:
        """Accounts in a class (or every class when class_name is None)"""
        filters = {"class_name": class_name} if class_name is not None else {}
        accounts = [self._account_from_dict(d) for d in self.storage.find(self.accounts_table, filters)]
        if not include_orphaned:
            accounts = [a for a in accounts if not a.orphaned]
        return accounts

    def orphan_account(self, account_id: str) -> Account:
        """Mark an account orphaned after its owner was removed. The row and history stay."""
        with self.storage.atomic():
            account = self.require_account(account_id)
            if account.orphaned:
                return account
            account.orphaned = True
            account.updated_at = self.clock()
            self.save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_ORPHANED,
                entity_type="account",
                entity_id=account.id,
                metadata={"owner_id": account.owner_id, "balance": account.balance.amount}
            )
        return account

    def _generate_account_number(self) -> str:
        """ACC followed by eight digits, unique within the store"""
        while True:
            candidate = f"ACC{secrets.randbelow(10 ** 8):08d}"
            if not self.storage.find(self.accounts_table, {"account_number": candidate}):
                return candidate

    def save_account(self, account: Account) -> None:
        self.storage.save(self.accounts_table, account.id, self._account_to_dict(account))

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        result = account.to_dict()
        result['currency'] = account.currency.code
        result['balance'] = str(account.balance.amount)
        result['initial_balance'] = str(account.initial_balance.amount)
        return result

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        currency = Currency[data['currency']]
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_number=data['account_number'],
            owner_id=data['owner_id'],
            currency=currency,
            balance=Money(Decimal(data['balance']), currency),
            initial_balance=Money(Decimal(data['initial_balance']), currency),
            class_name=data.get('class_name'),
            orphaned=data.get('orphaned', False)
        )
