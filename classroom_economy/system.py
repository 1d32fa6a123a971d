"""
Economy system wiring.

Builds every engine component over one shared storage backend so they all
take part in the same store transactions.
"""

import random
from typing import Optional

from .config import EconomyConfig, get_config
from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .accounts import AccountManager
from .ledger import LedgerStore
from .bank_settings import BankSettings
from .daily_window import DailyPlayTracker
from .rewards import RewardEngine
from .loans import LoanEngine
from .bulk import BulkOperationProcessor
from .disasters import DisasterManager
from .insurance import InsuranceModule
from .salaries import SalaryProvider, StoredSalaryProvider
from .word_game import WordList
from .currency import currency_from_code
from .clock import Clock, utc_now


class EconomySystem:
    """Classroom economy with all components initialized"""

    def __init__(
        self,
        config: Optional[EconomyConfig] = None,
        storage: Optional[StorageInterface] = None,
        salary_provider: Optional[SalaryProvider] = None,
        word_list: Optional[WordList] = None,
        clock: Clock = utc_now,
        rng: Optional[random.Random] = None
    ):
        self.config = config or get_config()
        cfg = self.config
        retries = dict(max_retries=cfg.conflict_max_retries, backoff_base=cfg.conflict_backoff_base)

        self.storage = storage or create_storage(cfg.database_url, cfg.sqlite_busy_timeout)
        self.clock = clock
        self.audit_trail = AuditTrail(self.storage, enabled=cfg.enable_audit_logging)
        self.salary_provider = salary_provider or StoredSalaryProvider(self.storage, self.audit_trail, clock)
        self.account_manager = AccountManager(
            self.storage, self.audit_trail, currency_from_code(cfg.currency), clock
        )
        self.ledger = LedgerStore(self.storage, self.account_manager, self.audit_trail, clock, **retries)
        self.bank_settings = BankSettings(self.storage, self.audit_trail, clock)
        self.play_tracker = DailyPlayTracker(self.storage, cfg.timezone, clock)

        self.reward_engine = RewardEngine(
            self.storage, self.account_manager, self.ledger, self.bank_settings,
            self.play_tracker, self.audit_trail,
            config=cfg, word_list=word_list, clock=clock, rng=rng
        )
        self.loan_engine = LoanEngine(
            self.storage, self.account_manager, self.ledger, self.bank_settings,
            self.audit_trail, timezone=cfg.timezone, clock=clock, **retries
        )
        self.bulk_processor = BulkOperationProcessor(
            self.storage, self.account_manager, self.ledger, self.bank_settings,
            self.audit_trail, salary_provider=self.salary_provider,
            timezone=cfg.timezone, clock=clock, **retries
        )
        self.disaster_manager = DisasterManager(
            self.storage, self.account_manager, self.bulk_processor, self.audit_trail,
            salary_provider=self.salary_provider,
            floor_at_zero=cfg.disaster_floor_at_zero, clock=clock, **retries
        )
        self.insurance = InsuranceModule(
            self.storage, self.account_manager, self.ledger, self.salary_provider,
            self.audit_trail, rate_percent=cfg.insurance_rate_percent,
            timezone=cfg.timezone, clock=clock, **retries
        )

    def close(self) -> None:
        self.storage.close()
