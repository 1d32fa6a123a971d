"""
Test suite for bank settings and settings snapshots
"""

import pytest
from decimal import Decimal

from classroom_economy.storage import InMemoryStorage
from classroom_economy.audit import AuditTrail, AuditEventType
from classroom_economy.bank_settings import BankSettings, DEFAULT_SETTINGS
from classroom_economy.errors import EconomyValidationError


class TestBankSettings:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.settings = BankSettings(self.storage, self.audit)

    def test_defaults(self):
        assert self.settings.get_setting("doubles_day") == "false"
        assert self.settings.get_setting("math_game_daily_limit") == "3"
        assert self.settings.get_setting("unknown_key") is None
        assert self.settings.current_version() == 0
        assert self.settings.get_all() == DEFAULT_SETTINGS

    def test_set_setting_bumps_version(self):
        first = self.settings.set_setting("doubles_day", True, updated_by="teacher")
        second = self.settings.set_setting("math_base_rate", "2")

        assert first.value == "true"
        assert first.version == 1
        assert second.version == 2
        assert self.settings.current_version() == 2
        assert self.settings.get_setting_record("doubles_day").updated_by == "teacher"
        assert len(self.audit.get_events_by_type(AuditEventType.SETTINGS_UPDATED)) == 2

    def test_boolean_normalisation(self):
        self.settings.set_setting("math_game_enabled", "OFF")
        assert self.settings.get_setting("math_game_enabled") == "false"
        with pytest.raises(EconomyValidationError):
            self.settings.set_setting("doubles_day", "maybe")

    def test_numeric_validation(self):
        with pytest.raises(EconomyValidationError):
            self.settings.set_setting("loan_max_amount", "lots")
        with pytest.raises(EconomyValidationError):
            self.settings.set_setting("math_game_daily_limit", "-1")

    def test_reserved_key_rejected(self):
        with pytest.raises(EconomyValidationError):
            self.settings.set_setting(BankSettings.VERSION_ROW, "1")

    def test_custom_keys_are_free_text(self):
        self.settings.set_setting("announcement", "Pizza Friday")
        assert self.settings.get_setting("announcement") == "Pizza Friday"


class TestSettingsSnapshot:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.settings = BankSettings(self.storage, AuditTrail(self.storage))

    def test_snapshot_is_frozen_in_time(self):
        snapshot = self.settings.snapshot()
        self.settings.set_setting("doubles_day", "true")

        assert snapshot.get_bool("doubles_day") is False
        assert snapshot.version == 0
        assert self.settings.snapshot().get_bool("doubles_day") is True

    def test_snapshot_is_read_only(self):
        snapshot = self.settings.snapshot()
        with pytest.raises(TypeError):
            snapshot.values["doubles_day"] = "true"

    def test_typed_readers(self):
        self.settings.set_setting("math_base_rate", "1.5")
        snapshot = self.settings.snapshot()

        assert snapshot.get_decimal("math_base_rate") == Decimal("1.5")
        assert snapshot.get_int("math_game_daily_limit") == 3
        assert snapshot.get_int("missing", 7) == 7
        assert snapshot.get_bool("math_game_enabled") is True
