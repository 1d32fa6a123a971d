"""
Bank Settings Module

Versioned key/value store for the runtime toggles teachers flip (doubles
day, per-game enable flags, daily play limits, salary and loan bounds).
Engines never read individual settings mid-operation: they take one
SettingsSnapshot up front and compute against it.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .clock import Clock, utc_now
from .errors import EconomyValidationError
from .logging_config import get_logger, log_action


DEFAULT_SETTINGS: Dict[str, str] = {
    "doubles_day": "false",
    "math_game_enabled": "true",
    "wordle_chores_enabled": "true",
    "math_game_daily_limit": "3",
    "wordle_game_daily_limit": "3",
    "math_base_rate": "1",
    "wordle_base_rate": "1",
    "basic_salary_amount": "1500",
    "loan_min_amount": "1",
    "loan_max_amount": "10000",
    "loan_max_term_months": "60",
}

_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}


@dataclass(frozen=True)
class SettingsSnapshot:
    """Point-in-time, read-only view of every bank setting"""
    values: Mapping[str, str]
    version: int
    taken_at: datetime

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.values.get(key, default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        raw = self.values.get(key)
        if raw is None:
            return default
        return raw.strip().lower() in _TRUE_VALUES

    def get_int(self, key: str, default: int = 0) -> int:
        raw = self.values.get(key)
        if raw is None:
            return default
        try:
            return int(raw)
        except ValueError:
            return default

    def get_decimal(self, key: str, default: Decimal = Decimal("0")) -> Decimal:
        raw = self.values.get(key)
        if raw is None:
            return default
        try:
            return Decimal(raw)
        except InvalidOperation:
            return default


@dataclass
class Setting:
    key: str
    value: str
    version: int
    updated_at: datetime
    updated_by: Optional[str] = None


class BankSettings:
    """
    Persistent bank settings with a global monotonically increasing version.
    """

    VERSION_ROW = "__version__"

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail, clock: Clock = utc_now):
        self.storage = storage
        self.audit_trail = audit_trail
        self.clock = clock
        self.table_name = "bank_settings"
        self.logger = get_logger("classroom_economy.bank_settings")

    def get_setting(self, key: str) -> Optional[str]:
        """Current value for ``key``, falling back to the built-in default"""
        data = self.storage.load(self.table_name, key)
        if data:
            return data["value"]
        return DEFAULT_SETTINGS.get(key)

    def get_setting_record(self, key: str) -> Optional[Setting]:
        data = self.storage.load(self.table_name, key)
        if not data:
            return None
        return Setting(
            key=data["key"],
            value=data["value"],
            version=data["version"],
            updated_at=datetime.fromisoformat(data["updated_at"]),
            updated_by=data.get("updated_by")
        )

    def set_setting(self, key: str, value, updated_by: Optional[str] = None) -> Setting:
        """
        Store a new value and bump the global version.

        Booleans are normalised to "true"/"false"; known numeric keys must parse.
        """
        if not key or key == self.VERSION_ROW:
            raise EconomyValidationError(f"Invalid setting key: {key!r}")
        text = self._normalise(key, value)

        with self.storage.atomic():
            version = self.current_version() + 1
            now = self.clock()
            self.storage.save(self.table_name, self.VERSION_ROW, {"version": version})
            self.storage.save(self.table_name, key, {
                "key": key,
                "value": text,
                "version": version,
                "updated_at": now.isoformat(),
                "updated_by": updated_by
            })
            self.audit_trail.log_event(
                event_type=AuditEventType.SETTINGS_UPDATED,
                entity_type="bank_setting",
                entity_id=key,
                metadata={"value": text, "version": version},
                user_id=updated_by
            )

        log_action(
            self.logger, "info", f"Bank setting {key} updated",
            user_id=updated_by, action="set_setting", resource=f"bank_setting:{key}",
            extra={"value": text, "version": version}
        )
        return Setting(key=key, value=text, version=version, updated_at=now, updated_by=updated_by)

    def current_version(self) -> int:
        data = self.storage.load(self.table_name, self.VERSION_ROW)
        return data["version"] if data else 0

    def get_all(self) -> Dict[str, str]:
        """Defaults overlaid with every stored value"""
        values = dict(DEFAULT_SETTINGS)
        for row in self.storage.load_all(self.table_name):
            if "key" in row:
                values[row["key"]] = row["value"]
        return values

    def snapshot(self) -> SettingsSnapshot:
        """Read every setting and the version in one consistent view"""
        with self.storage.atomic():
            values = self.get_all()
            version = self.current_version()
        return SettingsSnapshot(
            values=MappingProxyType(values),
            version=version,
            taken_at=self.clock()
        )

    @staticmethod
    def _normalise(key: str, value) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        text = str(value).strip()
        default = DEFAULT_SETTINGS.get(key)
        if default in ("true", "false"):
            lowered = text.lower()
            if lowered in _TRUE_VALUES:
                return "true"
            if lowered in _FALSE_VALUES:
                return "false"
            raise EconomyValidationError(f"Setting {key} expects a boolean, got {value!r}")
        if default is not None:
            try:
                if Decimal(text) < 0:
                    raise EconomyValidationError(f"Setting {key} must not be negative")
            except InvalidOperation:
                raise EconomyValidationError(f"Setting {key} expects a number, got {value!r}")
        return text
