from __future__ import annotations

import re
import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CONSOLIDATED_SCHEMA_VERSION = 1
SUPPORTED_SCHEMA_VERSIONS = (1,)

PERIOD_TYPES = ("month", "year")

_CURRENCY_RE = re.compile(r"^[A-Z0-9]{2,10}$")
_MONTH_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
_YEAR_KEY_RE = re.compile(r"^\d{4}$")


class SchemaVersionError(ValueError):
    pass


def normalize_currency(code) -> str:
    text = str(code or "").strip().upper()
    if not _CURRENCY_RE.match(text):
        raise ValueError(f"invalid currency code {code!r}")
    return text


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, allow_inf_nan=False, extra="forbid")


class AssetDailyReturn(_Frozen):
    total_value: float = 0.0
    adjusted_change_percent: float | None = None


class DailyReturnRecord(_Frozen):
    """One day of one (account, currency) series, as produced upstream.

    cash_flow follows the upstream convention: negative means money entered the
    account (deposit or buy), positive means money left it.
    """

    date: datetime.date
    currency: str
    total_value: float = 0.0
    total_investment: float = 0.0
    cash_flow: float = 0.0
    adjusted_change_percent: float | None = None
    assets: dict[str, AssetDailyReturn] = Field(default_factory=dict)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value):
        return normalize_currency(value)


class PeriodBoundarySnapshot(_Frozen):
    factor_at_start: float
    factor_at_end: float

    @property
    def ratio(self) -> float:
        if self.factor_at_start <= 0:
            raise ValueError(f"factor_at_start {self.factor_at_start} cannot anchor a ratio")
        return self.factor_at_end / self.factor_at_start


class _Bounded(_Frozen):
    factor_at_start: float = 1.0
    factor_at_end: float

    @property
    def boundary(self) -> PeriodBoundarySnapshot:
        return PeriodBoundarySnapshot(factor_at_start=self.factor_at_start, factor_at_end=self.factor_at_end)

    @property
    def ratio(self) -> float:
        return self.boundary.ratio


class AssetPeriodSummary(_Bounded):
    period_return_percent: float
    start_total_value: float = 0.0
    end_total_value: float = 0.0


class CurrencyPeriodSummary(_Bounded):
    period_return_percent: float
    start_total_value: float = 0.0
    end_total_value: float = 0.0
    start_total_investment: float = 0.0
    end_total_investment: float = 0.0
    total_cash_flow: float = 0.0
    money_weighted_return_percent: float = 0.0
    record_count: int = 0
    assets: dict[str, AssetPeriodSummary] = Field(default_factory=dict)


class ConsolidatedPeriod(_Frozen):
    period_type: Literal["month", "year"]
    period_key: str
    start_date: datetime.date
    end_date: datetime.date
    record_count: int
    schema_version: int = CONSOLIDATED_SCHEMA_VERSION
    per_currency: dict[str, CurrencyPeriodSummary]

    @field_validator("per_currency", mode="before")
    @classmethod
    def _currency_keys(cls, value):
        if isinstance(value, dict):
            return {normalize_currency(k): v for k, v in value.items()}
        return value

    @model_validator(mode="after")
    def _check_shape(self):
        pattern = _MONTH_KEY_RE if self.period_type == "month" else _YEAR_KEY_RE
        if not pattern.match(self.period_key):
            raise ValueError(f"period_key {self.period_key!r} does not match period_type {self.period_type}")
        if self.start_date > self.end_date:
            raise ValueError("start_date after end_date")
        if not self.start_date.isoformat().startswith(self.period_key):
            raise ValueError(f"start_date {self.start_date} outside period {self.period_key}")
        if not self.end_date.isoformat().startswith(self.period_key):
            raise ValueError(f"end_date {self.end_date} outside period {self.period_key}")
        return self

    def currency(self, code: str) -> CurrencyPeriodSummary | None:
        return self.per_currency.get(str(code).upper())

    def to_payload(self) -> dict:
        return self.model_dump(mode="json")


class MultiAccountDailyBlend(_Frozen):
    date: datetime.date
    blended_change_percent: float
    total_pre_change_value: float


class WindowResult(BaseModel):
    window_start: datetime.date
    window_end: datetime.date
    currency: str
    asset_key: str | None = None
    factor: float = 1.0
    return_percent: float = 0.0
    has_sufficient_data: bool = False
    money_weighted_return_percent: float = 0.0
    value_change_percent: float = 0.0
    start_value: float | None = None
    end_value: float | None = None
    total_cash_flow: float = 0.0
    years_used: list[str] = Field(default_factory=list)
    months_used: list[str] = Field(default_factory=list)
    days_used: int = 0
    coverage_gaps: list[str] = Field(default_factory=list)


def parse_consolidated_payload(payload: dict) -> ConsolidatedPeriod:
    """Build a ConsolidatedPeriod from a stored payload, branching on schema_version."""
    if not isinstance(payload, dict):
        raise SchemaVersionError("payload is not a mapping")
    version = payload.get("schema_version")
    if version is None:
        raise SchemaVersionError("payload has no schema_version")
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        raise SchemaVersionError(f"unsupported schema_version {version}")
    return ConsolidatedPeriod.model_validate(payload)
