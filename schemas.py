import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import TransactionType

MONTH_KEY_PATTERN = r"^\d{4}-\d{2}$"


def _clean_keywords(values: list[str]) -> list[str]:
    cleaned: list[str] = []
    for value in values:
        keyword = str(value).strip()
        if keyword and keyword.lower() not in {k.lower() for k in cleaned}:
            cleaned.append(keyword)
    return cleaned


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, max_length=7)


class CategorizationRuleIn(BaseModel):
    keyword: str = Field(..., min_length=1, max_length=200)
    category_id: int


class RecurringExpenseIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    amount_cents: int = Field(..., ge=0)
    currency_code: Optional[str] = Field(default=None, min_length=3, max_length=3)
    category_id: Optional[int] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    interval_months: int = Field(default=1, ge=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    match_keywords: list[str] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("match_keywords")
    @classmethod
    def _strip_keywords(cls, value: list[str]) -> list[str]:
        return _clean_keywords(value)

    @field_validator("currency_code")
    @classmethod
    def _upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value

    @model_validator(mode="after")
    def _check_dates(self) -> "RecurringExpenseIn":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self


class RecurringOverrideIn(BaseModel):
    recurring_expense_id: int
    month: str = Field(..., pattern=MONTH_KEY_PATTERN)
    override_amount_cents: Optional[int] = Field(default=None, ge=0)
    is_skipped: bool = False
    is_manually_confirmed: bool = False
    notes: Optional[str] = Field(default=None, max_length=500)


class ConvertToRecurringIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=120)
    amount_cents: Optional[int] = Field(default=None, ge=0)
    currency_code: Optional[str] = Field(default=None, min_length=3, max_length=3)
    category_id: Optional[int] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    interval_months: int = Field(default=1, ge=1)
    match_keywords: list[str] = Field(default_factory=list)

    @field_validator("match_keywords")
    @classmethod
    def _strip_keywords(cls, value: list[str]) -> list[str]:
        return _clean_keywords(value)


class ImportedTransactionIn(BaseModel):
    """A raw, already-parsed statement line handed over by an import/sync source."""

    model_config = ConfigDict(extra="forbid")

    external_id: Optional[str] = Field(default=None, max_length=200)
    date: dt.date
    booking_date: Optional[dt.date] = None
    # Signed: negative amounts are expenses unless ``type`` says otherwise.
    amount_cents: int
    type: Optional[TransactionType] = None
    currency_code: Optional[str] = Field(default=None, min_length=3, max_length=3)
    description: str = Field(default="", max_length=1000)
    merchant_name: Optional[str] = Field(default=None, max_length=200)

    @property
    def resolved_type(self) -> TransactionType:
        if self.type is not None:
            return self.type
        if self.amount_cents >= 0:
            return TransactionType.income
        return TransactionType.expense


class ImportBatchIn(BaseModel):
    account_id: int
    transactions: list[ImportedTransactionIn] = Field(default_factory=list)


class GenerateMonthIn(BaseModel):
    month: str = Field(..., pattern=MONTH_KEY_PATTERN)
