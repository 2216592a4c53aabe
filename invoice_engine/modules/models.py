import datetime
import uuid
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional, Union, Any

from pydantic import BaseModel, Field, field_validator, model_validator


def to_dec(v):
    if v is None:
        return Decimal("0.00")
    if isinstance(v, (int, float, Decimal)):
        return Decimal(str(v))
    return Decimal(str(v).replace(",", ""))


def round_half_up(value: Decimal, quantum: Decimal) -> Decimal:
    """Rounds half away from zero to the given quantum (0.01, 1, ...)."""
    return to_dec(value).quantize(quantum, rounding=ROUND_HALF_UP)


def as_utc(ts: datetime.datetime) -> datetime.datetime:
    """Naive datetimes are taken to be UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=datetime.timezone.utc)
    return ts


def _optional_dec(v):
    if v is None:
        return None
    return to_dec(v)


class Frequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class TaxMode(str, Enum):
    INTRA_STATE = "intra_state"  # CGST + SGST
    INTER_STATE = "inter_state"  # IGST


# --- Currency Models ---

class Currency(BaseModel):
    code: str = Field(min_length=3, max_length=3)
    symbol: str
    name: str
    decimal_places: int = Field(default=2, ge=0, alias="decimalPlaces")

    class Config:
        frozen = True
        populate_by_name = True

    @property
    def quantum(self) -> Decimal:
        """Smallest representable unit, 10^-decimal_places."""
        return Decimal(1).scaleb(-self.decimal_places)


class CurrencyAmount(BaseModel):
    amount: Decimal
    currency: str
    exchange_rate: Optional[Decimal] = Field(default=None, alias="exchangeRate")
    base_amount: Optional[Decimal] = Field(default=None, alias="baseAmount")

    class Config:
        populate_by_name = True

    @field_validator('amount', mode='before')
    @classmethod
    def parse_amount(cls, v):
        return to_dec(v)

    @field_validator('exchange_rate', 'base_amount', mode='before')
    @classmethod
    def parse_optional(cls, v):
        return _optional_dec(v)


class ExchangeRate(BaseModel):
    base_currency: str = Field(alias="baseCurrency")
    target_currency: str = Field(alias="targetCurrency")
    rate: Decimal
    timestamp: datetime.datetime = Field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )
    source: Optional[str] = None

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator('rate', mode='before')
    @classmethod
    def parse_rate(cls, v):
        return to_dec(v)

    @field_validator('rate')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError(f"Exchange rate must be positive: {v}")
        return v

    def covers(self, base: str, target: str) -> bool:
        return self.base_currency == base and self.target_currency == target


# --- Invoice Models ---

class LineItem(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    description: str = ""
    hsn_sac: Optional[str] = Field(default=None, alias="hsnSac")
    quantity: Decimal = Field(default=Decimal('1'))
    rate: Decimal = Field(default=Decimal('0'))
    per: Optional[str] = None
    gst_percent: Decimal = Field(default=Decimal('0'), alias="gstPercent")
    amount: Decimal = Field(default=Decimal('0'))

    class Config:
        populate_by_name = True

    @model_validator(mode='before')
    @classmethod
    def map_legacy_gst(cls, data: Any) -> Any:
        # Stored invoices carry the tax rate under 'gst'
        if isinstance(data, dict) and 'gst' in data:
            if 'gst_percent' not in data and 'gstPercent' not in data:
                data = dict(data)
                data['gst_percent'] = data.pop('gst')
        return data

    @field_validator('quantity', 'rate', 'gst_percent', 'amount', mode='before')
    @classmethod
    def parse_currency(cls, v):
        return to_dec(v)

    def priced(self, currency: Currency) -> "LineItem":
        """Copy with amount re-derived from quantity and rate."""
        amount = round_half_up(self.quantity * self.rate, currency.quantum)
        return self.model_copy(update={"amount": amount})


class InvoiceTotals(BaseModel):
    subtotal: Decimal = Decimal('0')
    cgst: Decimal = Decimal('0')
    sgst: Decimal = Decimal('0')
    igst: Decimal = Decimal('0')
    round_off: Decimal = Field(default=Decimal('0'), alias="roundOff")
    total: Decimal = Decimal('0')

    class Config:
        frozen = True
        populate_by_name = True

    @classmethod
    def zero(cls) -> "InvoiceTotals":
        return cls()

    @property
    def tax_total(self) -> Decimal:
        return self.cgst + self.sgst + self.igst


# --- Recurring Models ---

@dataclass(frozen=True)
class EndsOn:
    end_date: datetime.date

    def reached(self, schedule: "RecurringSchedule", today: datetime.date) -> bool:
        return today > self.end_date


@dataclass(frozen=True)
class EndsAfter:
    occurrences: int

    def reached(self, schedule: "RecurringSchedule", today: datetime.date) -> bool:
        return schedule.occurrence_count >= self.occurrences


ScheduleBound = Union[EndsOn, EndsAfter]


class RecurringSchedule(BaseModel):
    frequency: Frequency
    interval: int = Field(default=1, ge=0)
    start_date: datetime.date = Field(alias="startDate")
    end_date: Optional[datetime.date] = Field(default=None, alias="endDate")
    max_occurrences: Optional[int] = Field(default=None, ge=0, alias="maxOccurrences")
    occurrence_count: int = Field(default=0, ge=0, alias="occurrenceCount")
    is_active: bool = Field(default=True, alias="isActive")
    next_generation_date: Optional[datetime.date] = Field(default=None, alias="nextGenerationDate")

    class Config:
        frozen = True
        populate_by_name = True

    @model_validator(mode='before')
    @classmethod
    def default_next_generation(cls, data: Any) -> Any:
        if isinstance(data, dict):
            if data.get('next_generation_date') is None and data.get('nextGenerationDate') is None:
                data = dict(data)
                data.pop('nextGenerationDate', None)
                data['next_generation_date'] = data.get('start_date', data.get('startDate'))
        return data

    @property
    def bounds(self) -> List[ScheduleBound]:
        """Stop conditions in effect; an empty list means the schedule is unbounded."""
        bounds = []
        if self.end_date is not None:
            bounds.append(EndsOn(self.end_date))
        if self.max_occurrences is not None:
            bounds.append(EndsAfter(self.max_occurrences))
        return bounds

    @property
    def is_unbounded(self) -> bool:
        return not self.bounds
