import datetime
import logging
import re
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from dateutil.relativedelta import relativedelta

from invoice_engine.modules.errors import (
    InvalidFrequencyError,
    InvalidInvoiceNumberError,
    InvalidScheduleError,
)
from invoice_engine.modules.models import Frequency, RecurringSchedule, as_utc, to_dec

logger = logging.getLogger(__name__)

DateLike = Union[datetime.date, datetime.datetime]

# ASCII digits only; other scripts' digits are left as part of the prefix
TRAILING_DIGITS = re.compile(r"(.*?)([0-9]+)")

_UNIT_NAMES = {
    Frequency.WEEKLY: ("week", "Weekly"),
    Frequency.MONTHLY: ("month", "Monthly"),
    Frequency.QUARTERLY: ("quarter", "Quarterly"),
    Frequency.YEARLY: ("year", "Yearly"),
}


# ==========================================
# HELPERS
# ==========================================


def parse_frequency(frequency) -> Frequency:
    if isinstance(frequency, Frequency):
        return frequency
    try:
        return Frequency(frequency)
    except ValueError:
        raise InvalidFrequencyError(frequency) from None


def as_date(value: Union[DateLike, str]) -> DateLike:
    """Accepts ISO 'YYYY-MM-DD' strings alongside date objects."""
    if isinstance(value, str):
        return datetime.date.fromisoformat(value)
    return value


def reference_day(now: Optional[DateLike]) -> datetime.date:
    if now is None:
        return datetime.date.today()
    now = as_date(now)
    if isinstance(now, datetime.datetime):
        return now.date()
    return now


def _comparable(a: DateLike, b: DateLike) -> Tuple[DateLike, DateLike]:
    """
    Drops the time part when a datetime is compared with a plain date, and
    reads a naive datetime as UTC when the other side is timezone-aware.
    """
    a, b = as_date(a), as_date(b)
    a_is_dt, b_is_dt = isinstance(a, datetime.datetime), isinstance(b, datetime.datetime)
    if a_is_dt != b_is_dt:
        return reference_day(a), reference_day(b)
    if a_is_dt and (a.tzinfo is None) != (b.tzinfo is None):
        return as_utc(a), as_utc(b)
    return a, b


def _require_stepping(interval: int):
    if interval < 1:
        raise InvalidScheduleError(f"Interval must be at least 1 to step a schedule, got {interval}")


def _step(frequency: Frequency, interval: int) -> relativedelta:
    if frequency == Frequency.WEEKLY:
        return relativedelta(weeks=interval)
    if frequency == Frequency.MONTHLY:
        return relativedelta(months=interval)
    if frequency == Frequency.QUARTERLY:
        return relativedelta(months=interval * 3)
    if frequency == Frequency.YEARLY:
        return relativedelta(years=interval)
    raise InvalidFrequencyError(frequency)


# ==========================================
# DATE ARITHMETIC
# ==========================================


def calculate_next_date(base_date: DateLike, frequency, interval: int) -> DateLike:
    """
    Steps base_date forward by interval units of frequency.

    Calendar months are clamped to the month end (Jan 31 + 1 month is the
    last day of February). An interval of 0 returns base_date unchanged.
    """
    frequency = parse_frequency(frequency)
    base_date = as_date(base_date)
    if interval == 0:
        return base_date
    return base_date + _step(frequency, interval)


def is_schedule_due(next_date: DateLike, reference_date: Optional[DateLike] = None) -> bool:
    if reference_date is None:
        if isinstance(next_date, datetime.datetime):
            reference_date = datetime.datetime.now(next_date.tzinfo)
        else:
            reference_date = datetime.date.today()
    next_date, reference_date = _comparable(next_date, reference_date)
    return next_date <= reference_date


def calculate_occurrence_count(start: DateLike, end: DateLike, frequency, interval: int) -> int:
    """Number of scheduled dates in [start, end], start included."""
    frequency = parse_frequency(frequency)
    start, end = _comparable(start, end)
    if end < start:
        return 0
    _require_stepping(interval)

    count = 0
    current = start
    while current <= end:
        count += 1
        current = calculate_next_date(current, frequency, interval)
    return count


def get_next_n_occurrences(start: DateLike, frequency, interval: int, n: int) -> List[DateLike]:
    """The next n dates strictly after start, ascending."""
    frequency = parse_frequency(frequency)
    if n <= 0:
        return []
    _require_stepping(interval)

    occurrences = []
    current = as_date(start)
    for _ in range(n):
        current = calculate_next_date(current, frequency, interval)
        occurrences.append(current)
    return occurrences


def is_date_in_schedule(date: datetime.date, schedule: RecurringSchedule) -> bool:
    if date < schedule.start_date:
        return False
    if schedule.end_date and date > schedule.end_date:
        return False
    _require_stepping(schedule.interval)

    current = schedule.start_date
    while current < date:
        current = calculate_next_date(current, schedule.frequency, schedule.interval)
    return current == date


def calculate_due_date(invoice_date: DateLike, payment_terms_days: int = 30) -> DateLike:
    return invoice_date + datetime.timedelta(days=payment_terms_days)


# ==========================================
# SCHEDULE STATE
# ==========================================


def is_recurring_active(schedule: RecurringSchedule, now: Optional[DateLike] = None) -> bool:
    if not schedule.is_active:
        return False
    today = reference_day(now)
    return not any(bound.reached(schedule, today) for bound in schedule.bounds)


def should_stop_recurring(schedule: RecurringSchedule, now: Optional[DateLike] = None) -> bool:
    return not is_recurring_active(schedule, now)


def should_generate(schedule: RecurringSchedule, now: Optional[DateLike] = None) -> bool:
    """Active and its next generation date has arrived."""
    if not is_recurring_active(schedule, now):
        return False
    return is_schedule_due(schedule.next_generation_date, reference_day(now))


def advance_schedule(schedule: RecurringSchedule, now: Optional[DateLike] = None) -> RecurringSchedule:
    """
    Records one materialized invoice: bumps occurrence_count, steps the next
    generation date and deactivates the schedule if a stop condition now holds.
    A stopped schedule cannot be advanced; resuming it is an explicit
    is_active=True write by the owner.
    """
    if not is_recurring_active(schedule, now):
        raise InvalidScheduleError("Cannot advance a stopped schedule")

    advanced = schedule.model_copy(update={
        "occurrence_count": schedule.occurrence_count + 1,
        "next_generation_date": calculate_next_date(
            schedule.next_generation_date, schedule.frequency, schedule.interval
        ),
    })
    if should_stop_recurring(advanced, now):
        logger.info(f"Schedule stopped after {advanced.occurrence_count} occurrences")
        advanced = advanced.model_copy(update={"is_active": False})
    return advanced


def future_generation_dates(schedule: RecurringSchedule, limit: int = 12) -> List[datetime.date]:
    """Upcoming generation dates, honouring end_date and remaining occurrences."""
    if limit <= 0:
        return []
    remaining = None
    if schedule.max_occurrences is not None:
        remaining = max(0, schedule.max_occurrences - schedule.occurrence_count)
    _require_stepping(schedule.interval)

    dates = []
    current = schedule.next_generation_date
    while len(dates) < limit:
        if schedule.end_date and current > schedule.end_date:
            break
        if remaining is not None and len(dates) >= remaining:
            break
        dates.append(current)
        current = calculate_next_date(current, schedule.frequency, schedule.interval)
    return dates


def estimate_total_value(amount, schedule: RecurringSchedule, default_count: int = 12) -> Tuple[Decimal, int]:
    """(total value, occurrence estimate) for a recurring invoice of the given amount."""
    if schedule.max_occurrences:
        count = schedule.max_occurrences
    elif schedule.end_date:
        count = len(future_generation_dates(schedule, limit=1000))
    else:
        count = default_count
    return to_dec(amount) * count, count


# ==========================================
# VALIDATION & DISPLAY
# ==========================================


def validate_schedule(schedule: RecurringSchedule) -> List[str]:
    errors = []
    if schedule.interval <= 0:
        errors.append("Interval must be greater than 0")
    if schedule.end_date and schedule.end_date < schedule.start_date:
        errors.append("End date must be after start date")
    if schedule.max_occurrences is not None and schedule.max_occurrences <= 0:
        errors.append("Max occurrences must be greater than 0")
    if schedule.next_generation_date < schedule.start_date:
        errors.append("Next generation date cannot be before start date")
    return errors


def describe_frequency(frequency, interval: int) -> str:
    unit, adjective = _UNIT_NAMES[parse_frequency(frequency)]
    if interval == 1:
        return adjective
    return f"Every {interval} {unit}s"


def format_schedule(schedule: RecurringSchedule) -> str:
    unit, _ = _UNIT_NAMES[schedule.frequency]
    if schedule.interval == 1:
        result = f"Every {unit}"
    else:
        result = f"Every {schedule.interval} {unit}s"
    if schedule.end_date:
        result += f" until {schedule.end_date.isoformat()}"
    if schedule.max_occurrences:
        result += f" for {schedule.max_occurrences} occurrences"
    return result


# ==========================================
# NUMBERING
# ==========================================


def generate_invoice_number(base_number: str, increment: int) -> str:
    """
    Adds increment to the trailing digits of base_number, keeping their
    zero-padding width (INV-0099 + 1 -> INV-0100, INV-99 + 1 -> INV-100).
    Without trailing digits the increment is appended as '-{increment}'.
    """
    if base_number is None or not str(base_number).strip():
        raise InvalidInvoiceNumberError("Base invoice number is empty")

    match = TRAILING_DIGITS.fullmatch(base_number)
    if match:
        prefix, digits = match.groups()
        return f"{prefix}{int(digits) + increment:0{len(digits)}d}"
    return f"{base_number}-{increment}"
