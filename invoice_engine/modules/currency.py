import datetime
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

from invoice_engine.modules.errors import CurrencyMismatchError, UnsupportedCurrencyError
from invoice_engine.modules.models import (
    Currency,
    CurrencyAmount,
    ExchangeRate,
    as_utc,
    round_half_up,
    to_dec,
)

logger = logging.getLogger(__name__)

ANCHOR_CURRENCY = "USD"

SUPPORTED_CURRENCIES: Dict[str, Currency] = {
    c.code: c
    for c in [
        Currency(code="USD", symbol="$", name="US Dollar", decimal_places=2),
        Currency(code="EUR", symbol="€", name="Euro", decimal_places=2),
        Currency(code="GBP", symbol="£", name="British Pound", decimal_places=2),
        Currency(code="CAD", symbol="C$", name="Canadian Dollar", decimal_places=2),
        Currency(code="AUD", symbol="A$", name="Australian Dollar", decimal_places=2),
        Currency(code="JPY", symbol="¥", name="Japanese Yen", decimal_places=0),
        Currency(code="INR", symbol="₹", name="Indian Rupee", decimal_places=2),
    ]
}

DEFAULT_CURRENCY = SUPPORTED_CURRENCIES["USD"]

CurrencyLike = Union[Currency, str]


# ==========================================
# LOOKUP & PRECISION
# ==========================================


def get_currency(code: str) -> Optional[Currency]:
    if not code:
        return None
    return SUPPORTED_CURRENCIES.get(code.upper())


def require_currency(currency: CurrencyLike) -> Currency:
    if isinstance(currency, Currency):
        return currency
    found = get_currency(currency)
    if found is None:
        raise UnsupportedCurrencyError(currency)
    return found


def is_currency_supported(code: str) -> bool:
    return get_currency(code) is not None


def round_to_precision(amount, currency: CurrencyLike) -> Decimal:
    """Rounds half away from zero to the currency's decimal places."""
    return round_half_up(amount, require_currency(currency).quantum)


# ==========================================
# RATE RESOLUTION
# ==========================================
#
# Each resolver takes (base, target, rates) and returns a rate or None.
# resolve_rate() tries them in order and stops at the first hit.

RateResolver = Callable[[str, str, Sequence[ExchangeRate]], Optional[Decimal]]


def get_rate_for_pair(rates: Iterable[ExchangeRate], base: str, target: str) -> Optional[ExchangeRate]:
    return next((r for r in rates if r.covers(base, target)), None)


def identity_rate(base: str, target: str, rates: Sequence[ExchangeRate]) -> Optional[Decimal]:
    if base == target:
        return Decimal("1")
    return None


def direct_rate(base: str, target: str, rates: Sequence[ExchangeRate]) -> Optional[Decimal]:
    found = get_rate_for_pair(rates, base, target)
    return found.rate if found else None


def inverse_rate(base: str, target: str, rates: Sequence[ExchangeRate]) -> Optional[Decimal]:
    found = get_rate_for_pair(rates, target, base)
    return Decimal("1") / found.rate if found else None


def _anchor_leg(code: str, rates: Sequence[ExchangeRate], anchor: str) -> Optional[Decimal]:
    return direct_rate(code, anchor, rates) or inverse_rate(code, anchor, rates)


def cross_rate(base: str, target: str, rates: Sequence[ExchangeRate]) -> Optional[Decimal]:
    """base->USD divided by target->USD."""
    if ANCHOR_CURRENCY in (base, target):
        return None
    base_leg = _anchor_leg(base, rates, ANCHOR_CURRENCY)
    target_leg = _anchor_leg(target, rates, ANCHOR_CURRENCY)
    if base_leg is None or target_leg is None:
        return None
    return base_leg / target_leg


RATE_RESOLVERS: Sequence[RateResolver] = (identity_rate, direct_rate, inverse_rate, cross_rate)


def resolve_rate(
    base: str,
    target: str,
    rates: Sequence[ExchangeRate],
    resolvers: Sequence[RateResolver] = RATE_RESOLVERS,
) -> Optional[Decimal]:
    """Resolves base->target from a rate set. Returns None when no resolver succeeds."""
    rates = list(rates or [])
    for resolver in resolvers:
        rate = resolver(base, target, rates)
        if rate is not None:
            return rate
    logger.debug(f"No rate resolved for {base}->{target} from {len(rates)} rates")
    return None


def convert(amount, from_code: str, to_code: str, rate) -> CurrencyAmount:
    amount = to_dec(amount)
    if from_code == to_code:
        return CurrencyAmount(
            amount=amount,
            currency=to_code,
            exchange_rate=Decimal("1"),
            base_amount=amount,
        )
    rate = to_dec(rate)
    return CurrencyAmount(
        amount=amount * rate,
        currency=to_code,
        exchange_rate=rate,
        base_amount=amount,
    )


# ==========================================
# FRESHNESS
# ==========================================


def are_rates_fresh(
    rates: Sequence[ExchangeRate],
    max_age_hours: float = 1,
    now: Optional[datetime.datetime] = None,
) -> bool:
    """True only if every rate is within the age window. One stale rate spoils the set."""
    if not rates:
        return False
    now = as_utc(now or datetime.datetime.now(datetime.timezone.utc))
    max_age = datetime.timedelta(hours=max_age_hours)
    return all(now - as_utc(r.timestamp) <= max_age for r in rates)


def oldest_rate_timestamp(rates: Sequence[ExchangeRate]) -> Optional[datetime.datetime]:
    if not rates:
        return None
    return min((r.timestamp for r in rates), key=as_utc)


def currencies_in_rates(rates: Iterable[ExchangeRate]) -> List[str]:
    seen = []
    for r in rates:
        for code in (r.base_currency, r.target_currency):
            if code not in seen:
                seen.append(code)
    return seen


# ==========================================
# DISPLAY & PARSING
# ==========================================


def format_with_symbol(amount, currency: CurrencyLike) -> str:
    currency = require_currency(currency)
    value = round_to_precision(amount, currency)
    return f"{currency.symbol}{value:,.{currency.decimal_places}f}"


def parse_amount(text: str, currency: CurrencyLike) -> Optional[Decimal]:
    currency = require_currency(currency)
    if text is None:
        return None
    clean = str(text).replace(currency.symbol, "").replace(",", "").strip()
    if not re.fullmatch(r"-?\d+(\.\d*)?|-?\.\d+", clean):
        return None
    try:
        return round_to_precision(Decimal(clean), currency)
    except InvalidOperation:
        return None


def is_valid_amount(amount, currency: CurrencyLike) -> bool:
    """Non-negative and no finer than the currency's precision."""
    currency = require_currency(currency)
    value = to_dec(amount)
    if value < 0:
        return False
    return value == value.quantize(currency.quantum)


def compare_amounts(first: CurrencyAmount, second: CurrencyAmount) -> Decimal:
    """Negative, zero or positive like a comparator."""
    if first.currency == second.currency:
        return first.amount - second.amount
    if first.base_amount is not None and second.base_amount is not None:
        return first.base_amount - second.base_amount
    raise CurrencyMismatchError(
        f"Cannot compare {first.currency} and {second.currency} amounts without base amounts"
    )
