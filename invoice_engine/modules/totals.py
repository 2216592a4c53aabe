import inspect
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from invoice_engine.modules.currency import CurrencyLike, require_currency, resolve_rate
from invoice_engine.modules.models import (
    ExchangeRate,
    InvoiceTotals,
    LineItem,
    TaxMode,
    round_half_up,
    to_dec,
)
from invoice_engine.modules.config_models import RoundOffPolicy

logger = logging.getLogger(__name__)

# (base, target) -> ExchangeRate | number | None, sync or async
RateFetcher = Callable[[str, str], Union[Any, Awaitable[Any]]]


def derive_amount(quantity, rate, currency: CurrencyLike) -> Decimal:
    """Line amount: quantity * rate rounded to the currency's precision."""
    return round_half_up(to_dec(quantity) * to_dec(rate), require_currency(currency).quantum)


def price_items(items: Sequence[LineItem], currency: CurrencyLike) -> List[LineItem]:
    currency = require_currency(currency)
    return [item.priced(currency) for item in items]


def compute_totals(
    items: Sequence[LineItem],
    currency: CurrencyLike,
    tax_mode: Union[TaxMode, str] = TaxMode.INTRA_STATE,
    round_off: Optional[RoundOffPolicy] = None,
) -> InvoiceTotals:
    """
    Computes the totals breakdown for a list of priced line items.

    Tax is accumulated at full precision. The grand total is then rounded once
    to the round-off unit (a whole currency unit by default) and the residual
    kept as round_off. Every field is finally rounded to the currency's precision.
    """
    currency = require_currency(currency)
    tax_mode = TaxMode(tax_mode)
    round_off = round_off or RoundOffPolicy()

    subtotal = Decimal('0')
    cgst = Decimal('0')
    sgst = Decimal('0')
    igst = Decimal('0')

    for item in items:
        subtotal += item.amount
        gst_amount = item.amount * item.gst_percent / 100
        if tax_mode == TaxMode.INTER_STATE:
            igst += gst_amount
        else:
            cgst += gst_amount / 2
            sgst += gst_amount / 2

    raw_total = subtotal + cgst + sgst + igst
    if round_off.enabled:
        total = raw_total.quantize(round_off.quantum, rounding=ROUND_HALF_UP)
    else:
        total = round_half_up(raw_total, currency.quantum)
    residual = total - raw_total

    q = currency.quantum
    return InvoiceTotals(
        subtotal=round_half_up(subtotal, q),
        cgst=round_half_up(cgst, q),
        sgst=round_half_up(sgst, q),
        igst=round_half_up(igst, q),
        round_off=round_half_up(residual, q),
        total=round_half_up(total, q),
    )


async def _fetch_live_rate(fetch_rate: RateFetcher, base: str, target: str) -> Optional[Decimal]:
    try:
        result = fetch_rate(base, target)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        logger.warning(f"Live rate fetch {base}->{target} failed: {e}", exc_info=True)
        return None

    if result is None:
        return None
    if isinstance(result, ExchangeRate):
        return result.rate
    return to_dec(result)


async def reconvert_items(
    items: List[LineItem],
    from_currency: CurrencyLike,
    to_currency: CurrencyLike,
    rates: Sequence[ExchangeRate],
    fetch_rate: Optional[RateFetcher] = None,
) -> List[LineItem]:
    """
    Re-prices line items into another currency.

    The unit rate is converted and rounded first and the amount re-derived from
    it. If no rate can be resolved or fetched, the original items come back
    unchanged (still in the old currency).
    """
    source = require_currency(from_currency)
    target = require_currency(to_currency)
    if source.code == target.code:
        return items

    factor = resolve_rate(source.code, target.code, rates)
    if factor is None and fetch_rate is not None:
        logger.info(f"No cached rate for {source.code}->{target.code}, fetching live")
        factor = await _fetch_live_rate(fetch_rate, source.code, target.code)

    if factor is None:
        logger.warning(
            f"No exchange rate for {source.code}->{target.code}; "
            f"leaving {len(items)} items in {source.code}"
        )
        return items

    converted = []
    for item in items:
        new_rate = round_half_up(item.rate * factor, target.quantum)
        new_amount = round_half_up(item.quantity * new_rate, target.quantum)
        converted.append(item.model_copy(update={"rate": new_rate, "amount": new_amount}))
    return converted
