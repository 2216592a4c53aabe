import datetime
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from invoice_engine.modules.config_models import RoundOffPolicy
from invoice_engine.modules.currency import DEFAULT_CURRENCY, CurrencyLike, require_currency
from invoice_engine.modules.models import (
    Currency,
    ExchangeRate,
    InvoiceTotals,
    LineItem,
    TaxMode,
    to_dec,
)
from invoice_engine.modules.totals import RateFetcher, compute_totals, price_items, reconvert_items

logger = logging.getLogger(__name__)


class InvoiceState(BaseModel):
    """Snapshot of an invoice being edited. Actions return new snapshots."""
    invoice_number: str = "INV-0001"
    invoice_date: Optional[datetime.date] = None
    items: List[LineItem] = []
    currency: Currency = DEFAULT_CURRENCY
    exchange_rates: List[ExchangeRate] = []
    same_gst: bool = True
    global_gst: Decimal = Decimal("18")
    tax_mode: TaxMode = TaxMode.INTRA_STATE
    round_off: RoundOffPolicy = Field(default_factory=RoundOffPolicy)
    totals: InvoiceTotals = Field(default_factory=InvoiceTotals)

    class Config:
        frozen = True

    @field_validator('currency', mode='before')
    @classmethod
    def resolve_currency(cls, v):
        if isinstance(v, str):
            return require_currency(v)
        return v

    @field_validator('global_gst', mode='before')
    @classmethod
    def parse_gst(cls, v):
        return to_dec(v)


def _recalculate(state: InvoiceState, **changes) -> InvoiceState:
    state = state.model_copy(update=changes)
    totals = compute_totals(state.items, state.currency, state.tax_mode, state.round_off)
    return state.model_copy(update={"totals": totals})


def rehydrate(data: Dict[str, Any]) -> InvoiceState:
    """Builds a state from a persisted record, re-deriving line amounts and totals."""
    state = InvoiceState(**data)
    return _recalculate(state, items=price_items(state.items, state.currency))


# ==========================================
# LINE ITEM ACTIONS
# ==========================================


def add_item(state: InvoiceState, **fields) -> InvoiceState:
    default_gst = state.global_gst if state.same_gst else Decimal("0")
    item = LineItem(**{"gst_percent": default_gst, **fields}).priced(state.currency)
    return _recalculate(state, items=[*state.items, item])


def update_item(state: InvoiceState, item_id: str, **changes) -> InvoiceState:
    if not any(i.id == item_id for i in state.items):
        logger.warning(f"update_item: no line item with id {item_id}")
        return state

    items = []
    for item in state.items:
        if item.id == item_id:
            data = {**item.model_dump(exclude={"amount"}), **changes}
            data.pop("amount", None)
            item = LineItem(**data).priced(state.currency)
        items.append(item)
    return _recalculate(state, items=items)


def remove_item(state: InvoiceState, item_id: str) -> InvoiceState:
    return _recalculate(state, items=[i for i in state.items if i.id != item_id])


# ==========================================
# TAX ACTIONS
# ==========================================


def _apply_gst(items: List[LineItem], gst: Decimal) -> List[LineItem]:
    return [i.model_copy(update={"gst_percent": gst}) for i in items]


def set_same_gst(state: InvoiceState, same: bool) -> InvoiceState:
    items = _apply_gst(state.items, state.global_gst) if same else state.items
    return _recalculate(state, same_gst=same, items=items)


def set_global_gst(state: InvoiceState, gst) -> InvoiceState:
    gst = to_dec(gst)
    items = _apply_gst(state.items, gst) if state.same_gst else state.items
    return _recalculate(state, global_gst=gst, items=items)


def set_tax_mode(state: InvoiceState, tax_mode) -> InvoiceState:
    return _recalculate(state, tax_mode=TaxMode(tax_mode))


def set_round_off(state: InvoiceState, policy: RoundOffPolicy) -> InvoiceState:
    return _recalculate(state, round_off=policy)


# ==========================================
# CURRENCY ACTIONS
# ==========================================


def update_exchange_rates(state: InvoiceState, rates: List[ExchangeRate]) -> InvoiceState:
    return state.model_copy(update={"exchange_rates": list(rates)})


async def set_currency(state: InvoiceState, currency: CurrencyLike,
                       fetch_rate: Optional[RateFetcher] = None) -> InvoiceState:
    """
    Switches the invoice currency, re-pricing items before recomputing totals.
    If the items cannot be converted the state keeps its current currency.
    """
    target = require_currency(currency)
    if target.code == state.currency.code:
        return state

    items = await reconvert_items(state.items, state.currency, target, state.exchange_rates, fetch_rate)
    if state.items and items is state.items:
        logger.warning(f"Currency stays {state.currency.code}: items could not be converted to {target.code}")
        return state
    return _recalculate(state, currency=target, items=items)


ACTIONS: Dict[str, Callable[..., InvoiceState]] = {
    "add_item": add_item,
    "update_item": update_item,
    "remove_item": remove_item,
    "set_same_gst": set_same_gst,
    "set_global_gst": set_global_gst,
    "set_tax_mode": set_tax_mode,
    "set_round_off": set_round_off,
    "update_exchange_rates": update_exchange_rates,
}


def reduce(state: InvoiceState, action: Dict[str, Any]) -> InvoiceState:
    """Applies a synchronous action {'type': name, **payload}. Use set_currency() for currency changes."""
    payload = dict(action)
    action_type = payload.pop("type", None)
    handler = ACTIONS.get(action_type)
    if handler is None:
        raise ValueError(f"Unknown invoice action: {action_type}")
    return handler(state, **payload)
