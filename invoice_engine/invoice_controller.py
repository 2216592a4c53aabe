import os
import json
import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import yaml

from invoice_engine.config import config
from invoice_engine.modules.currency import format_with_symbol
from invoice_engine.modules.models import RecurringSchedule
from invoice_engine.modules.recurring import (
    format_schedule,
    future_generation_dates,
    is_recurring_active,
    validate_schedule,
)
from invoice_engine.services.invoice_store import InvoiceState, rehydrate, set_currency
from invoice_engine.services.rate_service import RateService, StaticRateSource

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    def default(self, o):
        if isinstance(o, Decimal): return str(o)
        if hasattr(o, 'isoformat'): return o.isoformat()
        if hasattr(o, 'model_dump'): return o.model_dump()
        return super(DecimalEncoder, self).default(o)


def sanitize_context_for_export(context):
    return json.loads(json.dumps(context, cls=DecimalEncoder))


def load_yaml(path) -> Dict[str, Any]:
    with open(path, 'r') as f:
        return yaml.safe_load(f) or {}


def build_rate_service() -> RateService:
    rules = config.business_rules.currency
    return RateService(StaticRateSource.from_config(rules), max_age_hours=rules.rate_max_age_hours)


def assemble_invoice(raw_data: Dict[str, Any]) -> InvoiceState:
    """Resolves an invoice record against the business rules into a priced state."""
    rules = config.business_rules
    currency_code = raw_data.get("currency") or rules.currency.default_currency
    return rehydrate({
        "invoice_number": raw_data.get("invoice_number", "INV-0001"),
        "invoice_date": raw_data.get("date"),
        "items": raw_data.get("items", []),
        "currency": currency_code,
        "tax_mode": raw_data.get("tax_mode", rules.tax_rules.tax_mode),
        "same_gst": raw_data.get("same_gst", False),
        "global_gst": raw_data.get("global_gst", rules.tax_rules.default_gst_percent),
        "round_off": rules.round_off_for(currency_code),
    })


def build_context(state: InvoiceState) -> Dict[str, Any]:
    """Maps an invoice state to an export-friendly dictionary."""
    currency = state.currency
    totals = state.totals
    return {
        "invoice": {
            "number": state.invoice_number,
            "date": state.invoice_date,
            "currency": currency.code,
            "tax_mode": state.tax_mode.value,
        },
        "items": [item.model_dump() for item in state.items],
        "totals": totals.model_dump(),
        "display": {
            "subtotal": format_with_symbol(totals.subtotal, currency),
            "tax": format_with_symbol(totals.tax_total, currency),
            "round_off": format_with_symbol(totals.round_off, currency),
            "total": format_with_symbol(totals.total, currency),
        },
    }


def preview_schedule(raw_schedule: Dict[str, Any], count: Optional[int] = None, now=None) -> Dict[str, Any]:
    schedule = RecurringSchedule(**raw_schedule)
    count = count or config.business_rules.recurring.preview_count
    return {
        "description": format_schedule(schedule),
        "active": is_recurring_active(schedule, now),
        "warnings": validate_schedule(schedule),
        "upcoming": future_generation_dates(schedule, limit=count),
    }


def compute_invoice(invoice_yaml_path: str, target_currency: Optional[str] = None,
                    rate_service: Optional[RateService] = None):
    """Loads an invoice YAML, prices it (optionally in another currency) and returns its totals context."""
    try:
        logger.info(f"Processing: {invoice_yaml_path}")
        raw_data = load_yaml(invoice_yaml_path)
        state = assemble_invoice(raw_data)

        if target_currency:
            rate_service = rate_service or build_rate_service()
            state = asyncio.run(set_currency(state, target_currency, fetch_rate=rate_service.fetch_rate))

        context = build_context(state)
        if raw_data.get("recurring"):
            context["recurring"] = preview_schedule(raw_data["recurring"])
        return sanitize_context_for_export(context)

    except Exception as e:
        logger.error(f"Failed to compute {invoice_yaml_path}: {e}", exc_info=True)
        return None


def export_context(context: Dict[str, Any], out_path: str):
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    with open(out_path, 'w') as f:
        yaml.dump(context, f, sort_keys=False, allow_unicode=True)
