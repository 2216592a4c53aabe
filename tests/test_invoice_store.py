import unittest
import os
import sys
from decimal import Decimal
from unittest.mock import AsyncMock

# Add project root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from invoice_engine.modules.config_models import RoundOffPolicy
from invoice_engine.modules.models import ExchangeRate
from invoice_engine.services.invoice_store import (
    InvoiceState,
    add_item,
    reduce,
    rehydrate,
    remove_item,
    set_currency,
    set_global_gst,
    set_round_off,
    set_same_gst,
    set_tax_mode,
    update_exchange_rates,
    update_item,
)


class TestInvoiceStore(unittest.TestCase):
    def setUp(self):
        self.state = add_item(InvoiceState(currency="INR"), id="a", description="Retainer", quantity=1, rate=12000)

    def test_add_item_recomputes_totals(self):
        self.assertEqual(self.state.items[0].amount, Decimal("12000.00"))
        self.assertEqual(self.state.items[0].gst_percent, Decimal("18"))
        self.assertEqual(self.state.totals.subtotal, Decimal("12000.00"))
        self.assertEqual(self.state.totals.total, Decimal("14160.00"))

    def test_actions_do_not_mutate(self):
        empty = InvoiceState(currency="INR")
        add_item(empty, description="x", quantity=1, rate=1)
        self.assertEqual(empty.items, [])

    def test_add_item_without_same_gst(self):
        state = add_item(InvoiceState(same_gst=False), description="Exempt", quantity=2, rate="9.99")
        self.assertEqual(state.items[0].gst_percent, Decimal("0"))
        self.assertEqual(state.totals.subtotal, Decimal("19.98"))
        self.assertEqual(state.totals.total, Decimal("20.00"))

    def test_update_item(self):
        state = update_item(self.state, "a", quantity=2)
        self.assertEqual(state.items[0].amount, Decimal("24000.00"))
        self.assertEqual(state.totals.total, Decimal("28320.00"))
        self.assertEqual(state.items[0].description, "Retainer")

    def test_update_unknown_item_is_noop(self):
        with self.assertLogs("invoice_engine.services.invoice_store", level="WARNING"):
            state = update_item(self.state, "missing", quantity=5)
        self.assertIs(state, self.state)

    def test_remove_item(self):
        state = remove_item(self.state, "a")
        self.assertEqual(state.items, [])
        self.assertEqual(state.totals.total, Decimal("0"))

    def test_global_gst_applies_when_same_gst(self):
        state = set_global_gst(self.state, 5)
        self.assertEqual(state.items[0].gst_percent, Decimal("5"))
        self.assertEqual(state.totals.total, Decimal("12600.00"))

        state = set_same_gst(state, False)
        state = set_global_gst(state, 28)
        self.assertEqual(state.items[0].gst_percent, Decimal("5"))
        self.assertEqual(state.global_gst, Decimal("28"))

    def test_tax_mode_and_round_off(self):
        state = set_tax_mode(self.state, "inter_state")
        self.assertEqual(state.totals.igst, Decimal("2160.00"))
        self.assertEqual(state.totals.cgst, Decimal("0"))

        state = add_item(state, description="Extra", quantity=1, rate="0.40")
        self.assertEqual(state.totals.round_off, Decimal("-0.47"))
        state = set_round_off(state, RoundOffPolicy(enabled=False))
        self.assertEqual(state.totals.total, Decimal("14160.47"))

    def test_reduce(self):
        state = reduce(self.state, {"type": "add_item", "description": "Support", "quantity": 1, "rate": 1000})
        self.assertEqual(len(state.items), 2)
        state = reduce(state, {"type": "set_tax_mode", "tax_mode": "inter_state"})
        self.assertEqual(state.totals.igst, Decimal("2340.00"))
        with self.assertRaises(ValueError):
            reduce(state, {"type": "explode"})

    def test_update_exchange_rates_keeps_totals(self):
        rates = [ExchangeRate(base_currency="INR", target_currency="USD", rate="0.012")]
        state = update_exchange_rates(self.state, rates)
        self.assertEqual(state.exchange_rates, rates)
        self.assertEqual(state.totals, self.state.totals)

    def test_rehydrate_rederives_amounts(self):
        state = rehydrate({
            "currency": "USD",
            "items": [{"id": "1", "quantity": "3", "rate": "33.335", "amount": "999", "gst": "10"}],
        })
        self.assertEqual(state.items[0].amount, Decimal("100.01"))
        self.assertEqual(state.items[0].gst_percent, Decimal("10"))
        self.assertEqual(state.totals.total, Decimal("110.00"))


class TestSetCurrency(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.state = add_item(InvoiceState(currency="USD"), id="a", quantity=1, rate=100)

    async def test_same_currency(self):
        self.assertIs(await set_currency(self.state, "USD"), self.state)

    async def test_converts_with_cached_rates(self):
        state = update_exchange_rates(
            self.state, [ExchangeRate(base_currency="USD", target_currency="EUR", rate="0.85")]
        )
        state = await set_currency(state, "EUR")
        self.assertEqual(state.currency.code, "EUR")
        self.assertEqual(state.items[0].amount, Decimal("85.00"))
        self.assertEqual(state.totals.subtotal, Decimal("85.00"))

    async def test_converts_with_live_fetch(self):
        fetch = AsyncMock(return_value=Decimal("149.50"))
        state = await set_currency(self.state, "JPY", fetch_rate=fetch)
        fetch.assert_awaited_once_with("USD", "JPY")
        self.assertEqual(state.items[0].rate, Decimal("14950"))
        self.assertEqual(state.totals.total, Decimal("17641"))

    async def test_failed_conversion_keeps_currency(self):
        with self.assertLogs("invoice_engine.services.invoice_store", level="WARNING"):
            state = await set_currency(self.state, "GBP")
        self.assertIs(state, self.state)
        self.assertEqual(state.currency.code, "USD")

    async def test_empty_invoice_switches_freely(self):
        state = await set_currency(InvoiceState(currency="USD"), "INR")
        self.assertEqual(state.currency.code, "INR")


if __name__ == "__main__":
    unittest.main()
