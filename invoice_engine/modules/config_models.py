from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from invoice_engine.modules.models import TaxMode

# --- Tax & Rounding ---

class RoundOffPolicy(BaseModel):
    """Whole-unit rounding of the grand total into a round-off line."""
    enabled: bool = True
    places: int = Field(default=0, ge=0, description="Decimal places of the round-off unit (0 = whole units)")

    @property
    def quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.places)


class TaxRules(BaseModel):
    default_gst_percent: Decimal = Decimal("18")
    tax_mode: TaxMode = TaxMode.INTRA_STATE

# --- Currency ---

class StaticRate(BaseModel):
    base: str
    target: str
    rate: Decimal
    source: str = "config"

class CurrencyRules(BaseModel):
    default_currency: str = "USD"
    rate_max_age_hours: float = 1.0
    static_rates: List[StaticRate] = []

# --- Recurring ---

class RecurringRules(BaseModel):
    payment_terms_days: int = 30
    preview_count: int = 12
    default_occurrence_estimate: int = 12

# --- Root ---

class BusinessRulesConfig(BaseModel):
    tax_rules: TaxRules = Field(default_factory=TaxRules)
    round_off: RoundOffPolicy = Field(default_factory=RoundOffPolicy)
    currency: CurrencyRules = Field(default_factory=CurrencyRules)
    recurring: RecurringRules = Field(default_factory=RecurringRules)
    currency_overrides: Dict[str, RoundOffPolicy] = Field(
        default_factory=dict,
        description="Per-currency round-off policy, keyed by ISO code",
    )

    def round_off_for(self, code: Optional[str]) -> RoundOffPolicy:
        if code and code in self.currency_overrides:
            return self.currency_overrides[code]
        return self.round_off
