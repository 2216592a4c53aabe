import datetime
import logging
from typing import Dict, Iterable, List, Optional

from invoice_engine.modules.config_models import CurrencyRules
from invoice_engine.modules.currency import (
    ANCHOR_CURRENCY,
    are_rates_fresh,
    is_currency_supported,
    oldest_rate_timestamp,
    require_currency,
    resolve_rate,
)
from invoice_engine.modules.errors import RateSourceError
from invoice_engine.modules.models import ExchangeRate


class StaticRateSource:
    """
    Rate source backed by a fixed list of rates (config file or tests).

    A live source only needs the same fetch_rates(base) method and should
    raise RateSourceError when the upstream call fails.
    """

    def __init__(self, rates: Iterable[ExchangeRate]):
        self.rates = list(rates)

    @classmethod
    def from_config(cls, rules: CurrencyRules) -> "StaticRateSource":
        now = datetime.datetime.now(datetime.timezone.utc)
        return cls(
            ExchangeRate(
                base_currency=r.base,
                target_currency=r.target,
                rate=r.rate,
                timestamp=now,
                source=r.source,
            )
            for r in rules.static_rates
        )

    def fetch_rates(self, base: str) -> List[ExchangeRate]:
        now = datetime.datetime.now(datetime.timezone.utc)
        found = [r.model_copy(update={"timestamp": now}) for r in self.rates if r.base_currency == base]
        if not found:
            raise RateSourceError(f"No rates published for base currency {base}")
        return found


class RateService:
    """Caches rate sets per base currency and answers single-pair lookups."""

    def __init__(self, source, max_age_hours: float = 1.0):
        self.source = source
        self.max_age_hours = max_age_hours
        self.logger = logging.getLogger(__name__)
        self._cache: Dict[str, List[ExchangeRate]] = {}

    def get_rates(self, base: str, force_refresh: bool = False,
                  now: Optional[datetime.datetime] = None) -> List[ExchangeRate]:
        """
        Returns rates quoted from base. Fresh cached rates are reused; on a
        failed fetch stale cached rates are returned rather than nothing.
        """
        require_currency(base)
        cached = self._cache.get(base)
        if not force_refresh and cached and are_rates_fresh(cached, self.max_age_hours, now):
            return cached

        try:
            fetched = self.source.fetch_rates(base)
        except RateSourceError as e:
            if cached:
                self.logger.warning(f"Using stale {base} rates after fetch failure: {e}")
                return cached
            raise

        rates = [
            r for r in fetched
            if is_currency_supported(r.target_currency) and r.target_currency != base
        ]
        self._cache[base] = rates
        self.logger.info(f"Cached {len(rates)} rates for {base}")
        return rates

    def cached_rates(self) -> List[ExchangeRate]:
        return [r for rates in self._cache.values() for r in rates]

    def fetch_rate(self, base: str, target: str) -> Optional[ExchangeRate]:
        """
        Single-pair lookup: tries rate sets quoted from base, then target, then
        the USD anchor. Returns None if none of them resolves the pair.
        """
        if base == target:
            return ExchangeRate(base_currency=base, target_currency=target, rate=1, source="direct")

        for quote_base in dict.fromkeys([base, target, ANCHOR_CURRENCY]):
            try:
                rates = self.get_rates(quote_base)
            except RateSourceError as e:
                self.logger.warning(f"Could not load {quote_base} rates: {e}")
                continue
            rate = resolve_rate(base, target, rates)
            if rate is not None:
                return ExchangeRate(
                    base_currency=base,
                    target_currency=target,
                    rate=rate,
                    timestamp=oldest_rate_timestamp(rates),
                    source=rates[0].source,
                )
        return None
