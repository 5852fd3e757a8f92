"""
Exchange-rate lookups between the local currency and the ledger unit.

Rates are fetched from a USD-based public feed, cached for a short while, and
replaced by fixed fallback constants whenever the feed is unreachable, so a
rate failure never blocks a payment. Fallback rates are cached for the same
window as live ones.
"""

import time
from typing import Dict, Optional

import requests
from loguru import logger

from smarttour.config import Settings
from smarttour.errors import ValidationError


def normalize_currency_code(code: str) -> str:
    return code.strip().upper()


class ExchangeRateService:
    def __init__(self, settings: Settings):
        self.url = settings.exchange_rate_url
        self.timeout = settings.rate_timeout_seconds
        self.cache_seconds = settings.rate_cache_seconds
        self.fallback: Dict[str, float] = dict(settings.fallback_usd_rates)
        self._rates: Optional[Dict[str, float]] = None
        self._fetched_at = 0.0
        self.last_source = "fallback"

    def fetch_usd_rates(self) -> Dict[str, float]:
        """Return units per 1 USD, from cache, the live feed, or the fallback table."""
        now = time.monotonic()
        if self._rates is not None and now - self._fetched_at < self.cache_seconds:
            return self._rates
        try:
            resp = requests.get(self.url, timeout=self.timeout)
            resp.raise_for_status()
            rates = resp.json().get("rates")
            if not isinstance(rates, dict) or not rates:
                raise ValueError("Invalid response: no 'rates' found.")
        except (requests.RequestException, ValueError) as e:
            logger.bind(event="rate_fallback").warning("Exchange rate feed unavailable, using fallback rates: {}", e)
            self._rates = dict(self.fallback)
            self._fetched_at = now
            self.last_source = "fallback"
            return self._rates

        merged = dict(self.fallback)
        merged.update({normalize_currency_code(k): float(v) for k, v in rates.items()})
        # stablecoins track the dollar even when the feed omits them
        merged.setdefault("USDT", 1.0)
        merged.setdefault("USDC", 1.0)
        self._rates = merged
        self._fetched_at = now
        self.last_source = "live"
        return merged

    def rate(self, from_unit: str, to_unit: str) -> float:
        src, dst = normalize_currency_code(from_unit), normalize_currency_code(to_unit)
        if src == dst:
            return 1.0
        rates = self.fetch_usd_rates()
        if src not in rates or dst not in rates:
            raise ValidationError(f"Unsupported currency pair {src}/{dst}")
        if rates[src] <= 0:
            raise ValidationError(f"Unusable rate for {src}")
        return rates[dst] / rates[src]

    def convert(self, amount: float, from_unit: str, to_unit: str) -> float:
        converted = float(amount) * self.rate(from_unit, to_unit)
        return round(converted, 6)

    def quote(self, amount: float, from_unit: str, to_unit: str) -> Dict:
        converted = self.convert(amount, from_unit, to_unit)
        return {
            "amount": amount,
            "from": normalize_currency_code(from_unit),
            "to": normalize_currency_code(to_unit),
            "converted": converted,
            "rate": self.rate(from_unit, to_unit),
            "source": self.last_source,
        }
