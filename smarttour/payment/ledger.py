"""
Distributed-ledger vault collaborator.

The ledger is the source of truth for vault balances. Debits and refunds are
authority calls and carry an HMAC signature; deposits are discovered by scanning recent
transfer events for one that matches an expected amount.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional
import uuid

import requests
from loguru import logger

from smarttour.errors import ExternalDependencyError
from smarttour.security.signing import mask_address, sign_payload

LEDGER_DECIMALS = 6


@dataclass
class DebitResult:
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass
class DepositScan:
    found: bool
    tx_hash: Optional[str] = None
    amount: Optional[float] = None
    observed_at: Optional[datetime] = None


def match_deposit(events: Iterable[Dict[str, Any]], expected: float, tolerance: float,
                  since: datetime) -> DepositScan:
    """Pick the closest deposit to `expected` within tolerance, observed at or after `since`."""
    best = None
    for evt in events:
        observed_at = evt["observed_at"]
        if isinstance(observed_at, str):
            observed_at = datetime.fromisoformat(observed_at)
        if observed_at < since:
            continue
        delta = abs(float(evt["amount"]) - expected)
        if delta > tolerance:
            continue
        if best is None or delta < best[0]:
            best = (delta, evt, observed_at)
    if best is None:
        return DepositScan(found=False)
    _, evt, observed_at = best
    return DepositScan(found=True, tx_hash=evt["tx_hash"], amount=float(evt["amount"]), observed_at=observed_at)


class LedgerClient(ABC):
    unit: str = "USDT"

    @abstractmethod
    def get_balance(self, address: str) -> float:
        ...

    @abstractmethod
    def debit(self, address: str, amount: float, reference: str) -> DebitResult:
        ...

    @abstractmethod
    def refund(self, address: str, amount: float, reference: str) -> DebitResult:
        """Credit back a debit that could not be recorded locally."""
        ...

    @abstractmethod
    def scan_recent_deposits(self, address: str, expected: float, window_seconds: int,
                             tolerance: float) -> DepositScan:
        ...


class VaultGatewayClient(LedgerClient):
    """HTTP client for the vault gateway that fronts the ledger node."""

    def __init__(self, base_url: str, authority_secret: str, unit: str = "USDT", timeout: float = 15.0,
                 http: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.authority_secret = authority_secret
        self.unit = unit
        self.timeout = timeout
        self.http = http or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = self.http.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            logger.bind(event="ledger_unreachable").error("Vault gateway call {} {} failed: {}", method, path, e)
            raise ExternalDependencyError("The vault ledger is unavailable, please retry shortly")
        except ValueError:
            raise ExternalDependencyError("The vault ledger returned an unreadable response")

    def get_balance(self, address: str) -> float:
        data = self._request("GET", f"/balances/{address}", params={"unit": self.unit})
        return round(float(data.get("balance", 0.0)), LEDGER_DECIMALS)

    def _authority_call(self, path: str, address: str, amount: float, reference: str) -> DebitResult:
        payload = {
            "address": address,
            "amount": f"{amount:.{LEDGER_DECIMALS}f}",
            "unit": self.unit,
            "reference": reference,
            "nonce": uuid.uuid4().hex,
        }
        headers = {"X-Authority-Signature": sign_payload(payload, self.authority_secret)}
        try:
            data = self._request("POST", path, json=payload, headers=headers)
        except ExternalDependencyError as e:
            return DebitResult(success=False, error=e.message)
        if data.get("status") != "success":
            return DebitResult(success=False, error=data.get("error") or "request rejected")
        return DebitResult(success=True, tx_hash=data.get("tx_hash"))

    def debit(self, address: str, amount: float, reference: str) -> DebitResult:
        logger.bind(event="ledger_debit").info("Debiting {:.6f} {} from {}", amount, self.unit, mask_address(address))
        return self._authority_call("/debits", address, amount, reference)

    def refund(self, address: str, amount: float, reference: str) -> DebitResult:
        logger.bind(event="ledger_refund").info("Refunding {:.6f} {} to {}", amount, self.unit, mask_address(address))
        return self._authority_call("/refunds", address, amount, reference)

    def scan_recent_deposits(self, address: str, expected: float, window_seconds: int,
                             tolerance: float) -> DepositScan:
        since = datetime.utcnow() - timedelta(seconds=window_seconds)
        data = self._request("GET", "/deposits", params={
            "address": address, "unit": self.unit, "since": since.isoformat(),
        })
        return match_deposit(data.get("deposits") or [], expected, tolerance, since)
