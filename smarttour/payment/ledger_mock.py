import threading
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from smarttour.payment.ledger import LEDGER_DECIMALS, DebitResult, DepositScan, LedgerClient, match_deposit


class MockLedgerClient(LedgerClient):
    """In-memory ledger for development and tests. Balances are keyed by wallet address."""

    def __init__(self, unit: str = "USDT"):
        self.unit = unit
        self.balances: Dict[str, float] = {}
        self.deposits: Dict[str, List[dict]] = {}
        self.debits: List[dict] = []
        self.refunds: List[dict] = []
        self.fail_debits = False
        self._lock = threading.Lock()

    def credit(self, address: str, amount: float) -> None:
        with self._lock:
            self.balances[address] = round(self.balances.get(address, 0.0) + amount, LEDGER_DECIMALS)

    def add_deposit(self, address: str, amount: float, tx_hash: Optional[str] = None,
                    observed_at: Optional[datetime] = None) -> str:
        tx_hash = tx_hash or f"0x{uuid.uuid4().hex}"
        with self._lock:
            self.deposits.setdefault(address, []).append({
                "tx_hash": tx_hash,
                "amount": amount,
                "observed_at": observed_at or datetime.utcnow(),
            })
        return tx_hash

    def get_balance(self, address: str) -> float:
        return self.balances.get(address, 0.0)

    def debit(self, address: str, amount: float, reference: str) -> DebitResult:
        with self._lock:
            if self.fail_debits:
                return DebitResult(success=False, error="ledger node unavailable")
            balance = self.balances.get(address, 0.0)
            if balance + 1e-9 < amount:
                return DebitResult(success=False, error="insufficient ledger balance")
            self.balances[address] = round(balance - amount, LEDGER_DECIMALS)
            tx_hash = f"0x{uuid.uuid4().hex}"
            self.debits.append({"address": address, "amount": amount, "reference": reference, "tx_hash": tx_hash})
            return DebitResult(success=True, tx_hash=tx_hash)

    def refund(self, address: str, amount: float, reference: str) -> DebitResult:
        with self._lock:
            self.balances[address] = round(self.balances.get(address, 0.0) + amount, LEDGER_DECIMALS)
            tx_hash = f"0x{uuid.uuid4().hex}"
            self.refunds.append({"address": address, "amount": amount, "reference": reference, "tx_hash": tx_hash})
            return DebitResult(success=True, tx_hash=tx_hash)

    def scan_recent_deposits(self, address: str, expected: float, window_seconds: int,
                             tolerance: float) -> DepositScan:
        since = datetime.utcnow() - timedelta(seconds=window_seconds)
        return match_deposit(list(self.deposits.get(address, [])), expected, tolerance, since)
