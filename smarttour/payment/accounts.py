"""Savings balances and the local vault mirror that payments draw from."""

import math
from datetime import datetime, timedelta
from typing import Dict, Optional

from loguru import logger
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from smarttour.audit.store import record_event
from smarttour.config import Settings
from smarttour.database import read_session, transaction
from smarttour.errors import NotFoundError, ValidationError
from smarttour.payment.ledger import LedgerClient
from smarttour.payment.models import SavingsAccount, SavingsTransaction, SavingsTxnKind, VaultAccount
from smarttour.security.signing import mask_address


def lock_savings_account(session: Session, tourist_id: int) -> Optional[SavingsAccount]:
    stmt = select(SavingsAccount).where(SavingsAccount.tourist_id == tourist_id).with_for_update()
    return session.exec(stmt).first()


def lock_vault_account(session: Session, tourist_id: int) -> Optional[VaultAccount]:
    stmt = select(VaultAccount).where(VaultAccount.tourist_id == tourist_id).with_for_update()
    return session.exec(stmt).first()


class AccountService:
    def __init__(self, engine: Engine, settings: Settings, ledger: LedgerClient):
        self.engine = engine
        self.settings = settings
        self.ledger = ledger

    def deposit_savings(self, tourist_id: int, amount: float) -> Dict:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or not math.isfinite(amount):
            raise ValidationError("Deposit amount must be a number")
        if amount <= 0:
            raise ValidationError("Deposit amount must be positive")
        if amount > self.settings.max_savings_deposit:
            raise ValidationError(f"Deposit amount cannot exceed {self.settings.max_savings_deposit:,.0f}")
        amount = round(float(amount), 2)
        with transaction(self.engine) as session:
            account = lock_savings_account(session, tourist_id)
            if account is None:
                account = SavingsAccount(tourist_id=tourist_id)
            account.balance = round(account.balance + amount, 2)
            account.updated_at = datetime.utcnow()
            session.add(account)
            session.add(SavingsTransaction(
                tourist_id=tourist_id, kind=SavingsTxnKind.DEPOSIT, amount=amount, description="Savings deposit",
            ))
            record_event(session, actor=tourist_id, action="SAVINGS_DEPOSIT", amount=amount,
                         currency=self.settings.local_currency)
            logger.bind(event="savings_deposit").info("Tourist {} deposited {}", tourist_id, amount)
            return {"balance": account.balance, "currency": self.settings.local_currency}

    def configure_wallet(self, tourist_id: int, address: str) -> Dict:
        address = (address or "").strip()
        if not address.startswith("0x") or len(address) <= 2:
            raise ValidationError("Wallet address must start with 0x")
        with transaction(self.engine) as session:
            vault = lock_vault_account(session, tourist_id)
            if vault is None:
                vault = VaultAccount(tourist_id=tourist_id)
            if vault.wallet_address != address:
                vault.wallet_address = address
                vault.balance = 0.0
                vault.synced_at = None
            session.add(vault)
            record_event(session, actor=tourist_id, action="WALLET_CONFIGURED",
                         details={"wallet": mask_address(address)})
            return {"wallet_address": address, "vault_balance": vault.balance, "synced_at": vault.synced_at}

    def is_stale(self, vault: VaultAccount, now: Optional[datetime] = None) -> bool:
        if vault.synced_at is None:
            return True
        now = now or datetime.utcnow()
        return now - vault.synced_at > timedelta(seconds=self.settings.vault_mirror_ttl_seconds)

    def refresh_vault(self, session: Session, vault: VaultAccount) -> VaultAccount:
        """Overwrite the mirror with the ledger's balance. Caller holds the row lock."""
        vault.balance = self.ledger.get_balance(vault.wallet_address)
        vault.synced_at = datetime.utcnow()
        session.add(vault)
        logger.bind(event="vault_sync").info("Vault mirror for tourist {} synced: {} {}", vault.tourist_id,
                                             vault.balance, self.ledger.unit)
        return vault

    def sync_vault(self, tourist_id: int) -> Dict:
        with transaction(self.engine) as session:
            vault = lock_vault_account(session, tourist_id)
            if vault is None or not vault.wallet_address:
                raise NotFoundError("No vault wallet configured")
            self.refresh_vault(session, vault)
            return {"vault_balance": vault.balance, "unit": self.ledger.unit, "synced_at": vault.synced_at}

    def balances(self, tourist_id: int) -> Dict:
        with read_session(self.engine) as session:
            account = session.get(SavingsAccount, tourist_id)
            vault = session.get(VaultAccount, tourist_id)
            history = session.exec(
                select(SavingsTransaction)
                .where(SavingsTransaction.tourist_id == tourist_id)
                .order_by(SavingsTransaction.created_at.desc(), SavingsTransaction.id.desc())
                .limit(20)
            )
            return {
                "savings_balance": account.balance if account else 0.0,
                "currency": self.settings.local_currency,
                "vault_balance": vault.balance if vault else 0.0,
                "vault_unit": self.settings.ledger_unit,
                "wallet_address": vault.wallet_address if vault else None,
                "synced_at": vault.synced_at if vault else None,
                "transactions": [
                    {"kind": t.kind.value, "amount": t.amount, "description": t.description,
                     "created_at": t.created_at}
                    for t in history
                ],
            }
