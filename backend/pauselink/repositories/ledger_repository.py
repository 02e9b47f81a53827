"""Wallet, ledger line and billing record persistence."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pauselink.errors import InsufficientFundsError
from pauselink.models import BillingRecord, Wallet, WalletTransaction

ZERO = Decimal("0")


@dataclass(slots=True)
class WalletReconciliation:
    wallet_id: int
    advertiser_id: str
    currency: str
    balance: Decimal
    ledger_total: Decimal
    line_count: int

    @property
    def balanced(self) -> bool:
        return self.balance == self.ledger_total


class LedgerRepository:
    """Encapsulate wallet mutations so every balance change writes a ledger line."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Wallets

    def get_wallet(self, advertiser_id: str, currency: str, *, for_update: bool = False) -> Wallet | None:
        query = select(Wallet).where(
            Wallet.advertiser_id == advertiser_id,
            Wallet.currency == currency,
        )
        if for_update:
            query = query.with_for_update()
        return self._session.execute(query).scalar_one_or_none()

    def get_or_create_wallet(self, advertiser_id: str, currency: str) -> Wallet:
        wallet = self.get_wallet(advertiser_id, currency, for_update=True)
        if wallet is not None:
            return wallet
        wallet = Wallet(advertiser_id=advertiser_id, currency=currency, balance=ZERO)
        self._session.add(wallet)
        self._session.flush()
        return wallet

    def list_wallets(self) -> Sequence[Wallet]:
        return self._session.execute(select(Wallet).order_by(Wallet.wallet_id)).scalars().all()

    # ------------------------------------------------------------------
    # Ledger lines

    def post(
        self,
        wallet: Wallet,
        amount: Decimal,
        *,
        type: str,
        description: str | None = None,
        reference_id: str | None = None,
        reference_type: str | None = None,
    ) -> WalletTransaction:
        """Apply ``amount`` to ``wallet`` and append the matching ledger line."""

        before = Decimal(wallet.balance)
        after = before + amount
        if after < ZERO:
            raise InsufficientFundsError(wallet.wallet_id, before, -amount)

        wallet.balance = after
        line = WalletTransaction(
            wallet=wallet,
            type=type,
            amount=amount,
            balance_before=before,
            balance_after=after,
            description=description,
            reference_id=reference_id,
            reference_type=reference_type,
        )
        self._session.add(line)
        self._session.flush()
        return line

    def transactions(self, wallet_id: int, *, limit: int | None = None) -> Sequence[WalletTransaction]:
        query = (
            select(WalletTransaction)
            .where(WalletTransaction.wallet_id == wallet_id)
            .order_by(WalletTransaction.transaction_id)
        )
        if limit:
            query = query.limit(limit)
        return self._session.execute(query).scalars().all()

    def reconcile(self) -> list[WalletReconciliation]:
        totals = (
            select(
                WalletTransaction.wallet_id,
                func.coalesce(func.sum(WalletTransaction.amount), 0).label("total"),
                func.count(WalletTransaction.transaction_id).label("lines"),
            )
            .group_by(WalletTransaction.wallet_id)
            .subquery()
        )
        query = (
            select(Wallet, totals.c.total, totals.c.lines)
            .outerjoin(totals, totals.c.wallet_id == Wallet.wallet_id)
            .order_by(Wallet.wallet_id)
        )
        results: list[WalletReconciliation] = []
        for wallet, total, lines in self._session.execute(query).all():
            results.append(
                WalletReconciliation(
                    wallet_id=wallet.wallet_id,
                    advertiser_id=wallet.advertiser_id,
                    currency=wallet.currency,
                    balance=Decimal(wallet.balance).quantize(Decimal("0.0001")),
                    ledger_total=Decimal(str(total or 0)).quantize(Decimal("0.0001")),
                    line_count=int(lines or 0),
                )
            )
        return results

    # ------------------------------------------------------------------
    # Billing records

    def add_billing_record(self, record: BillingRecord) -> BillingRecord:
        self._session.add(record)
        self._session.flush()
        return record

    def billing_for_conversion(self, conversion_receipt_id: str) -> BillingRecord | None:
        query = select(BillingRecord).where(
            BillingRecord.conversion_receipt_id == conversion_receipt_id
        )
        return self._session.execute(query).scalar_one_or_none()


__all__ = ["LedgerRepository", "WalletReconciliation"]
