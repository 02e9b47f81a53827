"""Billing ledger: charges advertisers for verified conversions exactly once."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from loguru import logger
from sqlalchemy.orm import Session

from pauselink.domain.billing import (
    BillingStatus,
    impression_status,
    quantize_money,
    split_fee,
    transition,
)
from pauselink.errors import InsufficientFundsError
from pauselink.models import BillingRecord, Campaign, EventReceipt, TransactionType, WalletTransaction
from pauselink.repositories import CampaignRepository, LedgerRepository, WalletReconciliation


@dataclass(slots=True)
class BillingOutcome:
    status: BillingStatus
    campaign: Campaign | None = None
    record: BillingRecord | None = None
    transaction: WalletTransaction | None = None

    @property
    def advertiser_id(self) -> str | None:
        return self.campaign.advertiser_id if self.campaign is not None else None


class BillingLedger:
    """Apply the billing lifecycle to a matched conversion.

    All writes go through the caller's session; nothing is committed here, so
    the wallet debit, the ledger line, the billing record and both receipt
    status changes land in the same transaction or not at all.
    """

    def __init__(
        self,
        session: Session,
        *,
        default_fee: Decimal = Decimal("5.00"),
        default_ratio: Decimal = Decimal("0.6"),
        default_currency: str = "USD",
    ) -> None:
        self._ledger = LedgerRepository(session)
        self._campaigns = CampaignRepository(session)
        self._default_fee = default_fee
        self._default_ratio = default_ratio
        self._default_currency = default_currency

    def resolve_campaign(self, campaign_id: str | None) -> Campaign | None:
        return self._campaigns.resolve(campaign_id)

    def bill_conversion(
        self,
        conversion: EventReceipt,
        impression: EventReceipt,
        *,
        success: bool,
    ) -> BillingOutcome:
        campaign = self._campaigns.resolve(impression.campaign_id)
        status = BillingStatus(conversion.billing_status)

        if not success:
            # A failed scan says nothing about whether the opportunity can be monetised.
            status = transition(status, BillingStatus.NON_BILLABLE)
            conversion.billing_status = status.value
            return BillingOutcome(status=status, campaign=campaign)

        if campaign is None:
            logger.warning(
                "Conversion {} left pending: campaign {!r} did not resolve to an advertiser",
                conversion.receipt_id,
                impression.campaign_id,
            )
            return BillingOutcome(status=status)

        fee = quantize_money(campaign.conversion_fee or self._default_fee)
        currency = campaign.currency or self._default_currency
        status = transition(status, BillingStatus.BILLABLE)
        conversion.billing_status = status.value

        wallet = self._ledger.get_or_create_wallet(campaign.advertiser_id, currency)
        try:
            line = self._ledger.post(
                wallet,
                -fee,
                type=TransactionType.CONVERSION_FEE.value,
                description=f"QR conversion fee for campaign {campaign.campaign_id}",
                reference_id=conversion.receipt_id,
                reference_type="event_receipt",
            )
        except InsufficientFundsError as exc:
            logger.warning(
                "Insufficient funds for advertiser {}: balance {} < fee {} (conversion {})",
                campaign.advertiser_id,
                exc.balance,
                fee,
                conversion.receipt_id,
            )
            status = transition(status, BillingStatus.NON_BILLABLE)
            self._apply(conversion, impression, status)
            return BillingOutcome(status=status, campaign=campaign)

        publisher_share, platform_cut = split_fee(fee, campaign.publisher_share, self._default_ratio)
        record = self._ledger.add_billing_record(
            BillingRecord(
                advertiser_id=campaign.advertiser_id,
                wallet_id=wallet.wallet_id,
                conversion_receipt_id=conversion.receipt_id,
                impression_receipt_id=impression.receipt_id,
                campaign_id=campaign.campaign_id,
                publisher_id=conversion.publisher_id,
                publisher_name=impression.publisher_name,
                creative_id=impression.creative_id,
                conversion_fee=fee,
                publisher_share=publisher_share,
                platform_cut=platform_cut,
                currency=currency,
                verified=True,
            )
        )
        status = transition(status, BillingStatus.BILLED)
        self._apply(conversion, impression, status)
        logger.info(
            "Billed {} {} to advertiser {} for conversion {} (publisher {}, platform {})",
            fee,
            currency,
            campaign.advertiser_id,
            conversion.receipt_id,
            publisher_share,
            platform_cut,
        )
        return BillingOutcome(status=status, campaign=campaign, record=record, transaction=line)

    @staticmethod
    def _apply(conversion: EventReceipt, impression: EventReceipt, status: BillingStatus) -> None:
        conversion.billing_status = status.value
        impression.billing_status = impression_status(impression.billing_status, status).value

    def deposit(
        self,
        advertiser_id: str,
        amount: Decimal,
        *,
        currency: str | None = None,
        description: str | None = None,
        reference_id: str | None = None,
    ) -> WalletTransaction:
        amount = quantize_money(amount)
        if amount <= 0:
            raise ValueError("Deposit amount must be positive")
        wallet = self._ledger.get_or_create_wallet(
            advertiser_id, (currency or self._default_currency).upper()
        )
        line = self._ledger.post(
            wallet,
            amount,
            type=TransactionType.DEPOSIT.value,
            description=description or "Wallet deposit",
            reference_id=reference_id,
            reference_type="deposit" if reference_id else None,
        )
        logger.info(
            "Deposited {} {} into wallet {} (balance {})",
            amount,
            wallet.currency,
            wallet.wallet_id,
            line.balance_after,
        )
        return line

    def reconcile(self) -> list[WalletReconciliation]:
        results = self._ledger.reconcile()
        for result in results:
            if not result.balanced:
                logger.error(
                    "Wallet {} balance {} does not match ledger total {}",
                    result.wallet_id,
                    result.balance,
                    result.ledger_total,
                )
        return results


__all__ = ["BillingLedger", "BillingOutcome"]
