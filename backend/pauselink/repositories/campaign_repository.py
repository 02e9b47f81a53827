"""Campaign configuration used to price conversions."""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from pauselink.models import Campaign


class CampaignRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, campaign_id: str) -> Campaign | None:
        return self._session.get(Campaign, campaign_id)

    def resolve(self, campaign_id: str | None) -> Campaign | None:
        """Return the active campaign billed for ``campaign_id``, if any."""

        if not campaign_id:
            return None
        query = select(Campaign).where(
            Campaign.campaign_id == campaign_id,
            Campaign.active.is_(True),
        )
        return self._session.execute(query).scalar_one_or_none()

    def list_for_advertiser(self, advertiser_id: str) -> Sequence[Campaign]:
        query = (
            select(Campaign)
            .where(Campaign.advertiser_id == advertiser_id)
            .order_by(Campaign.created_at.desc())
        )
        return self._session.execute(query).scalars().all()

    def create(
        self,
        *,
        campaign_id: str,
        advertiser_id: str,
        destination_url: str,
        conversion_fee: Decimal | None = None,
        publisher_share: Decimal | None = None,
        currency: str = "USD",
        publisher_id: str | None = None,
        program: str | None = None,
        creative_id: str | None = None,
    ) -> Campaign:
        if conversion_fee is not None and conversion_fee <= 0:
            raise ValueError("conversion_fee must be positive")
        if publisher_share is not None:
            if publisher_share < 0:
                raise ValueError("publisher_share cannot be negative")
            if conversion_fee is not None and publisher_share > conversion_fee:
                raise ValueError("publisher_share cannot exceed conversion_fee")

        campaign = Campaign(
            campaign_id=campaign_id,
            advertiser_id=advertiser_id,
            destination_url=destination_url,
            conversion_fee=conversion_fee,
            publisher_share=publisher_share,
            currency=currency.upper(),
            publisher_id=publisher_id,
            program=program,
            creative_id=creative_id,
            active=True,
        )
        self._session.add(campaign)
        self._session.flush()
        return campaign


__all__ = ["CampaignRepository"]
