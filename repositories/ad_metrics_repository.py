"""
Synced Ads Insights figures

Campaign totals are keyed on (owner_id, campaign_id) and daily ad rows on
(owner_id, ad_id, date); a re-sync overwrites the figures in place.
"""

from datetime import date
from typing import Any, List
from repositories.base_repository import BaseRepository
from crm_database import AdMetricsDaily, CampaignMetrics
from utils.datetime_utils import utc_now


class AdMetricsRepository(BaseRepository[AdMetricsDaily]):
    """Repository for AdMetricsDaily data access"""

    def __init__(self, session):
        super().__init__(session, AdMetricsDaily)

    def upsert_day(self, owner_id: str, ad_id: str, day: date, **figures: Any) -> None:
        self._upsert(
            ('owner_id', 'ad_id', 'date'),
            owner_id=owner_id,
            ad_id=ad_id,
            date=day,
            updated_at=utc_now(),
            **figures
        )

    def list_for_ad(self, owner_id: str, ad_id: str) -> List[AdMetricsDaily]:
        return self.owned(owner_id, AdMetricsDaily.ad_id == ad_id).order_by(AdMetricsDaily.date).all()


class CampaignMetricsRepository(BaseRepository[CampaignMetrics]):
    """Repository for CampaignMetrics data access"""

    def __init__(self, session):
        super().__init__(session, CampaignMetrics)

    def upsert_campaign(self, owner_id: str, campaign_id: str, **figures: Any) -> None:
        self._upsert(
            ('owner_id', 'campaign_id'),
            owner_id=owner_id,
            campaign_id=campaign_id,
            last_synced_at=utc_now(),
            **figures
        )

    def list_for_owner(self, owner_id: str) -> List[CampaignMetrics]:
        return self.owned(owner_id).order_by(CampaignMetrics.campaign_id).all()
