"""
FacebookConfigRepository - Connected pages and their credentials
"""

from typing import Optional, List
from sqlalchemy import asc
from repositories.base_repository import BaseRepository
from crm_database import FacebookConfig


class FacebookConfigRepository(BaseRepository[FacebookConfig]):
    """Repository for FacebookConfig data access"""

    def __init__(self, session):
        super().__init__(session, FacebookConfig)

    def get_by_page_id(self, page_id: str) -> Optional[FacebookConfig]:
        return self.find_one_by(page_id=str(page_id))

    def get_export_config(self, owner_id: str) -> Optional[FacebookConfig]:
        """The owner's first page configuration that has a dataset id."""
        return self.owned(
            owner_id,
            FacebookConfig.dataset_id.isnot(None),
            FacebookConfig.dataset_id != ''
        ).order_by(asc(FacebookConfig.id)).first()

    def list_owner_ids(self) -> List[str]:
        rows = self.session.query(FacebookConfig.owner_id).distinct().all()
        return sorted(row[0] for row in rows)

    def list_with_ad_account(self, owner_id: Optional[str] = None) -> List[FacebookConfig]:
        """Page configurations with an ad account id, optionally for one owner."""
        query = self.session.query(FacebookConfig).filter(
            FacebookConfig.ad_account_id.isnot(None),
            FacebookConfig.ad_account_id != ''
        )
        if owner_id:
            query = query.filter(FacebookConfig.owner_id == owner_id)
        return query.order_by(asc(FacebookConfig.owner_id), asc(FacebookConfig.id)).all()
