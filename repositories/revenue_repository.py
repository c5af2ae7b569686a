"""
RevenueRepository - Recorded revenue per contact
"""

from repositories.base_repository import BaseRepository
from crm_database import RevenueRecord


class RevenueRepository(BaseRepository[RevenueRecord]):
    """Repository for RevenueRecord data access"""

    def __init__(self, session):
        super().__init__(session, RevenueRecord)

    def mark_capi_sent(self, record: RevenueRecord, capi_event_id: str) -> RevenueRecord:
        return self.update(record, capi_event_sent=True, capi_event_id=capi_event_id)
