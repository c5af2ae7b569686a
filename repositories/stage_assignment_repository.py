"""
StageAssignmentRepository - Current stage of a contact per pipeline

Writes are upserts keyed on (contact_id, pipeline_id), so concurrent or
redelivered assignments replace the row instead of duplicating it.
"""

from typing import Optional
from repositories.base_repository import BaseRepository
from crm_database import ContactStageAssignment
from utils.datetime_utils import utc_now
import logging

logger = logging.getLogger(__name__)


class StageAssignmentRepository(BaseRepository[ContactStageAssignment]):
    """Repository for ContactStageAssignment data access"""

    def __init__(self, session):
        super().__init__(session, ContactStageAssignment)

    def get_for_contact(self, contact_id: int, pipeline_id: int) -> Optional[ContactStageAssignment]:
        return self.session.query(ContactStageAssignment).filter(
            ContactStageAssignment.contact_id == contact_id,
            ContactStageAssignment.pipeline_id == pipeline_id
        ).execution_options(populate_existing=True).first()

    def upsert(self, contact_id: int, pipeline_id: int, stage_id: int,
               assigned_by: str = 'ai', notes: Optional[str] = None) -> ContactStageAssignment:
        """
        Insert or replace the assignment for (contact_id, pipeline_id).

        Raises:
            SQLAlchemyError: If database operation fails
        """
        self._upsert(
            ('contact_id', 'pipeline_id'),
            contact_id=contact_id,
            pipeline_id=pipeline_id,
            stage_id=stage_id,
            assigned_by=assigned_by,
            notes=notes,
            assigned_at=utc_now()
        )
        logger.debug(f"Contact {contact_id} assigned to stage {stage_id} in pipeline {pipeline_id}")
        return self.get_for_contact(contact_id, pipeline_id)
