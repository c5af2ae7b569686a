"""
ContactRepository - Data access layer for Contact entities
"""

from typing import List, Optional, Tuple, Dict, Any
from sqlalchemy import or_, asc
from sqlalchemy.exc import IntegrityError
from repositories.base_repository import BaseRepository
from crm_database import Contact
import logging

logger = logging.getLogger(__name__)


class ContactRepository(BaseRepository[Contact]):
    """Repository for Contact data access"""

    def __init__(self, session):
        super().__init__(session, Contact)

    def get_for_owner(self, owner_id: str, contact_id: int) -> Optional[Contact]:
        """Get a contact by id, only if it belongs to owner_id."""
        return self.owned(owner_id, Contact.id == contact_id).first()

    def find_by_lead_id(self, owner_id: str, facebook_lead_id: str) -> Optional[Contact]:
        return self.owned(owner_id, Contact.facebook_lead_id == facebook_lead_id).first()

    def find_by_messenger_sender(self, owner_id: str, page_id: str, sender_id: str) -> Optional[Contact]:
        """
        Find the contact a Messenger sender id belongs to.

        Matches the stored PSID first, then the Facebook lead id.
        """
        candidates = self.owned(
            owner_id,
            Contact.facebook_page_id == page_id,
            or_(Contact.messenger_psid == sender_id, Contact.facebook_lead_id == sender_id)
        ).order_by(asc(Contact.id)).all()
        for contact in candidates:
            if contact.messenger_psid == sender_id:
                return contact
        return candidates[0] if candidates else None

    def create_from_lead(self, owner_id: str, facebook_lead_id: str,
                         **attributes: Any) -> Tuple[Contact, bool]:
        """
        Insert a lead-backed contact unless one already exists for
        (owner_id, facebook_lead_id).

        Returns:
            (contact, created)
        """
        existing = self.find_by_lead_id(owner_id, facebook_lead_id)
        if existing is not None:
            return existing, False
        try:
            contact = Contact(owner_id=owner_id, facebook_lead_id=facebook_lead_id, **attributes)
            self.session.add(contact)
            self.session.flush()
            return contact, True
        except IntegrityError:
            # Concurrent delivery of the same lead won the insert
            self.session.rollback()
            existing = self.find_by_lead_id(owner_id, facebook_lead_id)
            if existing is None:
                raise
            logger.info(f"Lead {facebook_lead_id} inserted concurrently, reusing contact {existing.id}")
            return existing, False

    def list_unanalyzed(self, owner_id: str, limit: int) -> List[Contact]:
        return self.owned(owner_id, Contact.ai_analysis.is_(None)).order_by(
            asc(Contact.created_at), asc(Contact.id)
        ).limit(limit).all()

    def list_by_ids(self, owner_id: str, contact_ids: List[int]) -> List[Contact]:
        if not contact_ids:
            return []
        return self.owned(owner_id, Contact.id.in_(contact_ids)).order_by(asc(Contact.id)).all()

    def list_recent(self, owner_id: str, limit: int) -> List[Contact]:
        return self.owned(owner_id).order_by(
            Contact.created_at.desc(), Contact.id.desc()
        ).limit(limit).all()

    def save_analysis(self, contact: Contact, analysis: Dict[str, Any], analyzed_at,
                      quality_score: int) -> Contact:
        """Write an analysis payload and its derived quality score."""
        return self.update(
            contact,
            ai_analysis=analysis,
            analyzed_at=analyzed_at,
            lead_quality_score=quality_score
        )
