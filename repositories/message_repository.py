"""
MessageRepository - Conversation history per contact
"""

from typing import List, Tuple, Optional
from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from repositories.base_repository import BaseRepository
from crm_database import Message
import logging

logger = logging.getLogger(__name__)


class MessageRepository(BaseRepository[Message]):
    """Repository for Message data access"""

    def __init__(self, session):
        super().__init__(session, Message)

    def get_recent_for_contact(self, contact_id: int, limit: int) -> List[Message]:
        """The newest `limit` messages of a contact, returned oldest first."""
        newest_first = self.session.query(Message).filter(
            Message.contact_id == contact_id
        ).order_by(desc(Message.created_at), desc(Message.id)).limit(limit).all()
        return list(reversed(newest_first))

    def count_for_contact(self, contact_id: int) -> int:
        return self.count(contact_id=contact_id)

    def create_if_absent(self, facebook_message_id: Optional[str], **attributes) -> Tuple[Message, bool]:
        """
        Store a message once per platform message id.

        Returns:
            (message, created)
        """
        if facebook_message_id:
            existing = self.find_one_by(facebook_message_id=facebook_message_id)
            if existing is not None:
                return existing, False
        try:
            message = self.create(facebook_message_id=facebook_message_id, **attributes)
            return message, True
        except IntegrityError:
            existing = self.find_one_by(facebook_message_id=facebook_message_id)
            if existing is None:
                raise
            return existing, False
