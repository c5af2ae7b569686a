"""
ContactService - manual contact entry, quality updates and Messenger linking
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from logging_config import get_logger
from repositories.contact_repository import ContactRepository
from services.common.result import Result
from services.enums import ContactSource, ErrorKind
from services.lead_pipeline_service import LeadPipelineService
from services.lead_scoring import MAX_SCORE, MIN_SCORE, score_contact
from utils.datetime_utils import isoformat_utc

logger = get_logger(__name__)

IDENTITY_FIELDS = ('email', 'phone', 'first_name', 'last_name', 'full_name')


def serialize_contact(contact) -> Dict[str, Any]:
    return {
        'id': contact.id,
        'email': contact.email,
        'phone': contact.phone,
        'first_name': contact.first_name,
        'last_name': contact.last_name,
        'full_name': contact.full_name,
        'custom_fields': contact.custom_fields or {},
        'source': contact.source,
        'ai_analysis': contact.ai_analysis,
        'analyzed_at': isoformat_utc(contact.analyzed_at) if contact.analyzed_at else None,
        'lead_quality_score': contact.lead_quality_score,
        'lead_value': float(contact.lead_value) if contact.lead_value is not None else None,
        'messenger_psid': contact.messenger_psid,
    }


class ContactService:
    """Contact operations outside the webhook path"""

    def __init__(self, contact_repository: ContactRepository,
                 lead_pipeline_service: LeadPipelineService):
        self.contact_repository = contact_repository
        self.lead_pipeline_service = lead_pipeline_service

    def create_manual_contact(self, owner_id: str, data: Dict[str, Any],
                              analyze: bool = True) -> Result[Dict[str, Any]]:
        """
        Create a contact entered by hand, then optionally analyze and assign it.

        Args:
            owner_id: Owner the contact belongs to
            data: Identity fields plus optional custom_fields
            analyze: Run analysis and stage assignment right away
        """
        fields = {name: (str(data[name]).strip() or None) if data.get(name) else None
                  for name in IDENTITY_FIELDS}
        if not any(fields.values()):
            return Result.failure("At least one of email, phone or name is required",
                                  code=ErrorKind.INVALID_INPUT)
        custom_fields = data.get('custom_fields') or {}
        if not isinstance(custom_fields, dict):
            return Result.failure("custom_fields must be an object", code=ErrorKind.INVALID_INPUT)

        if not fields['full_name']:
            joined = f"{fields['first_name'] or ''} {fields['last_name'] or ''}".strip()
            fields['full_name'] = joined or None

        contact = self.contact_repository.create(
            owner_id=owner_id,
            custom_fields={str(k): str(v) for k, v in custom_fields.items()},
            source=ContactSource.MANUAL.value,
            **fields
        )
        contact.lead_quality_score = score_contact(contact)
        self.contact_repository.commit()
        logger.info("Manual contact created", contact_id=contact.id, owner_id=owner_id)

        outcome = None
        if analyze:
            outcome = self.lead_pipeline_service.process_new_contact(contact)

        payload = serialize_contact(contact)
        payload['pipeline'] = outcome.to_dict() if outcome else None
        return Result.success(payload)

    def update_quality(self, owner_id: str, contact_id: int,
                       lead_quality_score: Optional[Any] = None,
                       lead_value: Optional[Any] = None) -> Result[Dict[str, Any]]:
        """
        Set the quality score (clamped to 0-100) and/or lead value. With
        neither given, the score is recomputed from the contact.
        """
        contact = self.contact_repository.get_for_owner(owner_id, contact_id)
        if contact is None:
            return Result.failure(f"Contact {contact_id} not found", code=ErrorKind.CONTACT_NOT_FOUND)

        updates: Dict[str, Any] = {}
        if lead_quality_score is not None:
            try:
                score = int(round(float(lead_quality_score)))
            except (TypeError, ValueError):
                return Result.failure("lead_quality_score must be a number", code=ErrorKind.INVALID_INPUT)
            updates['lead_quality_score'] = max(MIN_SCORE, min(MAX_SCORE, score))
        if lead_value is not None:
            try:
                updates['lead_value'] = Decimal(str(lead_value))
            except InvalidOperation:
                return Result.failure("lead_value must be a number", code=ErrorKind.INVALID_INPUT)
        if not updates:
            updates['lead_quality_score'] = score_contact(contact)

        self.contact_repository.update(contact, **updates)
        self.contact_repository.commit()
        logger.info("Contact quality updated", contact_id=contact.id,
                    lead_quality_score=contact.lead_quality_score)
        return Result.success(serialize_contact(contact))

    def link_messenger_psid(self, owner_id: str, contact_id: int, psid: str) -> Result[Dict[str, Any]]:
        """Store a Messenger sender id so later messages resolve to this contact."""
        if not psid or not str(psid).strip():
            return Result.failure("psid is required", code=ErrorKind.INVALID_INPUT)
        contact = self.contact_repository.get_for_owner(owner_id, contact_id)
        if contact is None:
            return Result.failure(f"Contact {contact_id} not found", code=ErrorKind.CONTACT_NOT_FOUND)

        self.contact_repository.update(contact, messenger_psid=str(psid).strip())
        self.contact_repository.commit()
        logger.info("Messenger sender linked", contact_id=contact.id)
        return Result.success(serialize_contact(contact))
