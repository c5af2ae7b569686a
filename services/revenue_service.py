"""
RevenueService - closes the attribution loop

Records revenue against a contact and reports it to Facebook as a Purchase
event, so ad spend can be measured against closed deals.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from logging_config import get_logger
from repositories.contact_repository import ContactRepository
from repositories.facebook_config_repository import FacebookConfigRepository
from repositories.revenue_repository import RevenueRepository
from services.common.result import Result
from services.conversions_api_service import ConversionsAPIService, UserIdentity
from services.enums import ErrorKind
from services.facebook_graph_client import FacebookAPIError
from utils.datetime_utils import utc_now

logger = get_logger(__name__)

PURCHASE_EVENT = 'Purchase'
DEFAULT_CONTENT_NAME = 'Lead Conversion'


class RevenueService:
    """Records revenue and sends Purchase events"""

    def __init__(self,
                 revenue_repository: RevenueRepository,
                 contact_repository: ContactRepository,
                 facebook_config_repository: FacebookConfigRepository,
                 conversions_service: ConversionsAPIService):
        self.revenue_repository = revenue_repository
        self.contact_repository = contact_repository
        self.facebook_config_repository = facebook_config_repository
        self.conversions_service = conversions_service

    def record_revenue(self, owner_id: str, contact_id: int, amount: Any,
                       currency: str = 'USD', revenue_type: str = 'sale',
                       description: Optional[str] = None,
                       send_to_facebook: bool = True) -> Result[Dict[str, Any]]:
        """
        Store a revenue record and add it to the contact's actual revenue.

        The Purchase export runs after the record is committed; its failure
        is reported in the result but never undoes the record.
        """
        try:
            value = Decimal(str(amount))
        except InvalidOperation:
            return Result.failure("amount must be a number", code=ErrorKind.INVALID_INPUT)
        if value <= 0:
            return Result.failure("amount must be positive", code=ErrorKind.INVALID_INPUT)

        contact = self.contact_repository.get_for_owner(owner_id, contact_id)
        if contact is None:
            return Result.failure(f"Contact {contact_id} not found", code=ErrorKind.CONTACT_NOT_FOUND)

        currency = (currency or 'USD').upper()
        record = self.revenue_repository.create(
            owner_id=owner_id,
            contact_id=contact.id,
            facebook_ad_id=contact.facebook_ad_id,
            facebook_campaign_id=contact.facebook_campaign_id,
            amount=value,
            currency=currency,
            revenue_type=revenue_type or 'sale',
            description=description
        )
        self.contact_repository.update(
            contact,
            actual_revenue=Decimal(str(contact.actual_revenue or 0)) + value,
            converted_at=contact.converted_at or utc_now()
        )
        self.revenue_repository.commit()
        logger.info("Revenue recorded", owner_id=owner_id, contact_id=contact.id,
                    revenue_id=record.id, amount=float(value), currency=currency)

        capi_sent = False
        export_error = None
        config = self.facebook_config_repository.get_export_config(owner_id) if send_to_facebook else None
        if config is not None:
            custom_data = {
                'value': float(value),
                'currency': currency,
                'content_name': description or DEFAULT_CONTENT_NAME,
                'content_type': revenue_type or 'sale',
            }
            try:
                receipt = self.conversions_service.export(
                    config.dataset_id, config.page_access_token, PURCHASE_EVENT,
                    UserIdentity.from_contact(contact), custom_data
                )
                self.revenue_repository.mark_capi_sent(record, receipt.fbtrace_id or receipt.event_id)
                self.contact_repository.update(contact, conversion_event_sent=True)
                self.revenue_repository.commit()
                capi_sent = True
            except FacebookAPIError as e:
                export_error = str(e)
                logger.warning("Purchase export failed", contact_id=contact.id,
                               revenue_id=record.id, error=export_error)

        return Result.success({
            'revenue_id': record.id,
            'contact_id': contact.id,
            'amount': float(value),
            'currency': currency,
            'actual_revenue': float(contact.actual_revenue),
            'capi_event_sent': capi_sent,
            'capi_error': export_error,
        })
