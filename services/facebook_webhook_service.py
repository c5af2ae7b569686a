"""
Facebook webhook intake

Turns leadgen and Messenger webhook deliveries into pipeline runs:

- leadgen change -> fetch the lead, parse its form fields, create the contact,
  then analyze and assign it
- Messenger message -> store the inbound message on the matching contact,
  then reanalyze it

Facebook batches several entries into one delivery. Each entry is handled on
its own; an entry that raises is rolled back and counted as failed without
stopping the rest.
"""

from typing import Any, Dict, List, Optional

from logging_config import get_logger
from repositories.contact_repository import ContactRepository
from repositories.facebook_config_repository import FacebookConfigRepository
from repositories.message_repository import MessageRepository
from services.common.result import Result
from services.enums import ContactSource, ErrorKind, MessageDirection
from services.facebook_graph_client import FacebookAPIError, FacebookGraphClient
from services.lead_parser import parse_lead_fields
from services.lead_pipeline_service import LeadPipelineService
from utils.datetime_utils import utc_from_timestamp, utc_now

logger = get_logger(__name__)

MESSENGER_PLATFORM = 'messenger'


class WebhookBatchSummary:
    """Per-delivery counters"""

    def __init__(self):
        self.processed = 0
        self.skipped = 0
        self.failed = 0
        self.results: List[Dict[str, Any]] = []

    def record(self, result: Result) -> None:
        if result.is_success:
            self.processed += 1
            self.results.append(result.data)
        else:
            self.skipped += 1
            self.results.append({'skipped': getattr(result.error_code, 'value', result.error_code),
                                 'error': result.error})

    def to_dict(self) -> Dict[str, Any]:
        return {
            'processed': self.processed,
            'skipped': self.skipped,
            'failed': self.failed,
            'results': self.results,
        }


class FacebookWebhookService:
    """Handles leadgen and Messenger webhook events"""

    def __init__(self,
                 facebook_config_repository: FacebookConfigRepository,
                 contact_repository: ContactRepository,
                 message_repository: MessageRepository,
                 graph_client: FacebookGraphClient,
                 lead_pipeline_service: LeadPipelineService):
        """
        Initialize with injected dependencies.

        Args:
            facebook_config_repository: Page -> owner configuration lookup
            contact_repository: Contact data access
            message_repository: Conversation history data access
            graph_client: Graph API client used to fetch full leads
            lead_pipeline_service: Runs analysis and stage assignment
        """
        self.facebook_config_repository = facebook_config_repository
        self.contact_repository = contact_repository
        self.message_repository = message_repository
        self.graph_client = graph_client
        self.lead_pipeline_service = lead_pipeline_service

    # Leadgen

    def process_leadgen_payload(self, payload: Dict[str, Any]) -> Result[Dict[str, Any]]:
        """
        Process every leadgen change of a webhook delivery.

        Returns:
            Result[Dict]: batch summary, or MALFORMED_EVENT if the body has no
            entry list
        """
        entries = payload.get('entry') if isinstance(payload, dict) else None
        if not isinstance(entries, list):
            return Result.failure("Webhook body has no entry list", code=ErrorKind.MALFORMED_EVENT)

        summary = WebhookBatchSummary()
        for entry in entries:
            changes = entry.get('changes') if isinstance(entry, dict) else None
            for change in changes or []:
                if not isinstance(change, dict) or change.get('field') != 'leadgen':
                    continue
                self._run_isolated(summary, self.handle_lead_event, change.get('value'))

        logger.info("Leadgen webhook processed", processed=summary.processed,
                    skipped=summary.skipped, failed=summary.failed)
        return Result.success(summary.to_dict())

    def handle_lead_event(self, event: Dict[str, Any]) -> Result[Dict[str, Any]]:
        """
        Ingest one lead event: {leadgen_id, page_id, form_id, created_time}.

        A redelivered lead reuses the existing contact and resumes its
        pipeline run from where it stands.
        """
        if not isinstance(event, dict) or not event.get('leadgen_id') or not event.get('page_id'):
            return Result.failure("Lead event missing leadgen_id or page_id", code=ErrorKind.MALFORMED_EVENT)

        leadgen_id = str(event['leadgen_id'])
        page_id = str(event['page_id'])

        config = self.facebook_config_repository.get_by_page_id(page_id)
        if config is None:
            logger.warning("Lead for unconfigured page", page_id=page_id, leadgen_id=leadgen_id)
            return Result.failure(f"No configuration for page {page_id}", code=ErrorKind.UNKNOWN_PAGE)

        try:
            lead = self.graph_client.fetch_lead(leadgen_id, config.page_access_token)
        except FacebookAPIError as e:
            logger.error("Lead fetch failed", page_id=page_id, leadgen_id=leadgen_id,
                         status_code=e.status_code, error=str(e))
            return Result.failure(f"Could not fetch lead {leadgen_id}: {e}", code=ErrorKind.LEAD_FETCH_FAILED)

        parsed = parse_lead_fields(lead.get('field_data'))
        contact, created = self.contact_repository.create_from_lead(
            config.owner_id,
            leadgen_id,
            email=parsed.email,
            phone=parsed.phone,
            first_name=parsed.first_name,
            last_name=parsed.last_name,
            full_name=parsed.display_name,
            custom_fields=parsed.custom_fields,
            facebook_page_id=page_id,
            facebook_ad_id=lead.get('ad_id') or event.get('ad_id'),
            facebook_adset_id=lead.get('adset_id'),
            facebook_campaign_id=lead.get('campaign_id'),
            facebook_form_id=lead.get('form_id') or event.get('form_id'),
            ad_name=lead.get('ad_name'),
            adset_name=lead.get('adset_name'),
            campaign_name=lead.get('campaign_name'),
            source=ContactSource.WEBHOOK.value,
        )
        self.contact_repository.commit()
        logger.info("Lead contact ready", contact_id=contact.id, owner_id=config.owner_id,
                    leadgen_id=leadgen_id, created=created,
                    custom_field_count=len(parsed.custom_fields))

        outcome = self.lead_pipeline_service.process_new_contact(contact)
        data = outcome.to_dict()
        data['created'] = created
        return Result.success(data)

    # Messenger

    def process_messenger_payload(self, payload: Dict[str, Any]) -> Result[Dict[str, Any]]:
        """Process every messaging event of a Messenger webhook delivery."""
        entries = payload.get('entry') if isinstance(payload, dict) else None
        if not isinstance(entries, list):
            return Result.failure("Webhook body has no entry list", code=ErrorKind.MALFORMED_EVENT)

        summary = WebhookBatchSummary()
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            page_id = entry.get('id')
            for event in entry.get('messaging') or []:
                self._run_isolated(summary, self.handle_message_event, page_id, event)

        logger.info("Messenger webhook processed", processed=summary.processed,
                    skipped=summary.skipped, failed=summary.failed)
        return Result.success(summary.to_dict())

    def handle_message_event(self, page_id: Optional[str], event: Dict[str, Any]) -> Result[Dict[str, Any]]:
        """
        Store one inbound Messenger message and reanalyze its contact.

        Only contacts that came in through the lead webhook are processed.
        """
        if not isinstance(event, dict):
            return Result.failure("Messaging event is not an object", code=ErrorKind.MALFORMED_EVENT)

        sender_id = (event.get('sender') or {}).get('id')
        page_id = page_id or (event.get('recipient') or {}).get('id')
        message = event.get('message') or {}
        postback = event.get('postback') or {}
        text = message.get('text') or postback.get('title')
        if not sender_id or not page_id:
            return Result.failure("Messaging event missing sender or page", code=ErrorKind.MALFORMED_EVENT)
        if not text:
            return Result.failure("Messaging event has no text", code=ErrorKind.MALFORMED_EVENT)
        if message.get('is_echo'):
            return Result.failure("Echo of an outbound message", code=ErrorKind.CONTACT_IGNORED)

        page_id = str(page_id)
        sender_id = str(sender_id)
        config = self.facebook_config_repository.get_by_page_id(page_id)
        if config is None:
            return Result.failure(f"No configuration for page {page_id}", code=ErrorKind.UNKNOWN_PAGE)

        contact = self.contact_repository.find_by_messenger_sender(config.owner_id, page_id, sender_id)
        if contact is None:
            logger.info("Message from unknown sender", page_id=page_id, owner_id=config.owner_id)
            return Result.failure("No contact for sender", code=ErrorKind.CONTACT_NOT_FOUND)
        if contact.source != ContactSource.WEBHOOK.value:
            return Result.failure(f"Contact {contact.id} is not a lead-webhook contact",
                                  code=ErrorKind.CONTACT_IGNORED)

        timestamp = event.get('timestamp')
        stored, created = self.message_repository.create_if_absent(
            message.get('mid'),
            contact_id=contact.id,
            owner_id=contact.owner_id,
            direction=MessageDirection.INBOUND.value,
            content=text,
            platform=MESSENGER_PLATFORM,
            created_at=utc_from_timestamp(timestamp) if timestamp else utc_now(),
        )
        self.message_repository.commit()
        if not created:
            logger.info("Duplicate message delivery", contact_id=contact.id, message_id=stored.id)
            return Result.success({'contact_id': contact.id, 'state': 'duplicate_message'})

        outcome = self.lead_pipeline_service.reanalyze_contact(contact)
        return Result.success(outcome.to_dict())

    def _run_isolated(self, summary: WebhookBatchSummary, handler, *args) -> None:
        try:
            summary.record(handler(*args))
        except Exception as e:
            self.contact_repository.rollback()
            summary.failed += 1
            summary.results.append({'failed': str(e)})
            logger.exception("Webhook event failed", handler=handler.__name__, error=str(e))
