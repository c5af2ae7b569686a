"""
Conversions API export

Builds CAPI events with hashed user data and sends them through the Graph
client. Raw email, phone and names never leave this module unhashed.
"""

import hashlib
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from logging_config import get_logger
from services.facebook_graph_client import FacebookGraphClient
from utils.datetime_utils import unix_seconds

logger = get_logger(__name__)

ACTION_SOURCE = 'website'
_NON_DIGITS = re.compile(r'\D')


def hash_identity_value(value: str) -> str:
    """SHA-256 hex of the lower-cased, trimmed value."""
    return hashlib.sha256(value.strip().lower().encode('utf-8')).hexdigest()


def normalize_phone(phone: str) -> str:
    return _NON_DIGITS.sub('', phone or '')


@dataclass
class UserIdentity:
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    external_id: Optional[str] = None

    @classmethod
    def from_contact(cls, contact: Any) -> 'UserIdentity':
        return cls(
            email=contact.email,
            phone=contact.phone,
            first_name=contact.first_name,
            last_name=contact.last_name,
            external_id=str(contact.id) if contact.id is not None else None,
        )

    def to_user_data(self) -> Dict[str, Any]:
        """CAPI user_data: hashed em/ph/fn/ln, raw external_id."""
        user_data: Dict[str, Any] = {}
        if self.email and self.email.strip():
            user_data['em'] = [hash_identity_value(self.email)]
        phone_digits = normalize_phone(self.phone) if self.phone else ''
        if phone_digits:
            user_data['ph'] = [hash_identity_value(phone_digits)]
        if self.first_name and self.first_name.strip():
            user_data['fn'] = [hash_identity_value(self.first_name)]
        if self.last_name and self.last_name.strip():
            user_data['ln'] = [hash_identity_value(self.last_name)]
        if self.external_id:
            user_data['external_id'] = [self.external_id]
        return user_data


@dataclass
class CapiReceipt:
    events_received: int
    fbtrace_id: Optional[str]
    event_id: str


class ConversionsAPIService:
    """Sends conversion events for contacts"""

    def __init__(self, graph_client: FacebookGraphClient):
        self.graph_client = graph_client

    @staticmethod
    def build_event(event_name: str, identity: UserIdentity,
                    custom_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        event: Dict[str, Any] = {
            'event_name': event_name,
            'event_time': unix_seconds(),
            'event_id': str(uuid.uuid4()),
            'action_source': ACTION_SOURCE,
            'user_data': identity.to_user_data(),
        }
        if custom_data:
            event['custom_data'] = custom_data
        return event

    def export(self, dataset_id: str, access_token: str, event_name: str,
               identity: UserIdentity, custom_data: Optional[Dict[str, Any]] = None) -> CapiReceipt:
        """
        Send one event.

        Raises:
            FacebookAPIError: On transport failure or a non-2xx response
        """
        event = self.build_event(event_name, identity, custom_data)
        response = self.graph_client.send_events(dataset_id, access_token, [event])
        receipt = CapiReceipt(
            events_received=int(response.get('events_received') or 0),
            fbtrace_id=response.get('fbtrace_id'),
            event_id=event['event_id'],
        )
        logger.info("CAPI event sent", event_name=event_name, dataset_id=dataset_id,
                    event_id=receipt.event_id, events_received=receipt.events_received,
                    fbtrace_id=receipt.fbtrace_id)
        return receipt
