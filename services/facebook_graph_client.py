"""
Facebook Graph API client

Lead retrieval, Conversions API event delivery and Ads Insights reads. One
request per call or per page, no retries. Non-2xx responses raise
FacebookAPIError.
"""

import json
import logging
import time
from typing import Any, Dict, List, Optional

import requests

from logging_config import performance_logger

logger = logging.getLogger(__name__)

LEAD_FIELDS = ','.join([
    'id',
    'created_time',
    'field_data',
    'ad_id',
    'ad_name',
    'adset_id',
    'adset_name',
    'campaign_id',
    'campaign_name',
    'form_id',
])


def ad_account_path(ad_account_id: str) -> str:
    """Graph node of an ad account; ids are stored with or without the act_ prefix."""
    ad_account_id = str(ad_account_id).strip()
    return ad_account_id if ad_account_id.startswith('act_') else f"act_{ad_account_id}"


class FacebookAPIError(Exception):
    """Raised when a Graph API call fails"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 error: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.error = error or {}


class FacebookGraphClient:
    """Client for the Facebook Graph API"""

    def __init__(self, api_version: str = 'v24.0', timeout: float = 30,
                 base_url: str = 'https://graph.facebook.com'):
        self.api_version = api_version
        self.base_url = f"{base_url.rstrip('/')}/{api_version}"
        self.timeout = (5, timeout)  # Connection timeout, read timeout

    def fetch_lead(self, leadgen_id: str, page_access_token: str) -> Dict[str, Any]:
        """Full lead details, including field_data and ad attribution."""
        return self._request(
            'GET', str(leadgen_id),
            params={'fields': LEAD_FIELDS, 'access_token': page_access_token}
        )

    def send_events(self, dataset_id: str, access_token: str,
                    events: List[Dict[str, Any]]) -> Dict[str, Any]:
        """POST events to a dataset's Conversions API endpoint."""
        return self._request(
            'POST', f"{dataset_id}/events",
            json_data={'data': events, 'access_token': access_token}
        )

    def fetch_insights(self, ad_account_id: str, access_token: str, level: str, fields: str,
                       date_preset: Optional[str] = None, since: Optional[str] = None,
                       until: Optional[str] = None, time_increment: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Ads Insights rows of an ad account at campaign or ad level.

        Either a date_preset or a since/until range (YYYY-MM-DD) selects the
        window; time_increment=1 breaks rows down per day.
        """
        params: Dict[str, Any] = {'fields': fields, 'level': level, 'access_token': access_token}
        if since and until:
            params['time_range'] = json.dumps({'since': since, 'until': until})
        elif date_preset:
            params['date_preset'] = date_preset
        if time_increment:
            params['time_increment'] = time_increment
        return self._get_all(f"{ad_account_path(ad_account_id)}/insights", params)

    def list_campaigns(self, ad_account_id: str, access_token: str) -> List[Dict[str, Any]]:
        """Campaigns of an ad account with their status and objective."""
        return self._get_all(
            f"{ad_account_path(ad_account_id)}/campaigns",
            {'fields': 'id,name,status,objective', 'access_token': access_token}
        )

    def _get_all(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """GET every page of a Graph API edge, following the after cursor."""
        rows: List[Dict[str, Any]] = []
        while True:
            body = self._request('GET', path, params=params)
            rows.extend(row for row in body.get('data') or [] if isinstance(row, dict))
            paging = body.get('paging') or {}
            after = (paging.get('cursors') or {}).get('after')
            if not paging.get('next') or not after:
                return rows
            params = dict(params, after=after)

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 json_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{path}"
        endpoint = path.split('/')[-1] if '/' in path else 'node'
        started = time.monotonic()
        try:
            response = requests.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Graph API {method} {endpoint} failed: {e}")
            raise FacebookAPIError(f"Graph API request failed: {e}") from e

        performance_logger.log_api_call(
            service='facebook_graph',
            endpoint=endpoint,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
            status_code=response.status_code
        )

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.ok:
            error = (body or {}).get('error') if isinstance(body, dict) else None
            message = (error or {}).get('message') or response.text[:500]
            raise FacebookAPIError(
                f"Graph API error {response.status_code}: {message}",
                status_code=response.status_code,
                error=error
            )
        if not isinstance(body, dict):
            raise FacebookAPIError("Graph API returned a non-object body", status_code=response.status_code)
        return body
