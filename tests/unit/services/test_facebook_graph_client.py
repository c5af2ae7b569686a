"""
Unit tests for FacebookGraphClient
"""

import pytest
import requests
from unittest.mock import Mock, patch

from services.facebook_graph_client import (
    LEAD_FIELDS, FacebookAPIError, FacebookGraphClient, ad_account_path
)


def response(status_code=200, body=None, text=''):
    mock_response = Mock(status_code=status_code, ok=200 <= status_code < 300, text=text)
    if isinstance(body, Exception):
        mock_response.json.side_effect = body
    else:
        mock_response.json.return_value = body
    return mock_response


class TestFacebookGraphClient:

    @pytest.fixture
    def client(self):
        return FacebookGraphClient(api_version='v24.0', timeout=10)

    @patch('services.facebook_graph_client.requests.request')
    def test_fetch_lead(self, mock_request, client):
        # Arrange
        mock_request.return_value = response(body={'id': 'lead-1', 'field_data': []})

        # Act
        lead = client.fetch_lead('lead-1', 'page-token')

        # Assert
        assert lead['id'] == 'lead-1'
        kwargs = mock_request.call_args[1]
        assert kwargs['method'] == 'GET'
        assert kwargs['url'] == 'https://graph.facebook.com/v24.0/lead-1'
        assert kwargs['params'] == {'fields': LEAD_FIELDS, 'access_token': 'page-token'}

    @patch('services.facebook_graph_client.requests.request')
    def test_send_events(self, mock_request, client):
        mock_request.return_value = response(body={'events_received': 1, 'fbtrace_id': 'trace'})
        events = [{'event_name': 'Lead'}]

        result = client.send_events('dataset-1', 'token', events)

        assert result['events_received'] == 1
        kwargs = mock_request.call_args[1]
        assert kwargs['method'] == 'POST'
        assert kwargs['url'] == 'https://graph.facebook.com/v24.0/dataset-1/events'
        assert kwargs['json'] == {'data': events, 'access_token': 'token'}

    @patch('services.facebook_graph_client.requests.request')
    def test_graph_error_message_is_surfaced(self, mock_request, client):
        mock_request.return_value = response(status_code=400, body={
            'error': {'message': 'Invalid parameter', 'code': 100, 'fbtrace_id': 'trace'}
        })

        with pytest.raises(FacebookAPIError) as exc_info:
            client.fetch_lead('lead-1', 'token')

        assert exc_info.value.status_code == 400
        assert 'Invalid parameter' in str(exc_info.value)
        assert exc_info.value.error['code'] == 100

    @patch('services.facebook_graph_client.requests.request')
    def test_error_without_json_body(self, mock_request, client):
        mock_request.return_value = response(status_code=502, body=ValueError('no json'), text='Bad gateway')

        with pytest.raises(FacebookAPIError) as exc_info:
            client.send_events('dataset-1', 'token', [])

        assert 'Bad gateway' in str(exc_info.value)

    @patch('services.facebook_graph_client.requests.request')
    def test_transport_error(self, mock_request, client):
        mock_request.side_effect = requests.exceptions.ConnectionError('refused')

        with pytest.raises(FacebookAPIError):
            client.fetch_lead('lead-1', 'token')


class TestAdsInsightsReads:

    @pytest.fixture
    def client(self):
        return FacebookGraphClient(api_version='v24.0', timeout=10)

    @patch('services.facebook_graph_client.requests.request')
    def test_insights_with_date_preset(self, mock_request, client):
        mock_request.return_value = response(body={'data': [{'campaign_id': 'c-1'}]})

        rows = client.fetch_insights('123', 'token', 'campaign', 'campaign_id,spend', date_preset='last_30d')

        assert rows == [{'campaign_id': 'c-1'}]
        kwargs = mock_request.call_args[1]
        assert kwargs['url'] == 'https://graph.facebook.com/v24.0/act_123/insights'
        assert kwargs['params'] == {
            'fields': 'campaign_id,spend', 'level': 'campaign',
            'access_token': 'token', 'date_preset': 'last_30d',
        }

    @patch('services.facebook_graph_client.requests.request')
    def test_insights_with_time_range_per_day(self, mock_request, client):
        mock_request.return_value = response(body={'data': []})

        client.fetch_insights('act_123', 'token', 'ad', 'ad_id', date_preset='last_30d',
                              since='2026-10-01', until='2026-10-07', time_increment=1)

        kwargs = mock_request.call_args[1]
        assert kwargs['url'] == 'https://graph.facebook.com/v24.0/act_123/insights'
        assert kwargs['params']['time_range'] == '{"since": "2026-10-01", "until": "2026-10-07"}'
        assert kwargs['params']['time_increment'] == 1
        assert 'date_preset' not in kwargs['params']

    @patch('services.facebook_graph_client.requests.request')
    def test_follows_after_cursor(self, mock_request, client):
        mock_request.side_effect = [
            response(body={'data': [{'id': 'c-1'}],
                           'paging': {'cursors': {'after': 'cursor-1'}, 'next': 'https://next'}}),
            response(body={'data': [{'id': 'c-2'}], 'paging': {'cursors': {'after': 'cursor-2'}}}),
        ]

        campaigns = client.list_campaigns('123', 'token')

        assert [c['id'] for c in campaigns] == ['c-1', 'c-2']
        assert mock_request.call_count == 2
        first, second = (call[1]['params'] for call in mock_request.call_args_list)
        assert 'after' not in first
        assert second['after'] == 'cursor-1'
        assert second['fields'] == 'id,name,status,objective'

    def test_ad_account_path(self):
        assert ad_account_path('123') == 'act_123'
        assert ad_account_path(' act_123 ') == 'act_123'
