"""
Unit tests for LeadAnalysisService with a mocked LLMClient
"""

import json

import pytest
from unittest.mock import Mock

from services.common.analysis_types import ContactAnalysis
from services.enums import ErrorKind
from services.lead_analysis_service import LeadAnalysisService, DEFAULT_PIPELINE_SUGGESTION
from services.llm_client import Completion, LLMClient, LLMError


def completion(content, tokens=42):
    return Completion(content=content, tokens_used=tokens, model='test-model')


class TestLeadAnalysisService:
    """Test suite for LeadAnalysisService"""

    @pytest.fixture
    def mock_llm(self):
        llm = Mock(spec=LLMClient)
        llm.default_model = 'test-model'
        return llm

    @pytest.fixture
    def service(self, mock_llm):
        return LeadAnalysisService(llm_client=mock_llm)

    @pytest.fixture
    def contact(self):
        return Mock(id=7, full_name='Jo Smith', email='a@b.com', phone='555-1212',
                    custom_fields={'budget': '10k'}, ai_analysis=None)

    @pytest.fixture
    def messages(self):
        return [
            Mock(direction='inbound', content='Do you do roofs?'),
            Mock(direction='outbound', content='Yes we do!'),
        ]

    def test_analyze_parses_model_json(self, service, mock_llm, contact, messages):
        # Arrange
        mock_llm.complete.return_value = completion(json.dumps({
            'summary': 'Homeowner needs a roof', 'intent': 'Roof replacement',
            'urgency': 'HIGH', 'tags': ['roof', 'homeowner']
        }))

        # Act
        result = service.analyze(contact, messages)

        # Assert
        assert result.is_success
        analysis = result.data.analysis
        assert analysis.summary == 'Homeowner needs a roof'
        assert analysis.urgency == 'high'
        assert analysis.tags == ['roof', 'homeowner']
        assert result.data.tokens_used == 42

    def test_analyze_prompt_contains_transcript(self, service, mock_llm, contact, messages):
        mock_llm.complete.return_value = completion('{"summary": "s", "intent": "i"}')

        service.analyze(contact, messages)

        sent = mock_llm.complete.call_args[0][0]
        assert sent[0]['role'] == 'system'
        assert 'JSON' in sent[0]['content']
        assert '[INBOUND] Do you do roofs?' in sent[1]['content']
        assert '[OUTBOUND] Yes we do!' in sent[1]['content']
        assert 'Name: Jo Smith' in sent[1]['content']

    def test_analyze_strips_code_fence(self, service, mock_llm, contact):
        mock_llm.complete.return_value = completion(
            '```json\n{"summary": "Fenced", "intent": "Quote", "urgency": "low", "tags": []}\n```'
        )

        result = service.analyze(contact, [])

        assert result.is_success
        assert result.data.analysis.summary == 'Fenced'
        assert result.data.analysis.urgency == 'low'

    def test_unknown_urgency_coerced_to_medium(self, service, mock_llm, contact):
        mock_llm.complete.return_value = completion('{"summary": "s", "intent": "i", "urgency": "asap"}')

        result = service.analyze(contact, [])

        assert result.data.analysis.urgency == 'medium'

    def test_model_unavailable_gives_fallback(self, service, mock_llm, contact):
        """Test a failed call never raises and yields the default analysis"""
        # Arrange
        mock_llm.complete.side_effect = LLMError('Chat completion API error 503', status_code=503)

        # Act
        result = service.analyze(contact, [])

        # Assert
        assert result.is_failure
        assert result.error_code == ErrorKind.LLM_UNAVAILABLE
        assert result.data.analysis == ContactAnalysis(
            summary='Analysis pending', intent='Unknown', urgency='medium', tags=[]
        )
        assert result.data.tokens_used == 0

    @pytest.mark.parametrize('content', [
        'not json at all',
        '',
        '[1, 2, 3]',
        '{"urgency": "high"}',
    ])
    def test_unreadable_output_gives_fallback(self, service, mock_llm, contact, content):
        mock_llm.complete.return_value = completion(content)

        result = service.analyze(contact, [])

        assert result.is_failure
        assert result.error_code == ErrorKind.LLM_MALFORMED_OUTPUT
        assert result.data.analysis.summary == 'Analysis pending'
        assert result.data.analysis.intent == 'Unknown'

    def test_analyze_conversation_uses_previous_analysis(self, service, mock_llm, contact, messages):
        # Arrange
        previous = ContactAnalysis(summary='Wants a roof', intent='Roof', urgency='low')
        mock_llm.complete.return_value = completion(json.dumps({
            'urgency': 'high', 'intent': 'purchase', 'sentiment': 'positive',
            'should_move_stage': True, 'recommended_action': 'Send quote', 'key_topics': ['price']
        }))

        # Act
        result = service.analyze_conversation(contact, messages, previous)

        # Assert
        insights = result.data.analysis
        assert insights.should_move_stage is True
        assert insights.sentiment == 'positive'
        assert insights.urgency == 'high'
        prompt = mock_llm.complete.call_args[0][0][0]['content']
        assert 'Previous Urgency: low' in prompt
        assert 'Previous Summary: Wants a roof' in prompt
        assert '[CUSTOMER]: Do you do roofs?' in prompt
        assert '[BOT]: Yes we do!' in prompt
        assert mock_llm.complete.call_args[1]['temperature'] == 0.3
        assert mock_llm.complete.call_args[1]['max_tokens'] == 500

    def test_analyze_conversation_fallback_keeps_previous_urgency(self, service, mock_llm, contact):
        previous = ContactAnalysis(summary='s', intent='i', urgency='high')
        mock_llm.complete.side_effect = LLMError('timeout')

        result = service.analyze_conversation(contact, [], previous)

        insights = result.data.analysis
        assert result.error_code == ErrorKind.LLM_UNAVAILABLE
        assert insights.urgency == 'high'
        assert insights.intent == 'unknown'
        assert insights.sentiment == 'neutral'
        assert insights.should_move_stage is False
        assert insights.recommended_action == 'Follow up with customer'
        assert insights.key_topics == []

    def test_suggest_pipeline_normalizes_stages(self, service, mock_llm, contact):
        mock_llm.complete.return_value = completion(json.dumps({
            'name': 'Roofing', 'description': 'Roof leads',
            'stages': [{'name': 'Inquiry', 'capi_event_name': 'Lead'}, {'name': 'Won', 'color': '#000000'}],
            'reasoning': 'Fits'
        }))

        result = service.suggest_pipeline([contact], business_context='Roofing company')

        suggestion = result.data.analysis
        assert result.is_success
        assert [s['name'] for s in suggestion['stages']] == ['Inquiry', 'Won']
        assert suggestion['stages'][0]['color'] == '#6366f1'
        assert suggestion['stages'][0]['order_index'] == 0
        assert suggestion['stages'][1]['order_index'] == 1
        assert mock_llm.complete.call_args[1]['max_tokens'] == 3000

    def test_suggest_pipeline_fallback_is_default_pipeline(self, service, mock_llm):
        mock_llm.complete.return_value = completion('no pipeline here')

        result = service.suggest_pipeline([])

        assert result.error_code == ErrorKind.LLM_MALFORMED_OUTPUT
        assert result.data.analysis == DEFAULT_PIPELINE_SUGGESTION
        assert result.data.analysis is not DEFAULT_PIPELINE_SUGGESTION
        assert [s['name'] for s in result.data.analysis['stages']] == [
            'New Lead', 'Contacted', 'Qualified', 'Proposal', 'Closed Won'
        ]
