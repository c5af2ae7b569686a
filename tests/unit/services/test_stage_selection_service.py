"""
Unit tests for StageSelectionService
Covers the candidate-id guard, failure defaults and the bulk variant
"""

import json

import pytest
from unittest.mock import Mock

from repositories.pipeline_repository import sort_stages
from services.common.analysis_types import ContactAnalysis
from services.enums import ErrorKind
from services.llm_client import Completion, LLMClient, LLMError
from services.stage_selection_service import StageSelectionService, resolve_stage_id, stage_criteria


def completion(content, tokens=30):
    return Completion(content=content, tokens_used=tokens, model='test-model')


def stage(stage_id, order_index):
    candidate = Mock(id=stage_id, order_index=order_index, description=None, created_at=None,
                     requirements={'criteria': [f'criteria for {stage_id}']})
    candidate.name = f'Stage {stage_id}'
    return candidate


class TestStageSelectionService:
    """Test suite for StageSelectionService"""

    @pytest.fixture
    def mock_llm(self):
        llm = Mock(spec=LLMClient)
        llm.default_model = 'test-model'
        return llm

    @pytest.fixture
    def service(self, mock_llm):
        return StageSelectionService(llm_client=mock_llm)

    @pytest.fixture
    def stages(self):
        # Sorted by order_index: s2 first
        return sort_stages([stage('s1', 1), stage('s2', 0)])

    @pytest.fixture
    def contact(self):
        return Mock(id=3, full_name='Jo Smith', email='a@b.com', ai_analysis=None)

    @pytest.fixture
    def analysis(self):
        return ContactAnalysis(summary='Wants a quote', intent='Quote', urgency='high')

    def test_stage_order_is_by_order_index(self, stages):
        assert [s.id for s in stages] == ['s2', 's1']

    def test_valid_stage_id_is_returned(self, service, mock_llm, contact, analysis, stages):
        # Arrange
        mock_llm.complete.return_value = completion(json.dumps(
            {'stage_id': 's1', 'confidence': 0.9, 'reasoning': 'Qualified already'}
        ))

        # Act
        result = service.select_stage(contact, analysis, [], stages)

        # Assert
        assert result.is_success
        selection = result.data.analysis
        assert selection.stage_id == 's1'
        assert selection.confidence == 0.9
        assert selection.corrected is False
        assert result.metadata == {'stage_id_corrected': False}

    def test_invalid_stage_id_corrected_to_first_candidate(self, service, mock_llm, contact, analysis, stages):
        """Test the model's confidence is kept while the id is replaced"""
        mock_llm.complete.return_value = completion(json.dumps(
            {'stage_id': 'nonexistent', 'confidence': 0.8, 'reasoning': 'Guess'}
        ))

        result = service.select_stage(contact, analysis, [], stages)

        selection = result.data.analysis
        assert result.is_success
        assert selection.stage_id == 's2'
        assert selection.confidence == 0.8
        assert selection.corrected is True

    def test_numeric_ids_compared_as_strings(self, service, mock_llm, contact, analysis):
        stages = [stage(10, 0), stage(11, 1)]
        mock_llm.complete.return_value = completion('{"stage_id": "11", "confidence": 0.7, "reasoning": "r"}')

        result = service.select_stage(contact, analysis, [], stages)

        assert result.data.analysis.stage_id == 11

    def test_call_failure_gives_first_stage_default(self, service, mock_llm, contact, analysis, stages):
        mock_llm.complete.side_effect = LLMError('down')

        result = service.select_stage(contact, analysis, [], stages)

        selection = result.data.analysis
        assert result.error_code == ErrorKind.LLM_UNAVAILABLE
        assert selection.stage_id == 's2'
        assert selection.confidence == 0.3
        assert selection.reasoning == 'Default assignment - analysis failed'

    def test_unparseable_output_gives_first_stage_default(self, service, mock_llm, contact, analysis, stages):
        mock_llm.complete.return_value = completion('I think stage two')

        result = service.select_stage(contact, analysis, [], stages)

        assert result.error_code == ErrorKind.LLM_MALFORMED_OUTPUT
        assert result.data.analysis.stage_id == 's2'
        assert result.data.analysis.confidence == 0.3

    def test_confidence_defaults_and_clamps(self, service, mock_llm, contact, analysis, stages):
        mock_llm.complete.return_value = completion('{"stage_id": "s1", "confidence": 7}')
        assert service.select_stage(contact, analysis, [], stages).data.analysis.confidence == 1.0

        mock_llm.complete.return_value = completion('{"stage_id": "s1", "confidence": "high"}')
        assert service.select_stage(contact, analysis, [], stages).data.analysis.confidence == 0.5

    def test_only_last_ten_messages_sent(self, service, mock_llm, contact, analysis, stages):
        messages = [Mock(direction='inbound', content=f'message {i}') for i in range(15)]
        mock_llm.complete.return_value = completion('{"stage_id": "s2", "confidence": 0.5}')

        service.select_stage(contact, analysis, messages, stages)

        prompt = mock_llm.complete.call_args[0][0][1]['content']
        assert 'message 4\n' not in prompt
        assert 'message 5' in prompt
        assert 'message 14' in prompt
        assert 'ID: s2 | Name: Stage s2 | Requirements: criteria for s2' in prompt

    def test_no_stages_is_a_failure(self, service, mock_llm, contact, analysis):
        result = service.select_stage(contact, analysis, [], [])

        assert result.is_failure
        assert result.error_code == ErrorKind.NO_STAGES
        assert result.data is None
        mock_llm.complete.assert_not_called()

    @pytest.mark.parametrize('requirements,expected', [
        ({'criteria': 'Budget ok'}, 'Requirements: Budget ok'),
        (['Budget ok'], 'Requirements: None'),
        ('Budget ok', 'Requirements: None'),
        ({'criteria': 7}, 'Requirements: None'),
    ])
    def test_irregular_requirements_in_prompt(self, service, mock_llm, contact, analysis, requirements, expected):
        # Arrange
        odd = stage('s1', 0)
        odd.requirements = requirements
        mock_llm.complete.return_value = completion(json.dumps({'stage_id': 's1', 'confidence': 0.7}))

        # Act
        result = service.select_stage(contact, analysis, [], [odd])

        # Assert
        assert result.is_success
        prompt = mock_llm.complete.call_args[0][0][1]['content']
        assert f'- ID: s1 | Name: Stage s1 | {expected}' in prompt


class TestBulkStageSelection:
    """Test suite for select_stages_bulk"""

    @pytest.fixture
    def mock_llm(self):
        llm = Mock(spec=LLMClient)
        llm.default_model = 'test-model'
        return llm

    @pytest.fixture
    def service(self, mock_llm):
        return StageSelectionService(llm_client=mock_llm)

    @pytest.fixture
    def stages(self):
        return [stage('s2', 0), stage('s1', 1)]

    @pytest.fixture
    def contacts(self):
        return [Mock(id=i, full_name=f'Lead {i}', ai_analysis={'intent': 'x', 'urgency': 'low'})
                for i in (1, 2, 3)]

    def test_every_contact_gets_one_valid_assignment(self, service, mock_llm, stages, contacts):
        # Arrange: contact 2 has a bad stage, contact 3 is omitted, contact 99 is unknown
        mock_llm.complete.return_value = completion(json.dumps([
            {'contact_id': '1', 'stage_id': 's1', 'confidence': 0.9},
            {'contact_id': 2, 'stage_id': 'bogus', 'confidence': 0.6},
            {'contact_id': '99', 'stage_id': 's1', 'confidence': 0.9},
        ]))

        # Act
        result = service.select_stages_bulk(contacts, stages)

        # Assert
        assignments = result.data.analysis
        assert [(a.contact_id, a.stage_id) for a in assignments] == [(1, 's1'), (2, 's2'), (3, 's2')]
        assert assignments[1].confidence == 0.6
        assert assignments[2].confidence == 0.3
        assert result.metadata == {'defaulted': 2}
        assert mock_llm.complete.call_args[1]['max_tokens'] == 4000

    def test_failure_puts_everyone_on_first_stage(self, service, mock_llm, stages, contacts):
        mock_llm.complete.side_effect = LLMError('down')

        result = service.select_stages_bulk(contacts, stages)

        assert result.error_code == ErrorKind.LLM_UNAVAILABLE
        assert {a.stage_id for a in result.data.analysis} == {'s2'}
        assert len(result.data.analysis) == 3

    def test_non_array_output_is_malformed(self, service, mock_llm, stages, contacts):
        mock_llm.complete.return_value = completion('{"contact_id": 1}')

        result = service.select_stages_bulk(contacts, stages)

        assert result.error_code == ErrorKind.LLM_MALFORMED_OUTPUT
        assert len(result.data.analysis) == 3

    def test_irregular_requirements_in_bulk_prompt(self, service, mock_llm, contacts):
        odd = stage('s1', 0)
        odd.requirements = ['Budget ok']
        mock_llm.complete.return_value = completion('[]')

        result = service.select_stages_bulk(contacts, [odd])

        assert result.is_success
        assert [a.stage_id for a in result.data.analysis] == ['s1', 's1', 's1']
        assert 'For: General' in mock_llm.complete.call_args[0][0][1]['content']


class TestResolveStageId:

    def test_returns_candidate_id(self):
        stages = [stage(5, 0), stage(6, 1)]
        assert resolve_stage_id('6', stages) == 6
        assert resolve_stage_id(' 5 ', stages) == 5

    def test_unknown_or_missing_is_none(self):
        stages = [stage(5, 0)]
        assert resolve_stage_id('7', stages) is None
        assert resolve_stage_id(None, stages) is None


class TestStageCriteria:

    def test_blank_items_dropped(self):
        assert stage_criteria({'criteria': ['A', None, '  ', 'B ']}) == ['A', 'B']

    def test_string_criteria_is_one_item(self):
        assert stage_criteria({'criteria': 'Budget ok'}) == ['Budget ok']

    @pytest.mark.parametrize('requirements', [None, {}, ['Budget ok'], 'Budget ok', {'criteria': 7}])
    def test_no_criteria(self, requirements):
        assert stage_criteria(requirements) == []
