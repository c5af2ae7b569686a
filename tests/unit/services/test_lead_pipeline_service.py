"""
Unit tests for LeadPipelineService with mocked repositories and components
Covers the error decision table and the contact state transitions
"""

import pytest
from unittest.mock import Mock

from repositories.analysis_log_repository import AnalysisLogRepository
from repositories.contact_repository import ContactRepository
from repositories.facebook_config_repository import FacebookConfigRepository
from repositories.message_repository import MessageRepository
from repositories.pipeline_repository import PipelineRepository
from repositories.stage_assignment_repository import StageAssignmentRepository
from services.common.analysis_types import (
    AnalysisOutcome,
    BulkStageAssignment,
    ContactAnalysis,
    ConversationInsights,
    StageSelection,
)
from services.common.result import Result
from services.conversions_api_service import CapiReceipt, ConversionsAPIService
from services.enums import ErrorKind, ErrorPolicy
from services.facebook_graph_client import FacebookAPIError
from services.lead_analysis_service import LeadAnalysisService
from services.lead_pipeline_service import (
    ERROR_POLICY,
    ContactState,
    LeadPipelineService,
    resolve_error_policy,
)
from services.stage_selection_service import StageSelectionService


def make_stage(stage_id, name, capi_event_name=None):
    stage = Mock(id=stage_id, capi_event_name=capi_event_name)
    stage.name = name
    return stage


class TestErrorPolicy:
    """The decision table routing failed component results"""

    @pytest.mark.parametrize('kind,policy', [
        (ErrorKind.LLM_UNAVAILABLE, ErrorPolicy.USE_FALLBACK),
        (ErrorKind.LLM_MALFORMED_OUTPUT, ErrorPolicy.USE_FALLBACK),
        (ErrorKind.EXPORT_FAILED, ErrorPolicy.LOG_AND_CONTINUE),
        (ErrorKind.NO_DEFAULT_PIPELINE, ErrorPolicy.STOP),
        (ErrorKind.NO_STAGES, ErrorPolicy.STOP),
        (ErrorKind.CONTACT_IGNORED, ErrorPolicy.STOP),
        (ErrorKind.LEAD_FETCH_FAILED, ErrorPolicy.SKIP_EVENT),
        (ErrorKind.UNKNOWN_PAGE, ErrorPolicy.SKIP_EVENT),
        (ErrorKind.MALFORMED_EVENT, ErrorPolicy.SKIP_EVENT),
    ])
    def test_policy_for_kind(self, kind, policy):
        assert resolve_error_policy(kind) == policy

    def test_every_kind_has_a_policy(self):
        assert set(ERROR_POLICY) == set(ErrorKind)

    def test_string_codes_resolve(self):
        assert resolve_error_policy('export_failed') == ErrorPolicy.LOG_AND_CONTINUE

    def test_unknown_code_skips_event(self):
        assert resolve_error_policy('something_new') == ErrorPolicy.SKIP_EVENT
        assert resolve_error_policy(None) == ErrorPolicy.SKIP_EVENT


class TestLeadPipelineService:
    """Test suite for LeadPipelineService"""

    @pytest.fixture
    def repos(self):
        return {
            'contact_repository': Mock(spec=ContactRepository),
            'pipeline_repository': Mock(spec=PipelineRepository),
            'assignment_repository': Mock(spec=StageAssignmentRepository),
            'message_repository': Mock(spec=MessageRepository),
            'analysis_log_repository': Mock(spec=AnalysisLogRepository),
            'facebook_config_repository': Mock(spec=FacebookConfigRepository),
        }

    @pytest.fixture
    def analysis_service(self):
        service = Mock(spec=LeadAnalysisService)
        service.default_model = 'test-model'
        service.analyze.return_value = Result.success(AnalysisOutcome(
            ContactAnalysis(summary='Wants a roof', intent='Roof', urgency='high', tags=['roof']),
            120, 'test-model'
        ))
        return service

    @pytest.fixture
    def selection_service(self):
        return Mock(spec=StageSelectionService)

    @pytest.fixture
    def conversions(self):
        service = Mock(spec=ConversionsAPIService)
        service.export.return_value = CapiReceipt(events_received=1, fbtrace_id='trace', event_id='evt')
        return service

    @pytest.fixture
    def service(self, repos, analysis_service, selection_service, conversions):
        repos['message_repository'].get_recent_for_contact.return_value = []
        repos['assignment_repository'].get_for_contact.return_value = None
        repos['facebook_config_repository'].get_by_page_id.return_value = None
        repos['facebook_config_repository'].get_export_config.return_value = Mock(
            owner_id='owner-1', dataset_id='dataset-1', page_access_token='page-token'
        )
        return LeadPipelineService(
            analysis_service=analysis_service,
            stage_selection_service=selection_service,
            conversions_service=conversions,
            **repos
        )

    @pytest.fixture
    def contact(self):
        return Mock(id=5, owner_id='owner-1', email='a@b.com', phone='555-1212', full_name='Jo',
                    first_name='Jo', last_name=None, custom_fields={}, ai_analysis=None,
                    facebook_page_id='page-1', lead_quality_score=0)

    @pytest.fixture
    def stages(self):
        return [make_stage(21, 'New Lead', 'Lead'), make_stage(22, 'Qualified')]

    @pytest.fixture
    def pipeline(self, repos, stages):
        pipeline = Mock(id=3)
        pipeline.name = 'Sales'
        repos['pipeline_repository'].get_default_for_owner.return_value = pipeline
        repos['pipeline_repository'].get_ordered_stages.return_value = stages
        return pipeline

    def select(self, selection_service, stage_id, confidence=0.9, reasoning='Fits'):
        selection_service.select_stage.return_value = Result.success(
            AnalysisOutcome(StageSelection(stage_id, confidence, reasoning), 40, 'test-model')
        )

    def test_analyze_contact_persists_analysis_and_score(self, service, repos, contact):
        # Act
        analysis = service.analyze_contact(contact)

        # Assert
        assert analysis.summary == 'Wants a roof'
        saved_contact, payload, analyzed_at, score = repos['contact_repository'].save_analysis.call_args[0]
        assert saved_contact is contact
        assert payload['urgency'] == 'high'
        assert payload['analyzed_at'] == analysis.analyzed_at
        assert score == 70  # email + phone + name + high urgency
        repos['contact_repository'].commit.assert_called()
        log = repos['analysis_log_repository'].append.call_args[1]
        assert log['action_type'] == 'analyze_contact'
        assert log['tokens_used'] == 120

    def test_analyze_contact_uses_fallback(self, service, repos, analysis_service, contact):
        """Test model outage still produces and persists the default analysis"""
        analysis_service.analyze.return_value = Result.fallback(
            AnalysisOutcome(ContactAnalysis.fallback(), 0, 'test-model'),
            'down', code=ErrorKind.LLM_UNAVAILABLE
        )

        analysis = service.analyze_contact(contact)

        assert analysis.summary == 'Analysis pending'
        assert repos['contact_repository'].save_analysis.call_args[0][3] == 55

    def test_new_contact_is_assigned_and_exported(self, service, repos, selection_service,
                                                  conversions, contact, pipeline):
        # Arrange
        self.select(selection_service, 21)

        # Act
        outcome = service.process_new_contact(contact)

        # Assert
        assert outcome.state == ContactState.ASSIGNED
        assert outcome.stage_id == 21
        assert outcome.exported is True
        repos['assignment_repository'].upsert.assert_called_once_with(
            contact_id=5, pipeline_id=3, stage_id=21, assigned_by='ai', notes='Fits'
        )
        dataset_id, token, event_name, identity, custom_data = conversions.export.call_args[0]
        assert (dataset_id, token, event_name) == ('dataset-1', 'page-token', 'Lead')
        assert custom_data == {'pipeline_stage': 'New Lead', 'source': 'lead_pipeline'}
        actions = [c[1]['action_type'] for c in repos['analysis_log_repository'].append.call_args_list]
        assert actions == ['analyze_contact', 'assign_stage']

    def test_assignment_committed_before_export(self, service, repos, selection_service,
                                                conversions, contact, pipeline):
        calls = []
        repos['assignment_repository'].commit.side_effect = lambda: calls.append('commit')
        conversions.export.side_effect = lambda *a: calls.append('export')
        self.select(selection_service, 21)

        service.process_new_contact(contact)

        assert calls == ['commit', 'export']

    def test_export_failure_does_not_undo_assignment(self, service, repos, selection_service,
                                                     conversions, contact, pipeline):
        self.select(selection_service, 21)
        conversions.export.side_effect = FacebookAPIError('Graph API error 500', status_code=500)

        outcome = service.process_new_contact(contact)

        assert outcome.state == ContactState.ASSIGNED
        assert outcome.exported is False
        assert ErrorKind.EXPORT_FAILED.value in outcome.degraded
        repos['assignment_repository'].upsert.assert_called_once()
        repos['assignment_repository'].rollback.assert_not_called()

    def test_no_export_without_event_name(self, service, selection_service, conversions, contact, pipeline):
        self.select(selection_service, 22)

        outcome = service.process_new_contact(contact)

        assert outcome.state == ContactState.ASSIGNED
        conversions.export.assert_not_called()

    def test_no_export_without_dataset(self, service, repos, selection_service, conversions,
                                       contact, pipeline):
        repos['facebook_config_repository'].get_export_config.return_value = None
        self.select(selection_service, 21)

        service.process_new_contact(contact)

        conversions.export.assert_not_called()

    def test_no_default_pipeline_stays_analyzed(self, service, repos, selection_service, contact):
        repos['pipeline_repository'].get_default_for_owner.return_value = None

        outcome = service.process_new_contact(contact)

        assert outcome.state == ContactState.ANALYZED
        assert outcome.stopped_by == ErrorKind.NO_DEFAULT_PIPELINE.value
        selection_service.select_stage.assert_not_called()
        repos['assignment_repository'].upsert.assert_not_called()

    def test_pipeline_without_stages_stays_analyzed(self, service, repos, selection_service,
                                                    contact, pipeline):
        repos['pipeline_repository'].get_ordered_stages.return_value = []

        outcome = service.process_new_contact(contact)

        assert outcome.state == ContactState.ANALYZED
        assert outcome.stopped_by == ErrorKind.NO_STAGES.value
        selection_service.select_stage.assert_not_called()

    def test_redelivered_lead_resumes_without_reassigning(self, service, repos, analysis_service,
                                                          selection_service, contact, pipeline):
        """Test an analyzed and assigned contact is left as it is"""
        contact.ai_analysis = {'summary': 's', 'intent': 'i', 'urgency': 'low', 'tags': []}
        repos['assignment_repository'].get_for_contact.return_value = Mock(stage_id=22)

        outcome = service.process_new_contact(contact)

        assert outcome.state == ContactState.UNCHANGED
        assert outcome.stage_id == 22
        analysis_service.analyze.assert_not_called()
        selection_service.select_stage.assert_not_called()

    def test_selection_fallback_still_assigns_first_stage(self, service, repos, selection_service,
                                                          contact, pipeline):
        selection_service.select_stage.return_value = Result.fallback(
            AnalysisOutcome(StageSelection(21, 0.3, 'Default assignment - analysis failed'), 0, 'm'),
            'down', code=ErrorKind.LLM_UNAVAILABLE
        )

        outcome = service.process_new_contact(contact)

        assert outcome.state == ContactState.ASSIGNED
        assert outcome.stage_id == 21
        assert ErrorKind.LLM_UNAVAILABLE.value in outcome.degraded


class TestReanalyzeContact:
    """Reanalysis on inbound messages"""

    @pytest.fixture
    def repos(self):
        return {
            'contact_repository': Mock(spec=ContactRepository),
            'pipeline_repository': Mock(spec=PipelineRepository),
            'assignment_repository': Mock(spec=StageAssignmentRepository),
            'message_repository': Mock(spec=MessageRepository),
            'analysis_log_repository': Mock(spec=AnalysisLogRepository),
            'facebook_config_repository': Mock(spec=FacebookConfigRepository),
        }

    @pytest.fixture
    def stages(self):
        return [make_stage(21, 'New Lead', 'Lead'), make_stage(22, 'Qualified', 'Contact')]

    @pytest.fixture
    def analysis_service(self):
        service = Mock(spec=LeadAnalysisService)
        service.default_model = 'test-model'
        service.analyze.return_value = Result.success(AnalysisOutcome(
            ContactAnalysis(summary='Ready to buy', intent='Purchase', urgency='high'), 100, 'test-model'
        ))
        return service

    @pytest.fixture
    def selection_service(self):
        return Mock(spec=StageSelectionService)

    @pytest.fixture
    def conversions(self):
        service = Mock(spec=ConversionsAPIService)
        service.export.return_value = CapiReceipt(events_received=1, fbtrace_id='trace', event_id='evt')
        return service

    @pytest.fixture
    def service(self, repos, stages, analysis_service, selection_service, conversions):
        messages = [Mock(direction='inbound', content='I want to buy'), Mock(direction='outbound', content='Great')]
        repos['message_repository'].get_recent_for_contact.return_value = messages
        pipeline = Mock(id=3)
        pipeline.name = 'Sales'
        repos['pipeline_repository'].get_default_for_owner.return_value = pipeline
        repos['pipeline_repository'].get_ordered_stages.return_value = stages
        repos['facebook_config_repository'].get_by_page_id.return_value = None
        repos['facebook_config_repository'].get_export_config.return_value = Mock(
            owner_id='owner-1', dataset_id='dataset-1', page_access_token='page-token'
        )
        return LeadPipelineService(
            analysis_service=analysis_service,
            stage_selection_service=selection_service,
            conversions_service=conversions,
            **repos
        )

    @pytest.fixture
    def contact(self):
        return Mock(id=5, owner_id='owner-1', email='a@b.com', phone=None, full_name='Jo',
                    first_name='Jo', last_name=None, custom_fields={}, facebook_page_id=None,
                    ai_analysis={'summary': 'New lead', 'intent': 'Info', 'urgency': 'low',
                                 'tags': [], 'campaign_note': 'kept'})

    def insights(self, analysis_service, should_move):
        analysis_service.analyze_conversation.return_value = Result.success(AnalysisOutcome(
            ConversationInsights(urgency='high', intent='purchase', sentiment='positive',
                                 should_move_stage=should_move, recommended_action='Call now',
                                 key_topics=['price']),
            60, 'test-model'
        ))

    def current_assignment(self, repos, stages, stage_index=0):
        current = Mock(stage_id=stages[stage_index].id, stage=stages[stage_index])
        repos['assignment_repository'].get_for_contact.return_value = current
        return current

    def test_merged_analysis_is_persisted(self, service, repos, analysis_service, contact, stages):
        # Arrange
        self.insights(analysis_service, should_move=False)
        self.current_assignment(repos, stages)

        # Act
        service.reanalyze_contact(contact)

        # Assert
        payload = repos['contact_repository'].save_analysis.call_args[0][1]
        assert payload['summary'] == 'Ready to buy'
        assert payload['sentiment'] == 'positive'
        assert payload['should_move_stage'] is False
        assert payload['message_count'] == 2
        assert payload['last_conversation_at'] == payload['analyzed_at']
        previous = analysis_service.analyze_conversation.call_args[0][2]
        assert previous.summary == 'New lead'

    def test_no_move_requested_means_no_selection(self, service, repos, analysis_service,
                                                  selection_service, conversions, contact, stages):
        self.insights(analysis_service, should_move=False)
        self.current_assignment(repos, stages)

        outcome = service.reanalyze_contact(contact)

        assert outcome.state == ContactState.UNCHANGED
        selection_service.select_stage.assert_not_called()
        repos['assignment_repository'].upsert.assert_not_called()
        conversions.export.assert_not_called()

    def test_same_stage_selected_is_a_no_op(self, service, repos, analysis_service,
                                            selection_service, conversions, contact, stages):
        """Test reanalysis selecting the current stage writes nothing"""
        self.insights(analysis_service, should_move=True)
        self.current_assignment(repos, stages, stage_index=0)
        selection_service.select_stage.return_value = Result.success(
            AnalysisOutcome(StageSelection(21, 0.8, 'Still new'), 40, 'test-model'))

        first = service.reanalyze_contact(contact)
        second = service.reanalyze_contact(contact)

        assert first.state == second.state == ContactState.UNCHANGED
        repos['assignment_repository'].upsert.assert_not_called()
        conversions.export.assert_not_called()

    def test_changed_stage_is_moved_and_exported(self, service, repos, analysis_service,
                                                 selection_service, conversions, contact, stages):
        # Arrange
        self.insights(analysis_service, should_move=True)
        self.current_assignment(repos, stages, stage_index=0)
        selection_service.select_stage.return_value = Result.success(
            AnalysisOutcome(StageSelection(22, 0.85, 'Confirmed budget'), 40, 'test-model'))

        # Act
        outcome = service.reanalyze_contact(contact)

        # Assert
        assert outcome.state == ContactState.REASSIGNED
        assert outcome.previous_stage_id == 21
        assert outcome.stage_id == 22
        repos['assignment_repository'].upsert.assert_called_once_with(
            contact_id=5, pipeline_id=3, stage_id=22, assigned_by='ai',
            notes='Moved based on conversation: Confirmed budget'
        )
        custom_data = conversions.export.call_args[0][4]
        assert custom_data == {'pipeline_stage': 'Qualified', 'previous_stage': 'New Lead',
                               'trigger': 'conversation_analysis'}
        actions = [c[1]['action_type'] for c in repos['analysis_log_repository'].append.call_args_list]
        assert actions == ['analyze_contact', 'reanalyze', 'reanalyze']

    def test_unassigned_contact_gets_first_assignment(self, service, repos, analysis_service,
                                                      selection_service, contact, stages):
        self.insights(analysis_service, should_move=False)
        repos['assignment_repository'].get_for_contact.return_value = None
        selection_service.select_stage.return_value = Result.success(
            AnalysisOutcome(StageSelection(21, 0.7, 'New'), 40, 'test-model'))

        outcome = service.reanalyze_contact(contact)

        assert outcome.state == ContactState.ASSIGNED
        repos['assignment_repository'].upsert.assert_called_once()


class TestBatchAnalysis:
    """analyze_contacts_batch and pending processing"""

    @pytest.fixture
    def repos(self):
        return {
            'contact_repository': Mock(spec=ContactRepository),
            'pipeline_repository': Mock(spec=PipelineRepository),
            'assignment_repository': Mock(spec=StageAssignmentRepository),
            'message_repository': Mock(spec=MessageRepository),
            'analysis_log_repository': Mock(spec=AnalysisLogRepository),
            'facebook_config_repository': Mock(spec=FacebookConfigRepository),
        }

    @pytest.fixture
    def analysis_service(self):
        service = Mock(spec=LeadAnalysisService)
        service.default_model = 'test-model'
        service.analyze.return_value = Result.success(AnalysisOutcome(
            ContactAnalysis(summary='s', intent='i', urgency='low'), 10, 'test-model'))
        return service

    @pytest.fixture
    def selection_service(self):
        return Mock(spec=StageSelectionService)

    @pytest.fixture
    def service(self, repos, analysis_service, selection_service):
        repos['message_repository'].get_recent_for_contact.return_value = []
        return LeadPipelineService(
            analysis_service=analysis_service,
            stage_selection_service=selection_service,
            conversions_service=Mock(spec=ConversionsAPIService),
            batch_limit=50,
            **repos
        )

    @pytest.fixture
    def contacts(self):
        return [Mock(id=i, owner_id='owner-1', email=None, phone=None, full_name=None,
                     custom_fields={}, ai_analysis=None) for i in (1, 2)]

    def test_unanalyzed_contacts_used_when_no_ids(self, service, repos, analysis_service, contacts):
        repos['contact_repository'].list_unanalyzed.return_value = contacts

        result = service.analyze_contacts_batch('owner-1')

        repos['contact_repository'].list_unanalyzed.assert_called_once_with('owner-1', 50)
        assert result.data == {'analyzed': 2, 'assignments': 0, 'degraded': 0}
        assert analysis_service.analyze.call_count == 2

    def test_bulk_assignment_into_pipeline(self, service, repos, selection_service, contacts):
        # Arrange
        pipeline = Mock(id=3)
        pipeline.name = 'Sales'
        repos['pipeline_repository'].get_for_owner.return_value = pipeline
        repos['pipeline_repository'].get_ordered_stages.return_value = [make_stage(21, 'New Lead')]
        repos['contact_repository'].list_by_ids.return_value = contacts
        selection_service.select_stages_bulk.return_value = Result.success(AnalysisOutcome(
            [BulkStageAssignment(1, 21, 0.9), BulkStageAssignment(2, 21, 0.4)], 200, 'test-model'))

        # Act
        result = service.analyze_contacts_batch('owner-1', contact_ids=[1, 2], pipeline_id=3)

        # Assert
        assert result.data['assignments'] == 2
        assert repos['assignment_repository'].upsert.call_count == 2
        bulk_log = repos['analysis_log_repository'].append.call_args_list[-1][1]
        assert bulk_log['action_type'] == 'bulk_assign'
        assert bulk_log['input_summary'] == 'Analyzed 2 contacts'
        assert bulk_log['tokens_used'] == 200

    def test_unknown_pipeline_is_invalid_input(self, service, repos):
        repos['pipeline_repository'].get_for_owner.return_value = None

        result = service.analyze_contacts_batch('owner-1', pipeline_id=99)

        assert result.is_failure
        assert result.error_code == ErrorKind.INVALID_INPUT

    def test_pending_for_every_configured_owner(self, service, repos):
        repos['facebook_config_repository'].list_owner_ids.return_value = ['owner-1', 'owner-2']
        repos['contact_repository'].list_unanalyzed.return_value = []

        processed = service.process_pending_for_owners()

        assert processed == {'owner-1': 0, 'owner-2': 0}
        repos['contact_repository'].list_unanalyzed.assert_any_call('owner-2', 50)
