"""
Lead pipeline orchestration

Drives a contact through Unanalyzed -> Analyzed -> Assigned (-> Reassigned):

- analyze: run the analyzer, persist ai_analysis, analyzed_at and the quality score
- select & assign: pick a stage of the owner's default pipeline and upsert
  the (contact, pipeline) assignment
- export: send the stage's CAPI event when the stage names one and the owner
  has a dataset configured
- reanalyze: on an inbound message, refresh the analysis and move the contact
  only when the selected stage differs from the current one

Each database write is committed on its own before the next external call.
Failed component results are routed through ERROR_POLICY.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from logging_config import get_logger
from repositories.analysis_log_repository import AnalysisLogRepository
from repositories.contact_repository import ContactRepository
from repositories.facebook_config_repository import FacebookConfigRepository
from repositories.message_repository import MessageRepository
from repositories.pipeline_repository import PipelineRepository
from repositories.stage_assignment_repository import StageAssignmentRepository
from services.common.analysis_types import AnalysisOutcome, ContactAnalysis, ConversationInsights
from services.common.result import Result
from services.conversions_api_service import ConversionsAPIService, UserIdentity
from services.enums import AnalysisAction, AssignedBy, ErrorKind, ErrorPolicy
from services.facebook_graph_client import FacebookAPIError
from services.lead_analysis_service import LeadAnalysisService
from services.lead_scoring import score_contact
from services.stage_selection_service import StageSelectionService
from utils.datetime_utils import isoformat_utc, utc_now

logger = get_logger(__name__)

ERROR_POLICY: Dict[ErrorKind, ErrorPolicy] = {
    ErrorKind.LLM_UNAVAILABLE: ErrorPolicy.USE_FALLBACK,
    ErrorKind.LLM_MALFORMED_OUTPUT: ErrorPolicy.USE_FALLBACK,
    ErrorKind.EXPORT_FAILED: ErrorPolicy.LOG_AND_CONTINUE,
    ErrorKind.NO_DEFAULT_PIPELINE: ErrorPolicy.STOP,
    ErrorKind.NO_STAGES: ErrorPolicy.STOP,
    ErrorKind.CONTACT_IGNORED: ErrorPolicy.STOP,
    ErrorKind.LEAD_FETCH_FAILED: ErrorPolicy.SKIP_EVENT,
    ErrorKind.UNKNOWN_PAGE: ErrorPolicy.SKIP_EVENT,
    ErrorKind.CONTACT_NOT_FOUND: ErrorPolicy.SKIP_EVENT,
    ErrorKind.MALFORMED_EVENT: ErrorPolicy.SKIP_EVENT,
    ErrorKind.INVALID_INPUT: ErrorPolicy.SKIP_EVENT,
    ErrorKind.DATABASE_ERROR: ErrorPolicy.SKIP_EVENT,
}


def resolve_error_policy(kind: Any) -> ErrorPolicy:
    """Policy for an error code; unknown codes skip the event."""
    try:
        return ERROR_POLICY[ErrorKind(kind)]
    except (ValueError, KeyError):
        return ErrorPolicy.SKIP_EVENT


class ContactState:
    ANALYZED = 'analyzed'
    ASSIGNED = 'assigned'
    REASSIGNED = 'reassigned'
    UNCHANGED = 'unchanged'


@dataclass
class PipelineOutcome:
    """What happened to one contact during one pipeline run"""
    contact_id: Any
    state: str = ContactState.ANALYZED
    pipeline_id: Any = None
    stage_id: Any = None
    previous_stage_id: Any = None
    exported: bool = False
    degraded: List[str] = field(default_factory=list)
    stopped_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'contact_id': self.contact_id,
            'state': self.state,
            'pipeline_id': self.pipeline_id,
            'stage_id': self.stage_id,
            'previous_stage_id': self.previous_stage_id,
            'exported': self.exported,
            'degraded': list(self.degraded),
            'stopped_by': self.stopped_by,
        }


class LeadPipelineService:
    """Analyzes contacts, places them in pipeline stages and reports stage events"""

    def __init__(self,
                 contact_repository: ContactRepository,
                 pipeline_repository: PipelineRepository,
                 assignment_repository: StageAssignmentRepository,
                 message_repository: MessageRepository,
                 analysis_log_repository: AnalysisLogRepository,
                 facebook_config_repository: FacebookConfigRepository,
                 analysis_service: LeadAnalysisService,
                 stage_selection_service: StageSelectionService,
                 conversions_service: ConversionsAPIService,
                 message_history_limit: int = 20,
                 batch_limit: int = 50):
        self.contact_repository = contact_repository
        self.pipeline_repository = pipeline_repository
        self.assignment_repository = assignment_repository
        self.message_repository = message_repository
        self.analysis_log_repository = analysis_log_repository
        self.facebook_config_repository = facebook_config_repository
        self.analysis_service = analysis_service
        self.stage_selection_service = stage_selection_service
        self.conversions_service = conversions_service
        self.message_history_limit = message_history_limit
        self.batch_limit = batch_limit

    # Decision table application

    def _take(self, result: Result, step: str, outcome: PipelineOutcome) -> Optional[Any]:
        """
        Data of a component result, after applying ERROR_POLICY.

        Returns the substituted value for USE_FALLBACK, None for every other
        failure (the caller stops or carries on without it).
        """
        if result.is_success:
            return result.data
        policy = resolve_error_policy(result.error_code)
        kind = getattr(result.error_code, 'value', str(result.error_code))
        outcome.degraded.append(kind)
        if policy == ErrorPolicy.USE_FALLBACK and result.has_data:
            logger.warning("Using fallback result", step=step, contact_id=outcome.contact_id,
                           error_kind=kind, error=result.error)
            return result.data
        if policy == ErrorPolicy.LOG_AND_CONTINUE:
            logger.warning("Step failed, continuing", step=step, contact_id=outcome.contact_id,
                           error_kind=kind, error=result.error)
            return None
        outcome.stopped_by = kind
        logger.info("Pipeline stopped", step=step, contact_id=outcome.contact_id,
                    error_kind=kind, policy=policy.value)
        return None

    # Analyze

    def analyze_contact(self, contact, messages: Optional[Sequence[Any]] = None,
                        model: Optional[str] = None,
                        outcome: Optional[PipelineOutcome] = None) -> ContactAnalysis:
        """
        Analyze a contact and persist the analysis and quality score.

        Always yields an analysis: model failures fall back to the default.
        """
        outcome = outcome or PipelineOutcome(contact_id=contact.id)
        if messages is None:
            messages = self.message_repository.get_recent_for_contact(contact.id, self.message_history_limit)

        analyzed: AnalysisOutcome = self._take(
            self.analysis_service.analyze(contact, messages, model), 'analyze', outcome
        )
        analysis: ContactAnalysis = analyzed.analysis
        analyzed_at = utc_now()
        analysis.analyzed_at = isoformat_utc(analyzed_at)

        self.contact_repository.save_analysis(
            contact, analysis.to_dict(), analyzed_at, score_contact(contact, analysis)
        )
        self.contact_repository.commit()

        self._log_model_call(
            contact.owner_id, AnalysisAction.ANALYZE_CONTACT, analyzed,
            contact_id=contact.id,
            input_summary=f"Analyzed lead: {contact.full_name or f'contact {contact.id}'} "
                          f"({len(messages)} messages)",
            output_summary=analysis.summary
        )
        logger.info("Contact analyzed", contact_id=contact.id, owner_id=contact.owner_id,
                    urgency=analysis.urgency, quality_score=contact.lead_quality_score,
                    tokens_used=analyzed.tokens_used)
        return analysis

    # Select & assign

    def process_new_contact(self, contact, model: Optional[str] = None) -> PipelineOutcome:
        """
        Run analyze then select & assign for a freshly ingested contact.

        Resumes from the contact's current state, so running it again for a
        redelivered lead neither re-analyzes nor re-assigns.
        """
        outcome = PipelineOutcome(contact_id=contact.id)
        messages = self.message_repository.get_recent_for_contact(contact.id, self.message_history_limit)

        analysis = ContactAnalysis.from_stored(contact.ai_analysis)
        if analysis is None:
            analysis = self.analyze_contact(contact, messages, model, outcome)

        pipeline, stages = self._default_pipeline(contact.owner_id, outcome)
        if pipeline is None:
            return outcome
        outcome.pipeline_id = pipeline.id

        current = self.assignment_repository.get_for_contact(contact.id, pipeline.id)
        if current is not None:
            outcome.state = ContactState.UNCHANGED
            outcome.stage_id = current.stage_id
            return outcome

        self._select_and_assign(contact, analysis, messages, pipeline, stages, None, model,
                                outcome, trigger_custom_data={'source': 'lead_pipeline'})
        return outcome

    def _default_pipeline(self, owner_id: str, outcome: PipelineOutcome):
        pipeline = self.pipeline_repository.get_default_for_owner(owner_id)
        if pipeline is None:
            self._take(Result.failure("No default pipeline configured", code=ErrorKind.NO_DEFAULT_PIPELINE),
                       'select', outcome)
            return None, []
        stages = self.pipeline_repository.get_ordered_stages(pipeline.id)
        if not stages:
            self._take(Result.failure(f"Pipeline {pipeline.id} has no stages", code=ErrorKind.NO_STAGES),
                       'select', outcome)
            return None, []
        return pipeline, stages

    def _select_and_assign(self, contact, analysis: ContactAnalysis, messages: Sequence[Any],
                           pipeline, stages: Sequence[Any], current, model: Optional[str],
                           outcome: PipelineOutcome, trigger_custom_data: Dict[str, Any],
                           log_action: AnalysisAction = AnalysisAction.ASSIGN_STAGE,
                           notes_prefix: str = '') -> None:
        selected: Optional[AnalysisOutcome] = self._take(
            self.stage_selection_service.select_stage(contact, analysis, messages, stages, model),
            'select', outcome
        )
        if selected is None:
            return
        selection = selected.analysis
        stage = next(s for s in stages if s.id == selection.stage_id)
        previous_stage = current.stage if current is not None else None

        if current is not None and current.stage_id == stage.id:
            outcome.state = ContactState.UNCHANGED
            outcome.stage_id = stage.id
            self._log_model_call(
                contact.owner_id, log_action, selected, contact_id=contact.id,
                input_summary=f"Re-evaluated stage in pipeline: {pipeline.name}",
                output_summary=f"Stayed in \"{stage.name}\": {selection.reasoning}"
            )
            return

        self.assignment_repository.upsert(
            contact_id=contact.id,
            pipeline_id=pipeline.id,
            stage_id=stage.id,
            assigned_by=AssignedBy.AI.value,
            notes=f"{notes_prefix}{selection.reasoning}"
        )
        self.assignment_repository.commit()

        outcome.stage_id = stage.id
        outcome.previous_stage_id = current.stage_id if current is not None else None
        outcome.state = ContactState.REASSIGNED if current is not None else ContactState.ASSIGNED

        if previous_stage is not None:
            output_summary = f"Moved from \"{previous_stage.name}\" to \"{stage.name}\": {selection.reasoning}"
        else:
            output_summary = f"Stage: {stage.name}"
        self._log_model_call(
            contact.owner_id, log_action, selected, contact_id=contact.id,
            input_summary=f"Assigned to pipeline: {pipeline.name}",
            output_summary=output_summary
        )
        logger.info("Contact assigned to stage", contact_id=contact.id, pipeline_id=pipeline.id,
                    stage_id=stage.id, previous_stage_id=outcome.previous_stage_id,
                    confidence=selection.confidence, corrected=selection.corrected)

        custom_data = {'pipeline_stage': stage.name}
        if previous_stage is not None:
            custom_data['previous_stage'] = previous_stage.name
        custom_data.update(trigger_custom_data)
        export = self.export_stage_event(contact, stage, custom_data)
        outcome.exported = bool(export.is_success and export.data is not None)
        if export.is_failure:
            self._take(export, 'export', outcome)

    # Export

    def export_stage_event(self, contact, stage, custom_data: Dict[str, Any]) -> Result:
        """
        Send the stage's CAPI event for a contact.

        Returns:
            Result.success(receipt) when sent, Result.success(None) when the
            stage has no event or the owner has no dataset, and a failure with
            EXPORT_FAILED when the Graph API call fails.
        """
        if not stage.capi_event_name:
            return Result.success(None, metadata={'skipped': 'no_event_name'})
        config = self._export_config(contact)
        if config is None:
            return Result.success(None, metadata={'skipped': 'no_dataset'})
        try:
            receipt = self.conversions_service.export(
                config.dataset_id,
                config.page_access_token,
                stage.capi_event_name,
                UserIdentity.from_contact(contact),
                custom_data
            )
        except FacebookAPIError as e:
            return Result.failure(f"CAPI export failed: {e}", code=ErrorKind.EXPORT_FAILED,
                                  metadata={'event_name': stage.capi_event_name})
        return Result.success(receipt)

    def _export_config(self, contact):
        if contact.facebook_page_id:
            config = self.facebook_config_repository.get_by_page_id(contact.facebook_page_id)
            if config is not None and config.owner_id == contact.owner_id and config.dataset_id:
                return config
        return self.facebook_config_repository.get_export_config(contact.owner_id)

    # Reanalyze

    def reanalyze_contact(self, contact, model: Optional[str] = None) -> PipelineOutcome:
        """
        Refresh a contact's analysis from its conversation and move it when
        warranted.

        Stage selection runs when the contact has no assignment in the default
        pipeline yet, or when the conversation analysis asks for a move. An
        unchanged stage causes no assignment write.
        """
        outcome = PipelineOutcome(contact_id=contact.id)
        messages = self.message_repository.get_recent_for_contact(contact.id, self.message_history_limit)
        previous = ContactAnalysis.from_stored(contact.ai_analysis)

        analyzed: AnalysisOutcome = self._take(
            self.analysis_service.analyze(contact, messages, model), 'analyze', outcome
        )
        base: ContactAnalysis = analyzed.analysis
        conversation: AnalysisOutcome = self._take(
            self.analysis_service.analyze_conversation(contact, messages, previous or base, model),
            'analyze_conversation', outcome
        )
        insights: ConversationInsights = conversation.analysis

        analyzed_at = utc_now()
        merged = base.to_dict()
        merged.update(insights.to_dict())
        merged['analyzed_at'] = isoformat_utc(analyzed_at)
        merged['last_conversation_at'] = isoformat_utc(analyzed_at)
        merged['message_count'] = len(messages)
        analysis = ContactAnalysis.from_stored(merged)

        self.contact_repository.save_analysis(contact, analysis.to_dict(), analyzed_at,
                                              score_contact(contact, analysis))
        self.contact_repository.commit()

        self._log_model_call(
            contact.owner_id, AnalysisAction.ANALYZE_CONTACT, analyzed, contact_id=contact.id,
            input_summary=f"Analyzed with {len(messages)} messages", output_summary=base.summary
        )
        self._log_model_call(
            contact.owner_id, AnalysisAction.REANALYZE, conversation, contact_id=contact.id,
            input_summary=f"Re-analyzed after {len(messages)} messages",
            output_summary=(f"urgency={insights.urgency} sentiment={insights.sentiment} "
                            f"should_move_stage={insights.should_move_stage}: {insights.recommended_action}")
        )
        logger.info("Contact reanalyzed", contact_id=contact.id, urgency=insights.urgency,
                    sentiment=insights.sentiment, should_move_stage=insights.should_move_stage)

        pipeline, stages = self._default_pipeline(contact.owner_id, outcome)
        if pipeline is None:
            return outcome
        outcome.pipeline_id = pipeline.id

        current = self.assignment_repository.get_for_contact(contact.id, pipeline.id)
        if current is not None and not insights.should_move_stage:
            outcome.state = ContactState.UNCHANGED
            outcome.stage_id = current.stage_id
            return outcome

        if current is None:
            self._select_and_assign(contact, analysis, messages, pipeline, stages, None, model,
                                    outcome, trigger_custom_data={'source': 'lead_pipeline'})
        else:
            self._select_and_assign(contact, analysis, messages, pipeline, stages, current, model,
                                    outcome,
                                    trigger_custom_data={'trigger': 'conversation_analysis'},
                                    log_action=AnalysisAction.REANALYZE,
                                    notes_prefix='Moved based on conversation: ')
        return outcome

    # Batch

    def analyze_contacts_batch(self, owner_id: str, contact_ids: Optional[List[int]] = None,
                               pipeline_id: Optional[int] = None,
                               model: Optional[str] = None) -> Result[Dict[str, Any]]:
        """
        Analyze listed contacts, or up to batch_limit unanalyzed ones, then
        optionally bulk-assign them into `pipeline_id` with one model call.
        """
        pipeline = None
        stages: List[Any] = []
        if pipeline_id is not None:
            pipeline = self.pipeline_repository.get_for_owner(owner_id, pipeline_id)
            if pipeline is None:
                return Result.failure(f"Pipeline {pipeline_id} not found", code=ErrorKind.INVALID_INPUT)
            stages = self.pipeline_repository.get_ordered_stages(pipeline.id)

        if contact_ids:
            contacts = self.contact_repository.list_by_ids(owner_id, contact_ids)
        else:
            contacts = self.contact_repository.list_unanalyzed(owner_id, self.batch_limit)

        if not contacts:
            return Result.success({'analyzed': 0, 'assignments': 0, 'degraded': 0})

        degraded = 0
        for contact in contacts:
            outcome = PipelineOutcome(contact_id=contact.id)
            self.analyze_contact(contact, model=model, outcome=outcome)
            degraded += 1 if outcome.degraded else 0

        assigned = 0
        if pipeline is not None and stages:
            bulk_outcome = PipelineOutcome(contact_id=None)
            bulk: AnalysisOutcome = self._take(
                self.stage_selection_service.select_stages_bulk(contacts, stages, model),
                'bulk_select', bulk_outcome
            )
            for assignment in bulk.analysis:
                self.assignment_repository.upsert(
                    contact_id=assignment.contact_id,
                    pipeline_id=pipeline.id,
                    stage_id=assignment.stage_id,
                    assigned_by=AssignedBy.AI.value,
                    notes=f"Bulk assignment (confidence {assignment.confidence:.2f})"
                )
                assigned += 1
            self.assignment_repository.commit()
            self._log_model_call(
                owner_id, AnalysisAction.BULK_ASSIGN, bulk,
                input_summary=f"Analyzed {len(contacts)} contacts",
                output_summary=f"Assigned {assigned} contacts to stages of {pipeline.name}"
            )

        logger.info("Batch analysis complete", owner_id=owner_id, analyzed=len(contacts),
                    assignments=assigned, degraded=degraded)
        return Result.success({'analyzed': len(contacts), 'assignments': assigned, 'degraded': degraded})

    def process_pending_contacts(self, owner_id: str, limit: Optional[int] = None,
                                 model: Optional[str] = None) -> Result[Dict[str, Any]]:
        """Analyze and assign up to `limit` (default batch_limit) unanalyzed contacts of an owner."""
        contacts = self.contact_repository.list_unanalyzed(owner_id, limit or self.batch_limit)
        outcomes = [self.process_new_contact(contact, model).to_dict() for contact in contacts]
        return Result.success({'processed': len(outcomes), 'outcomes': outcomes})

    def process_pending_for_owners(self, owner_id: Optional[str] = None,
                                   limit: Optional[int] = None) -> Dict[str, int]:
        """
        Run process_pending_contacts for one owner, or for every owner with a
        Facebook configuration. Returns processed counts per owner.
        """
        owner_ids = [owner_id] if owner_id else self.facebook_config_repository.list_owner_ids()
        processed: Dict[str, int] = {}
        for owner in owner_ids:
            result = self.process_pending_contacts(owner, limit)
            processed[owner] = result.data['processed']
        return processed

    # Audit

    def _log_model_call(self, owner_id: str, action: AnalysisAction, call: AnalysisOutcome,
                        contact_id: Optional[int] = None, input_summary: str = '',
                        output_summary: str = '') -> None:
        self.analysis_log_repository.append(
            owner_id=owner_id,
            action_type=action.value,
            model_used=call.model or self.analysis_service.default_model,
            contact_id=contact_id,
            input_summary=input_summary,
            output_summary=output_summary,
            tokens_used=call.tokens_used
        )
        self.analysis_log_repository.commit()
