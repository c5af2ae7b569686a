"""
Pipeline management: creation with the single-default rule and AI-drafted
pipeline suggestions.
"""

from typing import Any, Dict, List, Optional

from logging_config import get_logger
from repositories.analysis_log_repository import AnalysisLogRepository
from repositories.contact_repository import ContactRepository
from repositories.pipeline_repository import PipelineRepository
from services.common.analysis_types import AnalysisOutcome
from services.common.result import Result
from services.enums import AnalysisAction, ErrorKind
from services.lead_analysis_service import LeadAnalysisService, PIPELINE_SUGGESTION_CONTACTS

logger = get_logger(__name__)


def normalize_stage(stage: Any, position: int) -> Dict[str, Any]:
    """
    Stage definition with an integer order_index and {'criteria': [...]}
    requirements.

    Requirements may be given as that mapping, a list of criteria or a single
    criterion string; a string criteria inside the mapping is one item.

    Raises:
        ValueError: If the stage cannot be stored as given
    """
    if not isinstance(stage, dict) or not stage.get('name'):
        raise ValueError("Every stage needs a name")

    order_index = stage.get('order_index')
    if order_index is None:
        order_index = position
    elif isinstance(order_index, bool):
        raise ValueError(f"Stage {stage['name']!r}: order_index must be an integer")
    else:
        try:
            order_index = int(str(order_index).strip())
        except ValueError:
            raise ValueError(f"Stage {stage['name']!r}: order_index must be an integer")

    requirements = stage.get('requirements')
    if requirements is None:
        criteria: Any = []
    elif isinstance(requirements, dict):
        criteria = requirements.get('criteria') or []
    else:
        criteria = requirements
    if isinstance(criteria, str):
        criteria = [criteria]
    if not isinstance(criteria, list) or not all(isinstance(item, str) for item in criteria):
        raise ValueError(f"Stage {stage['name']!r}: requirements criteria must be text")

    normalized = dict(stage)
    normalized['order_index'] = order_index
    normalized['requirements'] = {'criteria': [item.strip() for item in criteria if item.strip()]}
    return normalized


def serialize_pipeline(pipeline, stages) -> Dict[str, Any]:
    return {
        'id': pipeline.id,
        'name': pipeline.name,
        'description': pipeline.description,
        'is_default': pipeline.is_default,
        'ai_generated': pipeline.ai_generated,
        'stages': [
            {
                'id': stage.id,
                'name': stage.name,
                'description': stage.description,
                'order_index': stage.order_index,
                'color': stage.color,
                'requirements': stage.requirements,
                'capi_event_name': stage.capi_event_name,
            }
            for stage in stages
        ],
    }


class PipelineService:
    """Creates pipelines and drafts them from an owner's leads"""

    def __init__(self,
                 pipeline_repository: PipelineRepository,
                 contact_repository: ContactRepository,
                 analysis_log_repository: AnalysisLogRepository,
                 analysis_service: LeadAnalysisService):
        self.pipeline_repository = pipeline_repository
        self.contact_repository = contact_repository
        self.analysis_log_repository = analysis_log_repository
        self.analysis_service = analysis_service

    def create_pipeline(self, owner_id: str, name: str, stages: List[Dict[str, Any]],
                        description: Optional[str] = None, is_default: bool = False,
                        ai_generated: bool = False) -> Result[Dict[str, Any]]:
        """
        Create a pipeline with its stages.

        Making it the default first clears the flag on every other pipeline
        of the owner, so an owner never has two defaults.
        """
        if not name or not str(name).strip():
            return Result.failure("Pipeline name is required", code=ErrorKind.INVALID_INPUT)
        if not isinstance(stages, list) or not stages:
            return Result.failure("At least one stage is required", code=ErrorKind.INVALID_INPUT)
        try:
            stages = [normalize_stage(stage, position) for position, stage in enumerate(stages)]
        except ValueError as e:
            return Result.failure(str(e), code=ErrorKind.INVALID_INPUT)

        if is_default:
            cleared = self.pipeline_repository.unset_defaults(owner_id)
            if cleared:
                logger.info("Cleared previous default pipelines", owner_id=owner_id, cleared=cleared)

        pipeline = self.pipeline_repository.create_with_stages(
            owner_id=owner_id,
            name=str(name).strip(),
            stages=stages,
            description=description,
            is_default=is_default,
            ai_generated=ai_generated
        )
        self.pipeline_repository.commit()

        ordered = self.pipeline_repository.get_ordered_stages(pipeline.id)
        logger.info("Pipeline created", owner_id=owner_id, pipeline_id=pipeline.id,
                    stage_count=len(ordered), is_default=is_default, ai_generated=ai_generated)
        return Result.success(serialize_pipeline(pipeline, ordered))

    def suggest_pipeline(self, owner_id: str, business_context: Optional[str] = None,
                         model: Optional[str] = None, create: bool = False,
                         make_default: bool = False) -> Result[Dict[str, Any]]:
        """
        Ask the model for a pipeline fitting the owner's recent leads.

        The suggestion is always returned; the fixed default pipeline stands
        in when the model is unavailable. With `create`, it is also saved as
        an AI-generated pipeline.
        """
        contacts = self.contact_repository.list_recent(owner_id, PIPELINE_SUGGESTION_CONTACTS)
        result = self.analysis_service.suggest_pipeline(contacts, business_context, model)
        suggested: AnalysisOutcome = result.data
        suggestion = suggested.analysis

        self.analysis_log_repository.append(
            owner_id=owner_id,
            action_type=AnalysisAction.SUGGEST_PIPELINE.value,
            model_used=suggested.model or self.analysis_service.default_model,
            input_summary=f"Analyzed {len(contacts)} contacts"
                          + (f" with context: {business_context}" if business_context else ''),
            output_summary=f"Suggested pipeline: {suggestion['name']} with {len(suggestion['stages'])} stages",
            tokens_used=suggested.tokens_used
        )
        self.analysis_log_repository.commit()

        if result.is_failure:
            logger.warning("Using default pipeline suggestion", owner_id=owner_id,
                           error_kind=getattr(result.error_code, 'value', result.error_code))

        data: Dict[str, Any] = {
            'suggestion': suggestion,
            'tokens_used': suggested.tokens_used,
            'fallback': result.is_failure,
        }
        if create:
            created = self.create_pipeline(
                owner_id,
                suggestion['name'],
                suggestion['stages'],
                description=suggestion.get('description'),
                is_default=make_default,
                ai_generated=True
            )
            if created.is_failure:
                return created
            data['pipeline'] = created.data
        return Result.success(data)
