"""
Stage selection with a chat-completion model

The model proposes a stage id; the returned id is always one of the
candidates passed in. An id outside the candidate set is replaced by the
first candidate in the caller's order.
"""

from typing import Any, Dict, List, Optional, Sequence

from logging_config import get_logger
from services.common.analysis_types import (
    AnalysisOutcome,
    BulkStageAssignment,
    ContactAnalysis,
    StageSelection,
    coerce_confidence,
)
from services.common.result import Result
from services.enums import ErrorKind
from services.lead_analysis_service import format_transcript
from services.llm_client import LLMClient, LLMError
from services.model_output import MalformedModelOutput, parse_model_json

logger = get_logger(__name__)

RECENT_MESSAGE_WINDOW = 10
FAILURE_CONFIDENCE = 0.3
FAILURE_REASONING = 'Default assignment - analysis failed'

SELECT_SYSTEM_PROMPT = (
    "You are an AI assistant that assigns leads to the appropriate pipeline stage.\n"
    "Analyze the contact and their conversation to determine the best stage.\n"
    "Always respond in valid JSON format only."
)

BULK_SYSTEM_PROMPT = (
    "You are an AI that assigns leads to pipeline stages in bulk.\n"
    "Analyze each contact and assign them to appropriate stages.\n"
    "Always respond in valid JSON format only."
)


def resolve_stage_id(candidate_id: Any, stages: Sequence[Any]) -> Optional[Any]:
    """The id of the stage matching candidate_id, compared as strings, else None."""
    if candidate_id is None:
        return None
    wanted = str(candidate_id).strip()
    for stage in stages:
        if str(stage.id) == wanted:
            return stage.id
    return None


def stage_criteria(requirements: Any) -> List[str]:
    """
    Criteria text of a stage's requirements.

    A string criteria is one item; requirements that are not a mapping have none.
    """
    if not isinstance(requirements, dict):
        return []
    criteria = requirements.get('criteria')
    if isinstance(criteria, str):
        criteria = [criteria]
    if not isinstance(criteria, (list, tuple)):
        return []
    return [str(item).strip() for item in criteria if item is not None and str(item).strip()]


def _criteria(stage: Any) -> List[str]:
    return stage_criteria(getattr(stage, 'requirements', None))


class StageSelectionService:
    """Chooses pipeline stages for contacts"""

    def __init__(self, llm_client: LLMClient, default_model: Optional[str] = None):
        self.llm_client = llm_client
        self.default_model = default_model or llm_client.default_model

    def select_stage(self, contact: Any, analysis: Optional[ContactAnalysis],
                     messages: Sequence[Any], stages: Sequence[Any],
                     model: Optional[str] = None) -> Result[AnalysisOutcome]:
        """
        Pick one of `stages` for a contact.

        Args:
            contact: Contact being placed
            analysis: Its current analysis, if any
            messages: Conversation, oldest first; only the last 10 are sent
            stages: Candidates in traversal order
            model: Model id, defaults to the service default

        Returns:
            Result whose data is an AnalysisOutcome holding a StageSelection.
            A model failure gives a fallback on the first stage with
            confidence 0.3. An empty stage list is a plain failure (NO_STAGES).
        """
        if not stages:
            return Result.failure("No candidate stages", code=ErrorKind.NO_STAGES)

        model = model or self.default_model
        first_stage = stages[0]
        contact_lines = [
            f"Name: {contact.full_name or 'Unknown'}",
            contact.email and f"Email: {contact.email}",
            analysis and analysis.summary and f"Summary: {analysis.summary}",
            analysis and analysis.intent and f"Intent: {analysis.intent}",
            analysis and analysis.urgency and f"Urgency: {analysis.urgency}",
        ]
        stages_list = '\n'.join(
            f"- ID: {stage.id} | Name: {stage.name} | Requirements: {', '.join(_criteria(stage)) or 'None'}"
            for stage in stages
        )
        user_prompt = (
            "Assign this contact to the most appropriate stage:\n\n"
            f"CONTACT:\n{chr(10).join(line for line in contact_lines if line)}\n\n"
            f"RECENT MESSAGES:\n{format_transcript(list(messages)[-RECENT_MESSAGE_WINDOW:], empty='No messages')}\n\n"
            f"AVAILABLE STAGES:\n{stages_list}\n\n"
            "Respond with this exact JSON structure:\n"
            "{\n"
            '  "stage_id": "the ID of the recommended stage",\n'
            '  "confidence": 0.0-1.0,\n'
            '  "reasoning": "Why this stage is appropriate"\n'
            "}"
        )

        completion = None
        try:
            completion = self.llm_client.complete(
                [
                    {'role': 'system', 'content': SELECT_SYSTEM_PROMPT},
                    {'role': 'user', 'content': user_prompt},
                ],
                model=model,
            )
            payload = parse_model_json(completion.content)
            if not isinstance(payload, dict):
                raise MalformedModelOutput("Stage selection is not an object")
        except LLMError as e:
            logger.warning("Stage selection unavailable", contact_id=getattr(contact, 'id', None), error=str(e))
            return Result.fallback(
                AnalysisOutcome(self._failure_selection(first_stage), 0, model),
                str(e), code=ErrorKind.LLM_UNAVAILABLE
            )
        except MalformedModelOutput as e:
            logger.warning("Stage selection unreadable", contact_id=getattr(contact, 'id', None), error=str(e))
            return Result.fallback(
                AnalysisOutcome(self._failure_selection(first_stage), completion.tokens_used, model),
                str(e), code=ErrorKind.LLM_MALFORMED_OUTPUT
            )

        stage_id = resolve_stage_id(payload.get('stage_id'), stages)
        corrected = stage_id is None
        if corrected:
            logger.warning("Model proposed unknown stage, using first stage",
                           contact_id=getattr(contact, 'id', None),
                           proposed_stage_id=str(payload.get('stage_id')))
            stage_id = first_stage.id

        selection = StageSelection(
            stage_id=stage_id,
            confidence=coerce_confidence(payload.get('confidence')),
            reasoning=str(payload.get('reasoning') or ''),
            corrected=corrected,
        )
        return Result.success(AnalysisOutcome(selection, completion.tokens_used, model),
                              metadata={'stage_id_corrected': corrected})

    def select_stages_bulk(self, contacts: Sequence[Any], stages: Sequence[Any],
                           model: Optional[str] = None) -> Result[AnalysisOutcome]:
        """
        Assign many contacts in one completion call.

        Every input contact gets exactly one BulkStageAssignment, in input
        order. Returned pairs with unknown contact ids are dropped; unknown
        stage ids and omitted contacts get the first stage. A model failure
        gives a fallback with every contact on the first stage at 0.3.
        """
        if not stages:
            return Result.failure("No candidate stages", code=ErrorKind.NO_STAGES)

        model = model or self.default_model
        first_stage = stages[0]
        if not contacts:
            return Result.success(AnalysisOutcome([], 0, model))

        contact_lines = []
        for position, contact in enumerate(contacts):
            analysis = ContactAnalysis.from_stored(contact.ai_analysis)
            contact_lines.append(
                f"{position}. ID:{contact.id} | {contact.full_name or 'Unknown'} | "
                f"Intent: {analysis.intent if analysis and analysis.intent else 'Unknown'} | "
                f"Urgency: {analysis.urgency if analysis else 'unknown'}"
            )
        stages_list = '\n'.join(
            f"- ID:{stage.id} | {stage.name} | For: "
            f"{(_criteria(stage) or [None])[0] or getattr(stage, 'description', None) or 'General'}"
            for stage in stages
        )
        user_prompt = (
            "Assign these contacts to stages:\n\n"
            f"CONTACTS:\n{chr(10).join(contact_lines)}\n\n"
            f"STAGES:\n{stages_list}\n\n"
            "Respond with this exact JSON array:\n"
            "[\n"
            '  { "contact_id": "id", "stage_id": "stage_id", "confidence": 0.0-1.0 }\n'
            "]\n\n"
            "Assign ALL contacts. Match by contact_id and stage_id exactly as shown above."
        )

        def all_on_first_stage() -> List[BulkStageAssignment]:
            return [BulkStageAssignment(c.id, first_stage.id, FAILURE_CONFIDENCE) for c in contacts]

        completion = None
        try:
            completion = self.llm_client.complete(
                [
                    {'role': 'system', 'content': BULK_SYSTEM_PROMPT},
                    {'role': 'user', 'content': user_prompt},
                ],
                model=model, max_tokens=4000,
            )
            payload = parse_model_json(completion.content)
            if not isinstance(payload, list):
                raise MalformedModelOutput("Bulk assignment is not an array")
        except LLMError as e:
            logger.warning("Bulk stage selection unavailable", contacts=len(contacts), error=str(e))
            return Result.fallback(AnalysisOutcome(all_on_first_stage(), 0, model),
                                   str(e), code=ErrorKind.LLM_UNAVAILABLE)
        except MalformedModelOutput as e:
            logger.warning("Bulk stage selection unreadable", contacts=len(contacts), error=str(e))
            return Result.fallback(AnalysisOutcome(all_on_first_stage(), completion.tokens_used, model),
                                   str(e), code=ErrorKind.LLM_MALFORMED_OUTPUT)

        proposed: Dict[str, Dict[str, Any]] = {}
        for item in payload:
            if isinstance(item, dict) and item.get('contact_id') is not None:
                proposed.setdefault(str(item['contact_id']).strip(), item)

        assignments = []
        defaulted = 0
        for contact in contacts:
            item = proposed.get(str(contact.id))
            stage_id = resolve_stage_id(item.get('stage_id'), stages) if item else None
            if stage_id is None:
                defaulted += 1
                assignments.append(BulkStageAssignment(
                    contact.id, first_stage.id,
                    coerce_confidence(item.get('confidence')) if item else FAILURE_CONFIDENCE
                ))
            else:
                assignments.append(BulkStageAssignment(
                    contact.id, stage_id, coerce_confidence(item.get('confidence'))
                ))

        return Result.success(AnalysisOutcome(assignments, completion.tokens_used, model),
                              metadata={'defaulted': defaulted})

    @staticmethod
    def _failure_selection(first_stage: Any) -> StageSelection:
        return StageSelection(
            stage_id=first_stage.id,
            confidence=FAILURE_CONFIDENCE,
            reasoning=FAILURE_REASONING,
        )
