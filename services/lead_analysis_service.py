"""
Lead analysis with a chat-completion model

Every public method returns a Result. When the model is unreachable or its
output cannot be read, the Result is a fallback carrying a deterministic
default, so callers always have a usable value.
"""

import json
from typing import Any, Dict, List, Optional, Sequence

from logging_config import get_logger
from services.common.analysis_types import (
    AnalysisOutcome,
    ContactAnalysis,
    ConversationInsights,
)
from services.common.result import Result
from services.enums import ErrorKind, MessageDirection
from services.llm_client import LLMClient, LLMError
from services.model_output import MalformedModelOutput, parse_model_json, truncate

logger = get_logger(__name__)

ANALYSIS_SYSTEM_PROMPT = (
    "You are an AI assistant that analyzes leads/contacts for a sales pipeline.\n"
    "Your task is to analyze the contact and their message history to provide insights.\n"
    "Always respond in valid JSON format only."
)

ANALYSIS_RESPONSE_SHAPE = """{
  "summary": "Brief 1-2 sentence summary of the contact and their needs",
  "intent": "What the contact is looking for or trying to achieve",
  "urgency": "low" | "medium" | "high",
  "tags": ["tag1", "tag2", "tag3"]
}"""

PIPELINE_SYSTEM_PROMPT = (
    "You are an AI assistant that designs sales pipelines based on the types of leads a business receives.\n"
    "Your task is to suggest a pipeline structure with appropriate stages.\n"
    "Always respond in valid JSON format only."
)

PIPELINE_RESPONSE_SHAPE = """{
  "name": "Suggested pipeline name",
  "description": "Brief description of the pipeline purpose",
  "stages": [
    {
      "name": "Stage Name",
      "description": "What this stage represents",
      "order_index": 0,
      "color": "#hexcolor",
      "requirements": {
        "criteria": ["What contact needs to meet to be in this stage"]
      },
      "capi_event_name": "Lead"
    }
  ],
  "reasoning": "Why this pipeline structure works for these contacts"
}"""

DEFAULT_STAGE_COLOR = '#6366f1'
PIPELINE_SUGGESTION_CONTACTS = 20

DEFAULT_PIPELINE_SUGGESTION = {
    'name': 'Default Sales Pipeline',
    'description': 'A standard sales pipeline',
    'stages': [
        {'name': 'New Lead', 'description': 'Newly acquired leads', 'order_index': 0,
         'color': '#3b82f6', 'requirements': {'criteria': ['Just received']}, 'capi_event_name': 'Lead'},
        {'name': 'Contacted', 'description': 'Initial contact made', 'order_index': 1,
         'color': '#8b5cf6', 'requirements': {'criteria': ['Responded to first outreach']},
         'capi_event_name': 'Contact'},
        {'name': 'Qualified', 'description': 'Qualified as potential customer', 'order_index': 2,
         'color': '#f59e0b', 'requirements': {'criteria': ['Confirmed interest and budget']},
         'capi_event_name': None},
        {'name': 'Proposal', 'description': 'Proposal sent', 'order_index': 3,
         'color': '#10b981', 'requirements': {'criteria': ['Received quote or proposal']},
         'capi_event_name': None},
        {'name': 'Closed Won', 'description': 'Deal closed successfully', 'order_index': 4,
         'color': '#22c55e', 'requirements': {'criteria': ['Payment received']}, 'capi_event_name': 'Purchase'},
    ],
    'reasoning': 'Default pipeline structure for general sales processes',
}


def format_transcript(messages: Sequence[Any], empty: str = 'No messages yet') -> str:
    """One line per message, oldest first: "[INBOUND] text"."""
    lines = [f"[{str(m.direction).upper()}] {m.content}" for m in messages]
    return '\n'.join(lines) if lines else empty


def _contact_info(contact: Any) -> str:
    custom_fields = getattr(contact, 'custom_fields', None) or {}
    lines = [
        contact.full_name and f"Name: {contact.full_name}",
        contact.email and f"Email: {contact.email}",
        contact.phone and f"Phone: {contact.phone}",
        custom_fields and f"Additional Info: {json.dumps(custom_fields)}",
    ]
    return '\n'.join(line for line in lines if line)


class LeadAnalysisService:
    """Analyzes contacts and conversations, and drafts pipelines"""

    def __init__(self, llm_client: LLMClient, default_model: Optional[str] = None):
        self.llm_client = llm_client
        self.default_model = default_model or llm_client.default_model

    def analyze(self, contact: Any, messages: Sequence[Any],
                model: Optional[str] = None) -> Result[AnalysisOutcome]:
        """
        Assess a contact from its identity fields and message history.

        Returns:
            Result whose data is an AnalysisOutcome holding a ContactAnalysis.
            On model failure the Result is a fallback with the default
            analysis ("Analysis pending", "Unknown", medium, no tags).
        """
        model = model or self.default_model
        user_prompt = (
            "Analyze this contact:\n\n"
            f"CONTACT INFO:\n{_contact_info(contact)}\n\n"
            f"MESSAGE HISTORY:\n{format_transcript(messages)}\n\n"
            f"Respond with this exact JSON structure:\n{ANALYSIS_RESPONSE_SHAPE}"
        )
        completion = None
        try:
            completion = self.llm_client.complete(
                [
                    {'role': 'system', 'content': ANALYSIS_SYSTEM_PROMPT},
                    {'role': 'user', 'content': user_prompt},
                ],
                model=model,
            )
            analysis = ContactAnalysis.from_model_payload(parse_model_json(completion.content))
        except LLMError as e:
            logger.warning("Contact analysis unavailable", contact_id=getattr(contact, 'id', None),
                           error=str(e))
            return Result.fallback(
                AnalysisOutcome(ContactAnalysis.fallback(), 0, model),
                str(e), code=ErrorKind.LLM_UNAVAILABLE
            )
        except (MalformedModelOutput, ValueError) as e:
            logger.warning("Contact analysis unreadable", contact_id=getattr(contact, 'id', None),
                           error=str(e), content=truncate(completion.content if completion else ''))
            return Result.fallback(
                AnalysisOutcome(ContactAnalysis.fallback(), completion.tokens_used if completion else 0, model),
                str(e), code=ErrorKind.LLM_MALFORMED_OUTPUT
            )

        return Result.success(AnalysisOutcome(analysis, completion.tokens_used, model))

    def analyze_conversation(self, contact: Any, messages: Sequence[Any],
                             previous: ContactAnalysis,
                             model: Optional[str] = None) -> Result[AnalysisOutcome]:
        """
        Read the conversation against the previous analysis and decide whether
        the contact should move stage.

        Returns:
            Result whose data is an AnalysisOutcome holding ConversationInsights.
            The fallback keeps the previous urgency and never asks for a move.
        """
        model = model or self.default_model
        conversation = '\n'.join(
            f"[{'CUSTOMER' if m.direction == MessageDirection.INBOUND.value else 'BOT'}]: {m.content}"
            for m in messages
        )
        prompt = (
            "Analyze this customer conversation and determine the appropriate action.\n\n"
            "CONTACT INFO:\n"
            f"- Name: {contact.full_name or 'Unknown'}\n"
            f"- Previous Urgency: {previous.urgency}\n"
            f"- Previous Summary: {previous.summary}\n\n"
            f"CONVERSATION:\n{conversation or 'No messages yet'}\n\n"
            "Based on the conversation, provide a JSON response with:\n"
            '1. "urgency": "low", "medium", or "high" - based on latest messages\n'
            '2. "intent": What the customer wants (e.g., "purchase", "inquiry", "complaint", "support")\n'
            '3. "sentiment": "positive", "neutral", or "negative"\n'
            '4. "should_move_stage": true if the conversation indicates they should move to a '
            'different pipeline stage\n'
            '5. "recommended_action": What action to take next\n'
            '6. "key_topics": Array of main topics discussed\n\n'
            "Respond ONLY with valid JSON."
        )
        completion = None
        try:
            completion = self.llm_client.complete(
                [{'role': 'user', 'content': prompt}],
                model=model, max_tokens=500, temperature=0.3,
            )
            insights = ConversationInsights.from_model_payload(
                parse_model_json(completion.content), previous.urgency
            )
        except LLMError as e:
            logger.warning("Conversation analysis unavailable", contact_id=getattr(contact, 'id', None),
                           error=str(e))
            return Result.fallback(
                AnalysisOutcome(ConversationInsights.fallback(previous.urgency), 0, model),
                str(e), code=ErrorKind.LLM_UNAVAILABLE
            )
        except (MalformedModelOutput, ValueError) as e:
            logger.warning("Conversation analysis unreadable", contact_id=getattr(contact, 'id', None),
                           error=str(e))
            return Result.fallback(
                AnalysisOutcome(ConversationInsights.fallback(previous.urgency),
                                completion.tokens_used if completion else 0, model),
                str(e), code=ErrorKind.LLM_MALFORMED_OUTPUT
            )

        return Result.success(AnalysisOutcome(insights, completion.tokens_used, model))

    def suggest_pipeline(self, contacts: Sequence[Any], business_context: Optional[str] = None,
                         model: Optional[str] = None) -> Result[AnalysisOutcome]:
        """
        Draft a pipeline (name, description, stages, reasoning) for the kind of
        leads in `contacts`. The fallback is DEFAULT_PIPELINE_SUGGESTION.
        """
        model = model or self.default_model
        summaries = []
        for position, contact in enumerate(contacts[:PIPELINE_SUGGESTION_CONTACTS], start=1):
            analysis = ContactAnalysis.from_stored(contact.ai_analysis)
            summaries.append(
                f"{position}. {contact.full_name or contact.email or 'Unknown'} - "
                f"{analysis.summary if analysis else 'Not analyzed'} "
                f"[{analysis.urgency if analysis else 'unknown'} urgency]"
            )
        user_prompt = (
            "Based on these contacts/leads, suggest a pipeline structure:\n\n"
            f"CONTACTS ({len(contacts)} total, showing up to {PIPELINE_SUGGESTION_CONTACTS}):\n"
            f"{chr(10).join(summaries)}\n\n"
            f"{'BUSINESS CONTEXT: ' + business_context if business_context else ''}\n\n"
            f"Respond with this exact JSON structure:\n{PIPELINE_RESPONSE_SHAPE}\n\n"
            "Common CAPI event names: Lead, Contact, CompleteRegistration, Schedule, InitiateCheckout, Purchase\n"
            "Use 4-6 stages typically. Use distinct, visually appealing colors."
        )
        completion = None
        try:
            completion = self.llm_client.complete(
                [
                    {'role': 'system', 'content': PIPELINE_SYSTEM_PROMPT},
                    {'role': 'user', 'content': user_prompt},
                ],
                model=model, max_tokens=3000,
            )
            suggestion = self._normalize_suggestion(parse_model_json(completion.content))
        except LLMError as e:
            logger.warning("Pipeline suggestion unavailable", error=str(e))
            return Result.fallback(
                AnalysisOutcome(_default_suggestion(), 0, model),
                str(e), code=ErrorKind.LLM_UNAVAILABLE
            )
        except (MalformedModelOutput, ValueError) as e:
            logger.warning("Pipeline suggestion unreadable", error=str(e))
            return Result.fallback(
                AnalysisOutcome(_default_suggestion(), completion.tokens_used if completion else 0, model),
                str(e), code=ErrorKind.LLM_MALFORMED_OUTPUT
            )

        return Result.success(AnalysisOutcome(suggestion, completion.tokens_used, model))

    @staticmethod
    def _normalize_suggestion(payload: Any) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise ValueError("Pipeline suggestion is not an object")
        raw_stages = payload.get('stages')
        if not isinstance(raw_stages, list) or not raw_stages:
            raise ValueError("Pipeline suggestion has no stages")

        stages: List[Dict[str, Any]] = []
        for position, stage in enumerate(raw_stages):
            if not isinstance(stage, dict):
                continue
            requirements = stage.get('requirements')
            if not isinstance(requirements, dict):
                requirements = {'criteria': []}
            order_index = stage.get('order_index')
            stages.append({
                'name': str(stage.get('name') or f"Stage {position + 1}"),
                'description': str(stage.get('description') or ''),
                'order_index': order_index if isinstance(order_index, int) else position,
                'color': stage.get('color') or DEFAULT_STAGE_COLOR,
                'requirements': requirements,
                'capi_event_name': stage.get('capi_event_name') or None,
            })
        if not stages:
            raise ValueError("Pipeline suggestion has no usable stages")

        return {
            'name': str(payload.get('name') or 'Sales Pipeline'),
            'description': str(payload.get('description') or ''),
            'stages': stages,
            'reasoning': str(payload.get('reasoning') or ''),
        }


def _default_suggestion() -> Dict[str, Any]:
    return json.loads(json.dumps(DEFAULT_PIPELINE_SUGGESTION))
