"""
Typed analysis payloads

Model output and the JSON stored in Contact.ai_analysis are parsed into these
dataclasses at the boundary. Keys a payload carries beyond the known ones are
kept in `extra` and written back unchanged by to_dict().
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from services.enums import Urgency

URGENCY_VALUES = {u.value for u in Urgency}


def coerce_urgency(value: Any, default: str = Urgency.MEDIUM.value) -> str:
    """Clamp to low/medium/high; anything else becomes default."""
    if isinstance(value, str) and value.strip().lower() in URGENCY_VALUES:
        return value.strip().lower()
    return default


def coerce_tags(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(tag) for tag in value if tag is not None and str(tag).strip()]


def coerce_confidence(value: Any, default: float = 0.5) -> float:
    """float(value) clamped to [0, 1]; zero, NaN or non-numeric gives default."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number or number == 0:
        return default
    return max(0.0, min(1.0, number))


@dataclass
class ContactAnalysis:
    summary: str
    intent: str
    urgency: str
    tags: List[str] = field(default_factory=list)
    analyzed_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    KNOWN_KEYS = ('summary', 'intent', 'urgency', 'tags', 'analyzed_at')

    @classmethod
    def fallback(cls) -> 'ContactAnalysis':
        return cls(summary='Analysis pending', intent='Unknown',
                   urgency=Urgency.MEDIUM.value, tags=[])

    @classmethod
    def from_model_payload(cls, payload: Dict[str, Any]) -> 'ContactAnalysis':
        """
        Build from parsed model JSON.

        Raises:
            ValueError: If summary and intent are both missing
        """
        if not isinstance(payload, dict):
            raise ValueError("Analysis payload is not an object")
        summary = payload.get('summary')
        intent = payload.get('intent')
        if not summary and not intent:
            raise ValueError("Analysis payload has neither summary nor intent")
        return cls(
            summary=str(summary) if summary else 'No summary available',
            intent=str(intent) if intent else 'Unknown',
            urgency=coerce_urgency(payload.get('urgency')),
            tags=coerce_tags(payload.get('tags')),
        )

    @classmethod
    def from_stored(cls, stored: Optional[Dict[str, Any]]) -> Optional['ContactAnalysis']:
        """Parse Contact.ai_analysis; None stays None."""
        if not isinstance(stored, dict):
            return None
        return cls(
            summary=str(stored.get('summary') or ''),
            intent=str(stored.get('intent') or ''),
            urgency=coerce_urgency(stored.get('urgency')),
            tags=coerce_tags(stored.get('tags')),
            analyzed_at=stored.get('analyzed_at'),
            extra={k: v for k, v in stored.items() if k not in cls.KNOWN_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            'summary': self.summary,
            'intent': self.intent,
            'urgency': self.urgency,
            'tags': list(self.tags),
        })
        if self.analyzed_at:
            data['analyzed_at'] = self.analyzed_at
        return data


@dataclass
class ConversationInsights:
    urgency: str
    intent: str
    sentiment: str
    should_move_stage: bool
    recommended_action: str
    key_topics: List[str] = field(default_factory=list)

    @classmethod
    def fallback(cls, previous_urgency: Optional[str]) -> 'ConversationInsights':
        return cls(
            urgency=coerce_urgency(previous_urgency),
            intent='unknown',
            sentiment='neutral',
            should_move_stage=False,
            recommended_action='Follow up with customer',
            key_topics=[],
        )

    @classmethod
    def from_model_payload(cls, payload: Dict[str, Any],
                           previous_urgency: Optional[str]) -> 'ConversationInsights':
        if not isinstance(payload, dict):
            raise ValueError("Conversation payload is not an object")
        defaults = cls.fallback(previous_urgency)
        sentiment = str(payload.get('sentiment') or defaults.sentiment).lower()
        if sentiment not in ('positive', 'neutral', 'negative'):
            sentiment = defaults.sentiment
        should_move = payload.get('should_move_stage')
        if isinstance(should_move, str):
            should_move = should_move.strip().lower() == 'true'
        return cls(
            urgency=coerce_urgency(payload.get('urgency'), default=defaults.urgency),
            intent=str(payload.get('intent') or defaults.intent),
            sentiment=sentiment,
            should_move_stage=bool(should_move),
            recommended_action=str(payload.get('recommended_action') or defaults.recommended_action),
            key_topics=coerce_tags(payload.get('key_topics')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StageSelection:
    stage_id: Any
    confidence: float
    reasoning: str
    corrected: bool = False


@dataclass
class BulkStageAssignment:
    contact_id: Any
    stage_id: Any
    confidence: float


@dataclass
class AnalysisOutcome:
    """What the analyzer hands back: the analysis plus model accounting."""
    analysis: Any
    tokens_used: int = 0
    model: Optional[str] = None
