"""
Lead quality score

A pure function of a contact's identity fields, analysis urgency and custom
field count. Result is always an int in [0, 100].
"""

from typing import Any, Mapping, Optional

from services.common.analysis_types import ContactAnalysis

IDENTITY_POINTS = 10
URGENCY_POINTS = {
    'high': 40,
    'medium': 25,
    'low': 10,
}
CUSTOM_FIELD_POINTS = 10
CUSTOM_FIELD_CAP = 30
MIN_SCORE = 0
MAX_SCORE = 100


def score_lead(email: Optional[str], phone: Optional[str], full_name: Optional[str],
               urgency: Optional[str], custom_fields: Optional[Mapping[str, Any]]) -> int:
    score = 0
    for value in (email, phone, full_name):
        if value:
            score += IDENTITY_POINTS
    score += URGENCY_POINTS.get(urgency or '', 0)
    score += min(CUSTOM_FIELD_CAP, len(custom_fields or {}) * CUSTOM_FIELD_POINTS)
    return max(MIN_SCORE, min(MAX_SCORE, score))


def score_contact(contact: Any, analysis: Optional[ContactAnalysis] = None) -> int:
    """
    Score a contact. `analysis` overrides the contact's stored analysis,
    for scoring a result before it is persisted.
    """
    if analysis is None:
        analysis = ContactAnalysis.from_stored(getattr(contact, 'ai_analysis', None))
    return score_lead(
        email=contact.email,
        phone=contact.phone,
        full_name=contact.full_name,
        urgency=analysis.urgency if analysis else None,
        custom_fields=getattr(contact, 'custom_fields', None),
    )
