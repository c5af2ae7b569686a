"""
AnalysisLogRepository - Append-only audit of model invocations
"""

from typing import Optional
from repositories.base_repository import BaseRepository
from crm_database import AIAnalysisLog

SUMMARY_MAX_LENGTH = 2000


class AnalysisLogRepository(BaseRepository[AIAnalysisLog]):
    """Insert-only access to AIAnalysisLog"""

    def __init__(self, session):
        super().__init__(session, AIAnalysisLog)

    def append(self, owner_id: str, action_type: str, model_used: str,
               contact_id: Optional[int] = None, input_summary: Optional[str] = None,
               output_summary: Optional[str] = None, tokens_used: int = 0) -> AIAnalysisLog:
        return self.create(
            owner_id=owner_id,
            contact_id=contact_id,
            action_type=action_type,
            model_used=model_used,
            input_summary=(input_summary or '')[:SUMMARY_MAX_LENGTH],
            output_summary=(output_summary or '')[:SUMMARY_MAX_LENGTH],
            tokens_used=int(tokens_used or 0)
        )
