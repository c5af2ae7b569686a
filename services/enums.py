"""
Service layer enums
These mirror the string values stored by crm_database models
so services can work without importing them.
"""

from enum import Enum


class Urgency(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class ContactSource(str, Enum):
    WEBHOOK = 'webhook'
    MANUAL = 'manual'
    IMPORT = 'import'


class AssignedBy(str, Enum):
    AI = 'ai'
    MANUAL = 'manual'


class MessageDirection(str, Enum):
    INBOUND = 'inbound'
    OUTBOUND = 'outbound'


class AnalysisAction(str, Enum):
    """Action types written to the AI analysis log"""
    ANALYZE_CONTACT = 'analyze_contact'
    SUGGEST_PIPELINE = 'suggest_pipeline'
    ASSIGN_STAGE = 'assign_stage'
    REANALYZE = 'reanalyze'
    BULK_ASSIGN = 'bulk_assign'


class ErrorKind(str, Enum):
    """Error codes carried by Result.error_code at component boundaries"""
    LLM_UNAVAILABLE = 'llm_unavailable'
    LLM_MALFORMED_OUTPUT = 'llm_malformed_output'
    EXPORT_FAILED = 'export_failed'
    LEAD_FETCH_FAILED = 'lead_fetch_failed'
    UNKNOWN_PAGE = 'unknown_page'
    CONTACT_NOT_FOUND = 'contact_not_found'
    CONTACT_IGNORED = 'contact_ignored'
    MALFORMED_EVENT = 'malformed_event'
    NO_DEFAULT_PIPELINE = 'no_default_pipeline'
    NO_STAGES = 'no_stages'
    INVALID_INPUT = 'invalid_input'
    DATABASE_ERROR = 'database_error'


class ErrorPolicy(str, Enum):
    """What the orchestrator does with a failed component result"""
    USE_FALLBACK = 'use_fallback'
    LOG_AND_CONTINUE = 'log_and_continue'
    STOP = 'stop'
    SKIP_EVENT = 'skip_event'
