"""
Repository Layer - Data Access Abstraction
Implements the Repository Pattern for database isolation
"""

from .base_repository import BaseRepository
from .contact_repository import ContactRepository
from .pipeline_repository import PipelineRepository, sort_stages, stage_sort_key
from .stage_assignment_repository import StageAssignmentRepository
from .message_repository import MessageRepository
from .analysis_log_repository import AnalysisLogRepository
from .facebook_config_repository import FacebookConfigRepository
from .revenue_repository import RevenueRepository
from .ad_metrics_repository import AdMetricsRepository, CampaignMetricsRepository

__all__ = [
    'BaseRepository',
    'ContactRepository',
    'PipelineRepository',
    'StageAssignmentRepository',
    'MessageRepository',
    'AnalysisLogRepository',
    'FacebookConfigRepository',
    'RevenueRepository',
    'AdMetricsRepository',
    'CampaignMetricsRepository',
    'sort_stages',
    'stage_sort_key',
]
