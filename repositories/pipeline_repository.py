"""
PipelineRepository - Data access for pipelines and their stages
"""

from typing import List, Optional, Dict, Any
from repositories.base_repository import BaseRepository
from crm_database import Pipeline, PipelineStage
import logging

logger = logging.getLogger(__name__)


def stage_sort_key(stage) -> tuple:
    """
    Total order over stages: order_index, then creation time, then id.

    Missing creation times sort before present ones.
    """
    created_at = getattr(stage, 'created_at', None)
    return (
        stage.order_index,
        created_at is not None,
        created_at.timestamp() if created_at is not None else 0,
        stage.id,
    )


def sort_stages(stages) -> list:
    return sorted(stages, key=stage_sort_key)


class PipelineRepository(BaseRepository[Pipeline]):
    """Repository for Pipeline and PipelineStage data access"""

    def __init__(self, session):
        super().__init__(session, Pipeline)

    def get_for_owner(self, owner_id: str, pipeline_id: int) -> Optional[Pipeline]:
        return self.owned(owner_id, Pipeline.id == pipeline_id).first()

    def get_default_for_owner(self, owner_id: str) -> Optional[Pipeline]:
        """The owner's default pipeline; the newest wins if several are flagged."""
        return self.owned(owner_id, Pipeline.is_default.is_(True)).order_by(
            Pipeline.created_at.desc(), Pipeline.id.desc()
        ).first()

    def get_ordered_stages(self, pipeline_id: int) -> List[PipelineStage]:
        stages = self.session.query(PipelineStage).filter(
            PipelineStage.pipeline_id == pipeline_id
        ).all()
        return sort_stages(stages)

    def unset_defaults(self, owner_id: str) -> int:
        """Clear is_default on every pipeline of owner_id. Returns rows changed."""
        with self._write('unset_defaults'):
            changed = self.owned(owner_id, Pipeline.is_default.is_(True)).update(
                {Pipeline.is_default: False}, synchronize_session='fetch'
            )
        return changed

    def create_with_stages(self, owner_id: str, name: str, stages: List[Dict[str, Any]],
                           description: Optional[str] = None, is_default: bool = False,
                           ai_generated: bool = False) -> Pipeline:
        """
        Insert a pipeline and its stages.

        Each stage dict may carry name, description, order_index, color,
        requirements and capi_event_name; order_index defaults to the position.
        """
        pipeline = self.create(
            owner_id=owner_id,
            name=name,
            description=description,
            is_default=is_default,
            ai_generated=ai_generated
        )
        with self._write('create stages'):
            for position, stage in enumerate(stages):
                order_index = stage.get('order_index')
                self.session.add(PipelineStage(
                    pipeline_id=pipeline.id,
                    name=stage['name'],
                    description=stage.get('description'),
                    order_index=position if order_index is None else int(order_index),
                    color=stage.get('color') or '#6366f1',
                    requirements=stage.get('requirements') or {'criteria': []},
                    capi_event_name=stage.get('capi_event_name') or None
                ))
        logger.debug(f"Created pipeline {pipeline.id} with {len(stages)} stages")
        return pipeline
