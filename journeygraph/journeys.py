"""Journey lifecycle and step graph access."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func
from sqlmodel import col, select

from .config import PagingConfig
from .contracts import (
    JourneyParams,
    JourneyStepMap,
    Page,
    ReconcileResult,
    SearchParams,
    StepStats,
    UpdateJourneyParams,
    parse_step_map,
    to_step_map,
)
from .db.journey_db import JourneyDB
from .db.models import (
    ENTRANCE_TYPE,
    Journey,
    JourneyStep,
    JourneyStepChild,
    utcnow,
)
from .errors import NotFoundError
from .reconcile import (
    StepMapReconciler,
    load_journey_step_children,
    load_journey_steps,
)
from .stats import get_journey_step_stats

logger = logging.getLogger(__name__)


class JourneyRepository:
    """Creates, looks up and edits journeys and their step graphs.

    Every mutating call runs in a single transaction on ``db``; reads use
    their own short-lived sessions.
    """

    def __init__(
        self,
        db: JourneyDB,
        paging: PagingConfig | None = None,
        reconciler: StepMapReconciler | None = None,
    ) -> None:
        self.db = db
        self.paging = paging or PagingConfig()
        self.reconciler = reconciler or StepMapReconciler()

    # ------------------------------------------------------------------
    # Journeys
    async def create_journey(self, project_id: int, params: JourneyParams) -> Journey:
        """Insert a journey together with its entrance step."""
        async with self.db.transaction() as session:
            journey = Journey(project_id=project_id, **params.model_dump())
            session.add(journey)
            await session.flush()
            session.add(
                JourneyStep(
                    journey_id=journey.id,
                    type=ENTRANCE_TYPE,
                    external_id=str(uuid.uuid4()),
                    data={},
                )
            )
            await session.flush()
        logger.info(f"Created journey {journey.id} for project {project_id}")
        return journey

    async def get_journey(self, journey_id: int, project_id: int) -> Journey:
        async with self.db.session() as session:
            result = await session.execute(
                select(Journey)
                .where(Journey.id == journey_id)
                .where(Journey.project_id == project_id)
            )
            journey = result.scalars().first()
        if journey is None:
            raise NotFoundError("Journey not found")
        return journey

    async def update_journey(
        self, journey_id: int, params: UpdateJourneyParams
    ) -> Journey:
        fields = params.model_dump(exclude_unset=True)
        for required in ("name", "published"):
            if fields.get(required, ...) is None:
                fields.pop(required)
        async with self.db.transaction() as session:
            journey = await session.get(Journey, journey_id)
            if journey is None:
                raise NotFoundError("Journey not found")
            for key, value in fields.items():
                setattr(journey, key, value)
            journey.updated_at = utcnow()
        return journey

    async def delete_journey(self, journey_id: int) -> None:
        """Soft delete: the journey is hidden from listings, its steps remain."""
        async with self.db.transaction() as session:
            journey = await session.get(Journey, journey_id)
            if journey is None:
                raise NotFoundError("Journey not found")
            journey.deleted_at = utcnow()
        logger.info(f"Deleted journey {journey_id}")

    async def paged_journeys(
        self, project_id: int, params: SearchParams | None = None
    ) -> Page[Journey]:
        params = params or SearchParams()
        limit = min(params.limit or self.paging.default_limit, self.paging.max_limit)
        query = (
            select(Journey)
            .where(Journey.project_id == project_id)
            .where(col(Journey.deleted_at).is_(None))
        )
        if params.q:
            query = query.where(
                func.lower(Journey.name).contains(params.q.lower(), autoescape=True)
            )
        async with self.db.session() as session:
            total = await session.scalar(
                select(func.count()).select_from(query.subquery())
            )
            result = await session.execute(
                query.order_by(col(Journey.id).desc())
                .limit(limit)
                .offset(params.offset)
            )
            journeys = list(result.scalars().all())
        return Page[Journey](
            results=journeys, total=total or 0, limit=limit, offset=params.offset
        )

    async def all_journeys(self, project_id: int) -> List[Journey]:
        async with self.db.session() as session:
            result = await session.execute(
                select(Journey)
                .where(Journey.project_id == project_id)
                .where(col(Journey.deleted_at).is_(None))
                .order_by(col(Journey.id))
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Steps
    async def get_journey_steps(self, journey_id: int) -> List[JourneyStep]:
        async with self.db.session() as session:
            return await load_journey_steps(session, journey_id)

    async def get_journey_step(self, step_id: Optional[int]) -> JourneyStep | None:
        if not step_id:
            return None
        async with self.db.session() as session:
            return await session.get(JourneyStep, step_id)

    async def get_journey_step_children(self, step_id: int) -> List[JourneyStepChild]:
        async with self.db.session() as session:
            result = await session.execute(
                select(JourneyStepChild)
                .where(JourneyStepChild.step_id == step_id)
                .order_by(col(JourneyStepChild.id))
            )
            return list(result.scalars().all())

    async def get_journey_entrance(self, journey_id: int) -> JourneyStep | None:
        async with self.db.session() as session:
            result = await session.execute(
                select(JourneyStep)
                .where(JourneyStep.type == ENTRANCE_TYPE)
                .where(JourneyStep.journey_id == journey_id)
                .order_by(col(JourneyStep.id))
                .limit(1)
            )
            return result.scalars().first()

    async def get_journey_step_map(self, journey_id: int) -> JourneyStepMap:
        async with self.db.session() as session:
            steps = await load_journey_steps(session, journey_id)
            children = await load_journey_step_children(session, journey_id)
        return to_step_map(steps, children)

    async def reconcile_journey_step_map(
        self, journey_id: int, step_map: Mapping[str, Any]
    ) -> ReconcileResult:
        """Make the persisted graph equal ``step_map`` in one transaction.

        The map is validated before anything is written; any store error
        rolls back every write of the pass and propagates unchanged.
        """
        desired = parse_step_map(step_map)
        async with self.db.transaction() as session:
            if await session.get(Journey, journey_id) is None:
                raise NotFoundError("Journey not found")
            return await self.reconciler.apply(session, journey_id, desired)

    async def set_journey_step_map(
        self, journey_id: int, step_map: Mapping[str, Any]
    ) -> JourneyStepMap:
        result = await self.reconcile_journey_step_map(journey_id, step_map)
        return result.step_map

    async def get_journey_step_stats(self, journey_id: int) -> Dict[str, StepStats]:
        async with self.db.session() as session:
            return await get_journey_step_stats(session, journey_id)
