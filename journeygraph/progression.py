"""Append-only log of users progressing through journey steps."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlmodel import col, select

from .db.journey_db import JourneyDB
from .db.models import JourneyStep, JourneyUserStep, as_utc
from .errors import NotFoundError

logger = logging.getLogger(__name__)


class ProgressionLog:
    """Records and queries user step visits.

    Records are written once and never changed. The current position of a
    user is derived from the newest record, ordered by ``created_at`` and
    then by id so that records sharing a timestamp keep insertion order.
    """

    def __init__(self, db: JourneyDB) -> None:
        self.db = db

    async def record_step(
        self,
        user_id: int,
        step_id: int,
        type: str = "completed",
        created_at: Optional[datetime] = None,
    ) -> JourneyUserStep:
        async with self.db.transaction() as session:
            step = await session.get(JourneyStep, step_id)
            if step is None:
                raise NotFoundError(f"Journey step {step_id} not found")
            record = JourneyUserStep(
                user_id=user_id,
                journey_id=step.journey_id,
                step_id=step_id,
                type=type,
            )
            if created_at is not None:
                record.created_at = as_utc(created_at)
            session.add(record)
        logger.debug(
            f"Recorded step {step_id} ({type}) for user {user_id} in journey {record.journey_id}"
        )
        return record

    async def last_journey_step(
        self, user_id: int, journey_id: int
    ) -> JourneyUserStep | None:
        """Return the user's current position in a journey."""
        async with self.db.session() as session:
            result = await session.execute(
                select(JourneyUserStep)
                .where(JourneyUserStep.journey_id == journey_id)
                .where(JourneyUserStep.user_id == user_id)
                .order_by(
                    col(JourneyUserStep.created_at).desc(),
                    col(JourneyUserStep.id).desc(),
                )
                .limit(1)
            )
            return result.scalars().first()

    async def get_user_journey_step(
        self, user_id: int, step_id: int, type: str = "completed"
    ) -> JourneyUserStep | None:
        """Return the newest record of ``user_id`` at ``step_id`` with status ``type``."""
        async with self.db.session() as session:
            result = await session.execute(
                select(JourneyUserStep)
                .where(JourneyUserStep.step_id == step_id)
                .where(JourneyUserStep.user_id == user_id)
                .where(JourneyUserStep.type == type)
                .order_by(
                    col(JourneyUserStep.created_at).desc(),
                    col(JourneyUserStep.id).desc(),
                )
                .limit(1)
            )
            return result.scalars().first()

    async def get_user_journey_ids(self, user_id: int) -> List[int]:
        async with self.db.session() as session:
            result = await session.execute(
                select(JourneyUserStep.journey_id)
                .where(JourneyUserStep.user_id == user_id)
                .distinct()
                .order_by(col(JourneyUserStep.journey_id))
            )
            return list(result.scalars().all())

    async def get_user_steps(self, user_id: int, journey_id: int) -> List[JourneyUserStep]:
        async with self.db.session() as session:
            result = await session.execute(
                select(JourneyUserStep)
                .where(JourneyUserStep.journey_id == journey_id)
                .where(JourneyUserStep.user_id == user_id)
                .order_by(
                    col(JourneyUserStep.created_at),
                    col(JourneyUserStep.id),
                )
            )
            return list(result.scalars().all())
