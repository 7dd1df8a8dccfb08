"""Live population counts per journey step."""

from __future__ import annotations

from typing import Dict

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col

from .contracts import StepStats
from .db.models import JourneyUserStep
from .reconcile import load_journey_steps


def latest_user_steps(journey_id: int):
    """Subquery ranking each user's records in a journey, newest first.

    Rank 1 is the user's current position; ties on ``created_at`` fall back
    to insertion order.
    """
    return (
        select(
            JourneyUserStep.user_id,
            JourneyUserStep.step_id,
            func.row_number()
            .over(
                partition_by=JourneyUserStep.user_id,
                order_by=[
                    col(JourneyUserStep.created_at).desc(),
                    col(JourneyUserStep.id).desc(),
                ],
            )
            .label("rn"),
        )
        .where(JourneyUserStep.journey_id == journey_id)
        .subquery("latest_journey_steps")
    )


async def get_journey_step_stats(
    session: AsyncSession, journey_id: int
) -> Dict[str, StepStats]:
    """Count users whose latest record points at each step of the journey.

    Every step is reported, with zero users when nobody is currently there.
    Records left on steps that were since removed are not reported.
    """
    steps = await load_journey_steps(session, journey_id)
    ranked = latest_user_steps(journey_id)
    rows = await session.execute(
        select(ranked.c.step_id, func.count().label("users"))
        .where(ranked.c.rn == 1)
        .group_by(ranked.c.step_id)
    )
    counts = {row.step_id: row.users for row in rows}
    return {
        step.external_id: StepStats(users=counts.get(step.id, 0)) for step in steps
    }
