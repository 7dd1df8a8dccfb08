"""Reconcile a desired step map against the persisted journey graph."""

from __future__ import annotations

import logging
from typing import Dict, List, Set, Tuple

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from .contracts import JourneyStepMap, ReconcileResult, StepMapEntry, to_step_map
from .db.models import JourneyStep, JourneyStepChild, utcnow

logger = logging.getLogger(__name__)


async def load_journey_steps(session: AsyncSession, journey_id: int) -> List[JourneyStep]:
    result = await session.execute(
        select(JourneyStep)
        .where(JourneyStep.journey_id == journey_id)
        .order_by(col(JourneyStep.id))
    )
    return list(result.scalars().all())


async def load_journey_step_children(
    session: AsyncSession, journey_id: int
) -> List[JourneyStepChild]:
    step_ids = select(JourneyStep.id).where(JourneyStep.journey_id == journey_id)
    result = await session.execute(
        select(JourneyStepChild)
        .where(col(JourneyStepChild.step_id).in_(step_ids))
        .order_by(col(JourneyStepChild.id))
    )
    return list(result.scalars().all())


def _step_changed(step: JourneyStep, entry: StepMapEntry) -> bool:
    return (
        step.type != entry.type
        or step.x != entry.x
        or step.y != entry.y
        or (step.data or {}) != entry.data
    )


class StepMapReconciler:
    """Applies a step map to one journey with the fewest writes.

    ``apply`` must run inside an open transaction; it issues writes in four
    phases (steps, step deletion, children, child deletion) and expects the
    caller to commit or roll back all of them together.
    """

    async def apply(
        self, session: AsyncSession, journey_id: int, step_map: JourneyStepMap
    ) -> ReconcileResult:
        result = ReconcileResult()
        steps = await load_journey_steps(session, journey_id)
        children = await load_journey_step_children(session, journey_id)

        await self._sync_steps(session, journey_id, steps, step_map, result)
        await self._delete_removed_steps(session, steps, step_map, result)
        await self._sync_children(session, steps, children, step_map, result)

        result.step_map = to_step_map(steps, children)
        logger.info(f"Reconciled journey {journey_id}: {result.summary()}")
        return result

    async def _sync_steps(
        self,
        session: AsyncSession,
        journey_id: int,
        steps: List[JourneyStep],
        step_map: JourneyStepMap,
        result: ReconcileResult,
    ) -> None:
        by_external = {step.external_id: step for step in steps}
        now = utcnow()
        for external_id, entry in step_map.items():
            step = by_external.get(external_id)
            if step is None:
                step = JourneyStep(
                    journey_id=journey_id,
                    type=entry.type,
                    external_id=external_id,
                    data=dict(entry.data),
                    x=entry.x,
                    y=entry.y,
                )
                session.add(step)
                # flushed now so children in this pass can reference its id
                await session.flush()
                steps.append(step)
                by_external[external_id] = step
                result.steps_inserted += 1
            elif _step_changed(step, entry):
                step.type = entry.type
                step.data = dict(entry.data)
                step.x = entry.x
                step.y = entry.y
                step.updated_at = now
                result.steps_updated += 1
        await session.flush()

    async def _delete_removed_steps(
        self,
        session: AsyncSession,
        steps: List[JourneyStep],
        step_map: JourneyStepMap,
        result: ReconcileResult,
    ) -> None:
        removed = [step for step in steps if step.external_id not in step_map]
        if not removed:
            return
        ids = [step.id for step in removed]
        await session.execute(
            delete(JourneyStep)
            .where(col(JourneyStep.id).in_(ids))
            .execution_options(synchronize_session=False)
        )
        for step in removed:
            steps.remove(step)
        result.steps_deleted += len(ids)

    async def _sync_children(
        self,
        session: AsyncSession,
        steps: List[JourneyStep],
        children: List[JourneyStepChild],
        step_map: JourneyStepMap,
        result: ReconcileResult,
    ) -> None:
        by_external = {step.external_id: step for step in steps}
        edges: Dict[Tuple[int, int], JourneyStepChild] = {
            (edge.step_id, edge.child_id): edge for edge in children
        }
        declared: Set[Tuple[int, int]] = set()
        now = utcnow()

        for step in steps:
            # repeated references collapse onto one edge, last payload wins
            refs: Dict[str, dict] = {}
            for ref in step_map[step.external_id].children:
                refs[ref.external_id] = ref.data

            for child_external_id, data in refs.items():
                target = by_external.get(child_external_id)
                if target is None:
                    logger.debug(
                        f"Skipping unknown child {child_external_id!r} of step {step.external_id!r}"
                    )
                    continue
                key = (step.id, target.id)
                edge = edges.get(key)
                if edge is None:
                    edge = JourneyStepChild(
                        step_id=step.id, child_id=target.id, data=dict(data)
                    )
                    session.add(edge)
                    await session.flush()
                    children.append(edge)
                    edges[key] = edge
                    result.children_inserted += 1
                elif (edge.data or {}) != data:
                    edge.data = dict(data)
                    edge.updated_at = now
                    result.children_updated += 1
                declared.add(key)
        await session.flush()

        # edges touching a removed step are dropped here as well, whether or
        # not the store cascaded the step deletion
        surviving = {step.id for step in steps}
        stale = [
            edge
            for edge in children
            if edge.step_id not in surviving
            or edge.child_id not in surviving
            or (edge.step_id, edge.child_id) not in declared
        ]
        if not stale:
            return
        ids = [edge.id for edge in stale]
        await session.execute(
            delete(JourneyStepChild)
            .where(col(JourneyStepChild.id).in_(ids))
            .execution_options(synchronize_session=False)
        )
        for edge in stale:
            children.remove(edge)
        result.children_deleted += len(ids)
