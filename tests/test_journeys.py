from datetime import timedelta

import pytest
from sqlalchemy import event

from journeygraph import (
    ENTRANCE_TYPE,
    JourneyDB,
    JourneyParams,
    JourneyRepository,
    NotFoundError,
    SearchParams,
    UpdateJourneyParams,
)
from journeygraph.config import PagingConfig


async def _make_repo(tmp_path, **kwargs) -> JourneyRepository:
    db = JourneyDB(f"sqlite+aiosqlite:///{tmp_path / 'journeys.db'}")
    await db.init_db()
    return JourneyRepository(db, **kwargs)


@pytest.mark.asyncio
async def test_create_journey_seeds_single_entrance(tmp_path):
    repo = await _make_repo(tmp_path)

    journey = await repo.create_journey(7, JourneyParams(name="Welcome"))
    assert journey.id is not None
    assert journey.project_id == 7
    assert journey.name == "Welcome"
    assert journey.deleted_at is None

    steps = await repo.get_journey_steps(journey.id)
    assert len(steps) == 1
    entrance = await repo.get_journey_entrance(journey.id)
    assert entrance is not None
    assert entrance.type == ENTRANCE_TYPE
    assert entrance.id == steps[0].id
    assert await repo.get_journey_step_children(entrance.id) == []

    step_map = await repo.get_journey_step_map(journey.id)
    assert list(step_map) == [entrance.external_id]
    assert step_map[entrance.external_id].type == ENTRANCE_TYPE
    assert step_map[entrance.external_id].children == []


@pytest.mark.asyncio
async def test_create_journey_rolls_back_when_entrance_insert_fails(tmp_path):
    repo = await _make_repo(tmp_path)

    def fail_on_step_insert(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("INSERT INTO JOURNEYSTEP"):
            raise RuntimeError("step insert failed")

    sync_engine = repo.db.engine.sync_engine
    event.listen(sync_engine, "before_cursor_execute", fail_on_step_insert)
    try:
        with pytest.raises(RuntimeError):
            await repo.create_journey(1, JourneyParams(name="Broken"))
    finally:
        event.remove(sync_engine, "before_cursor_execute", fail_on_step_insert)

    assert await repo.all_journeys(1) == []
    page = await repo.paged_journeys(1)
    assert page.total == 0


@pytest.mark.asyncio
async def test_get_journey_hides_other_projects(tmp_path):
    repo = await _make_repo(tmp_path)
    journey = await repo.create_journey(1, JourneyParams(name="Mine"))

    found = await repo.get_journey(journey.id, 1)
    assert found.id == journey.id

    with pytest.raises(NotFoundError) as other_project:
        await repo.get_journey(journey.id, 2)
    with pytest.raises(NotFoundError) as missing:
        await repo.get_journey(journey.id + 100, 1)

    assert str(other_project.value) == str(missing.value)
    assert other_project.value.status_code == 404


@pytest.mark.asyncio
async def test_update_journey_changes_only_given_fields(tmp_path):
    repo = await _make_repo(tmp_path)
    journey = await repo.create_journey(
        1, JourneyParams(name="Draft", description="first pass")
    )

    updated = await repo.update_journey(journey.id, UpdateJourneyParams(published=True))
    assert updated.published is True
    assert updated.name == "Draft"
    assert updated.description == "first pass"

    updated = await repo.update_journey(
        journey.id, UpdateJourneyParams(name="Final", description=None)
    )
    assert updated.name == "Final"
    assert updated.description is None

    fetched = await repo.get_journey(journey.id, 1)
    assert fetched.name == "Final"
    assert fetched.published is True

    with pytest.raises(NotFoundError):
        await repo.update_journey(999, UpdateJourneyParams(name="Nope"))


@pytest.mark.asyncio
async def test_delete_journey_is_soft(tmp_path):
    repo = await _make_repo(tmp_path)
    kept = await repo.create_journey(1, JourneyParams(name="Kept"))
    removed = await repo.create_journey(1, JourneyParams(name="Removed"))

    await repo.delete_journey(removed.id)

    assert [j.id for j in await repo.all_journeys(1)] == [kept.id]
    page = await repo.paged_journeys(1)
    assert [j.id for j in page.results] == [kept.id]

    fetched = await repo.get_journey(removed.id, 1)
    assert fetched.deleted_at is not None
    # steps stay available for reporting
    assert len(await repo.get_journey_steps(removed.id)) == 1

    with pytest.raises(NotFoundError):
        await repo.delete_journey(999)


@pytest.mark.asyncio
async def test_paged_journeys_searches_and_pages(tmp_path):
    repo = await _make_repo(tmp_path, paging=PagingConfig(default_limit=2, max_limit=3))
    names = ["Welcome A", "Welcome B", "Winback", "welcome c", "100% off"]
    for name in names:
        await repo.create_journey(1, JourneyParams(name=name))
    await repo.create_journey(2, JourneyParams(name="Welcome elsewhere"))

    first = await repo.paged_journeys(1)
    assert first.total == 5
    assert first.limit == 2
    assert [j.name for j in first.results] == ["100% off", "welcome c"]

    second = await repo.paged_journeys(1, SearchParams(offset=2))
    assert [j.name for j in second.results] == ["Winback", "Welcome B"]

    search = await repo.paged_journeys(1, SearchParams(q="WELCOME", limit=10))
    assert search.limit == 3
    assert search.total == 3
    assert [j.name for j in search.results] == ["welcome c", "Welcome B", "Welcome A"]

    percent = await repo.paged_journeys(1, SearchParams(q="%"))
    assert [j.name for j in percent.results] == ["100% off"]


@pytest.mark.asyncio
async def test_get_journey_step_handles_missing_ids(tmp_path):
    repo = await _make_repo(tmp_path)
    journey = await repo.create_journey(1, JourneyParams(name="Steps"))
    entrance = await repo.get_journey_entrance(journey.id)

    assert await repo.get_journey_step(None) is None
    assert await repo.get_journey_step(0) is None
    assert await repo.get_journey_step(12345) is None
    step = await repo.get_journey_step(entrance.id)
    assert step.external_id == entrance.external_id
    assert await repo.get_journey_entrance(journey.id + 1) is None


@pytest.mark.asyncio
async def test_journey_timestamps_are_aware_utc(tmp_path):
    repo = await _make_repo(tmp_path)
    journey = await repo.create_journey(1, JourneyParams(name="Clock"))
    await repo.delete_journey(journey.id)

    fetched = await repo.get_journey(journey.id, 1)
    for value in (fetched.created_at, fetched.updated_at, fetched.deleted_at):
        assert value.tzinfo is not None
        assert value.utcoffset() == timedelta(0)
    assert fetched.created_at == journey.created_at
    assert fetched.deleted_at >= fetched.created_at

    entrance = await repo.get_journey_entrance(journey.id)
    assert entrance.created_at.utcoffset() == timedelta(0)
