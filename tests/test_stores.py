import asyncio

import pytest

from taskcore.core.config import Settings
from taskcore.models import TaskFilter, TaskRecord
from taskcore.stores.factory import build_store
from taskcore.stores.memory import MemoryTaskStore
from taskcore.stores.sql import SqlTaskStore

from .conftest import T0


def make_record(title="Task", completed=False, owner_id=None, **kw) -> TaskRecord:
    return TaskRecord(title=title, completed=completed, owner_id=owner_id, **kw)


@pytest.mark.asyncio
async def test_put_without_id_allocates_sequential_ids(store):
    first = await store.put(make_record("one"))
    second = await store.put(make_record("two"))

    assert (first.id, second.id) == (1, 2)
    assert first.created_at == T0
    assert first.description == ""


@pytest.mark.asyncio
async def test_ids_are_never_reused_after_delete(store):
    first = await store.put(make_record("one"))
    second = await store.put(make_record("two"))
    assert await store.delete(second.id) is True

    third = await store.put(make_record("three"))

    assert third.id not in {first.id, second.id}
    assert third.id > second.id


@pytest.mark.asyncio
async def test_get_and_delete_report_absence(store):
    assert await store.get(404) is None
    assert await store.delete(404) is False


@pytest.mark.asyncio
@pytest.mark.parametrize("task_id", [0, -1, 2**63, 2**70])
async def test_ids_outside_the_key_range_are_absent(store, task_id):
    await store.put(make_record("existing"))

    assert await store.get(task_id) is None
    assert await store.delete(task_id) is False
    assert await store.put(make_record("ghost", id=task_id)) is None
    assert [r.title for r in await store.list().all()] == ["existing"]


@pytest.mark.asyncio
async def test_get_returns_full_record(store):
    created = await store.put(make_record("read me", completed=True, owner_id="u1"))

    fetched = await store.get(created.id)

    assert fetched == created
    assert fetched.owner_id == "u1"


@pytest.mark.asyncio
async def test_put_with_id_replaces_and_keeps_created_at(store, clock):
    created = await store.put(make_record("before"))
    clock.advance(60)

    replaced = await store.put(
        TaskRecord(id=created.id, title="after", description="d", completed=True)
    )

    assert replaced.id == created.id
    assert replaced.title == "after"
    assert replaced.completed is True
    assert replaced.created_at == T0
    assert await store.get(created.id) == replaced


@pytest.mark.asyncio
async def test_put_with_id_ignores_a_different_created_at(store, clock):
    created = await store.put(make_record("before"))

    replaced = await store.put(
        TaskRecord(id=created.id, title="after", completed=False, created_at=clock.advance(999))
    )

    assert replaced.created_at == T0


@pytest.mark.asyncio
async def test_put_with_unknown_id_writes_nothing(store):
    result = await store.put(TaskRecord(id=77, title="ghost", completed=False))

    assert result is None
    assert await store.get(77) is None
    assert await store.list().all() == []


@pytest.mark.asyncio
async def test_list_is_in_insertion_order(store):
    for i in range(5):
        await store.put(make_record(f"Task {i}"))

    titles = [r.title for r in await store.list().all()]

    assert titles == [f"Task {i}" for i in range(5)]


@pytest.mark.asyncio
async def test_filtered_list_preserves_relative_order(store):
    for i in range(6):
        await store.put(make_record(f"Task {i}", completed=(i % 2 == 0), owner_id=f"u{i % 3}"))

    done = await store.list(TaskFilter(completed=True)).all()
    owned = await store.list(TaskFilter(owner_id="u1")).all()
    both = await store.list(TaskFilter(owner_id="u0", completed=True)).all()

    assert [r.title for r in done] == ["Task 0", "Task 2", "Task 4"]
    assert [r.title for r in owned] == ["Task 1", "Task 4"]
    assert [r.title for r in both] == ["Task 0"]


@pytest.mark.asyncio
async def test_list_skip_and_limit_slice_after_filtering(store):
    for i in range(6):
        await store.put(make_record(f"Task {i}", completed=(i % 2 == 0)))

    page = await store.list(TaskFilter(completed=True, skip=1, limit=1)).all()
    tail = await store.list(TaskFilter(skip=4)).all()

    assert [r.title for r in page] == ["Task 2"]
    assert [r.title for r in tail] == ["Task 4", "Task 5"]


@pytest.mark.asyncio
async def test_listing_is_lazy_and_restartable(store):
    listing = store.list()
    # created after the listing object: still visible, nothing was read yet
    await store.put(make_record("late"))

    first_pass = [r.title async for r in listing]
    await store.put(make_record("later"))
    second_pass = [r.title async for r in listing]

    assert first_pass == ["late"]
    assert second_pass == ["late", "later"]


@pytest.mark.asyncio
async def test_returned_records_are_copies(store):
    created = await store.put(make_record("original"))
    created.title = "mutated by caller"

    assert (await store.get(created.id)).title == "original"


@pytest.mark.asyncio
async def test_concurrent_inserts_get_unique_ids():
    store = MemoryTaskStore()

    records = await asyncio.gather(*(store.put(make_record(f"t{i}")) for i in range(50)))

    assert len({r.id for r in records}) == 50


@pytest.mark.asyncio
async def test_same_id_writes_are_last_writer_wins():
    store = MemoryTaskStore()
    created = await store.put(make_record("v0"))

    await asyncio.gather(
        *(
            store.put(TaskRecord(id=created.id, title=f"v{i}", completed=False))
            for i in range(1, 11)
        )
    )

    assert (await store.get(created.id)).title == "v10"


@pytest.mark.asyncio
async def test_delete_racing_replace_never_resurrects():
    store = MemoryTaskStore()
    created = await store.put(make_record("v0"))

    deleted, replaced = await asyncio.gather(
        store.delete(created.id),
        store.put(TaskRecord(id=created.id, title="v1", completed=False)),
    )

    assert deleted is True
    assert replaced is None
    assert await store.get(created.id) is None


def test_factory_builds_memory_store(settings):
    assert isinstance(build_store(settings), MemoryTaskStore)


@pytest.mark.asyncio
async def test_factory_builds_sql_store(tmp_path):
    settings = Settings(
        store_backend="sql", database_url=f"sqlite+aiosqlite:///{tmp_path / 'f.db'}"
    )

    store = build_store(settings)
    try:
        assert isinstance(store, SqlTaskStore)
        assert store.engine is not None
    finally:
        await store.close()


def test_factory_rejects_unknown_backend():
    settings = Settings.model_construct(store_backend="carrier-pigeon")

    with pytest.raises(ValueError, match="carrier-pigeon"):
        build_store(settings)
