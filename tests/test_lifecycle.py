from datetime import timedelta

import pytest
from sqlalchemy import select

from tasktracker.core.access import get_visible_user
from tasktracker.core.clock import as_utc
from tasktracker.core.errors import InvalidState, NotFound, StoreFailure
from tasktracker.models.task import Task, TaskComment
from tasktracker.models.user import User
from tasktracker.services import lifecycle
from tasktracker.services.lifecycle import (
    purge_user,
    recover_user,
    run_sweep,
    soft_delete_user,
)

GRACE = timedelta(days=30)


async def sweep(session_factory, clock):
    return await run_sweep(session_factory, clock=clock, grace_period=GRACE)


# --- soft delete / recover -------------------------------------------------

@pytest.mark.asyncio
async def test_soft_delete_marks_user_and_leaves_tasks(db, clock, make_user, make_task, reload):
    user = await make_user("alice")
    task = await make_task(user, due_date=clock.now() + timedelta(days=3))

    await soft_delete_user(db, user.id, now=clock.now())

    stored = await reload(User, user.id)
    assert stored.deleted is True
    assert as_utc(stored.deleted_at) == clock.now()
    stored_task = await reload(Task, task.id)
    assert stored_task is not None
    assert stored_task.status == "pending"


@pytest.mark.asyncio
async def test_soft_deleted_user_is_invisible(db, clock, make_user):
    user = await make_user("alice")
    await soft_delete_user(db, user.id, now=clock.now())

    with pytest.raises(NotFound):
        await get_visible_user(db, user.id)


@pytest.mark.asyncio
async def test_soft_delete_twice_is_not_found(db, clock, make_user):
    user = await make_user("alice")
    await soft_delete_user(db, user.id, now=clock.now())

    with pytest.raises(NotFound):
        await soft_delete_user(db, user.id, now=clock.now())


@pytest.mark.asyncio
async def test_recover_restores_visibility(db, clock, make_user, reload):
    user = await make_user("alice")
    await soft_delete_user(db, user.id, now=clock.now())

    await recover_user(db, user.id)

    stored = await reload(User, user.id)
    assert stored.deleted is False
    assert stored.deleted_at is None
    assert (await get_visible_user(db, user.id)).id == user.id


@pytest.mark.asyncio
async def test_recover_active_user_is_not_found_and_changes_nothing(db, make_user, reload):
    user = await make_user("alice")

    with pytest.raises(NotFound) as excinfo:
        await recover_user(db, user.id)

    assert isinstance(excinfo.value, InvalidState)
    stored = await reload(User, user.id)
    assert stored.deleted is False
    assert stored.deleted_at is None


@pytest.mark.asyncio
async def test_recover_unknown_user(db):
    with pytest.raises(NotFound):
        await recover_user(db, 9999)


# --- overdue pass ----------------------------------------------------------

@pytest.mark.asyncio
async def test_sweep_marks_past_due_tasks_overdue(session_factory, clock, make_user, make_task, reload):
    user = await make_user("alice")
    past = clock.now() - timedelta(hours=1)
    pending = await make_task(user, due_date=past, status="pending")
    in_progress = await make_task(user, due_date=past, status="in-progress")
    completed = await make_task(user, due_date=past, status="completed")
    future = await make_task(user, due_date=clock.now() + timedelta(days=1))
    hidden = await make_task(user, due_date=past, deleted=True)

    report = await sweep(session_factory, clock)

    assert report.overdue_marked == 2
    assert (await reload(Task, pending.id)).status == "overdue"
    assert (await reload(Task, in_progress.id)).status == "overdue"
    assert (await reload(Task, completed.id)).status == "completed"
    assert (await reload(Task, future.id)).status == "pending"
    assert (await reload(Task, hidden.id)).status == "pending"


@pytest.mark.asyncio
async def test_overdue_pass_is_idempotent(session_factory, clock, make_user, make_task, reload):
    user = await make_user("alice")
    task = await make_task(user, due_date=clock.now() - timedelta(days=2))

    first = await sweep(session_factory, clock)
    second = await sweep(session_factory, clock)

    assert first.overdue_marked == 1
    assert second.overdue_marked == 0
    assert (await reload(Task, task.id)).status == "overdue"


# --- purge pass ------------------------------------------------------------

@pytest.mark.asyncio
async def test_sweep_purges_user_past_grace_period(session_factory, clock, make_user, make_task, reload):
    expired = await make_user("bob", deleted_at=clock.now() - GRACE - timedelta(seconds=1))
    t1 = await make_task(expired, due_date=clock.now() + timedelta(days=1))
    t2 = await make_task(expired, due_date=clock.now() + timedelta(days=2))

    report = await sweep(session_factory, clock)

    assert report.purged_user_ids == [expired.id]
    assert report.ok
    assert await reload(User, expired.id) is None
    assert await reload(Task, t1.id) is None
    assert await reload(Task, t2.id) is None


@pytest.mark.asyncio
async def test_sweep_keeps_user_inside_grace_period(session_factory, clock, make_user, make_task, reload):
    recent = await make_user("bob", deleted_at=clock.now() - timedelta(days=29))
    task = await make_task(recent, due_date=clock.now() + timedelta(days=1))

    report = await sweep(session_factory, clock)

    assert report.purged_user_ids == []
    assert (await reload(User, recent.id)).deleted is True
    assert await reload(Task, task.id) is not None


@pytest.mark.asyncio
async def test_sweep_keeps_user_deleted_exactly_grace_period_ago(session_factory, clock, make_user, reload):
    boundary = await make_user("bob", deleted_at=clock.now() - GRACE)

    report = await sweep(session_factory, clock)

    assert report.purged_user_ids == []
    assert (await reload(User, boundary.id)).deleted is True


@pytest.mark.asyncio
async def test_purge_cascades_comments(db, session_factory, clock, make_user, make_task, reload):
    expired = await make_user("bob", deleted_at=clock.now() - timedelta(days=40))
    other = await make_user("carol")
    own_task = await make_task(expired, due_date=clock.now() + timedelta(days=1))
    other_task = await make_task(other, due_date=clock.now() + timedelta(days=1))
    db.add_all([
        TaskComment(task_id=own_task.id, author_id=other.id, comment="on bob's task"),
        TaskComment(task_id=other_task.id, author_id=expired.id, comment="bob was here"),
    ])
    await db.commit()

    await sweep(session_factory, clock)

    async with session_factory() as s:
        comments = (await s.execute(select(TaskComment))).scalars().all()
    assert [(c.task_id, c.author_id, c.comment) for c in comments] == [
        (other_task.id, None, "bob was here"),
    ]
    assert await reload(Task, other_task.id) is not None


@pytest.mark.asyncio
async def test_purge_user_skips_account_that_is_no_longer_expired(session_factory, clock, make_user, reload):
    user = await make_user("alice")

    purged = await purge_user(session_factory, user.id, cutoff=clock.now())

    assert purged is False
    assert await reload(User, user.id) is not None


@pytest.mark.asyncio
async def test_failed_purge_does_not_block_other_users(
    session_factory, clock, make_user, make_task, reload, monkeypatch
):
    old = clock.now() - timedelta(days=45)
    broken = await make_user("broken", deleted_at=old)
    fine = await make_user("fine", deleted_at=old)
    broken_task = await make_task(broken, due_date=clock.now() + timedelta(days=1))

    real_purge_user = lifecycle.purge_user

    async def flaky_purge_user(factory, user_id, *, cutoff):
        if user_id == broken.id:
            raise StoreFailure("connection reset")
        return await real_purge_user(factory, user_id, cutoff=cutoff)

    monkeypatch.setattr(lifecycle, "purge_user", flaky_purge_user)
    report = await sweep(session_factory, clock)

    assert report.purged_user_ids == [fine.id]
    assert [f.user_id for f in report.failures] == [broken.id]
    assert not report.ok
    assert await reload(User, broken.id) is not None
    assert await reload(Task, broken_task.id) is not None

    # Still eligible, so the next run finishes the job
    monkeypatch.undo()
    retry = await sweep(session_factory, clock)
    assert retry.purged_user_ids == [broken.id]
    assert await reload(User, broken.id) is None
    assert await reload(Task, broken_task.id) is None


@pytest.mark.asyncio
async def test_concurrent_purge_isolates_one_failure(
    session_factory, clock, make_user, make_task, reload, monkeypatch
):
    old = clock.now() - timedelta(days=40)
    users = [await make_user(f"user{i}", deleted_at=old) for i in range(8)]
    tasks = {}
    for user in users:
        tasks[user.id] = [
            (await make_task(user, due_date=clock.now() + timedelta(days=d))).id for d in (1, 2, 3)
        ]
    broken = users[3]

    real_purge_user = lifecycle.purge_user
    in_flight = {"now": 0, "peak": 0}

    async def tracked_purge_user(factory, user_id, *, cutoff):
        in_flight["now"] += 1
        in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
        try:
            if user_id == broken.id:
                raise StoreFailure("connection reset")
            return await real_purge_user(factory, user_id, cutoff=cutoff)
        finally:
            in_flight["now"] -= 1

    monkeypatch.setattr(lifecycle, "purge_user", tracked_purge_user)
    report = await run_sweep(session_factory, clock=clock, grace_period=GRACE, concurrency=4)

    survivors = [u.id for u in users if u.id != broken.id]
    assert sorted(report.purged_user_ids) == survivors
    assert [f.user_id for f in report.failures] == [broken.id]
    assert 1 < in_flight["peak"] <= 4

    for user_id in survivors:
        assert await reload(User, user_id) is None
        for task_id in tasks[user_id]:
            assert await reload(Task, task_id) is None
    assert await reload(User, broken.id) is not None
    for task_id in tasks[broken.id]:
        assert await reload(Task, task_id) is not None


@pytest.mark.asyncio
async def test_overdue_failure_does_not_stop_purge(session_factory, clock, make_user, reload, monkeypatch):
    expired = await make_user("bob", deleted_at=clock.now() - timedelta(days=31))

    async def broken_overdue(*args, **kwargs):
        raise StoreFailure("overdue update failed")

    monkeypatch.setattr(lifecycle, "mark_overdue_tasks", broken_overdue)
    report = await sweep(session_factory, clock)

    assert report.failed_passes == ["overdue"]
    assert report.purged_user_ids == [expired.id]
    assert await reload(User, expired.id) is None


@pytest.mark.asyncio
async def test_purge_failure_does_not_stop_overdue(session_factory, clock, make_user, make_task, reload, monkeypatch):
    user = await make_user("alice")
    task = await make_task(user, due_date=clock.now() - timedelta(days=1))

    async def broken_purge(*args, **kwargs):
        raise StoreFailure("listing expired accounts failed")

    monkeypatch.setattr(lifecycle, "purge_expired_users", broken_purge)
    report = await sweep(session_factory, clock)

    assert report.failed_passes == ["purge"]
    assert (await reload(Task, task.id)).status == "overdue"


# --- end-to-end scenarios --------------------------------------------------

@pytest.mark.asyncio
async def test_scenario_overdue_task_of_active_user(session_factory, clock, make_user, make_task, reload):
    a = await make_user("a")
    t1 = await make_task(a, due_date=clock.now() - timedelta(days=1), status="pending")

    await sweep(session_factory, clock)

    assert (await reload(Task, t1.id)).status == "overdue"
    stored = await reload(User, a.id)
    assert stored.deleted is False
    assert stored.deleted_at is None


@pytest.mark.asyncio
async def test_scenario_deleted_user_purged_after_31_days(db, session_factory, clock, make_user, make_task, reload):
    b = await make_user("b")
    t2 = await make_task(b, due_date=clock.now() + timedelta(days=5))
    await soft_delete_user(db, b.id, now=clock.now())

    clock.advance(timedelta(days=31))
    await sweep(session_factory, clock)

    assert await reload(User, b.id) is None
    assert await reload(Task, t2.id) is None


@pytest.mark.asyncio
async def test_scenario_recovered_user_survives_sweep(db, session_factory, clock, make_user, reload):
    c = await make_user("c")
    await soft_delete_user(db, c.id, now=clock.now())
    await recover_user(db, c.id)

    clock.advance(timedelta(days=31))
    report = await sweep(session_factory, clock)

    assert report.purged_user_ids == []
    stored = await reload(User, c.id)
    assert stored is not None
    assert stored.deleted is False
    assert stored.deleted_at is None
