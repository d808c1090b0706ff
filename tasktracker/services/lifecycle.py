"""
Account and task lifecycle.

- soft_delete_user / recover_user: the reversible half of account deletion.
- run_sweep: the daily maintenance pass. Marks past-due tasks overdue, then
  permanently removes accounts whose grace period has expired, together
  with their tasks.

Each purged account is its own transaction. A failure purging one account is
logged and the account stays eligible, so the next sweep retries it.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tasktracker.core.access import get_visible_user, visible
from tasktracker.core.clock import Clock
from tasktracker.core.errors import InvalidState, NotFound, PartialSweepFailure, StoreFailure
from tasktracker.models.task import Task, TaskComment
from tasktracker.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    started_at: datetime
    overdue_marked: int = 0
    purged_user_ids: List[int] = field(default_factory=list)
    failures: List[PartialSweepFailure] = field(default_factory=list)
    failed_passes: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.failed_passes


async def _commit(db: AsyncSession, what: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreFailure(f"{what} failed") from exc


async def soft_delete_user(db: AsyncSession, user_id: int, *, now: datetime) -> User:
    user = await get_visible_user(db, user_id)
    user.deleted = True
    user.deleted_at = now
    await _commit(db, f"soft delete of user {user_id}")
    logger.info("User %s soft-deleted", user_id)
    return user


async def recover_user(db: AsyncSession, user_id: int) -> User:
    # Deliberately bypasses the visibility filter: this is the one path
    # that must see deleted accounts.
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")
    if not user.deleted:
        raise InvalidState("Account is not deleted")

    user.deleted = False
    user.deleted_at = None
    await _commit(db, f"recovery of user {user_id}")
    logger.info("User %s recovered", user_id)
    return user


async def mark_overdue_tasks(session_factory: async_sessionmaker, *, now: datetime) -> int:
    """Set status=overdue on every visible, unfinished task past its due date."""
    async with session_factory() as db:
        try:
            result = await db.execute(
                update(Task)
                .where(Task.due_date < now)
                .where(Task.status.not_in(("completed", "overdue")))
                .where(visible(Task))
                .values(status="overdue")
                .execution_options(synchronize_session=False)
            )
            marked = result.rowcount or 0
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            raise StoreFailure("overdue update failed") from exc
    return marked


async def purge_user(session_factory: async_sessionmaker, user_id: int, *, cutoff: datetime) -> bool:
    """
    Permanently remove one expired account and everything that depends on it.

    Runs as a single transaction: dependents first, then the user row.
    Returns False when the account is no longer eligible (recovered or
    already gone), which makes retries harmless.
    """
    async with session_factory() as db:
        try:
            async with db.begin():
                still_expired = await db.execute(
                    select(User.id)
                    .where(User.id == user_id)
                    .where(User.deleted.is_(True))
                    .where(User.deleted_at < cutoff)
                )
                if still_expired.scalar_one_or_none() is None:
                    return False

                owned_tasks = select(Task.id).where(Task.assigned_to_id == user_id)
                await db.execute(
                    delete(TaskComment)
                    .where(TaskComment.task_id.in_(owned_tasks))
                    .execution_options(synchronize_session=False)
                )
                await db.execute(
                    update(TaskComment)
                    .where(TaskComment.author_id == user_id)
                    .values(author_id=None)
                    .execution_options(synchronize_session=False)
                )
                await db.execute(
                    delete(Task)
                    .where(Task.assigned_to_id == user_id)
                    .execution_options(synchronize_session=False)
                )
                await db.execute(
                    delete(User)
                    .where(User.id == user_id)
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as exc:
            raise StoreFailure(f"purge of user {user_id} failed") from exc
    return True


async def purge_expired_users(
    session_factory: async_sessionmaker,
    *,
    now: datetime,
    grace_period: timedelta,
    concurrency: int = 1,
) -> Tuple[List[int], List[PartialSweepFailure]]:
    cutoff = now - grace_period

    async with session_factory() as db:
        try:
            result = await db.execute(
                select(User.id)
                .where(User.deleted.is_(True))
                .where(User.deleted_at < cutoff)
            )
        except SQLAlchemyError as exc:
            raise StoreFailure("listing expired accounts failed") from exc
        user_ids = list(result.scalars())

    if not user_ids:
        return [], []

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def purge_one(user_id: int):
        async with semaphore:
            try:
                return await purge_user(session_factory, user_id, cutoff=cutoff)
            except Exception as exc:
                logger.error(
                    "Purge of user %s failed; it will be retried on the next sweep",
                    user_id,
                    exc_info=exc,
                )
                return PartialSweepFailure(user_id, exc)

    outcomes = await asyncio.gather(*(purge_one(uid) for uid in user_ids))

    purged: List[int] = []
    failures: List[PartialSweepFailure] = []
    for user_id, outcome in zip(user_ids, outcomes):
        if isinstance(outcome, PartialSweepFailure):
            failures.append(outcome)
        elif outcome:
            purged.append(user_id)
            logger.info("Permanently deleted user %s and associated tasks", user_id)
    return purged, failures


async def run_sweep(
    session_factory: async_sessionmaker,
    *,
    clock: Clock,
    grace_period: timedelta = timedelta(days=30),
    concurrency: int = 1,
) -> SweepReport:
    """
    One maintenance pass. Never raises: each pass is guarded separately so a
    failing overdue update still lets the purge run, and vice versa.
    """
    now = clock.now()
    report = SweepReport(started_at=now)

    try:
        report.overdue_marked = await mark_overdue_tasks(session_factory, now=now)
    except Exception:
        logger.exception("Overdue pass failed")
        report.failed_passes.append("overdue")

    try:
        purged, failures = await purge_expired_users(
            session_factory,
            now=now,
            grace_period=grace_period,
            concurrency=concurrency,
        )
        report.purged_user_ids = purged
        report.failures = failures
    except Exception:
        logger.exception("Purge pass failed")
        report.failed_passes.append("purge")

    logger.info(
        "Sweep finished: %d task(s) marked overdue, %d account(s) purged, %d purge failure(s)",
        report.overdue_marked,
        len(report.purged_user_ids),
        len(report.failures),
    )
    return report
