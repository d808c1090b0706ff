# tasktracker/core/access.py
"""
Visibility rules shared by every handler.

A record with deleted=True is treated as not found by all read and update
paths. The only exception is account recovery, which looks the user up
directly by id.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tasktracker.core.errors import NotFound
from tasktracker.models.task import Task
from tasktracker.models.user import User


def is_visible(entity) -> bool:
    return not entity.deleted


def visible(model):
    """SQL form of is_visible() for use in where clauses."""
    return model.deleted.is_(False)


async def get_visible_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id, visible(User)))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")
    return user


async def get_visible_user_by_email(db: AsyncSession, email: str) -> User:
    result = await db.execute(select(User).where(User.email == email, visible(User)))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")
    return user


async def get_visible_task(db: AsyncSession, task_id: int) -> Task:
    result = await db.execute(
        select(Task)
        .where(Task.id == task_id, visible(Task))
        .execution_options(populate_existing=True)
    )
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFound("Task not found")
    return task


async def get_owned_task(db: AsyncSession, task_id: int, user: User) -> Task:
    """A visible task whose current assignee is `user`."""
    result = await db.execute(
        select(Task)
        .where(Task.id == task_id, Task.assigned_to_id == user.id, visible(Task))
        .execution_options(populate_existing=True)
    )
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFound("Task not found or access denied")
    return task
