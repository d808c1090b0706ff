import math
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from tasktracker.config import settings
from tasktracker.core.access import get_owned_task, get_visible_task, get_visible_user, visible
from tasktracker.core.auth import get_current_user
from tasktracker.core.clock import Clock, as_utc, get_clock, start_of_day
from tasktracker.core.errors import NotFound
from tasktracker.database import get_db
from tasktracker.models.task import Task, TaskComment
from tasktracker.models.user import User
from tasktracker.schemas.common import ApiResponse
from tasktracker.schemas.task import (
    CommentCreate, Pagination, Status, TaskAssign, TaskCreate,
    TaskPage, TaskResponse, TaskUpdate
)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])

SORT_FIELDS = {
    "created_at": Task.created_at,
    "updated_at": Task.updated_at,
    "due_date": Task.due_date,
    "priority": Task.priority,
    "status": Task.status,
    "title": Task.title,
}

REQUIRED_FIELDS = ("title", "status", "due_date", "category", "priority", "archived")


def check_due_date(due_date: datetime, clock: Clock) -> datetime:
    due = as_utc(due_date)
    if due < start_of_day(clock.now()):
        raise HTTPException(400, "Due date must be today or in the future")
    return due


async def owned_or_404(db: AsyncSession, task_id: int, user: User, action: str) -> Task:
    try:
        return await get_owned_task(db, task_id, user)
    except NotFound:
        raise HTTPException(404, f"Task not found or not authorized to {action}")


@router.get("", response_model=TaskPage)
async def list_tasks(
    status_filter: Optional[Status] = Query(None, alias="status"),
    category: Optional[str] = None,
    due_before: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = "created_at:asc",
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    field, _, order = sort_by.partition(":")
    if field not in SORT_FIELDS or order not in ("", "asc", "desc"):
        raise HTTPException(400, f"Cannot sort by '{sort_by}'")
    column = SORT_FIELDS[field]

    filters = [Task.assigned_to_id == current_user.id, visible(Task)]
    if status_filter:
        filters.append(Task.status == status_filter)
    if category:
        filters.append(Task.category == category)
    if due_before:
        filters.append(Task.due_date <= as_utc(due_before))

    total = (await db.execute(select(func.count(Task.id)).where(*filters))).scalar_one()
    result = await db.execute(
        select(Task)
        .where(*filters)
        .order_by(column.desc() if order == "desc" else column.asc(), Task.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    tasks = result.scalars().all()

    return TaskPage(
        message="Tasks retrieved successfully",
        data=[TaskResponse.model_validate(t) for t in tasks],
        pagination=Pagination(
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        ),
    )


@router.post("", response_model=ApiResponse[TaskResponse], status_code=201)
async def create_task(
    task_in: TaskCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock)
):
    due = check_due_date(task_in.due_date, clock)

    # Tasks are always created for the caller; use /assign to hand over
    task = Task(
        title=task_in.title,
        description=task_in.description,
        status=task_in.status,
        due_date=due,
        category=task_in.category,
        priority=task_in.priority,
        assigned_to_id=current_user.id,
    )
    db.add(task)
    await db.commit()
    task = await get_visible_task(db, task.id)
    return ApiResponse(message="Task created successfully", data=TaskResponse.model_validate(task))


@router.get("/{task_id}", response_model=ApiResponse[TaskResponse])
async def get_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    task = await owned_or_404(db, task_id, current_user, "view")
    return ApiResponse(message="Task retrieved successfully", data=TaskResponse.model_validate(task))


@router.put("/{task_id}", response_model=ApiResponse[TaskResponse])
async def update_task(
    task_id: int,
    task_in: TaskUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock)
):
    task = await owned_or_404(db, task_id, current_user, "update")

    changes = task_in.model_dump(exclude_unset=True)
    for name in REQUIRED_FIELDS:
        if name in changes and changes[name] is None:
            raise HTTPException(400, f"{name} cannot be null")
    if "due_date" in changes:
        changes["due_date"] = check_due_date(changes["due_date"], clock)

    for name, value in changes.items():
        setattr(task, name, value)
    db.add(task)
    await db.commit()
    task = await get_visible_task(db, task.id)
    return ApiResponse(message="Task updated successfully", data=TaskResponse.model_validate(task))


@router.delete("/{task_id}", response_model=ApiResponse)
async def delete_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    # Tasks have no soft-delete path: the row and its comments go
    task = await owned_or_404(db, task_id, current_user, "delete")
    await db.delete(task)
    await db.commit()
    return ApiResponse(message="Task deleted successfully")


@router.post("/{task_id}/comments", response_model=ApiResponse[TaskResponse], status_code=201)
async def add_comment(
    task_id: int,
    comment_in: CommentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        task = await get_visible_task(db, task_id)
    except NotFound:
        raise HTTPException(404, "Task not found")

    db.add(TaskComment(task_id=task.id, author_id=current_user.id, comment=comment_in.comment))
    await db.commit()
    task = await get_visible_task(db, task_id)
    return ApiResponse(message="Comment added successfully", data=TaskResponse.model_validate(task))


@router.put("/{task_id}/assign", response_model=ApiResponse[TaskResponse])
async def assign_task(
    task_id: int,
    assign_in: TaskAssign,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    task = await owned_or_404(db, task_id, current_user, "assign")

    if settings.VALIDATE_ASSIGNEE:
        try:
            await get_visible_user(db, assign_in.user_id)
        except NotFound:
            raise HTTPException(400, "Assigned user not found")

    task.assigned_to_id = assign_in.user_id
    db.add(task)
    try:
        await db.commit()
    except IntegrityError:
        # Without validation the foreign key still rejects unknown ids
        await db.rollback()
        raise HTTPException(400, "Assigned user not found")

    task = await get_visible_task(db, task_id)
    return ApiResponse(message="Task assigned successfully", data=TaskResponse.model_validate(task))
