from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Optional, List, Literal
from tasktracker.core.clock import as_utc

# "overdue" is only ever set by the daily sweep
ClientStatus = Literal["pending", "in-progress", "completed"]
Status = Literal["pending", "in-progress", "completed", "overdue"]
Priority = Literal["low", "medium", "high"]

class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    status: ClientStatus = "pending"
    due_date: datetime
    category: str = Field(..., min_length=1, max_length=100)
    priority: Priority = "medium"

    model_config = {"str_strip_whitespace": True}

class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[ClientStatus] = None
    due_date: Optional[datetime] = None
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    priority: Optional[Priority] = None
    archived: Optional[bool] = None

    # Reassignment has its own endpoint
    model_config = {"str_strip_whitespace": True, "extra": "forbid"}

class TaskAssign(BaseModel):
    user_id: int

class CommentCreate(BaseModel):
    comment: str = Field(..., min_length=1, max_length=2000)

    model_config = {"str_strip_whitespace": True}

class CommentResponse(BaseModel):
    id: int
    author_id: Optional[int]
    comment: str
    created_at: Optional[datetime]

    model_config = {"from_attributes": True}

    @field_validator("created_at")
    @classmethod
    def tag_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else v

class TaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    status: Status
    due_date: datetime
    category: str
    priority: Priority
    assigned_to_id: int
    archived: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    comments: List[CommentResponse] = []

    model_config = {"from_attributes": True}

    # SQLite hands back naive values; they were stored as UTC
    @field_validator("due_date", "created_at", "updated_at")
    @classmethod
    def tag_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else v

class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int

class TaskPage(BaseModel):
    success: bool = True
    message: str
    data: List[TaskResponse]
    pagination: Pagination
