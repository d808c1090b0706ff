from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean, func
from sqlalchemy.orm import relationship
from tasktracker.database import Base

TASK_STATUSES = ("pending", "in-progress", "completed", "overdue")
TASK_PRIORITIES = ("low", "medium", "high")

class Task(Base):
    __tablename__ = "tasks"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, default="pending", nullable=False)  # pending, in-progress, completed, overdue
    due_date = Column(DateTime(timezone=True), nullable=False)
    category = Column(String, nullable=False)
    priority = Column(String, default="medium", nullable=False)  # low, medium, high
    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    archived = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    comments = relationship(
        "TaskComment",
        order_by="TaskComment.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

class TaskComment(Base):
    __tablename__ = "task_comments"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)  # NULL = author purged
    comment = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
