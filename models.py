from sqlalchemy import Boolean, Column, Integer, String, Date, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone

from enums import RecurrenceEnum

Base = declarative_base()


class Task(Base):
    """A task row: a recurring template, a generated instance or a plain task.

    Templates carry the recurrence definition and `next_due_date`. Instances
    point back at their template through `original_task_id`, a plain column
    with no ORM relationship so that neither row owns the other.
    """
    __tablename__ = "tasks"
    __table_args__ = (
        # At most one instance per template per occurrence date
        UniqueConstraint("original_task_id", "due_date", name="uq_tasks_original_task_due_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default="Other")
    priority = Column(Integer, default=1)
    completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, nullable=True, onupdate=lambda: datetime.now(timezone.utc))
    due_date = Column(Date, nullable=True)

    # Recurrence definition (templates only)
    is_recurring = Column(Boolean, default=False, nullable=False, index=True)
    recurrence_pattern = Column(String(20), default=RecurrenceEnum.NONE.value, nullable=False)
    recurrence_interval = Column(Integer, default=1, nullable=False)
    recurrence_end_date = Column(Date, nullable=True)
    next_due_date = Column(Date, nullable=True, index=True)

    # Weak back-reference from an instance to its template
    original_task_id = Column(Integer, ForeignKey("tasks.id", ondelete="SET NULL"),
                              nullable=True, index=True)


class GenerationLockRow(Base):
    """Holder of the database-backed generation lock. One row per held lock name."""
    __tablename__ = "generation_locks"

    name = Column(String(100), primary_key=True)
    owner = Column(String(64), nullable=False)
    acquired_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
