"""Presentation model and its generation status lifecycle."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text

from funnel_presentations.db.database import Base
from funnel_presentations.db.models.base import generate_uuid


class PresentationStatus(StrEnum):
    GENERATING = "generating"
    COMPLETED = "completed"
    DRAFT = "draft"  # Stopped early with >= 1 usable slide; resumable
    FAILED = "failed"  # Stopped with zero usable slides


# Valid state transitions. ``None`` is a record that does not exist yet.
# generating -> generating is the resume path after a dropped connection.
VALID_TRANSITIONS: dict[PresentationStatus | None, set[PresentationStatus]] = {
    None: {PresentationStatus.GENERATING},
    PresentationStatus.GENERATING: {
        PresentationStatus.COMPLETED,
        PresentationStatus.DRAFT,
        PresentationStatus.FAILED,
        PresentationStatus.GENERATING,
    },
    PresentationStatus.DRAFT: {PresentationStatus.GENERATING},
    PresentationStatus.FAILED: {PresentationStatus.GENERATING},
    PresentationStatus.COMPLETED: set(),  # Terminal state
}


def can_transition(current: str | None, target: str) -> bool:
    """Check a status change against VALID_TRANSITIONS."""
    try:
        from_status = PresentationStatus(current) if current is not None else None
        to_status = PresentationStatus(target)
    except ValueError:
        return False
    return to_status in VALID_TRANSITIONS.get(from_status, set())


class Presentation(Base):
    """A generation job and its output.

    ``slides`` holds camelCase slide dicts in slide-number order and only
    grows during a run. ``total_expected_slides`` is a hint; older rows may
    not have it.
    """

    __tablename__ = "presentations"
    __table_args__ = (Index("idx_presentations_project_status", "funnel_project_id", "status"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    funnel_project_id = Column(
        String, ForeignKey("funnel_projects.id", ondelete="CASCADE"), nullable=False
    )
    deck_structure_id = Column(
        String, ForeignKey("deck_structures.id", ondelete="SET NULL"), nullable=True
    )
    title = Column(String, nullable=False, default="Untitled Presentation")
    customization = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default=PresentationStatus.GENERATING.value)
    slides = Column(JSON, nullable=False, default=list)
    generation_progress = Column(Integer, nullable=False, default=0)
    total_expected_slides = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
