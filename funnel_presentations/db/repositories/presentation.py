"""Presentation repository: status transitions and slide checkpointing."""

import logging
from datetime import datetime

from sqlalchemy import func, select

from funnel_presentations.core.exceptions import InvalidStatusTransition
from funnel_presentations.db.models import Presentation, PresentationStatus, can_transition
from funnel_presentations.db.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


def merge_slide(slides: list[dict] | None, slide: dict) -> list[dict]:
    """Insert ``slide`` by slideNumber, replacing an existing entry with the same number.

    A retried append for the same slide is therefore idempotent and the list
    stays sorted by slide number.
    """
    number = slide.get("slideNumber")
    merged = [s for s in (slides or []) if s.get("slideNumber") != number]
    merged.append(slide)
    merged.sort(key=lambda s: s.get("slideNumber") or 0)
    return merged


class PresentationRepository(BaseRepository[Presentation]):
    model = Presentation

    def get_for_user(self, presentation_id: str, user_id: str) -> Presentation | None:
        return self.get_with_filter(presentation_id, user_id=user_id)

    def count_counted_against_quota(self, project_id: str) -> int:
        """Presentations in a project that count toward the quota (failed ones don't)."""
        stmt = (
            select(func.count())
            .select_from(Presentation)
            .where(
                Presentation.funnel_project_id == project_id,
                Presentation.status != PresentationStatus.FAILED.value,
            )
        )
        return self.db.scalar(stmt) or 0

    def transition(
        self,
        presentation: Presentation,
        target: PresentationStatus,
        **fields,
    ) -> Presentation:
        """Move to ``target`` status, validating against VALID_TRANSITIONS.

        Extra ``fields`` are written verbatim (None values included, so
        ``error_message=None`` clears the column).

        Raises:
            InvalidStatusTransition: If the change is not allowed.
        """
        current = presentation.status
        if not can_transition(current, target):
            raise InvalidStatusTransition(current, target.value)

        presentation.status = target.value
        for key, value in fields.items():
            setattr(presentation, key, value)
        self.db.add(presentation)

        logger.info(
            f"Presentation {presentation.id} status {current} -> {target.value}",
            extra={"presentation_id": presentation.id, "from_status": current, "to_status": target},
        )
        return presentation

    def create_generating(self, **fields) -> Presentation:
        """New presentation row in ``generating`` status with no slides."""
        if not can_transition(None, PresentationStatus.GENERATING):
            raise InvalidStatusTransition(None, PresentationStatus.GENERATING.value)
        presentation = Presentation(
            status=PresentationStatus.GENERATING.value,
            slides=[],
            generation_progress=0,
            **fields,
        )
        return self.add(presentation)

    def append_slide(self, presentation_id: str, slide: dict, progress: int) -> Presentation | None:
        """Targeted read-modify-write of the slide list and progress for one slide.

        The row is selected ``FOR UPDATE`` (a no-op on SQLite, where the
        caller's write transaction serializes instead). Progress never moves
        backwards. Returns None if the presentation is gone.
        """
        stmt = select(Presentation).where(Presentation.id == presentation_id).with_for_update()
        presentation = self.db.scalar(stmt)
        if presentation is None:
            return None

        presentation.slides = merge_slide(presentation.slides, slide)
        clamped = max(0, min(100, int(progress)))
        presentation.generation_progress = max(presentation.generation_progress or 0, clamped)
        presentation.updated_at = datetime.utcnow()
        self.db.add(presentation)
        return presentation

    def persisted_slides(self, presentation_id: str) -> list[dict]:
        """Current persisted slide list (fresh read, bypassing the identity map)."""
        stmt = (
            select(Presentation)
            .where(Presentation.id == presentation_id)
            .execution_options(populate_existing=True)
        )
        presentation = self.db.scalar(stmt)
        if presentation is None:
            return []
        return list(presentation.slides or [])
