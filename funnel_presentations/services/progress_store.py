"""Progress Store Adapter.

Persists generated slides one at a time while a stream is running. Each
append opens its own session in a worker thread, so database latency never
blocks event delivery. Failures are logged and never propagate.
"""

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from funnel_presentations.db.database import SessionLocal
from funnel_presentations.db.repositories import PresentationRepository

logger = logging.getLogger(__name__)


class ProgressStore:
    """Atomic per-slide checkpointing for presentations."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending: dict[str, set[asyncio.Task]] = {}

    def _lock_for(self, presentation_id: str) -> asyncio.Lock:
        lock = self._locks.get(presentation_id)
        if lock is None:
            lock = self._locks[presentation_id] = asyncio.Lock()
        return lock

    def _append_sync(self, presentation_id: str, slide: dict, progress: int) -> bool:
        db = self.session_factory()
        try:
            presentation = PresentationRepository(db).append_slide(presentation_id, slide, progress)
            if presentation is None:
                db.rollback()
                return False
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def append_slide(self, presentation_id: str, slide: dict, progress: int) -> bool:
        """Append (or replace) one slide and raise the stored progress.

        Appends for the same presentation are serialized; asyncio.Lock wakes
        waiters in FIFO order, so they land in call order.

        Returns:
            True if the slide was persisted.
        """
        slide_number = slide.get("slideNumber")
        async with self._lock_for(presentation_id):
            try:
                saved = await asyncio.to_thread(self._append_sync, presentation_id, slide, progress)
            except Exception:
                logger.exception(
                    f"Failed to save slide {slide_number} during generation",
                    extra={"presentation_id": presentation_id, "slide_number": slide_number},
                )
                return False

        if not saved:
            logger.warning(
                f"Presentation {presentation_id} missing, slide {slide_number} not saved",
                extra={"presentation_id": presentation_id, "slide_number": slide_number},
            )
            return False

        logger.info(
            f"Slide {slide_number} saved",
            extra={
                "presentation_id": presentation_id,
                "slide_number": slide_number,
                "progress": progress,
                "has_image": bool(slide.get("imageUrl")),
            },
        )
        return True

    def schedule_append(self, presentation_id: str, slide: dict, progress: int) -> asyncio.Task:
        """Persist a slide in a background task without blocking the caller.

        The task is tracked until done so ``flush`` can wait for it.
        """
        task = asyncio.create_task(
            self.append_slide(presentation_id, slide, progress),
            name=f"persist-slide-{presentation_id}-{slide.get('slideNumber')}",
        )
        pending = self._pending.setdefault(presentation_id, set())
        pending.add(task)

        def _on_done(done: asyncio.Task) -> None:
            pending.discard(done)
            if done.cancelled():
                logger.warning(
                    f"Slide {slide.get('slideNumber')} persistence cancelled",
                    extra={"presentation_id": presentation_id, "slide_number": slide.get("slideNumber")},
                )
                return
            error = done.exception()
            if error is not None:
                logger.error(
                    f"Slide persistence task failed: {error}",
                    exc_info=error,
                    extra={"presentation_id": presentation_id, "slide_number": slide.get("slideNumber")},
                )

        task.add_done_callback(_on_done)
        return task

    async def flush(self, presentation_id: str, timeout: float | None = None) -> None:
        """Wait for background appends of ``presentation_id`` to finish."""
        pending = list(self._pending.get(presentation_id, ()))
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(
                f"{len(still_running)} slide writes still running after flush",
                extra={"presentation_id": presentation_id, "pending_writes": len(still_running)},
            )

    def forget(self, presentation_id: str) -> None:
        self._locks.pop(presentation_id, None)
        if not self._pending.get(presentation_id):
            self._pending.pop(presentation_id, None)

    def _read_sync(self, presentation_id: str) -> list[dict]:
        db = self.session_factory()
        try:
            return PresentationRepository(db).persisted_slides(presentation_id)
        finally:
            db.close()

    async def read_slides(self, presentation_id: str) -> list[dict]:
        """Currently persisted slides (empty list if unreadable)."""
        try:
            return await asyncio.to_thread(self._read_sync, presentation_id)
        except Exception:
            logger.exception(
                "Failed to read persisted slides",
                extra={"presentation_id": presentation_id},
            )
            return []
