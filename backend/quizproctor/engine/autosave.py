import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ..core.config import settings
from ..core.exceptions import AutosaveError
from ..utils.timezone import utc_now
from .guard import StopGuard

logger = logging.getLogger(__name__)


class AutosaveManager:
    """Buffers answer edits and syncs them to the session store.

    Edits land in the local buffer immediately. At most one debounced flush
    is pending at a time; a later edit never postpones it. Only keys changed
    since the last successful flush are sent, and flushes never overlap.
    """

    def __init__(
        self,
        backend,
        session_id: str,
        initial_answers: Optional[Dict[str, Any]] = None,
        interval_seconds: Optional[float] = None,
        guard: Optional[StopGuard] = None,
        on_saved: Optional[Callable[[datetime], None]] = None,
    ):
        self.backend = backend
        self.session_id = session_id
        self.interval_seconds = settings.autosave_interval_seconds if interval_seconds is None else interval_seconds
        self._answers: Dict[str, Any] = dict(initial_answers or {})
        self._dirty: set = set()
        self._guard = guard or StopGuard()
        self._on_saved = on_saved
        self._pending: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._sealed = False
        self.last_saved_at: Optional[datetime] = None
        self.last_error: Optional[Exception] = None

    @property
    def answers(self) -> Dict[str, Any]:
        return dict(self._answers)

    @property
    def dirty(self) -> bool:
        return bool(self._dirty)

    @property
    def has_pending_flush(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def set_answer(self, question_id: str, value: Any) -> bool:
        """Record an edit; returns False once the buffer is sealed or stopped"""
        if self._sealed or self._guard.stopped:
            logger.info(f"Ignoring answer for {question_id}: session {self.session_id} no longer accepts edits")
            return False
        self._answers[question_id] = value
        self._dirty.add(question_id)
        self._schedule()
        return True

    def _schedule(self) -> None:
        if self.has_pending_flush or self._guard.stopped:
            return
        self._pending = asyncio.create_task(self._delayed_flush())

    async def _delayed_flush(self) -> None:
        await asyncio.sleep(self.interval_seconds)
        self._pending = None
        if self._guard.stopped:
            return
        try:
            await self._flush()
        except Exception as e:
            self.last_error = e
            logger.warning(f"Autosave for session {self.session_id} failed, retrying next cycle: {e}")
            if self._dirty:
                self._schedule()

    async def _flush(self) -> None:
        async with self._lock:
            if not self._dirty:
                return
            snapshot = {key: self._answers[key] for key in self._dirty}
            await self.backend.save_answers(self.session_id, snapshot)
            for key, value in snapshot.items():
                # Keys edited again while the request was in flight stay dirty
                if self._answers.get(key) == value:
                    self._dirty.discard(key)
            self.last_saved_at = utc_now()
            self.last_error = None
            logger.info(f"Saved {len(snapshot)} answer(s) for session {self.session_id}")
        if self._on_saved:
            self._on_saved(self.last_saved_at)

    async def flush(self) -> None:
        """Forced save: cancels the pending debounce and raises AutosaveError on failure"""
        self._cancel_pending()
        try:
            await self._flush()
        except Exception as e:
            self.last_error = e
            logger.error(f"Manual save for session {self.session_id} failed: {e}")
            raise AutosaveError(f"Could not save answers: {e}") from e

    def seal(self) -> None:
        self._sealed = True

    def unseal(self) -> None:
        self._sealed = False
        if self._dirty:
            self._schedule()

    def _cancel_pending(self) -> None:
        task, self._pending = self._pending, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def stop(self) -> None:
        self._cancel_pending()
