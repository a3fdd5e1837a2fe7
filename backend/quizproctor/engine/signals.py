"""
Proctoring signal sources.

The detectors themselves (face, tab, window, clipboard) are external; the
engine only sees an initialisation step and a stream of ``ViolationEvent``.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from ..schemas.proctoring import ProctoringConfig, ViolationEvent

logger = logging.getLogger(__name__)

Emit = Callable[[ViolationEvent], None]


class ProctoringSignalSource(ABC):

    @abstractmethod
    async def initialize(self, config: ProctoringConfig) -> Dict[str, Any]:
        """Prepare detectors; return environment data or raise ProctoringInitError"""

    @abstractmethod
    async def start(self, emit: Emit) -> None:
        """Begin delivering events to ``emit``"""

    @abstractmethod
    async def stop(self) -> None: ...


class NullSignalSource(ProctoringSignalSource):
    """Used for quizzes without proctoring"""

    async def initialize(self, config: ProctoringConfig) -> Dict[str, Any]:
        return {}

    async def start(self, emit: Emit) -> None:
        return None

    async def stop(self) -> None:
        return None


class QueueSignalSource(ProctoringSignalSource):
    """Relays events pushed by detectors running outside the engine.

    ``check`` is an optional coroutine run during environment setup; it
    should raise ``ProctoringInitError`` when the environment is unusable.
    """

    def __init__(self, check: Optional[Callable[[ProctoringConfig], Any]] = None):
        self._check = check
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    async def initialize(self, config: ProctoringConfig) -> Dict[str, Any]:
        report = {}
        if self._check is not None:
            report = await self._check(config) or {}
        logger.info("Proctoring environment ready")
        return report

    def push(self, event: ViolationEvent) -> None:
        self._queue.put_nowait(event)

    async def start(self, emit: Emit) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._pump(emit))

    async def _pump(self, emit: Emit) -> None:
        while True:
            event = await self._queue.get()
            try:
                emit(event)
            except Exception as e:
                logger.error(f"Violation handler failed: {e}", exc_info=True)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
