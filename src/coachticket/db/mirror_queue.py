from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MirrorTask:
    name: str
    key: str
    action: Callable[[], Any]


@dataclass(frozen=True)
class MirrorFailure:
    name: str
    key: str
    error: str
    failed_at: str


@dataclass(frozen=True)
class DrainResult:
    processed: int
    failed: int


class MirrorQueue:
    """Bounded queue of best-effort writes to the relational mirror.

    Tasks run only when `drain()` is called, after the authoritative write has
    returned. A failing task is logged, recorded in `failures` and handed to
    `on_error`; it never propagates to the caller.
    """

    def __init__(
        self,
        maxsize: int = 256,
        on_error: Callable[[MirrorFailure], None] | None = None,
    ) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self.maxsize = maxsize
        self.on_error = on_error
        self.failures: list[MirrorFailure] = []
        self.dropped = 0
        self._tasks: deque[MirrorTask] = deque()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, name: str, key: str, action: Callable[[], Any]) -> bool:
        if len(self._tasks) >= self.maxsize:
            self.dropped += 1
            logger.warning("mirror queue full, dropping %s for %s", name, key)
            self._record(MirrorTask(name=name, key=key, action=action), "mirror queue full")
            return False
        self._tasks.append(MirrorTask(name=name, key=key, action=action))
        return True

    def drain(self) -> DrainResult:
        processed = 0
        failed = 0
        while self._tasks:
            task = self._tasks.popleft()
            processed += 1
            try:
                task.action()
            except Exception as exc:
                failed += 1
                logger.warning("mirror write %s failed for %s: %s", task.name, task.key, exc)
                self._record(task, str(exc))
        return DrainResult(processed=processed, failed=failed)

    def _record(self, task: MirrorTask, error: str) -> None:
        failure = MirrorFailure(
            name=task.name,
            key=task.key,
            error=error,
            failed_at=datetime.now(timezone.utc).isoformat(),
        )
        self.failures.append(failure)
        if self.on_error is not None:
            try:
                self.on_error(failure)
            except Exception:
                logger.exception("mirror error callback failed for %s", task.key)
