"""Forward-only progress tracking for a batch submission."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional


class ProgressStage(Enum):
    PREPARING = "preparing"
    SIGNING = "signing"
    SENDING = "sending"
    CONFIRMING = "confirming"
    DONE = "done"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressStage.DONE, ProgressStage.ERROR)


_RANK = {
    ProgressStage.PREPARING: 0,
    ProgressStage.SIGNING: 1,
    ProgressStage.SENDING: 2,
    ProgressStage.CONFIRMING: 3,
    ProgressStage.DONE: 4,
    ProgressStage.ERROR: 4,
}


@dataclass(frozen=True)
class Progress:
    stage: ProgressStage
    message: Optional[str] = None
    error: Optional[str] = None


ProgressCallback = Callable[[Progress], None]


class ProgressTracker:
    """
    Emits Progress events, refusing backward moves and anything after a
    terminal stage. Repeating the current stage with a new message is
    allowed (e.g. "Executing 2/5").
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.history: List[Progress] = []

    @property
    def stage(self) -> Optional[ProgressStage]:
        return self.history[-1].stage if self.history else None

    def _emit(self, progress: Progress) -> None:
        self.history.append(progress)
        if self.callback is not None:
            self.callback(progress)

    def advance(self, stage: ProgressStage, message: Optional[str] = None) -> bool:
        if stage is ProgressStage.ERROR:
            return self.fail(message or "Error occurred")
        current = self.stage
        if current is not None and (current.is_terminal or stage.rank < current.rank):
            return False
        self._emit(Progress(stage=stage, message=message))
        return True

    def fail(self, error: str) -> bool:
        current = self.stage
        if current is not None and current.is_terminal:
            return False
        self._emit(Progress(stage=ProgressStage.ERROR, error=error))
        return True
