from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union


@dataclass(frozen=True)
class ProgressEvent:
    job_id: str
    stage: str
    total: int
    current: int

    @property
    def indeterminate(self) -> bool:
        return self.total < 0


@dataclass(frozen=True)
class ErrorEvent:
    job_id: str
    kind: str
    code: int
    message: str


@dataclass(frozen=True)
class CompletedEvent:
    job_id: str
    path: str
    size_before: int
    size_after: int
    stage_timings: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        # Shape of the client's "global.finish" payload
        return {
            "uuid": self.job_id,
            "message": None,
            "data": {
                "path": self.path,
                "size": {"before": self.size_before, "after": self.size_after},
                "debug": self.stage_timings,
            },
        }


Event = Union[ProgressEvent, ErrorEvent, CompletedEvent]
EventSink = Callable[[Event], None]


def null_sink(event: Event) -> None:
    return None


class EventRecorder:
    """Thread-safe sink that keeps every event it receives."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: List[Event] = []

    def __call__(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def for_job(self, job_id: str) -> List[Event]:
        with self._lock:
            return [e for e in self.events if e.job_id == job_id]

    def progress(self, job_id: str, stage: Optional[str] = None) -> List[ProgressEvent]:
        return [
            e for e in self.for_job(job_id)
            if isinstance(e, ProgressEvent) and (stage is None or e.stage == stage)
        ]

    def terminal(self, job_id: str) -> List[Union[ErrorEvent, CompletedEvent]]:
        return [e for e in self.for_job(job_id) if isinstance(e, (ErrorEvent, CompletedEvent))]
