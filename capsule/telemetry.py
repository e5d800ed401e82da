from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator

from .constants import STAGES


def _now_ms() -> int:
    return int(time.time() * 1000)


class StageTimings:
    """Per-job table of stage name -> {start, end} in epoch milliseconds.

    Stages that never ran keep zeros. A stage measured again keeps only its
    last run.
    """

    def __init__(self, clock: Callable[[], int] = _now_ms) -> None:
        self._clock = clock
        self._table: Dict[str, Dict[str, int]] = {s: {"start": 0, "end": 0} for s in STAGES}

    def start(self, stage: str) -> None:
        self._table.setdefault(stage, {"start": 0, "end": 0})
        self._table[stage]["start"] = self._clock()
        self._table[stage]["end"] = 0

    def end(self, stage: str) -> None:
        self._table.setdefault(stage, {"start": 0, "end": 0})
        self._table[stage]["end"] = self._clock()

    @contextmanager
    def measure(self, stage: str) -> Iterator[None]:
        self.start(stage)
        yield
        self.end(stage)

    def duration_ms(self, stage: str) -> int:
        t = self._table.get(stage)
        if not t or not t["end"]:
            return 0
        return t["end"] - t["start"]

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        return {k: dict(v) for k, v in self._table.items()}
