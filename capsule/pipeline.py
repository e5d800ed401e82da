from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Tuple, Union

from .codec import Codec
from .constants import (
    CHUNK_SIZE,
    DIGEST_SIZE,
    INDETERMINATE,
    STAGE_AES,
    STAGE_CHECKSUM,
    STAGE_FILE,
    STAGE_XOR,
    STAGE_ZIP,
)
from .encryption import CipherContext
from .errors import FileAccessError, IntegrityError
from .events import CompletedEvent, ErrorEvent, EventSink, ProgressEvent, null_sink
from .hashutil import digest, digests_equal, split_digest
from .obfuscate import toggle_xor
from .reader import read_file
from .sniff import FiletypeSniffer, Sniffer
from .storage import DirectorySaver, Saver, sealed_filename, unsealed_filename
from .telemetry import StageTimings


class State(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    DIGESTING = "digesting"
    COMPRESSING = "compressing"
    DECOMPRESSING = "decompressing"
    CIPHERING = "ciphering"
    OBFUSCATING = "obfuscating"
    VERIFYING = "verifying"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = frozenset({State.COMPLETED, State.CANCELLED, State.FAILED})

SEAL = "seal"
UNSEAL = "unseal"

# Linear state order per direction. CANCELLED and FAILED are handled apart.
FLOWS = {
    SEAL: (
        State.IDLE,
        State.LOADING,
        State.DIGESTING,
        State.COMPRESSING,
        State.CIPHERING,
        State.OBFUSCATING,
        State.PERSISTING,
        State.COMPLETED,
    ),
    UNSEAL: (
        State.IDLE,
        State.LOADING,
        State.OBFUSCATING,
        State.CIPHERING,
        State.DECOMPRESSING,
        State.VERIFYING,
        State.PERSISTING,
        State.COMPLETED,
    ),
}


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class JobDescriptor:
    """Inputs of one pipeline run.

    ``secret`` is only ever hashed into the cipher key; ``bit`` is the
    single-byte XOR key. ``job_id`` correlates events and names the temp file.
    """

    path: str
    secret: Union[bytes, str] = field(repr=False)
    bit: int
    job_id: str = field(default_factory=new_job_id)

    def __post_init__(self) -> None:
        if isinstance(self.secret, str):
            object.__setattr__(self, "secret", self.secret.encode("utf-8"))
        if not isinstance(self.secret, (bytes, bytearray)):
            raise TypeError("secret must be bytes or str")
        if isinstance(self.bit, bool) or not isinstance(self.bit, int) or not 0 <= self.bit <= 0xFF:
            raise ValueError("bit must be an integer in 0..255")
        if not self.job_id or "/" in self.job_id or os.sep in self.job_id:
            raise ValueError("job_id must be a non-empty name without path separators")


class Pipeline:
    """Runs one job through the seal or unseal stage sequence.

    Seal:   load -> digest -> compress -> encrypt(digest || payload) -> xor -> persist
    Unseal: load -> xor -> decrypt -> split digest -> decompress -> verify -> persist

    Every stage hands back a new buffer which replaces the previous one, so
    only one stage ever holds the working data. The buffer is dropped once
    the run ends, whatever the outcome. Exactly one ErrorEvent or
    CompletedEvent reaches the sink, except when the saver declines (returns
    None), which ends the run silently in the CANCELLED state.

    A Pipeline instance runs once.
    """

    def __init__(
        self,
        job: JobDescriptor,
        *,
        sink: EventSink = null_sink,
        saver: Optional[Saver] = None,
        sniffer: Optional[Sniffer] = None,
        chunk_size: int = CHUNK_SIZE,
        compression_level: Optional[int] = None,
        legacy_stride: bool = False,
        tempdir: Optional[str] = None,
    ) -> None:
        self.job = job
        self.sink = sink
        self.saver = saver if saver is not None else DirectorySaver(os.path.dirname(os.path.abspath(job.path)))
        self.sniffer = sniffer if sniffer is not None else FiletypeSniffer()
        self.chunk_size = chunk_size
        self.codec = Codec(compression_level)
        self.legacy_stride = legacy_stride
        self.tempdir = tempdir
        self.timings = StageTimings()
        self.raw_size = 0
        self._cipher = CipherContext.from_secret(job.secret)
        self._buffer: Optional[bytes] = None
        self._state = State.IDLE
        self._flow: Tuple[State, ...] = ()

    @property
    def state(self) -> State:
        return self._state

    @property
    def buffer_released(self) -> bool:
        return self._buffer is None

    # -------- public entry points --------

    def seal(self) -> Optional[CompletedEvent]:
        return self.run(SEAL)

    def unseal(self) -> Optional[CompletedEvent]:
        return self.run(UNSEAL)

    def run(self, direction: str) -> Optional[CompletedEvent]:
        """Execute the job; returns the completion event, or None if the save was cancelled.

        Raises:
            CapsuleError: after the matching ErrorEvent has been emitted.
        """
        if direction not in FLOWS:
            raise ValueError(f"unknown direction: {direction}")
        if self._state is not State.IDLE:
            raise RuntimeError("pipeline has already run")
        self._flow = FLOWS[direction]
        body: Callable[[], Optional[CompletedEvent]] = self._seal if direction == SEAL else self._unseal
        try:
            return body()
        except Exception as exc:
            self._fail(exc)
            raise
        finally:
            self._buffer = None

    # -------- state machine --------

    def _enter(self, new: State) -> None:
        if self._state in TERMINAL_STATES:
            raise RuntimeError(f"illegal transition {self._state.value} -> {new.value}")
        if new in (State.FAILED, State.CANCELLED):
            self._state = new
            return
        pos = self._flow.index(self._state)
        if pos + 1 >= len(self._flow) or self._flow[pos + 1] is not new:
            raise RuntimeError(f"illegal transition {self._state.value} -> {new.value}")
        self._state = new

    def _take(self) -> bytes:
        data = self._buffer
        self._buffer = None
        if data is None:
            raise RuntimeError("working buffer is not loaded")
        return data

    # -------- event helpers --------

    def _progress(self, stage: str, total: int, current: int) -> None:
        self.sink(ProgressEvent(self.job.job_id, stage, total, current))

    def _fail(self, exc: Exception) -> None:
        if self._state in TERMINAL_STATES:
            return
        self._enter(State.FAILED)
        kind = getattr(exc, "kind", "error")
        code = getattr(exc, "code", 0)
        self.sink(ErrorEvent(self.job.job_id, kind, code, str(exc) or exc.__class__.__name__))

    # -------- stages --------

    def _load(self) -> None:
        self._enter(State.LOADING)
        with self.timings.measure(STAGE_FILE):
            self._buffer = read_file(
                self.job.path,
                chunk_size=self.chunk_size,
                on_progress=lambda total, loaded: self._progress(STAGE_FILE, total, loaded),
            )

    def _xor(self) -> None:
        self._enter(State.OBFUSCATING)
        with self.timings.measure(STAGE_XOR):
            self._buffer = toggle_xor(
                self._take(),
                self.job.bit,
                job_id=self.job.job_id,
                chunk_size=self.chunk_size,
                tempdir=self.tempdir,
                legacy_stride=self.legacy_stride,
                on_progress=lambda total, done: self._progress(STAGE_XOR, total, done),
            )

    def _seal(self) -> Optional[CompletedEvent]:
        self._load()
        self.raw_size = len(self._buffer)

        self._enter(State.DIGESTING)
        with self.timings.measure(STAGE_CHECKSUM):
            checksum = digest(self._buffer)

        self._enter(State.COMPRESSING)
        with self.timings.measure(STAGE_ZIP):
            self._progress(STAGE_ZIP, INDETERMINATE, INDETERMINATE)
            self._buffer = self.codec.compress(self._take())
            self._progress(STAGE_ZIP, 1, 1)

        self._enter(State.CIPHERING)
        with self.timings.measure(STAGE_AES):
            self._progress(STAGE_AES, 1, 0)
            self._buffer = self._cipher.encrypt(checksum + self._take())
            self._progress(STAGE_AES, 1, 1)

        self._xor()

        self._enter(State.PERSISTING)
        return self._persist(sealed_filename(self.job.path))

    def _unseal(self) -> Optional[CompletedEvent]:
        self._load()
        self._xor()

        self._enter(State.CIPHERING)
        with self.timings.measure(STAGE_AES):
            self._progress(STAGE_AES, 1, 0)
            self._buffer = self._cipher.decrypt(self._take())
            self._progress(STAGE_AES, 1, 1)

        if len(self._buffer) < DIGEST_SIZE:
            raise IntegrityError("Checksum failed.")
        stored, payload = split_digest(self._take())

        self._enter(State.DECOMPRESSING)
        with self.timings.measure(STAGE_ZIP):
            self._progress(STAGE_ZIP, INDETERMINATE, INDETERMINATE)
            self._buffer = self.codec.decompress(payload)
            self._progress(STAGE_ZIP, 1, 1)
        del payload
        self.raw_size = len(self._buffer)

        self._enter(State.VERIFYING)
        with self.timings.measure(STAGE_CHECKSUM):
            ok = digests_equal(digest(self._buffer), stored)
        if not ok:
            raise IntegrityError("Checksum failed.")

        self._enter(State.PERSISTING)
        ext = self.sniffer.sniff(self._buffer)
        return self._persist(unsealed_filename(self.job.path, ext))

    def _persist(self, filename: str) -> Optional[CompletedEvent]:
        try:
            path = self.saver.save(filename, self._buffer)
        except OSError as exc:
            raise FileAccessError(exc.strerror or str(exc)) from exc
        if path is None:
            self._enter(State.CANCELLED)
            return None
        event = CompletedEvent(
            job_id=self.job.job_id,
            path=path,
            size_before=self.raw_size,
            size_after=len(self._buffer),
            stage_timings=self.timings.snapshot(),
        )
        self._enter(State.COMPLETED)
        self.sink(event)
        return event


def seal_file(job: JobDescriptor, **kwargs) -> Optional[CompletedEvent]:
    return Pipeline(job, **kwargs).seal()


def unseal_file(job: JobDescriptor, **kwargs) -> Optional[CompletedEvent]:
    return Pipeline(job, **kwargs).unseal()


__all__ = [
    "State",
    "SEAL",
    "UNSEAL",
    "JobDescriptor",
    "Pipeline",
    "seal_file",
    "unseal_file",
    "new_job_id",
]
