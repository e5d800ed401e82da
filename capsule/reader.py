from __future__ import annotations

import os
from typing import Callable, Iterator, List, Optional

from .constants import CHUNK_SIZE
from .errors import FileAccessError


ProgressCallback = Callable[[int, int], None]


def iter_chunks(fh, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield successive reads of at most ``chunk_size`` bytes from ``fh``."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    while True:
        chunk = fh.read(chunk_size)
        if not chunk:
            return
        yield chunk


def read_file(
    path: str,
    *,
    chunk_size: int = CHUNK_SIZE,
    on_progress: Optional[ProgressCallback] = None,
) -> bytes:
    """Stream ``path`` into memory, reporting ``(total, loaded)`` per chunk.

    ``on_progress(total, 0)`` fires once the file is open, then once after
    every chunk. The empty read that ends the stream is not reported, so
    ``loaded == total`` is seen exactly once, on the last chunk.

    Raises:
        FileAccessError: the file cannot be opened or a read fails.
    """
    parts: List[bytes] = []
    loaded = 0
    try:
        with open(path, "rb") as fh:
            total = os.fstat(fh.fileno()).st_size
            if on_progress:
                on_progress(total, 0)
            for chunk in iter_chunks(fh, chunk_size):
                parts.append(chunk)
                loaded += len(chunk)
                if on_progress:
                    on_progress(total, loaded)
    except OSError as exc:
        raise FileAccessError(exc.strerror or str(exc)) from exc
    return b"".join(parts)
