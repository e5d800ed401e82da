from __future__ import annotations

import os
import tempfile
from typing import Callable, List, Optional

from .constants import CHUNK_SIZE, TEMP_SUFFIX
from .errors import TempStorageError
from .reader import iter_chunks


_LEGACY_STRIDE = 16


def _xor_table(bit: int) -> bytes:
    if not 0 <= bit <= 0xFF:
        raise ValueError("Obfuscation key must be a single byte (0..255)")
    return bytes(b ^ bit for b in range(256))


def xor_bytes(data: bytes, bit: int, *, legacy_stride: bool = False) -> bytes:
    """XOR every byte of ``data`` with ``bit``.

    With ``legacy_stride`` the older client's loop is reproduced: it walked
    16 bytes per step but touched 17 indices, so offsets that are non-zero
    multiples of 16 were toggled twice and come out unchanged.
    """
    out = data.translate(_xor_table(bit))
    if not legacy_stride or len(data) <= _LEGACY_STRIDE:
        return out
    buf = bytearray(out)
    for i in range(_LEGACY_STRIDE, len(buf), _LEGACY_STRIDE):
        buf[i] = data[i]
    return bytes(buf)


def temp_path_for(job_id: str, tempdir: Optional[str] = None) -> str:
    return os.path.join(tempdir or tempfile.gettempdir(), f"{job_id}{TEMP_SUFFIX}")


def toggle_xor(
    data: bytes,
    bit: int,
    *,
    job_id: str,
    chunk_size: int = CHUNK_SIZE,
    tempdir: Optional[str] = None,
    legacy_stride: bool = False,
    on_progress: Optional[Callable[[int, int], None]] = None,
) -> bytes:
    """Apply the XOR pass by spilling ``data`` to ``<tempdir>/<job_id>.tmp``.

    The caller must drop its own reference to ``data`` for the spill to lower
    peak memory; the pipeline does so by handing the buffer over. The temp
    file is re-read in ``chunk_size`` pieces and always removed.

    Legacy stride offsets are relative to each chunk, which matches the
    older client only for the default 256 KiB chunk size.

    Raises:
        TempStorageError: the spill file cannot be written, read or removed.
    """
    table = _xor_table(bit)
    tmp = temp_path_for(job_id, tempdir)
    total = len(data)
    processed = 0
    parts: List[bytes] = []
    try:
        try:
            with open(tmp, "wb") as fh:
                fh.write(data)
        except OSError as exc:
            raise TempStorageError(f"cannot write temp file {tmp}: {exc}") from exc
        del data

        if on_progress:
            on_progress(total, 0)
        try:
            with open(tmp, "rb") as fh:
                for chunk in iter_chunks(fh, chunk_size):
                    if legacy_stride:
                        parts.append(xor_bytes(chunk, bit, legacy_stride=True))
                    else:
                        parts.append(chunk.translate(table))
                    processed += len(chunk)
                    if on_progress:
                        on_progress(total, processed)
        except OSError as exc:
            raise TempStorageError(f"cannot read temp file {tmp}: {exc}") from exc
    finally:
        _remove_temp(tmp)
    return b"".join(parts)


def _remove_temp(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        raise TempStorageError(f"cannot remove temp file {path}: {exc}") from exc
