from __future__ import annotations

import os
import tempfile
from typing import Iterator, Optional, Protocol

from .constants import SEALED_SUFFIX, TEMP_SUFFIX
from .errors import FileAccessError


EXISTS_POLICIES = ("rename", "overwrite", "skip", "fail")


class Saver(Protocol):
    def save(self, suggested_filename: str, data: bytes) -> Optional[str]:
        """Persist ``data``; return the chosen path, or None if cancelled."""
        ...


def sealed_filename(source_path: str) -> str:
    """``report.final.pdf`` -> ``report.enc``; the extension is sniffed back on unseal."""
    base = os.path.basename(source_path)
    stem = base.split(".")[0] or base
    return stem + SEALED_SUFFIX


def unsealed_filename(source_path: str, ext: Optional[str] = None) -> str:
    base = os.path.basename(source_path)
    if base.lower().endswith(SEALED_SUFFIX) and len(base) > len(SEALED_SUFFIX):
        base = base[: -len(SEALED_SUFFIX)]
    if ext:
        ext = ext.lstrip(".")
        if not base.lower().endswith("." + ext.lower()):
            base = f"{base}.{ext}"
    return base


def candidate_paths(path: str) -> Iterator[str]:
    """Yield ``path``, then ``name (1).ext``, ``name (2).ext``, ..."""
    yield path
    base_dir = os.path.dirname(path)
    root, ext = os.path.splitext(os.path.basename(path))
    i = 1
    while True:
        yield os.path.join(base_dir, f"{root} ({i}){ext}")
        i += 1


def _discard(path: Optional[str]) -> None:
    if path is None:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


class DirectorySaver:
    """Write artifacts into ``outdir``.

    ``exists`` decides what happens when the target name is taken:
    rename (append `` (n)``), overwrite, skip (returns None, like a cancelled
    save dialog) or fail (raises FileAccessError).

    Data is first written to a temp file beside the target and only moved
    onto the final name once complete. Except under ``overwrite``, the final
    name is claimed with an exclusive create, so concurrent jobs saving the
    same name never end up sharing one path.
    """

    def __init__(self, outdir: str = ".", *, exists: str = "rename"):
        if exists not in EXISTS_POLICIES:
            raise ValueError(f"unknown exists policy: {exists}")
        self.outdir = outdir
        self.exists = exists

    def _write(self, fh, data: bytes) -> None:
        fh.write(data)

    def _stage(self, dst: str, data: bytes) -> str:
        fd, tmp = tempfile.mkstemp(prefix=".capsule-", suffix=TEMP_SUFFIX, dir=os.path.dirname(dst))
        try:
            with os.fdopen(fd, "wb") as fh:
                self._write(fh, data)
                fh.flush()
                os.fsync(fh.fileno())
        except OSError:
            _discard(tmp)
            raise
        return tmp

    def _claim(self, dst: str) -> Optional[str]:
        for candidate in candidate_paths(dst):
            try:
                with open(candidate, "xb"):
                    pass
                return candidate
            except FileExistsError:
                if os.path.isdir(candidate) and not os.path.islink(candidate):
                    raise FileAccessError(f"Cannot overwrite directory with file: {candidate}")
                if self.exists == "skip":
                    return None
                if self.exists == "fail":
                    raise FileAccessError(f"Destination exists: {candidate}")

    def save(self, suggested_filename: str, data: bytes) -> Optional[str]:
        os.makedirs(self.outdir or ".", exist_ok=True)
        dst = os.path.join(self.outdir or ".", suggested_filename)
        if self.exists == "overwrite" and os.path.isdir(dst) and not os.path.islink(dst):
            raise FileAccessError(f"Cannot overwrite directory with file: {dst}")
        tmp: Optional[str] = self._stage(dst, data)
        claimed: Optional[str] = None
        try:
            if self.exists == "overwrite":
                final = dst
            else:
                claimed = self._claim(dst)
                if claimed is None:
                    return None
                final = claimed
            os.replace(tmp, final)
            tmp = claimed = None
            return final
        finally:
            _discard(tmp)
            _discard(claimed)
