from __future__ import annotations

from typing import Optional

import zlib

from .constants import DEFAULT_COMPRESSION_LEVEL
from .errors import CompressionError


class Codec:
    """Whole-buffer deflate (zlib container) transform."""

    def __init__(self, level: Optional[int] = None):
        self.level = level

    def compress(self, data: bytes) -> bytes:
        try:
            return zlib.compress(data, self.level if self.level is not None else DEFAULT_COMPRESSION_LEVEL)
        except zlib.error as e:
            raise CompressionError(f"compression failed: {e}") from e

    def decompress(self, data: bytes) -> bytes:
        d = zlib.decompressobj()
        try:
            out = d.decompress(data) + d.flush()
        except zlib.error as e:
            raise CompressionError(f"decompression failed: {e}") from e
        if not d.eof:
            raise CompressionError("decompression failed: truncated stream")
        if d.unused_data:
            raise CompressionError("decompression failed: trailing data after stream end")
        return out
