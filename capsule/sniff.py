from __future__ import annotations

from typing import Optional, Protocol

import filetype


class Sniffer(Protocol):
    def sniff(self, data: bytes) -> Optional[str]:
        ...


class FiletypeSniffer:
    """Guess a file extension from magic numbers (``filetype`` library)."""

    def sniff(self, data: bytes) -> Optional[str]:
        if not data:
            return None
        return filetype.guess_extension(data)


class NoSniffer:
    def sniff(self, data: bytes) -> Optional[str]:
        return None
