"""
Newline framing for NDJSON progress streams
"""

import codecs
import json
from typing import Any, Optional

PARSING_ERROR_STATUS = "parsing_error"


class LineFramer:
    """
    Turns arbitrarily split byte chunks into trimmed text lines.

    Decoding is incremental and lossy: a UTF-8 sequence split across two
    chunks is joined before decoding, and invalid bytes become U+FFFD
    instead of raising. Empty lines are skipped.

    Usage:
        framer = LineFramer()
        for chunk in chunks:
            framer.feed(chunk)
            for line in framer.drain():
                handle(line)
        last = framer.flush_remainder()
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> None:
        """Append a received chunk to the buffer"""
        self._buffer += self._decoder.decode(data)

    def drain(self) -> list[str]:
        """Extract every complete line currently in the buffer"""
        lines = []
        while True:
            pos = self._buffer.find("\n")
            if pos < 0:
                break
            line = self._buffer[:pos].strip()
            self._buffer = self._buffer[pos + 1:]
            if line:
                lines.append(line)
        return lines

    def flush_remainder(self) -> Optional[str]:
        """Return the unterminated tail once the stream has ended"""
        self._buffer += self._decoder.decode(b"", final=True)
        remainder = self._buffer.strip()
        self._buffer = ""
        return remainder or None

    @property
    def pending(self) -> str:
        """Text received but not yet terminated by a newline"""
        return self._buffer


def parse_progress_line(line: str) -> Any:
    """
    Decode one progress line.

    Lines that are not valid JSON are wrapped as
    {"status": "parsing_error", "raw": line} so observers still see them.
    """
    try:
        return json.loads(line)
    except (ValueError, RecursionError):
        # RecursionError: nesting deeper than the decoder can follow
        return {"status": PARSING_ERROR_STATUS, "raw": line}
