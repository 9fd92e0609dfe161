from __future__ import annotations

import re
from typing import Dict, List, Optional

_LINE_BREAK = re.compile(r"\r\n|[\r\n]")


class LineFramer:
    """
    Streaming splitter turning arbitrary text chunks into complete lines.

    Terminators are CRLF, a lone CR or a lone LF. A CR that ends a chunk is
    held back until the next chunk arrives, so a CRLF pair split across two
    reads still produces a single line.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._stats: Dict[str, int] = {"lines": 0, "flushed": 0}

    def feed(self, chunk: str) -> List[str]:
        if not chunk:
            return []
        self._buffer += chunk
        if self._buffer.endswith("\r"):
            body, held = self._buffer[:-1], "\r"
        else:
            body, held = self._buffer, ""
        parts = _LINE_BREAK.split(body)
        self._buffer = parts.pop() + held
        self._stats["lines"] += len(parts)
        return parts

    def flush(self) -> Optional[str]:
        """Emit the buffered remainder at end of stream.

        `flushed` counts only unterminated remainders; a held CR already
        terminates its line and counts toward `lines` alone.
        """
        remainder = self._buffer
        self._buffer = ""
        if remainder.endswith("\r"):
            # a trailing CR is a terminator once the stream has ended
            remainder = remainder[:-1]
            self._stats["lines"] += 1
            return remainder
        if not remainder:
            return None
        self._stats["lines"] += 1
        self._stats["flushed"] += 1
        return remainder

    @property
    def pending(self) -> str:
        return self._buffer

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def reset(self) -> None:
        self._buffer = ""
        self._stats = {"lines": 0, "flushed": 0}
