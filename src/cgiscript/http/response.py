"""
=============================================================================
CGI RESPONSE BUILDER
=============================================================================

Accumulates header lines and body text, then writes them to stdout exactly
once.

=============================================================================
CGI RESPONSE ANATOMY
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       CGI RESPONSE (stdout)                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  ┌─ HEADERS ──────────────────────────────────────────────────────┐ │
    │  │    Set-Cookie: CGISESSID=4f1c...; Path=/\r\n                   │ │
    │  │    Content-Type: text/html; charset=utf-8\r\n                  │ │
    │  │    Status: 500 Internal Server Error\r\n    (optional)         │ │
    │  └─────────────────────────────────────────────────────────────────┘ │
    │  ┌─ EMPTY LINE ───────────────────────────────────────────────────┐ │
    │  │    \r\n                                                         │ │
    │  └─────────────────────────────────────────────────────────────────┘ │
    │  ┌─ BODY ─────────────────────────────────────────────────────────┐ │
    │  │    buffered body, then the extra body passed to finalize()     │ │
    │  └─────────────────────────────────────────────────────────────────┘ │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
TWO STATES, ONE TRANSITION
=============================================================================

        ┌────────────┐   finalize()    ┌─────────────┐
        │  BUILDING  │ ──────────────► │  FINALIZED  │ ──┐ finalize(): no-op
        └────────────┘                 └─────────────┘ ◄─┘ add_header(): dropped
          add_header()
          write()

Once the blank separator line is on the wire, a header cannot be added, so
late headers are dropped instead of corrupting the body. Finalize hooks (the
session save) run on the transition, so they run exactly once no matter
which code path finalized the response.

=============================================================================
"""

from datetime import datetime, timezone
from enum import Enum
from typing import BinaryIO, Callable, List, Optional
import logging

from .status_codes import HTTPStatus


logger = logging.getLogger(__name__)


class ResponseState(Enum):
    BUILDING = "building"
    FINALIZED = "finalized"


def _is_status_line(line: str) -> bool:
    name, sep, _ = line.partition(":")
    return bool(sep) and name.strip().lower() == "status"


class CGIResponse:
    """
    Response accumulated during one CGI request.

    Usage:
        response = CGIResponse(sys.stdout.buffer)
        response.content_type("text/html; charset=utf-8")
        response.on_finalize(save_session)
        response.finalize("<h1>Hello</h1>")
    """

    def __init__(self, stream: BinaryIO):
        """
        Args:
            stream: Binary stream receiving the response (stdout in CGI).
        """
        self._stream = stream
        self._headers: List[str] = []
        self._body: List[str] = []
        self._hooks: List[Callable[[], None]] = []
        self.state = ResponseState.BUILDING
        self.status_code = int(HTTPStatus.OK)
        self.bytes_written = 0

    @property
    def finalized(self) -> bool:
        return self.state is ResponseState.FINALIZED

    @property
    def headers(self) -> List[str]:
        """Header lines buffered so far (without terminators)."""
        return [line[:-2] for line in self._headers]

    # =========================================================================
    # HEADER METHODS
    # =========================================================================

    def add_header(self, line: str) -> None:
        """
        Buffer one raw header line such as "Content-Type: text/plain".

        Any trailing CR/LF is replaced by a single CRLF. A Status line
        replaces the one already buffered. Silently ignored once the
        response has been finalized.
        """
        if self.finalized:
            logger.debug(f"Header dropped after finalize: {line.strip()!r}")
            return

        line = line.rstrip("\r\n")
        if _is_status_line(line):
            code = line.partition(":")[2].strip().split(" ", 1)[0]
            if code.isdigit():
                self.status_code = int(code)
            self._headers = [h for h in self._headers if not _is_status_line(h)]

        self._headers.append(line + "\r\n")

    def header(self, name: str, value: str) -> None:
        self.add_header(f"{name}: {value}")

    def status(self, status: HTTPStatus) -> None:
        """Emit a CGI Status header ("Status: 404 Not Found")."""
        self.add_header(f"Status: {status.header_value}")

    def content_type(self, content_type: str) -> None:
        self.header("Content-Type", content_type)

    def set_cookie(
        self,
        name: str,
        value: str,
        path: str = "/",
        max_age: Optional[int] = None,
        expires: Optional[datetime] = None,
        http_only: bool = False,
    ) -> None:
        """
        Add a Set-Cookie header.

            set_cookie("CGISESSID", "ab12")  →  Set-Cookie: CGISESSID=ab12; Path=/
        """
        parts = [f"{name}={value}"]
        if path:
            parts.append(f"Path={path}")
        if max_age is not None:
            parts.append(f"Max-Age={int(max_age)}")
        if expires is not None:
            parts.append(f"Expires={format_http_date(expires)}")
        if http_only:
            parts.append("HttpOnly")
        self.header("Set-Cookie", "; ".join(parts))

    # =========================================================================
    # BODY METHODS
    # =========================================================================

    def write(self, text: str) -> None:
        """Append text to the buffered body."""
        self._body.append(str(text))

    def on_finalize(self, hook: Callable[[], None]) -> None:
        """Register a callable run once, right after the response is written."""
        self._hooks.append(hook)

    # =========================================================================
    # FINALIZE
    # =========================================================================

    def finalize(self, extra_body: str = "") -> None:
        """
        Write headers, the blank separator, the buffered body and
        `extra_body`, then run the finalize hooks.

        Idempotent: only the first call has any effect.
        """
        if self.finalized:
            return
        self.state = ResponseState.FINALIZED

        payload = "".join(self._headers) + "\r\n" + "".join(self._body) + (extra_body or "")
        data = payload.encode("utf-8")
        try:
            self._stream.write(data)
            self._stream.flush()
            self.bytes_written = len(data)
        finally:
            self._run_hooks()

    def _run_hooks(self) -> None:
        hooks, self._hooks = self._hooks, []
        for hook in hooks:
            try:
                hook()
            except Exception as e:
                logger.error(f"Finalize hook failed: {type(e).__name__}: {e}")


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

_HTML_ESCAPES = {
    ord("&"): "&amp;",
    ord("<"): "&lt;",
    ord(">"): "&gt;",
    ord('"'): "&quot;",
    ord("'"): "&#039;",
}


def html_escape(value) -> str:
    """
    Escape text for safe inclusion in HTML.

    Maps & < > " ' to entities in a single pass and leaves every other
    character alone. Not idempotent: "&amp;" becomes "&amp;amp;".
    Non-string values are converted with str() first.
    """
    return str(value).translate(_HTML_ESCAPES)


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231), used for cookie Expires.

    Example: Wed, 01 Jan 2026 12:00:00 GMT
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)

    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )
