"""
=============================================================================
CGI REQUEST CONTEXT
=============================================================================

Turns the CGI environment and stdin into one immutable RequestContext.

=============================================================================
WHERE A CGI REQUEST LIVES
=============================================================================

A CGI program never sees the raw HTTP request. The web server has already
parsed it and hands the pieces over in environment variables:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                 HTTP REQUEST  →  CGI ENVIRONMENT                    │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  POST /shop/cart.pyt?item=42 HTTP/1.1                               │
    │    │     │              │                                            │
    │    │     │              └──► QUERY_STRING    = "item=42"            │
    │    │     └─────────────────► SCRIPT_NAME     = "/shop/cart.pyt"     │
    │    │                         PATH_TRANSLATED = "/srv/www/shop/..."  │
    │    └───────────────────────► REQUEST_METHOD  = "POST"               │
    │                                                                      │
    │  Content-Type: multipart/form-data; boundary=XyZ                    │
    │                          ──────────► CONTENT_TYPE                    │
    │  Content-Length: 1234    ──────────► CONTENT_LENGTH                  │
    │  Cookie: CGISESSID=ab12  ──────────► HTTP_COOKIE                     │
    │                                                                      │
    │  <body bytes>            ──────────► stdin (exactly CONTENT_LENGTH)  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
ONE VALUE, PASSED EXPLICITLY
=============================================================================

Classic CGI libraries expose process-wide mutable globals ($_GET, $_POST,
...). Here the request is a frozen dataclass built once and handed to every
component that needs it. Its mappings are read-only views, so a template
cannot rewrite the request another component is reading.

    query   ─┐
             ├──► fields   (body wins when a key is in both)
    form    ─┘

=============================================================================
INTERVIEW QUESTIONS ABOUT CGI INPUT
=============================================================================

Q: "Why must a CGI script read exactly CONTENT_LENGTH bytes?"
A: "stdin is not guaranteed to hit EOF at the end of the body. Some servers
   keep the pipe open, so reading 'until EOF' can hang forever. The declared
   length is the only reliable end marker."

Q: "How do you protect against huge uploads?"
A: "Check CONTENT_LENGTH against a configured limit before reading a single
   byte and answer 413 Payload Too Large."

=============================================================================
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, BinaryIO, Mapping, Optional, Union
import logging
import os
import time

from .body import BodyParser, FileDescriptor, parse_urlencoded, read_body


logger = logging.getLogger(__name__)


class HTTPParseError(Exception):
    """
    Raised when the request cannot be accepted at all.

    Carries the HTTP status the runtime should answer with (for example
    413 when the declared body exceeds the configured limit). Malformed
    body content never raises: it degrades to partial data.
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def _frozen(mapping: Optional[Mapping[str, Any]] = None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class RequestContext:
    """
    Everything one CGI request carries, parsed.

    =========================================================================
    ATTRIBUTES
    =========================================================================

        query:      QUERY_STRING fields          {"page": "2"}
        form:       body fields                  {"name": "Ada"}
        files:      uploaded files               {"avatar": FileDescriptor}
        fields:     query overlaid with form     (form wins ties)
        server:     environment + metadata       {"REQUEST_METHOD": "GET"}
        cookies:    HTTP_COOKIE pairs            {"CGISESSID": "ab12"}
        body:       raw body bytes as read
        truncated:  stdin ended before CONTENT_LENGTH bytes arrived
        session_id: set once the session has been loaded

    =========================================================================
    """

    query: Mapping[str, str] = field(default_factory=_frozen)
    form: Mapping[str, str] = field(default_factory=_frozen)
    files: Mapping[str, FileDescriptor] = field(default_factory=_frozen)
    fields: Mapping[str, str] = field(default_factory=_frozen)
    server: Mapping[str, str] = field(default_factory=_frozen)
    cookies: Mapping[str, str] = field(default_factory=_frozen)
    body: bytes = field(default=b"", repr=False)
    truncated: bool = False
    session_id: Optional[str] = None

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def method(self) -> str:
        return self.server.get("REQUEST_METHOD", "GET").upper()

    @property
    def content_type(self) -> Optional[str]:
        """Media type without parameters, lowercased ("multipart/form-data")."""
        ct = self.server.get("CONTENT_TYPE", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def content_length(self) -> int:
        """Declared body length; 0 when missing or not a number."""
        return parse_content_length(self.server.get("CONTENT_LENGTH"))

    @property
    def script_path(self) -> Optional[str]:
        """Filesystem path of the template to run."""
        return self.server.get("PATH_TRANSLATED") or self.server.get("SCRIPT_FILENAME") or None

    @property
    def script_name(self) -> str:
        return self.server.get("SCRIPT_NAME", "")

    @property
    def remote_addr(self) -> str:
        return self.server.get("REMOTE_ADDR", "")

    @property
    def user_agent(self) -> str:
        return self.server.get("HTTP_USER_AGENT", "")

    def with_session(self, session_id: str) -> "RequestContext":
        """Return a copy carrying the loaded session identifier."""
        return replace(self, session_id=session_id)


# =============================================================================
# HELPERS
# =============================================================================

def parse_content_length(value: Optional[str]) -> int:
    try:
        return max(int(value or 0), 0)
    except ValueError:
        return 0


def parse_cookies(header: Optional[str]) -> dict[str, str]:
    """
    Parse an HTTP_COOKIE value.

        "a=1; theme=dark; junk; =x" → {"a": "1", "theme": "dark"}

    Entries without "=" or with an empty name or value are ignored.
    """
    cookies: dict[str, str] = {}
    for item in (header or "").split(";"):
        key, _, value = item.strip().partition("=")
        key, value = key.strip(), value.strip()
        if key and value:
            cookies[key] = value
    return cookies


class RequestContextBuilder:
    """
    Builds a RequestContext from a CGI environment and stdin.

    =========================================================================
    BUILD STEPS
    =========================================================================

        1. server  ← copy of environ + REQUEST_TIME, SCRIPT_FILENAME, ...
        2. query   ← QUERY_STRING
        3. cookies ← HTTP_COOKIE
        4. body    ← stdin, exactly CONTENT_LENGTH bytes (413 over limit)
        5. form, files ← BodyParser(body, CONTENT_TYPE)
        6. fields  ← query overlaid with form

    =========================================================================
    """

    def __init__(
        self,
        upload_dir: Optional[Union[str, Path]] = None,
        max_body_size: int = 10 * 1024 * 1024,
        chunk_size: int = 8192,
    ):
        self.max_body_size = max_body_size
        self.chunk_size = chunk_size
        self._body_parser = BodyParser(upload_dir)

    def build(
        self,
        environ: Optional[Mapping[str, str]] = None,
        stdin: Optional[BinaryIO] = None,
    ) -> RequestContext:
        """
        Build the context.

        Raises:
            HTTPParseError: 413 if CONTENT_LENGTH exceeds max_body_size.
        """
        server = self._server_vars(os.environ if environ is None else environ)

        query = parse_urlencoded(server.get("QUERY_STRING", ""))
        cookies = parse_cookies(server.get("HTTP_COOKIE"))

        content_length = parse_content_length(server.get("CONTENT_LENGTH"))
        if content_length > self.max_body_size:
            raise HTTPParseError(
                f"Request body too large: {content_length} bytes",
                status_code=413,
            )

        body, truncated = read_body(stdin, content_length, self.chunk_size)
        parsed = self._body_parser.parse(body, server.get("CONTENT_TYPE"), content_length)

        merged = dict(query)
        merged.update(parsed.fields)

        logger.debug(
            f"{server.get('REQUEST_METHOD', 'GET')} {server.get('SCRIPT_NAME', '')}: "
            f"{len(query)} query, {len(parsed.fields)} form, {len(parsed.files)} files"
        )
        return RequestContext(
            query=_frozen(query),
            form=_frozen(parsed.fields),
            files=_frozen(parsed.files),
            fields=_frozen(merged),
            server=_frozen(server),
            cookies=_frozen(cookies),
            body=body,
            truncated=truncated,
        )

    def _server_vars(self, environ: Mapping[str, str]) -> dict[str, str]:
        server = {key: str(value) for key, value in environ.items()}

        now = time.time()
        server["REQUEST_TIME"] = str(int(now))
        server["REQUEST_TIME_FLOAT"] = f"{now:.6f}"

        script = server.get("PATH_TRANSLATED") or server.get("SCRIPT_FILENAME")
        if script:
            server.setdefault("SCRIPT_FILENAME", script)
            server.setdefault("DOCUMENT_ROOT", os.path.dirname(script))
        return server


# =============================================================================
# CONVENIENCE FUNCTION
# =============================================================================

def build_request_context(
    environ: Optional[Mapping[str, str]] = None,
    stdin: Optional[BinaryIO] = None,
    upload_dir: Optional[Union[str, Path]] = None,
    max_body_size: int = 10 * 1024 * 1024,
) -> RequestContext:
    """Build a RequestContext in one call (see RequestContextBuilder)."""
    builder = RequestContextBuilder(upload_dir=upload_dir, max_body_size=max_body_size)
    return builder.build(environ, stdin)
