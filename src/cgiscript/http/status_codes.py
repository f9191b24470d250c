"""
=============================================================================
HTTP STATUS CODES FOR CGI RESPONSES
=============================================================================

A CGI program never writes an HTTP status line. The web server writes it,
using the value of the special "Status" header when the script sends one:

    ┌────────────────────────────────────────────────────────────────────┐
    │                 CGI OUTPUT  →  HTTP RESPONSE                       │
    ├────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   Status: 404 Not Found\r\n        HTTP/1.1 404 Not Found\r\n       │
    │   Content-Type: text/html\r\n  ──►  Content-Type: text/html\r\n     │
    │   \r\n                             \r\n                             │
    │   <h1>Missing</h1>                 <h1>Missing</h1>                 │
    │                                                                     │
    │   (no Status header → 200 OK)                                       │
    └────────────────────────────────────────────────────────────────────┘

Only the codes a template runtime realistically emits are listed here.

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes usable in a CGI "Status" header.

        >>> HTTPStatus.NOT_FOUND.header_value
        '404 Not Found'
    """

    # 2xx SUCCESS
    OK = 200
    CREATED = 201
    ACCEPTED = 202
    NO_CONTENT = 204

    # 3xx REDIRECTION
    MOVED_PERMANENTLY = 301
    FOUND = 302
    SEE_OTHER = 303
    NOT_MODIFIED = 304
    TEMPORARY_REDIRECT = 307

    # 4xx CLIENT ERRORS
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    PAYLOAD_TOO_LARGE = 413
    UNSUPPORTED_MEDIA_TYPE = 415

    # 5xx SERVER ERRORS
    INTERNAL_SERVER_ERROR = 500
    NOT_IMPLEMENTED = 501
    SERVICE_UNAVAILABLE = 503

    @property
    def phrase(self) -> str:
        """Reason phrase, e.g. "Not Found"."""
        return _PHRASES.get(self, "Unknown")

    @property
    def header_value(self) -> str:
        """Value for the CGI Status header: "<code> <phrase>"."""
        return f"{int(self)} {self.phrase}"

    @property
    def is_error(self) -> bool:
        return self >= 400


_PHRASES = {
    HTTPStatus.OK: "OK",
    HTTPStatus.CREATED: "Created",
    HTTPStatus.ACCEPTED: "Accepted",
    HTTPStatus.NO_CONTENT: "No Content",
    HTTPStatus.MOVED_PERMANENTLY: "Moved Permanently",
    HTTPStatus.FOUND: "Found",
    HTTPStatus.SEE_OTHER: "See Other",
    HTTPStatus.NOT_MODIFIED: "Not Modified",
    HTTPStatus.TEMPORARY_REDIRECT: "Temporary Redirect",
    HTTPStatus.BAD_REQUEST: "Bad Request",
    HTTPStatus.UNAUTHORIZED: "Unauthorized",
    HTTPStatus.FORBIDDEN: "Forbidden",
    HTTPStatus.NOT_FOUND: "Not Found",
    HTTPStatus.METHOD_NOT_ALLOWED: "Method Not Allowed",
    HTTPStatus.PAYLOAD_TOO_LARGE: "Payload Too Large",
    HTTPStatus.UNSUPPORTED_MEDIA_TYPE: "Unsupported Media Type",
    HTTPStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
    HTTPStatus.NOT_IMPLEMENTED: "Not Implemented",
    HTTPStatus.SERVICE_UNAVAILABLE: "Service Unavailable",
}
