"""
=============================================================================
CGI PROTOCOL LAYER
=============================================================================

Everything between the web server and the template engine:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   environ + stdin ──► body.py ──► request.py ──► RequestContext      │
    │                                                                      │
    │   template output ──► response.py ──► "Header: v\r\n\r\nbody" stdout │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    body.py          urlencoded / multipart decoding, uploads
    request.py       RequestContext, cookies, RequestContextBuilder
    response.py      CGIResponse state machine, html_escape
    status_codes.py  HTTPStatus for the CGI Status header

=============================================================================
"""

from .body import (
    BodyParser,
    FileDescriptor,
    MultipartParser,
    ParsedBody,
    UploadError,
    parse_urlencoded,
    read_body,
    sanitize_filename,
)
from .request import (
    HTTPParseError,
    RequestContext,
    RequestContextBuilder,
    build_request_context,
    parse_cookies,
)
from .response import CGIResponse, ResponseState, format_http_date, html_escape
from .status_codes import HTTPStatus

__all__ = [
    # Body parsing
    "BodyParser",
    "FileDescriptor",
    "MultipartParser",
    "ParsedBody",
    "UploadError",
    "parse_urlencoded",
    "read_body",
    "sanitize_filename",

    # Request context
    "HTTPParseError",
    "RequestContext",
    "RequestContextBuilder",
    "build_request_context",
    "parse_cookies",

    # Response
    "CGIResponse",
    "ResponseState",
    "format_http_date",
    "html_escape",

    # Status codes
    "HTTPStatus",
]
