"""
=============================================================================
REQUEST BODY PARSER
=============================================================================

Decodes the raw bytes a CGI program receives on stdin into form fields and
uploaded files. Two encodings are understood:

    application/x-www-form-urlencoded     name=Ada+Lovelace&lang=en
    multipart/form-data                   parts separated by a boundary

Anything else is left alone: the fields and files stay empty and the raw
bytes remain available on the request context.

=============================================================================
MULTIPART ANATOMY (RFC 7578)
=============================================================================

    Content-Type: multipart/form-data; boundary=XyZ

    ┌─────────────────────────────────────────────────────────────────────┐
    │ --XyZ\r\n                                   ← delimiter             │
    │ Content-Disposition: form-data; name="foo"\r\n                      │
    │ \r\n                                        ← end of part headers   │
    │ bar                                         ← field value           │
    │ \r\n--XyZ\r\n                               ← CRLF + delimiter      │
    │ Content-Disposition: form-data; name="file"; filename="a.png"\r\n   │
    │ Content-Type: image/png\r\n                                         │
    │ \r\n                                                                │
    │ <raw bytes, may contain ANY byte value>                             │
    │ \r\n--XyZ--\r\n                             ← close delimiter       │
    └─────────────────────────────────────────────────────────────────────┘

The CRLF in front of a delimiter belongs to the delimiter, not to the part,
so a file's bytes are exactly what sits between its header block and the
next "\r\n--XyZ".

=============================================================================
WHY SCAN BYTES, NOT TEXT?
=============================================================================

File parts carry arbitrary binary data. Decoding the body to a string and
splitting with a regex corrupts anything that is not valid UTF-8 and can
match delimiters inside multi-byte sequences. The scanner below works on
the bytes buffer with bytes.find() and only decodes the small header blocks.

=============================================================================
INTERVIEW QUESTIONS ABOUT FORM PARSING
=============================================================================

Q: "What happens if the client disconnects halfway through an upload?"
A: "We read until Content-Length or EOF, whichever comes first. Whatever
   arrived is parsed: complete parts are kept, the part that has no closing
   delimiter is dropped. The request context records that the body was
   truncated so the page can decide what to do."

Q: "Why rename uploaded files?"
A: "The client controls the filename. '../../etc/passwd' or 'C:\\boot.ini'
   must never become a path. We keep only the last path component for
   display and store the bytes under a generated, collision-resistant name."

=============================================================================
"""

from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, Optional, Union
from urllib.parse import unquote, unquote_plus
import logging
import re
import secrets
import time


logger = logging.getLogger(__name__)


URLENCODED = "application/x-www-form-urlencoded"
MULTIPART = "multipart/form-data"


class UploadError(IntEnum):
    """Error codes stored on a FileDescriptor (PHP-compatible values)."""

    OK = 0
    CANT_WRITE = 7


@dataclass(frozen=True)
class FileDescriptor:
    """
    One uploaded file.

    Exactly one of `path` (bytes persisted in the upload directory) or
    `content` (bytes kept in memory) is set when `error` is OK. Descriptors
    are never mutated; deleting stored files is left to an external
    cleanup job.
    """

    name: str                           # Sanitized original filename
    content_type: str                   # As declared by the client
    size: int                           # Number of bytes received
    path: Optional[str] = None          # Where the bytes were stored
    content: Optional[bytes] = field(default=None, repr=False)
    error: int = UploadError.OK

    @property
    def ok(self) -> bool:
        return self.error == UploadError.OK

    def read(self) -> bytes:
        """Return the uploaded bytes from whichever storage holds them."""
        if self.content is not None:
            return self.content
        if self.path is None:
            return b""
        return Path(self.path).read_bytes()


@dataclass
class ParsedBody:
    """Result of decoding a request body."""

    fields: Dict[str, str] = field(default_factory=dict)
    files: Dict[str, FileDescriptor] = field(default_factory=dict)


# =============================================================================
# STREAM READING
# =============================================================================

def read_body(
    stream: Optional[BinaryIO],
    content_length: int,
    chunk_size: int = 8192,
) -> tuple[bytes, bool]:
    """
    Read exactly `content_length` bytes from `stream`, chunk by chunk.

    Returns:
        (data, truncated) where `truncated` is True when the stream ended
        before the declared length. Truncation is not an error: the caller
        parses whatever arrived.
    """
    if content_length <= 0:
        return b"", False
    if stream is None:
        logger.warning(f"No input stream for a declared body of {content_length} bytes")
        return b"", True

    chunks = []
    remaining = content_length
    while remaining > 0:
        chunk = stream.read(min(chunk_size, remaining))
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)

    data = b"".join(chunks)
    truncated = remaining > 0
    if truncated:
        logger.warning(
            f"Request body truncated: expected {content_length} bytes, got {len(data)}"
        )
    return data, truncated


# =============================================================================
# URLENCODED
# =============================================================================

def parse_urlencoded(data: Union[str, bytes]) -> Dict[str, str]:
    """
    Decode "a=1&b=two+words&c=%26" into a dict.

    - pairs split on the first "=" (a pair without "=" gets "")
    - "+" decodes to a space, %XX sequences as UTF-8
    - a later duplicate key overwrites an earlier one
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")

    fields: Dict[str, str] = {}
    for pair in data.split("&"):
        if not pair:
            continue
        raw_key, _, raw_value = pair.partition("=")
        key = unquote_plus(raw_key)
        if not key:
            continue
        fields[key] = unquote_plus(raw_value)
    return fields


# =============================================================================
# HEADER PARAMETERS
# =============================================================================

BOUNDARY_PATTERN = re.compile(r'boundary=(?:"([^"]+)"|([^;\s]+))', re.IGNORECASE)
HEADER_PARAM_PATTERN = re.compile(r';\s*([\w*.-]+)\s*=\s*("(?:\\.|[^"\\])*"|[^;]*)')
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def extract_boundary(content_type: str) -> Optional[str]:
    """Return the boundary parameter of a multipart content type."""
    match = BOUNDARY_PATTERN.search(content_type or "")
    if not match:
        return None
    return match.group(1) or match.group(2)


def parse_header_params(value: str) -> Dict[str, str]:
    """
    Parse the parameters of a header such as Content-Disposition.

        'form-data; name="file"; filename="a b.txt"'
        → {"name": "file", "filename": "a b.txt"}

    RFC 5987 "filename*=UTF-8''a%20b.txt" is decoded into "filename" when no
    plain filename is present. A quoted filename keeps its backslashes:
    old browsers send full Windows paths there unescaped.
    """
    params: Dict[str, str] = {}
    for key, raw in HEADER_PARAM_PATTERN.findall(value):
        raw = raw.strip()
        key = key.lower()
        if len(raw) >= 2 and raw[0] == raw[-1] == '"':
            raw = raw[1:-1]
            if key != "filename":
                raw = re.sub(r"\\(.)", r"\1", raw)
        params[key] = raw

    extended = params.pop("filename*", None)
    if extended and "filename" not in params:
        _charset, _, encoded = extended.partition("''")
        params["filename"] = unquote(encoded or extended)
    return params


def sanitize_filename(filename: str) -> str:
    """
    Strip path components and control characters from a client filename.

        "../../etc/passwd"     → "passwd"
        "C:\\Users\\me\\a.txt"  → "a.txt"
        ".."                   → "upload"
    """
    base = re.split(r"[\\/]", filename)[-1]
    base = _CONTROL_CHARS.sub("", base).strip()
    if base in ("", ".", ".."):
        return "upload"
    return base


# =============================================================================
# MULTIPART
# =============================================================================

class MultipartParser:
    """
    Binary-safe multipart/form-data parser.

    Args:
        upload_dir: Directory for uploaded file bytes. When None, file bytes
                    are kept inline on the FileDescriptor instead.
    """

    HEADER_SEPARATOR = b"\r\n\r\n"
    DEFAULT_FILE_TYPE = "application/octet-stream"

    def __init__(self, upload_dir: Optional[Union[str, Path]] = None):
        self.upload_dir = Path(upload_dir) if upload_dir is not None else None

    def parse(self, data: bytes, boundary: str) -> ParsedBody:
        result = ParsedBody()
        for part in self._iter_parts(data, boundary.encode("latin-1")):
            self._handle_part(part, result)
        return result

    def _iter_parts(self, data: bytes, boundary: bytes) -> Iterator[bytes]:
        """
        Yield the raw bytes of every complete part.

            --B\\r\\n <part> \\r\\n--B\\r\\n <part> \\r\\n--B--
              ▲                 ▲
              pos               next delimiter (CRLF included)

        A part with no following delimiter (truncated body) is not yielded.
        """
        delimiter = b"--" + boundary
        start = data.find(delimiter)
        if start == -1:
            return

        pos = start + len(delimiter)
        while True:
            # "--B--" is the close delimiter
            if data[pos:pos + 2] == b"--":
                return

            # Skip transport padding up to the end of the delimiter line
            line_end = data.find(b"\r\n", pos)
            if line_end == -1:
                return
            part_start = line_end + 2

            next_delimiter = data.find(b"\r\n" + delimiter, part_start)
            if next_delimiter == -1:
                logger.debug("Dropping multipart part without closing delimiter")
                return

            yield data[part_start:next_delimiter]
            pos = next_delimiter + 2 + len(delimiter)

    def _handle_part(self, part: bytes, result: ParsedBody) -> None:
        header_end = part.find(self.HEADER_SEPARATOR)
        if header_end == -1:
            logger.debug("Skipping multipart part without header separator")
            return

        headers = self._parse_part_headers(part[:header_end])
        content = part[header_end + len(self.HEADER_SEPARATOR):]

        params = parse_header_params(headers.get("content-disposition", ""))
        name = params.get("name")
        if not name:
            logger.debug("Skipping multipart part without a name")
            return

        filename = params.get("filename")
        if filename:
            content_type = headers.get("content-type", self.DEFAULT_FILE_TYPE)
            result.files[name] = self._store_file(filename, content_type, content)
        else:
            result.fields[name] = content.decode("utf-8", errors="replace")

    def _parse_part_headers(self, raw: bytes) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        for line in raw.decode("utf-8", errors="replace").split("\r\n"):
            name, sep, value = line.partition(":")
            if not sep:
                continue
            headers[name.strip().lower()] = value.strip()
        return headers

    def _store_file(self, filename: str, content_type: str, content: bytes) -> FileDescriptor:
        safe_name = sanitize_filename(filename)

        if self.upload_dir is None:
            return FileDescriptor(
                name=safe_name,
                content_type=content_type,
                size=len(content),
                content=content,
            )

        # Timestamp + random token: unique per write even within one nanosecond
        stored_path = self.upload_dir / f"{time.time_ns()}_{secrets.token_hex(4)}_{safe_name[-100:]}"
        try:
            with open(stored_path, "xb") as fh:
                fh.write(content)
        except OSError as e:
            logger.error(f"Could not store upload {safe_name!r}: {e}")
            return FileDescriptor(
                name=safe_name,
                content_type=content_type,
                size=len(content),
                error=UploadError.CANT_WRITE,
            )

        return FileDescriptor(
            name=safe_name,
            content_type=content_type,
            size=len(content),
            path=str(stored_path),
        )


# =============================================================================
# DISPATCH
# =============================================================================

class BodyParser:
    """
    Chooses the decoder from the declared content type.

    Usage:
        parser = BodyParser(upload_dir="/var/lib/cgiscript/uploads")
        body = parser.parse(raw, "multipart/form-data; boundary=XyZ")
        body.fields["foo"], body.files["file"].path
    """

    def __init__(self, upload_dir: Optional[Union[str, Path]] = None):
        self.upload_dir = upload_dir
        self._multipart = MultipartParser(upload_dir)

    def parse(
        self,
        data: bytes,
        content_type: Optional[str],
        content_length: Optional[int] = None,
    ) -> ParsedBody:
        """
        Decode `data` according to `content_type`.

        Never raises on malformed input: unknown types, a missing boundary
        or broken parts all degrade to empty or partial results.
        """
        if content_length is not None:
            data = data[:content_length]

        content_type = content_type or ""
        media_type = content_type.split(";")[0].strip().lower()

        if media_type == URLENCODED:
            return ParsedBody(fields=parse_urlencoded(data))

        if media_type == MULTIPART:
            boundary = extract_boundary(content_type)
            if not boundary:
                logger.warning("multipart/form-data request without a boundary")
                return ParsedBody()
            return self._multipart.parse(data, boundary)

        return ParsedBody()
