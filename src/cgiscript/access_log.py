"""
=============================================================================
ACCESS LOG
=============================================================================

One structured entry per CGI request, written after the response has been
flushed.

=============================================================================
LOG FORMATS
=============================================================================

    TEXT (default):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 10.0.0.7 - - [18/Oct/2026:10:55:36 +0000] "GET /cart.cgs" 200 1234  │
    │ 5.21ms cached a1b2c3d4                                              │
    └─────────────────────────────────────────────────────────────────────┘

    JSON:
    ┌─────────────────────────────────────────────────────────────────────┐
    │ {"request_id": "a1b2c3d4", "method": "GET", "script": "/cart.cgs",  │
    │  "status_code": 200, "bytes": 1234, "duration_ms": 5.21,            │
    │  "mode": "cached", ...}                                             │
    └─────────────────────────────────────────────────────────────────────┘

The logger is "cgiscript.access", separate from the module loggers, so it
can be routed or silenced on its own:

    logging.getLogger("cgiscript.access").setLevel(logging.WARNING)

Access entries go to stderr like every other log line. In CGI, stdout is
the response.

=============================================================================
"""

from dataclasses import dataclass
import json
import logging
import time
import uuid


logger = logging.getLogger("cgiscript.access")


def new_request_id() -> str:
    return str(uuid.uuid4())[:8]


@dataclass
class RequestLog:
    """Structured log entry for one request."""

    request_id: str
    method: str
    script: str
    query: str
    client_ip: str
    user_agent: str
    status_code: int
    bytes: int
    duration_ms: float
    mode: str
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "method": self.method,
            "script": self.script,
            "query": self.query,
            "client_ip": self.client_ip,
            "user_agent": self.user_agent,
            "status_code": self.status_code,
            "bytes": self.bytes,
            "duration_ms": round(self.duration_ms, 2),
            "mode": self.mode,
            "timestamp": self.timestamp,
        }

    def to_text(self) -> str:
        """Apache-style line with duration, mode and request id appended."""
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {self.script}" {self.status_code} '
            f'{self.bytes} {self.duration_ms:.2f}ms {self.mode} {self.request_id}'
        )


class AccessLogger:
    """
    Emits RequestLog entries on the "cgiscript.access" logger.

    Args:
        log_format: "text" or "json".
        log_level: Level used for every entry.
    """

    def __init__(self, log_format: str = "text", log_level: int = logging.INFO):
        self.log_format = log_format
        self.log_level = log_level

    def entry(
        self,
        request_id: str,
        method: str,
        script: str,
        query: str,
        client_ip: str,
        user_agent: str,
        status_code: int,
        bytes_written: int,
        duration_ms: float,
        mode: str,
    ) -> RequestLog:
        return RequestLog(
            request_id=request_id,
            method=method or "-",
            script=script or "-",
            query=query,
            client_ip=client_ip or "-",
            user_agent=user_agent or "-",
            status_code=status_code,
            bytes=bytes_written,
            duration_ms=duration_ms,
            mode=mode,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

    def log(self, entry: RequestLog) -> None:
        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(entry.to_dict()))
        else:
            logger.log(self.log_level, entry.to_text())
