"""
=============================================================================
RUNTIME CONFIGURATION
=============================================================================

Every setting of one cgiscript invocation, in one dataclass.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m cgiscript --mode isolated page.cgs              │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── CGISCRIPT_MODE=isolated (e.g. SetEnv in Apache)           │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A CGI program has no startup phase of its own: every request is a fresh
process. Configuration is therefore read and validated on every request,
which costs a few environment lookups.

=============================================================================
INTERVIEW QUESTIONS ABOUT CONFIGURATION
=============================================================================

Q: "Why default to the system temp directory?"
A: "It exists and is writable on every host, so a fresh install works.
   Production deployments should point all three directories somewhere
   persistent and private to the web server user."

Q: "Why is ?debug=1 off unless allow_debug_param is set?"
A: "The diagnostic page prints template source and file paths. Letting
   any visitor switch it on is only acceptable on development hosts."

=============================================================================
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional
import os
import tempfile

from .core.executor import ExecutionMode


_TRUE_VALUES = {"1", "true", "yes", "on"}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("text", "json")


def _default_dir(name: str) -> str:
    return str(Path(tempfile.gettempdir()) / "cgiscript" / name)


def _flag(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in _TRUE_VALUES


@dataclass
class RuntimeConfig:
    """
    Configuration for the CGI runtime.

    Development:
        RuntimeConfig(mode="direct", debug=True, log_level="DEBUG")

    Production:
        RuntimeConfig(
            mode="cached",
            session_dir="/var/lib/cgiscript/sessions",
            upload_dir="/var/lib/cgiscript/uploads",
            cache_dir="/var/cache/cgiscript",
        )
    """

    # ─────────────────────────────────────────────────────────────────────
    # EXECUTION
    # ─────────────────────────────────────────────────────────────────────

    mode: str = ExecutionMode.CACHED.value
    """
    Execution mode: 'direct', 'isolated' or 'cached'.
    direct - shared scope, full builtins, trusted scripts only
    isolated - fresh restricted scope, recompiled every request
    cached - isolated, compiled forms reused until the source changes
    """

    debug: bool = False
    """Show the diagnostic report (source, traceback) when a template fails."""

    allow_debug_param: bool = False
    """Let "?debug=1" in the query string turn on the diagnostic report."""

    # ─────────────────────────────────────────────────────────────────────
    # STORAGE
    # ─────────────────────────────────────────────────────────────────────

    session_dir: str = field(default_factory=lambda: _default_dir("sessions"))
    """Directory holding session_<id>.json files."""

    upload_dir: str = field(default_factory=lambda: _default_dir("uploads"))
    """Directory receiving uploaded files."""

    cache_dir: str = field(default_factory=lambda: _default_dir("cache"))
    """Directory holding compiled template entries."""

    session_cookie: str = "CGISESSID"
    """Name of the cookie carrying the session id."""

    # ─────────────────────────────────────────────────────────────────────
    # REQUEST BODY
    # ─────────────────────────────────────────────────────────────────────

    max_body_size: int = 10 * 1024 * 1024  # 10 MB
    """
    Largest accepted CONTENT_LENGTH in bytes. Larger requests get a 413
    without the body being read.
    """

    read_chunk_size: int = 8192
    """Bytes requested from stdin per read."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "WARNING"
    """
    Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    Logs go to stderr, which most web servers append to their error log.
    """

    log_format: str = "text"
    """Access log format: 'text' or 'json'."""

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RuntimeConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        CGISCRIPT_MODE               direct | isolated | cached (default: cached)
        CGISCRIPT_DEBUG, DEBUG       "1" enables the diagnostic report
        CGISCRIPT_ALLOW_DEBUG_PARAM  "1" honours ?debug=1
        CGISCRIPT_SESSION_DIR        session directory
        CGISCRIPT_UPLOAD_DIR         upload directory
        CGISCRIPT_CACHE_DIR          compilation cache directory
        CGISCRIPT_SESSION_COOKIE     cookie name (default: CGISESSID)
        CGISCRIPT_MAX_BODY_SIZE      bytes (default: 10485760)
        CGISCRIPT_LOG_LEVEL          logging level (default: WARNING)
        CGISCRIPT_LOG_FORMAT         text | json (default: text)

        =====================================================================
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        return cls(
            mode=env.get("CGISCRIPT_MODE", defaults.mode).strip().lower(),
            debug=_flag(env.get("CGISCRIPT_DEBUG")) or _flag(env.get("DEBUG")),
            allow_debug_param=_flag(env.get("CGISCRIPT_ALLOW_DEBUG_PARAM")),
            session_dir=env.get("CGISCRIPT_SESSION_DIR", defaults.session_dir),
            upload_dir=env.get("CGISCRIPT_UPLOAD_DIR", defaults.upload_dir),
            cache_dir=env.get("CGISCRIPT_CACHE_DIR", defaults.cache_dir),
            session_cookie=env.get("CGISCRIPT_SESSION_COOKIE", defaults.session_cookie),
            max_body_size=int(env.get("CGISCRIPT_MAX_BODY_SIZE", defaults.max_body_size)),
            log_level=env.get("CGISCRIPT_LOG_LEVEL", defaults.log_level).upper(),
            log_format=env.get("CGISCRIPT_LOG_FORMAT", defaults.log_format).lower(),
        )

    @property
    def execution_mode(self) -> ExecutionMode:
        return ExecutionMode(self.mode)

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: on the first invalid setting.
        """
        modes = [m.value for m in ExecutionMode]
        if self.mode not in modes:
            raise ValueError(f"Invalid mode: {self.mode!r}. Must be one of {', '.join(modes)}.")

        if self.max_body_size < 0:
            raise ValueError("max_body_size must be >= 0")

        if self.read_chunk_size < 1:
            raise ValueError("read_chunk_size must be >= 1")

        if not self.session_cookie or any(c in self.session_cookie for c in ";=, \t"):
            raise ValueError(f"Invalid session cookie name: {self.session_cookie!r}")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.log_level!r}")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"Invalid log format: {self.log_format!r}. Must be 'text' or 'json'.")

    def ensure_directories(self) -> None:
        """Create the session, upload and cache directories if missing."""
        for directory in (self.session_dir, self.upload_dir, self.cache_dir):
            Path(directory).mkdir(parents=True, exist_ok=True)
