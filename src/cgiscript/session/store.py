"""
=============================================================================
SESSION STORE
=============================================================================

Minimal keyed persistence for per-visitor state, carried by a cookie.

=============================================================================
SESSION LIFECYCLE (one CGI request)
=============================================================================

    Cookie: CGISESSID=<id>?
          │
          ▼
    ┌──────────────┐  record exists   ┌──────────────────────────────┐
    │    load()    │ ───────────────► │ Session(id, data from store) │
    │              │                  └──────────────────────────────┘
    │              │  absent/unknown  ┌──────────────────────────────┐
    │              │ ───────────────► │ Session(new id, {}), is_new  │
    └──────┬───────┘                  └──────────────────────────────┘
           │ always: Set-Cookie: CGISESSID=<id>; Path=/
           ▼
      template runs, mutates session freely
           │
           ▼
    ┌──────────────┐
    │    save()    │  once, from the response finalize hook
    └──────────────┘  failures are logged, never raised

=============================================================================
KNOWN LIMITATION: NO LOCKING
=============================================================================

Two concurrent requests with the same cookie both load the same record and
both save it. The last save to finish wins; changes made by the other are
lost. This is accepted: adding cross-process locks would serialize a
visitor's requests.

=============================================================================
"""

from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union
import json
import logging
import os
import re
import secrets
import tempfile
import time


logger = logging.getLogger(__name__)


# Session ids are used in file names, so only this alphabet is accepted
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,128}$")

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(number: int) -> str:
    digits = []
    while True:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
        if number == 0:
            return "".join(reversed(digits))


def generate_session_id() -> str:
    """
    Random component (128 bits) followed by the time in base36 ms.

        "9f86d081884c7d659a2feaa0c55ad015" + "mg3x1k2a"
    """
    return secrets.token_hex(16) + _base36(int(time.time() * 1000))


def is_valid_session_id(value: Optional[str]) -> bool:
    return bool(value) and SESSION_ID_PATTERN.match(value) is not None


class Session(dict):
    """
    Session data: a plain dict with its identifier attached.

        session["visits"] = session.get("visits", 0) + 1
    """

    def __init__(self, session_id: str, data: Optional[Dict[str, Any]] = None, is_new: bool = False):
        super().__init__(data or {})
        self.id = session_id
        self.is_new = is_new

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, data={dict.__repr__(self)}, is_new={self.is_new})"


# =============================================================================
# STORAGE BACKENDS
# =============================================================================

class SessionStorage(Protocol):
    """Contract the store needs from its backend."""

    def exists(self, session_id: str) -> bool: ...

    def read(self, session_id: str) -> str: ...

    def write(self, session_id: str, data: str) -> None: ...


class FileSessionStorage:
    """
    One JSON file per session: <directory>/session_<id>.json

    Writes go to a temp file in the same directory followed by os.replace(),
    so a reader never sees a half-written record.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _path(self, session_id: str) -> Path:
        return self.directory / f"session_{session_id}.json"

    def exists(self, session_id: str) -> bool:
        return self._path(session_id).is_file()

    def read(self, session_id: str) -> str:
        return self._path(session_id).read_text(encoding="utf-8")

    def write(self, session_id: str, data: str) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=f".session_{session_id}.", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(data)
            os.replace(tmp_name, self._path(session_id))
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


class MemorySessionStorage:
    """In-process storage, for embedding and tests."""

    def __init__(self):
        self.records: Dict[str, str] = {}

    def exists(self, session_id: str) -> bool:
        return session_id in self.records

    def read(self, session_id: str) -> str:
        return self.records[session_id]

    def write(self, session_id: str, data: str) -> None:
        self.records[session_id] = data


# =============================================================================
# STORE
# =============================================================================

class SessionStore:
    """
    Loads and saves sessions through a SessionStorage backend.

    Args:
        storage: Backend honoring exists/read/write.
        cookie_name: Cookie carrying the session id.
    """

    def __init__(self, storage: SessionStorage, cookie_name: str = "CGISESSID"):
        self.storage = storage
        self.cookie_name = cookie_name

    def load(self, cookie_value: Optional[str], response) -> tuple[Session, str]:
        """
        Load the session named by `cookie_value`, or start a new one.

        The session cookie is (re)sent on every request, also when an
        existing id is reused.
        """
        session = self._load_existing(cookie_value)
        if session is None:
            session = Session(generate_session_id(), is_new=True)
            logger.debug(f"Started new session {session.id}")

        response.set_cookie(self.cookie_name, session.id, path="/")
        return session, session.id

    def _load_existing(self, cookie_value: Optional[str]) -> Optional[Session]:
        if not cookie_value:
            return None
        if not is_valid_session_id(cookie_value):
            logger.warning("Ignoring malformed session id from cookie")
            return None

        try:
            if not self.storage.exists(cookie_value):
                return None
            data = json.loads(self.storage.read(cookie_value))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not load session {cookie_value}: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Session {cookie_value} is not a mapping, starting over")
            return None
        return Session(cookie_value, data)

    def save(self, session_id: str, session: Dict[str, Any]) -> bool:
        """
        Persist `session` under `session_id`.

        Returns:
            True on success. Failures are logged and reported as False;
            the response has usually been sent already, so losing the
            session must not turn into an error page.
        """
        try:
            data = json.dumps(dict(session))
            self.storage.write(session_id, data)
        except Exception as e:
            logger.error(f"Could not save session {session_id}: {type(e).__name__}: {e}")
            return False
        return True
