"""
Cookie-keyed session persistence.

    store = SessionStore(FileSessionStorage("/var/lib/cgiscript/sessions"))
    session, session_id = store.load(request.cookies.get("CGISESSID"), response)
    ...
    store.save(session_id, session)
"""

from .store import (
    FileSessionStorage,
    MemorySessionStorage,
    Session,
    SessionStorage,
    SessionStore,
    generate_session_id,
    is_valid_session_id,
)

__all__ = [
    "FileSessionStorage",
    "MemorySessionStorage",
    "Session",
    "SessionStorage",
    "SessionStore",
    "generate_session_id",
    "is_valid_session_id",
]
