"""
pytest configuration and fixtures.
"""

from typing import Callable, Dict, Optional
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cgiscript import RuntimeConfig


BOUNDARY = "----cgiscriptTestBoundary7MA4YWxk"


def multipart_body(
    fields: Optional[Dict[str, str]] = None,
    files: Optional[Dict[str, tuple]] = None,
    boundary: str = BOUNDARY,
) -> bytes:
    """
    Build a multipart/form-data body.

    `files` maps a field name to (filename, content_type, content bytes).
    """
    out = b""
    for name, value in (fields or {}).items():
        out += (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="{name}"\r\n'
            f"\r\n"
            f"{value}\r\n"
        ).encode("utf-8")
    for name, (filename, content_type, content) in (files or {}).items():
        out += (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'
            f"Content-Type: {content_type}\r\n"
            f"\r\n"
        ).encode("utf-8") + content + b"\r\n"
    return out + f"--{boundary}--\r\n".encode("utf-8")


@pytest.fixture
def build_multipart() -> Callable[..., bytes]:
    """Multipart body builder."""
    return multipart_body


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "uploads"
    directory.mkdir()
    return directory


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "cache"
    directory.mkdir()
    return directory


@pytest.fixture
def session_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "sessions"
    directory.mkdir()
    return directory


@pytest.fixture
def config(tmp_path: Path) -> RuntimeConfig:
    """Runtime configuration with every directory under tmp_path."""
    return RuntimeConfig(
        mode="cached",
        session_dir=str(tmp_path / "sessions"),
        upload_dir=str(tmp_path / "uploads"),
        cache_dir=str(tmp_path / "cache"),
    )


@pytest.fixture
def make_environ() -> Callable[..., Dict[str, str]]:
    """Build a CGI environment; keyword arguments override the defaults."""

    def _make(**overrides: str) -> Dict[str, str]:
        environ = {
            "REQUEST_METHOD": "GET",
            "QUERY_STRING": "",
            "SCRIPT_NAME": "/page.cgs",
            "REMOTE_ADDR": "127.0.0.1",
            "HTTP_USER_AGENT": "pytest",
        }
        environ.update(overrides)
        return environ

    return _make


@pytest.fixture
def write_template(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a template file under tmp_path/www and return its path."""
    root = tmp_path / "www"
    root.mkdir()

    def _write(source: str, name: str = "page.cgs") -> Path:
        path = root / name
        path.write_text(source, encoding="utf-8")
        return path

    return _write
