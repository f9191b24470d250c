"""
=============================================================================
COMPILATION CACHE
=============================================================================

Keeps the compiled form of each template on disk so a template is only
re-parsed when its source changes.

=============================================================================
LOOKUP FLOW
=============================================================================

    get("/srv/www/index.cgs")
          │
          ▼
    stat source ──► st_mtime_ns ─────────────────────────┐
          │                                              │
          ▼                                              ▼
    read <cache_dir>/<sha256(abs path)>.cache.json   entry.mtime_ns >= st_mtime_ns
          │                                              │
          ├── missing / corrupt / stale ──► compile ──► write entry ──► return
          │
          └── valid ─────────────────────────────────────────────────► return

The stamp stored with a fresh entry is the mtime observed BEFORE the source
was read. If the file changes while it is being compiled, the stamp is
older than the new mtime and the next lookup recompiles.

=============================================================================
CONCURRENCY
=============================================================================

Each CGI request is its own process, so two requests may compile the same
template at the same time. Both write a uniquely named temp file and
os.replace() it onto the entry: readers see either the old entry or a
complete new one, and the last writer wins with an equivalent result.

=============================================================================
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union
import hashlib
import json
import logging
import os
import tempfile

from .compiler import CompiledTemplate, TemplateCompiler


logger = logging.getLogger(__name__)


CACHE_SUFFIX = ".cache.json"
CACHE_FORMAT_VERSION = 1


@dataclass
class CacheEntry:
    """One persisted compilation result."""

    source_path: str
    mtime_ns: int
    template: CompiledTemplate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": CACHE_FORMAT_VERSION,
            "source_path": self.source_path,
            "mtime_ns": self.mtime_ns,
            "template": self.template.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        if data.get("version") != CACHE_FORMAT_VERSION:
            raise ValueError(f"Unsupported cache format: {data.get('version')!r}")
        return cls(
            source_path=data["source_path"],
            mtime_ns=int(data["mtime_ns"]),
            template=CompiledTemplate.from_dict(data["template"]),
        )


class CompilationCache:
    """
    mtime-validated on-disk cache of compiled templates.

    Usage:
        cache = CompilationCache("/tmp/cgiscript/cache")
        compiled = cache.get("/srv/www/index.cgs")
        cache.stats()   # {'hits': 0, 'misses': 1}
    """

    def __init__(self, cache_dir: Union[str, Path], compiler: Optional[TemplateCompiler] = None):
        self.cache_dir = Path(cache_dir)
        self.compiler = compiler or TemplateCompiler()
        self.hits = 0
        self.misses = 0

    def cache_path(self, source_path: Union[str, Path]) -> Path:
        """Entry location for a source file: sha256 of its absolute path."""
        key = hashlib.sha256(str(Path(source_path).absolute()).encode("utf-8")).hexdigest()
        return self.cache_dir / f"{key}{CACHE_SUFFIX}"

    def get(self, source_path: Union[str, Path]) -> CompiledTemplate:
        """
        Return the compiled form of `source_path`, compiling when needed.

        Raises:
            FileNotFoundError: if the source does not exist.
            OSError: if the source cannot be read.
        """
        source = Path(source_path).absolute()
        mtime_ns = source.stat().st_mtime_ns

        entry = self._read_entry(source)
        if entry is not None and entry.source_path == str(source) and entry.mtime_ns >= mtime_ns:
            self.hits += 1
            logger.debug(f"Cache hit: {source}")
            return entry.template

        self.misses += 1
        logger.debug(f"Cache miss: {source}")
        template = self.compiler.compile_file(source)
        self._write_entry(CacheEntry(str(source), mtime_ns, template))
        return template

    def stats(self) -> Dict[str, int]:
        return {"hits": self.hits, "misses": self.misses}

    def clear(self) -> int:
        """Remove every entry. Returns the number of files removed."""
        removed = 0
        if not self.cache_dir.is_dir():
            return removed
        for path in self.cache_dir.glob(f"*{CACHE_SUFFIX}"):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                pass
        return removed

    def _read_entry(self, source: Path) -> Optional[CacheEntry]:
        path = self.cache_path(source)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read cache entry {path}: {e}")
            return None

        try:
            return CacheEntry.from_dict(json.loads(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding corrupt cache entry {path}: {e}")
            return None

    def _write_entry(self, entry: CacheEntry) -> None:
        path = self.cache_path(entry.source_path)
        tmp_name = None
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".", suffix=".tmp", dir=self.cache_dir)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(entry.to_dict(), fh)
            os.replace(tmp_name, path)
        except OSError as e:
            logger.warning(f"Could not write cache entry {path}: {e}")
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
