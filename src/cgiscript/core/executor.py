"""
=============================================================================
SANDBOXED EXECUTOR
=============================================================================

Runs a CompiledTemplate: literals are copied to the output, code segments
are exec()'d in order against a scope of bindings, and only append() (or
print()) produces output.

=============================================================================
EXECUTION MODES
=============================================================================

    ┌──────────┬──────────────────┬─────────────────┬───────────────────────┐
    │ Mode     │ Scope            │ Builtins        │ Compiled form         │
    ├──────────┼──────────────────┼─────────────────┼───────────────────────┤
    │ direct   │ shared, reused   │ all (+ import)  │ compiled per request  │
    │ isolated │ fresh per run    │ SAFE_BUILTINS   │ compiled per request  │
    │ cached   │ fresh per run    │ SAFE_BUILTINS   │ CompilationCache      │
    └──────────┴──────────────────┴─────────────────┴───────────────────────┘

The three modes differ only in data: each ExecutionProfile names its
builtins and ambient facilities, and the executor builds the scope from
that. Direct mode is the unrestricted fast path for trusted scripts; it
can import anything and touch the file system through os.

Restricted builtins limit what a careless template can reach. They are
not a security boundary against hostile code: Python object introspection
can still walk back to unrestricted objects.

=============================================================================
SCOPE OF ONE EXECUTION
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │ __builtins__   profile builtins                                     │
    │ ambient        math, json_dumps, json_loads, datetime, timedelta,   │
    │                (direct only) os, sys                                │
    │ caller         request, query, form, fields, files, server,         │
    │                cookies, session, header, set_cookie                 │
    │ executor       append, print, html_escape, exit, set_timeout,       │
    │                clear_timeout, set_interval, clear_interval          │
    └─────────────────────────────────────────────────────────────────────┘

Later rows win, so a caller binding cannot replace append().

exit(message) appends `message` and ends the template early: remaining
segments and pending timers are skipped and the output so far is the
result. sys.exit() (reachable in direct mode) is not an early exit; it
fails the execution like any other exception.

=============================================================================
INTERVIEW QUESTIONS
=============================================================================

Q: Why compile every segment before running the first one?
A: A SyntaxError anywhere in the template then fails the request before
   any segment has had side effects, and before any output exists.

Q: How do error line numbers match the template?
A: Each segment is compiled with (line - 1) newlines in front of it and the
   template's path as filename, so tracebacks point at template lines.

=============================================================================
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from types import CodeType
from typing import Any, Dict, List, Optional, Tuple, Union
import builtins
import json
import logging
import math
import os
import sys
import time
import traceback

from ..http.response import html_escape
from ..template.cache import CompilationCache
from ..template.compiler import Code, CompiledTemplate, TemplateCompiler
from .timers import TimerQueue


logger = logging.getLogger(__name__)


class ExecutionMode(Enum):
    DIRECT = "direct"
    ISOLATED = "isolated"
    CACHED = "cached"


# =============================================================================
# BINDING TABLES
# =============================================================================

SAFE_BUILTINS = (
    # Values and containers
    "bool", "bytes", "dict", "float", "frozenset", "int", "list", "object",
    "set", "slice", "str", "tuple",
    # Functions
    "abs", "all", "any", "ascii", "bin", "callable", "chr", "divmod",
    "enumerate", "filter", "format", "hash", "hex", "isinstance",
    "issubclass", "iter", "len", "map", "max", "min", "next", "oct", "ord",
    "pow", "range", "repr", "reversed", "round", "sorted", "sum", "zip",
    # Class definitions
    "__build_class__", "classmethod", "property", "staticmethod", "super",
    # Exceptions
    "ArithmeticError", "AssertionError", "AttributeError", "Exception",
    "IndexError", "KeyError", "LookupError", "NameError",
    "NotImplementedError", "RuntimeError", "StopIteration", "TypeError",
    "ValueError", "ZeroDivisionError",
)

AMBIENT_FACILITIES: Dict[str, Any] = {
    "math": math,
    "json_dumps": json.dumps,
    "json_loads": json.loads,
    "datetime": datetime,
    "timedelta": timedelta,
    "os": os,
    "sys": sys,
}

_SANDBOX_AMBIENT = ("math", "json_dumps", "json_loads", "datetime", "timedelta")


@dataclass(frozen=True)
class ExecutionProfile:
    """What a mode exposes to template code."""

    isolated: bool
    """Fresh scope per execution (False: one scope shared by all runs)."""

    cached: bool
    """Compiled forms come from the CompilationCache."""

    builtins: Optional[Tuple[str, ...]]
    """Allowed builtin names, or None for every builtin."""

    ambient: Tuple[str, ...]
    """Names from AMBIENT_FACILITIES placed in scope."""


PROFILES: Dict[ExecutionMode, ExecutionProfile] = {
    ExecutionMode.DIRECT: ExecutionProfile(
        isolated=False, cached=False, builtins=None, ambient=tuple(AMBIENT_FACILITIES),
    ),
    ExecutionMode.ISOLATED: ExecutionProfile(
        isolated=True, cached=False, builtins=SAFE_BUILTINS, ambient=_SANDBOX_AMBIENT,
    ),
    ExecutionMode.CACHED: ExecutionProfile(
        isolated=True, cached=True, builtins=SAFE_BUILTINS, ambient=_SANDBOX_AMBIENT,
    ),
}


def _make_builtins(allowed: Optional[Tuple[str, ...]]) -> Dict[str, Any]:
    if allowed is None:
        return dict(vars(builtins))
    return {name: getattr(builtins, name) for name in allowed}


def request_bindings(request, session, response) -> Dict[str, Any]:
    """
    Bindings describing the current request, for execute()/render().

    header() takes a raw line ("X-Frame-Options: DENY") and set_cookie()
    the same arguments as CGIResponse.set_cookie().
    """
    return {
        "request": request,
        "query": request.query,
        "form": request.form,
        "fields": request.fields,
        "files": request.files,
        "server": request.server,
        "cookies": request.cookies,
        "session": session,
        "header": response.add_header,
        "set_cookie": response.set_cookie,
    }


# =============================================================================
# OUTPUT
# =============================================================================

class OutputBuffer:
    """Collects everything a template emits."""

    def __init__(self):
        self._parts: List[str] = []

    def append(self, text: Any) -> None:
        self._parts.append(str(text))

    def exit(self, message: Any = "") -> None:
        if message:
            self.append(message)
        raise _TemplateExit()

    def print(self, *values: Any, sep: str = " ", end: str = "\n") -> None:
        self.append(sep.join(str(value) for value in values) + end)

    def getvalue(self) -> str:
        return "".join(self._parts)


# =============================================================================
# ERRORS
# =============================================================================

class ScriptExecutionError(Exception):
    """
    A template failed to compile or run.

    Attributes:
        compiled: The template that failed.
        original: The exception raised by the template code.
        partial_output: Everything emitted before the failure.
        trace: Formatted traceback of `original`.
        line: Template line of the failure, when it can be determined.
    """

    def __init__(self, compiled: CompiledTemplate, original: BaseException, partial_output: str = ""):
        self.compiled = compiled
        self.original = original
        self.partial_output = partial_output
        self.trace = "".join(traceback.format_exception(type(original), original, original.__traceback__))
        self.line = _failing_line(compiled.filename, original)
        self.message = f"{type(original).__name__}: {original}"
        super().__init__(self.message)


class _TemplateExit(Exception):
    """Raised by the exit() binding; never leaves execute()."""


def _failing_line(filename: str, error: BaseException) -> Optional[int]:
    if isinstance(error, SyntaxError) and error.filename == filename:
        return error.lineno

    line = None
    for frame in traceback.extract_tb(error.__traceback__):
        if frame.filename == filename:
            line = frame.lineno
    return line


# =============================================================================
# EXECUTOR
# =============================================================================

class SandboxedExecutor:
    """
    Executes compiled templates under one ExecutionMode.

    Usage:
        executor = SandboxedExecutor(ExecutionMode.CACHED, cache=CompilationCache(cache_dir))
        html = executor.render("/srv/www/index.cgs", request_bindings(req, session, resp))
    """

    def __init__(
        self,
        mode: Union[ExecutionMode, str] = ExecutionMode.CACHED,
        cache: Optional[CompilationCache] = None,
        compiler: Optional[TemplateCompiler] = None,
    ):
        self.mode = ExecutionMode(mode)
        self.profile = PROFILES[self.mode]
        self.compiler = compiler or TemplateCompiler()
        if self.profile.cached and cache is None:
            raise ValueError("cached mode requires a CompilationCache")
        self.cache = cache
        self._builtins = _make_builtins(self.profile.builtins)
        self._shared_scope: Optional[Dict[str, Any]] = None

    def render(self, source_path: Union[str, Path], bindings: Optional[Dict[str, Any]] = None) -> str:
        """
        Load the template at `source_path` and execute it.

        Raises:
            OSError: if the template cannot be read.
            ScriptExecutionError: if the template fails.
        """
        if self.profile.cached:
            compiled = self.cache.get(source_path)
        else:
            compiled = self.compiler.compile_file(source_path)
        return self.execute(compiled, bindings)

    def execute(self, compiled: CompiledTemplate, bindings: Optional[Dict[str, Any]] = None) -> str:
        """
        Run `compiled` and return its output.

        Pending timers are drained before returning, unless the template
        called exit().

        Raises:
            ScriptExecutionError: on the first failure, with the output
                produced up to that point.
        """
        output = OutputBuffer()
        timers = TimerQueue()
        scope = self._scope(bindings or {}, output, timers)
        start = time.perf_counter()

        try:
            program = self._compile_segments(compiled)
            for unit in program:
                if isinstance(unit, str):
                    output.append(unit)
                else:
                    exec(unit, scope)
            timers.drain()
        except _TemplateExit:
            logger.debug(f"{compiled.filename} called exit()")
        except (Exception, SystemExit) as e:
            logger.debug(f"{compiled.filename} failed: {type(e).__name__}: {e}")
            raise ScriptExecutionError(compiled, e, output.getvalue()) from e
        finally:
            timers.close()

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"Executed {compiled.filename} in {self.mode.value} mode ({elapsed_ms:.2f}ms)")
        return output.getvalue()

    def _compile_segments(self, compiled: CompiledTemplate) -> List[Union[str, CodeType]]:
        program: List[Union[str, CodeType]] = []
        for seg in compiled.segments:
            if isinstance(seg, Code):
                padded = "\n" * (seg.line - 1) + seg.source
                program.append(compile(padded, compiled.filename, "exec"))
            else:
                program.append(seg.text)
        return program

    def _scope(self, bindings: Dict[str, Any], output: OutputBuffer, timers: TimerQueue) -> Dict[str, Any]:
        if self.profile.isolated:
            scope = self._base_scope()
        else:
            if self._shared_scope is None:
                self._shared_scope = self._base_scope()
            scope = self._shared_scope

        scope.update(bindings)
        scope.update({
            "append": output.append,
            "print": output.print,
            "html_escape": html_escape,
            "exit": output.exit,
            "set_timeout": timers.set_timeout,
            "clear_timeout": timers.clear,
            "set_interval": timers.set_interval,
            "clear_interval": timers.clear,
        })
        return scope

    def _base_scope(self) -> Dict[str, Any]:
        scope: Dict[str, Any] = {"__name__": "__template__", "__builtins__": self._builtins}
        for name in self.profile.ambient:
            scope[name] = AMBIENT_FACILITIES[name]
        return scope
