"""
=============================================================================
CGISCRIPT - Server-Side Templates for Plain CGI
=============================================================================

A per-request runtime that lets a web server execute HTML files with
embedded "<? ... ?>" Python blocks, one process per request.

=============================================================================
PROJECT OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       ONE CGI INVOCATION                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   web server ──► environ + stdin                                    │
    │                       │                                              │
    │                       ▼                                              │
    │   1. REQUEST CONTEXT  query, form, files, cookies, server vars      │
    │   2. SESSION          cookie-keyed JSON record                      │
    │   3. TEMPLATE         "<? ?>" blocks → compiled segments (cached)   │
    │   4. EXECUTION        direct / isolated / cached sandbox            │
    │   5. RESPONSE         headers + body, flushed once                  │
    │                       │                                              │
    │                       ▼                                              │
    │   web server ◄── stdout                                             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    cgiscript/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m cgiscript)
    ├── runtime.py           # CGIRuntime, setup_logging
    ├── config.py            # RuntimeConfig dataclass
    ├── access_log.py        # One structured entry per request
    ├── http/                # CGI protocol components
    │   ├── body.py          # urlencoded / multipart parsing, uploads
    │   ├── request.py       # RequestContext and its builder
    │   ├── response.py      # CGIResponse, html_escape
    │   └── status_codes.py  # HTTP status enums
    ├── session/
    │   └── store.py         # SessionStore and storage backends
    ├── template/
    │   ├── compiler.py      # "<? ?>" → CompiledTemplate
    │   └── cache.py         # mtime-validated compilation cache
    ├── core/
    │   ├── executor.py      # SandboxedExecutor, execution modes
    │   └── timers.py        # set_timeout / set_interval
    └── handlers/
        └── errors.py        # Error pages and the diagnostic report

=============================================================================
QUICK START
=============================================================================

    hello.cgs:

        <h1>Hello</h1>
        <? name = query.get("name", "stranger")
           session["visits"] = session.get("visits", 0) + 1
           append(f"<p>{html_escape(name)}, visit {session['visits']}</p>") ?>

    Shell:

        QUERY_STRING="name=Ada" python -m cgiscript hello.cgs

    Code:

        from cgiscript import CGIRuntime, RuntimeConfig
        CGIRuntime(RuntimeConfig(mode="isolated")).run()

=============================================================================
"""

__version__ = "1.0.0"
__author__ = "cgiscript contributors"

from .config import RuntimeConfig
from .core.executor import ExecutionMode, SandboxedExecutor, ScriptExecutionError, request_bindings
from .http.request import HTTPParseError, RequestContext, RequestContextBuilder
from .http.response import CGIResponse, html_escape
from .runtime import CGIRuntime, ScriptNotFoundError, run_cgi, setup_logging
from .session.store import FileSessionStorage, MemorySessionStorage, SessionStore
from .template.cache import CompilationCache
from .template.compiler import CompiledTemplate, TemplateCompiler, compile_template

__all__ = [
    # Runtime
    "CGIRuntime",
    "RuntimeConfig",
    "run_cgi",
    "setup_logging",

    # Errors
    "HTTPParseError",
    "ScriptExecutionError",
    "ScriptNotFoundError",

    # Request / response
    "CGIResponse",
    "RequestContext",
    "RequestContextBuilder",
    "html_escape",

    # Sessions
    "FileSessionStorage",
    "MemorySessionStorage",
    "SessionStore",

    # Templates
    "CompilationCache",
    "CompiledTemplate",
    "ExecutionMode",
    "SandboxedExecutor",
    "TemplateCompiler",
    "compile_template",
    "request_bindings",

    # Version
    "__version__",
]
