"""
=============================================================================
CGI RUNTIME
=============================================================================

Ties the pieces together for one request. A web server starts one process
per request; that process builds a CGIRuntime, calls run() once and exits.

=============================================================================
REQUEST LIFECYCLE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      ONE CGI REQUEST                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. environ + stdin ──► RequestContextBuilder ──► RequestContext   │
    │   2. script path check (PATH_TRANSLATED / SCRIPT_FILENAME)          │
    │   3. SessionStore.load()  ──► Set-Cookie, save hook registered      │
    │   4. Content-Type: text/html; charset=utf-8                         │
    │   5. SandboxedExecutor.render() ──► body                            │
    │   6. finalize() ──► stdout, then the session is saved               │
    │   7. access log entry                                               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
ERROR MAPPING
=============================================================================

    ┌──────────────────────────┬────────┬─────────────────────────────────┐
    │ Exception                │ Status │ Body                            │
    ├──────────────────────────┼────────┼─────────────────────────────────┤
    │ HTTPParseError           │ 4xx    │ error page with the message     │
    │ ScriptNotFoundError      │ 500    │ generic page                    │
    │ ScriptExecutionError     │ 500    │ diagnostic report when debug,   │
    │                          │        │ generic page otherwise          │
    │ any other Exception      │ 500    │ escaped message when debug,     │
    │                          │        │ generic page otherwise          │
    └──────────────────────────┴────────┴─────────────────────────────────┘

Whatever happens, finalize() runs in a finally block, so a response is
always written and the session save hook always fires once.

=============================================================================
"""

from pathlib import Path
from typing import BinaryIO, Mapping, Optional
import logging
import os
import sys
import time

from .access_log import AccessLogger, new_request_id
from .config import RuntimeConfig
from .core.executor import SandboxedExecutor, ScriptExecutionError, request_bindings
from .handlers.errors import generic_error_page, render_diagnostic_report, render_error_page
from .http.request import HTTPParseError, RequestContext, RequestContextBuilder
from .http.response import CGIResponse
from .http.status_codes import HTTPStatus
from .session.store import FileSessionStorage, SessionStorage, SessionStore
from .template.cache import CompilationCache


logger = logging.getLogger(__name__)


HTML_CONTENT_TYPE = "text/html; charset=utf-8"


class ScriptNotFoundError(Exception):
    """The request does not name an existing template file."""

    def __init__(self, path: Optional[str]):
        self.path = path
        super().__init__(f"Script not found: {path or '(no PATH_TRANSLATED or SCRIPT_FILENAME)'}")


def setup_logging(config: RuntimeConfig) -> None:
    """
    Configure logging for the process.

    Everything goes to stderr: stdout carries the HTTP response.
    """
    level = getattr(logging, config.log_level.upper(), logging.WARNING)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    logging.getLogger("cgiscript").setLevel(level)


class CGIRuntime:
    """
    Serves one CGI request.

    Usage:
        config = RuntimeConfig.from_env()
        setup_logging(config)
        sys.exit(CGIRuntime(config).run())

    Args:
        config: Runtime settings (default: from the environment).
        storage: Session backend (default: files in config.session_dir).
        environ: CGI variables (default: os.environ).
        stdin: Binary request body stream (default: sys.stdin.buffer).
        stdout: Binary response stream (default: sys.stdout.buffer).
    """

    def __init__(
        self,
        config: Optional[RuntimeConfig] = None,
        storage: Optional[SessionStorage] = None,
        environ: Optional[Mapping[str, str]] = None,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[BinaryIO] = None,
    ):
        self.environ = os.environ if environ is None else environ
        self.config = config or RuntimeConfig.from_env(self.environ)
        self.stdin = stdin if stdin is not None else sys.stdin.buffer
        self.stdout = stdout if stdout is not None else sys.stdout.buffer

        self.builder = RequestContextBuilder(
            upload_dir=self.config.upload_dir,
            max_body_size=self.config.max_body_size,
            chunk_size=self.config.read_chunk_size,
        )
        self.sessions = SessionStore(
            storage if storage is not None else FileSessionStorage(self.config.session_dir),
            cookie_name=self.config.session_cookie,
        )
        self.cache = CompilationCache(self.config.cache_dir)
        self.access_log = AccessLogger(self.config.log_format)

        self.request: Optional[RequestContext] = None
        self.debug = self.config.debug
        self._executor: Optional[SandboxedExecutor] = None

    @property
    def executor(self) -> SandboxedExecutor:
        if self._executor is None:
            self._executor = SandboxedExecutor(self.config.execution_mode, cache=self.cache)
        return self._executor

    def run(self) -> int:
        """
        Handle the request and write the response.

        Returns:
            Process exit status: 0 once a response has been written,
            1 if stdout could not be written.
        """
        start_time = time.time()
        request_id = new_request_id()
        response = CGIResponse(self.stdout)
        error_body = ""

        try:
            self._serve(response)

        except HTTPParseError as e:
            logger.warning(f"[{request_id}] Bad request: {e}")
            error_body = self._error(response, HTTPStatus(e.status_code), str(e))

        except ScriptNotFoundError as e:
            logger.error(f"[{request_id}] {e}")
            error_body = self._error(response, HTTPStatus.INTERNAL_SERVER_ERROR, str(e))

        except ScriptExecutionError as e:
            location = f"{e.compiled.filename}:{e.line}" if e.line else e.compiled.filename
            logger.error(f"[{request_id}] {location}: {e.message}")
            body = render_diagnostic_report(e) if self.debug else generic_error_page()
            error_body = self._error(response, HTTPStatus.INTERNAL_SERVER_ERROR, body=body)

        except Exception as e:
            logger.exception(f"[{request_id}] Unhandled error: {type(e).__name__}: {e}")
            error_body = self._error(
                response, HTTPStatus.INTERNAL_SERVER_ERROR, f"{type(e).__name__}: {e}"
            )

        finally:
            exit_code = self._finish(response, error_body, request_id, start_time)

        return exit_code

    # =========================================================================
    # REQUEST STEPS
    # =========================================================================

    def _serve(self, response: CGIResponse) -> None:
        self.config.validate()
        self.config.ensure_directories()

        request = self.builder.build(self.environ, self.stdin)
        self.request = request
        self.debug = self.config.debug or (
            self.config.allow_debug_param and request.query.get("debug") == "1"
        )
        script = request.script_path
        if not script or not Path(script).is_file():
            raise ScriptNotFoundError(script)

        session, session_id = self.sessions.load(
            request.cookies.get(self.config.session_cookie), response
        )
        request = request.with_session(session_id)
        self.request = request
        response.on_finalize(lambda: self.sessions.save(session_id, session))

        response.content_type(HTML_CONTENT_TYPE)
        bindings = request_bindings(request, session, response)
        response.write(self.executor.render(script, bindings))

    def _error(
        self,
        response: CGIResponse,
        status: HTTPStatus,
        message: str = "",
        body: Optional[str] = None,
    ) -> str:
        """Set the error status and return the page to send."""
        response.status(status)
        if not any(h.lower().startswith("content-type:") for h in response.headers):
            response.content_type(HTML_CONTENT_TYPE)

        if body is not None:
            return body
        if status == HTTPStatus.INTERNAL_SERVER_ERROR and not self.debug:
            return generic_error_page()
        return render_error_page(status.header_value, message)

    def _finish(self, response: CGIResponse, error_body: str, request_id: str, start_time: float) -> int:
        try:
            response.finalize(error_body)
        except OSError as e:
            logger.error(f"[{request_id}] Could not write response: {e}")
            return 1
        finally:
            self._log_access(response, request_id, start_time)
        return 0

    def _log_access(self, response: CGIResponse, request_id: str, start_time: float) -> None:
        server = self.request.server if self.request is not None else self.environ
        entry = self.access_log.entry(
            request_id=request_id,
            method=server.get("REQUEST_METHOD", ""),
            script=server.get("SCRIPT_NAME") or server.get("PATH_TRANSLATED", ""),
            query=server.get("QUERY_STRING", ""),
            client_ip=server.get("REMOTE_ADDR", ""),
            user_agent=server.get("HTTP_USER_AGENT", ""),
            status_code=response.status_code,
            bytes_written=response.bytes_written,
            duration_ms=(time.time() - start_time) * 1000,
            mode=self.config.mode,
        )
        self.access_log.log(entry)


def run_cgi(
    config: Optional[RuntimeConfig] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> int:
    """Configure logging and serve the current process's request."""
    config = config or RuntimeConfig.from_env(environ)
    setup_logging(config)
    return CGIRuntime(config, environ=environ).run()
