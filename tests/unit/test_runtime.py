"""
Unit tests for the CGI runtime (one full request per test).
"""

import io
import json
import logging
import re

import pytest

from cgiscript.runtime import CGIRuntime, ScriptNotFoundError
from cgiscript.session.store import MemorySessionStorage


def split_response(raw: bytes) -> tuple:
    """Split CGI output into (header lines, body)."""
    head, _, body = raw.decode("utf-8").partition("\r\n\r\n")
    return head.split("\r\n") if head else [], body


def session_cookie(headers: list) -> str:
    for line in headers:
        match = re.match(r"Set-Cookie: CGISESSID=([^;]+); Path=/", line)
        if match:
            return match.group(1)
    raise AssertionError(f"no session cookie in {headers}")


@pytest.fixture
def serve(config, make_environ):
    """Run one request against `path` and return (exit code, headers, body)."""

    def _serve(path=None, storage=None, stdin=b"", runtime_config=None, **environ):
        if path is not None:
            environ.setdefault("PATH_TRANSLATED", str(path))
        stdout = io.BytesIO()
        runtime = CGIRuntime(
            runtime_config or config,
            storage=storage,
            environ=make_environ(**environ),
            stdin=io.BytesIO(stdin),
            stdout=stdout,
        )
        code = runtime.run()
        headers, body = split_response(stdout.getvalue())
        return code, headers, body

    return _serve


class TestSuccessfulRequests:
    """Tests for requests that render normally."""

    def test_renders_template(self, serve, write_template):
        """Test headers and body of a simple page."""
        path = write_template("<h1>Hi</h1><? append(str(1+1)) ?>")

        code, headers, body = serve(path)

        assert code == 0
        assert body == "<h1>Hi</h1>2"
        assert headers[0].startswith("Set-Cookie: CGISESSID=")
        assert headers[1] == "Content-Type: text/html; charset=utf-8"

    @pytest.mark.parametrize("mode", ["direct", "isolated", "cached"])
    def test_every_mode(self, serve, write_template, config, mode):
        """Test that all three modes render the same page."""
        config.mode = mode
        path = write_template("<? append(query.get('name', '?')) ?>")

        _, _, body = serve(path, QUERY_STRING="name=Ada")

        assert body == "Ada"

    def test_post_form(self, serve, write_template):
        """Test that form fields reach the template."""
        path = write_template("<? append(form['a'] + '/' + fields['b']) ?>")
        data = b"a=1&b=2"

        _, _, body = serve(
            path,
            stdin=data,
            REQUEST_METHOD="POST",
            CONTENT_TYPE="application/x-www-form-urlencoded",
            CONTENT_LENGTH=str(len(data)),
        )

        assert body == "1/2"

    def test_upload(self, serve, write_template, build_multipart):
        """Test that an uploaded file is readable from the template."""
        path = write_template(
            "<? f = files['file']\n"
            "append(f'{f.name}:{f.size}:{f.read().decode()}') ?>"
        )
        data = build_multipart(files={"file": ("test.txt", "text/plain", b"hello")})

        _, _, body = serve(
            path,
            stdin=data,
            REQUEST_METHOD="POST",
            CONTENT_TYPE="multipart/form-data; boundary=----cgiscriptTestBoundary7MA4YWxk",
            CONTENT_LENGTH=str(len(data)),
        )

        assert body == "test.txt:5:hello"

    def test_template_headers(self, serve, write_template):
        """Test a redirect set from template code."""
        path = write_template(
            "<? header('Status: 302 Found')\nheader('Location: /next') ?>"
        )

        _, headers, body = serve(path)

        assert "Status: 302 Found" in headers
        assert "Location: /next" in headers
        assert body == ""

    def test_script_filename_fallback(self, serve, write_template):
        """Test that SCRIPT_FILENAME is used without PATH_TRANSLATED."""
        path = write_template("ok")
        _, _, body = serve(SCRIPT_FILENAME=str(path))
        assert body == "ok"

    def test_exit_sends_output_so_far(self, serve, write_template):
        """Test that exit() ends the page with a normal 200 response."""
        path = write_template("head <? exit('bye') ?> never")

        code, headers, body = serve(path)

        assert code == 0
        assert not any(h.startswith("Status:") for h in headers)
        assert body == "head bye"


class TestSessions:
    """Tests for session handling across requests."""

    def test_two_request_flow(self, serve, write_template):
        """Test that the second request sees the first request's session."""
        path = write_template(
            "<? session['visits'] = session.get('visits', 0) + 1\n"
            "append(session['visits']) ?>"
        )

        _, headers, body = serve(path)
        sid = session_cookie(headers)
        assert body == "1"

        _, headers, body = serve(path, HTTP_COOKIE=f"CGISESSID={sid}")
        assert body == "2"
        assert session_cookie(headers) == sid

    def test_session_saved_when_template_fails(self, serve, write_template):
        """Test that finalize still saves the session on an error path."""
        storage = MemorySessionStorage()
        path = write_template("<? session['seen'] = True\nraise RuntimeError('x') ?>")

        _, headers, _ = serve(path, storage=storage)

        sid = session_cookie(headers)
        assert json.loads(storage.records[sid]) == {"seen": True}


class TestErrorResponses:
    """Tests for error status codes and pages."""

    def test_diagnostic_report(self, serve, write_template, config):
        """Test the debug report with the failing line flagged."""
        config.debug = True
        path = write_template("<p>before</p>\n<? raise ValueError('<bad>') ?>\n<p>after</p>")

        code, headers, body = serve(path)

        assert code == 0
        assert "Status: 500 Internal Server Error" in headers
        assert "ValueError: &lt;bad&gt;" in body
        assert '<div style="background: #fee;"><span class="ln">   2</span>' in body
        assert "&lt;p&gt;before&lt;/p&gt;" in body
        assert "Traceback" in body

    def test_generic_page_hides_details(self, serve, write_template):
        """Test that nothing about the failure leaks without debug."""
        path = write_template("<? secret = 'hunter2'\nraise ValueError(secret) ?>")

        _, headers, body = serve(path)

        assert "Status: 500 Internal Server Error" in headers
        assert "hunter2" not in body
        assert "Traceback" not in body
        assert "Internal Server Error" in body

    def test_debug_param_requires_opt_in(self, serve, write_template, config):
        """Test that ?debug=1 is ignored unless allowed."""
        path = write_template("<? raise ValueError('detail') ?>")

        _, _, body = serve(path, QUERY_STRING="debug=1")
        assert "detail" not in body

        config.allow_debug_param = True
        _, _, body = serve(path, QUERY_STRING="debug=1")
        assert "ValueError: detail" in body

    def test_missing_script(self, serve, tmp_path):
        """Test a 500 with a generic message for an absent template."""
        code, headers, body = serve(tmp_path / "absent.cgs")

        assert code == 0
        assert "Status: 500 Internal Server Error" in headers
        assert "absent.cgs" not in body
        assert not any(h.startswith("Set-Cookie") for h in headers)

    def test_no_script_path(self, serve):
        """Test a request that names no template at all."""
        _, headers, _ = serve()
        assert "Status: 500 Internal Server Error" in headers

    def test_directory_is_not_a_script(self, serve, tmp_path):
        """Test that a directory path is treated as missing."""
        _, headers, _ = serve(tmp_path)
        assert "Status: 500 Internal Server Error" in headers

    def test_body_too_large(self, serve, write_template, config):
        """Test the 413 response."""
        config.max_body_size = 10
        path = write_template("never")

        _, headers, body = serve(
            path,
            REQUEST_METHOD="POST",
            CONTENT_TYPE="application/x-www-form-urlencoded",
            CONTENT_LENGTH="11",
        )

        assert "Status: 413 Payload Too Large" in headers
        assert "never" not in body

    def test_unexpected_error_is_escaped(self, serve, write_template, config):
        """Test the outermost handler with an exception outside the template."""

        class ExplodingStorage(MemorySessionStorage):
            def exists(self, session_id):
                raise RuntimeError("<storage down>")

        config.debug = True
        path = write_template("x")

        code, headers, body = serve(path, storage=ExplodingStorage(), HTTP_COOKIE="CGISESSID=" + "a" * 32)

        assert code == 0
        assert "Status: 500 Internal Server Error" in headers
        assert "&lt;storage down&gt;" in body
        assert "<storage down>" not in body

    def test_error_page_content_type_not_duplicated(self, serve, write_template):
        """Test that an execution error keeps a single Content-Type."""
        path = write_template("<? 1 / 0 ?>")
        _, headers, _ = serve(path)
        assert sum(h.startswith("Content-Type") for h in headers) == 1

    def test_error_after_template_status(self, serve, write_template):
        """Test that a failing redirect answers with a single 500 Status line."""
        path = write_template("<? header('Status: 302 Found')\nheader('Location: /x')\n1 / 0 ?>")

        _, headers, _ = serve(path)

        assert [h for h in headers if h.startswith("Status:")] == ["Status: 500 Internal Server Error"]

    def test_sys_exit_is_execution_error(self, serve, write_template, config):
        """Test that sys.exit() in direct mode answers 500 instead of escaping."""
        config.mode = "direct"
        path = write_template("before<? append('x')\nsys.exit(0) ?>after")

        code, headers, body = serve(path)

        assert code == 0
        assert "Status: 500 Internal Server Error" in headers
        assert "Internal Server Error" in body

    def test_partial_output_discarded(self, serve, write_template):
        """Test that output produced before a failure is not sent."""
        path = write_template("visible<? raise ValueError('x') ?>")
        _, _, body = serve(path)
        assert "visible" not in body


class TestRuntimePlumbing:
    """Tests for logging and stream handling."""

    def test_access_log_text(self, serve, write_template, caplog):
        """Test one access entry per request."""
        caplog.set_level(logging.INFO, logger="cgiscript.access")
        path = write_template("hi")

        serve(path, SCRIPT_NAME="/hi.cgs")

        records = [r for r in caplog.records if r.name == "cgiscript.access"]
        assert len(records) == 1
        assert '"GET /hi.cgs" 200' in records[0].getMessage()

    def test_access_log_json(self, serve, write_template, config, caplog):
        """Test the JSON access log format."""
        caplog.set_level(logging.INFO, logger="cgiscript.access")
        config.log_format = "json"
        path = write_template("<? 1 / 0 ?>")

        serve(path)

        record = [r for r in caplog.records if r.name == "cgiscript.access"][0]
        entry = json.loads(record.getMessage())
        assert entry["status_code"] == 500
        assert entry["mode"] == "cached"
        assert entry["bytes"] > 0

    def test_broken_stdout(self, config, make_environ, write_template):
        """Test that a failed write is reported through the exit code."""

        class BrokenStream(io.BytesIO):
            def write(self, data):
                raise BrokenPipeError("client went away")

        path = write_template("x")
        runtime = CGIRuntime(
            config,
            environ=make_environ(PATH_TRANSLATED=str(path)),
            stdin=io.BytesIO(),
            stdout=BrokenStream(),
        )

        assert runtime.run() == 1

    def test_invalid_config_answers_500(self, serve, write_template, config):
        """Test that a bad configuration still produces a response."""
        config.mode = "turbo"
        path = write_template("x")

        _, headers, _ = serve(path)

        assert "Status: 500 Internal Server Error" in headers

    def test_script_not_found_error_message(self):
        """Test the exception text."""
        assert "missing.cgs" in str(ScriptNotFoundError("/srv/missing.cgs"))
