"""
=============================================================================
ERROR PAGES
=============================================================================

HTML bodies sent when a request cannot be answered normally.

    ┌──────────────────────────┬────────────────────────────────────────────┐
    │ Page                     │ Shown                                      │
    ├──────────────────────────┼────────────────────────────────────────────┤
    │ generic_error_page()     │ any 500 outside diagnostic mode            │
    │ render_error_page()      │ 413, missing script, internal failures     │
    │ render_diagnostic_report │ template failure in diagnostic mode        │
    └──────────────────────────┴────────────────────────────────────────────┘

Every piece of text that can come from the request or the template is
passed through html_escape(), including the template's own source.

=============================================================================
SECURITY CONSIDERATIONS
=============================================================================

The diagnostic report shows the template source, the traceback (with
server file paths) and the partial output. It must only be enabled on
development hosts, or behind allow_debug_param on hosts where "?debug=1"
is acceptable.

=============================================================================
"""

from typing import Optional

from ..core.executor import ScriptExecutionError
from ..http.response import html_escape


GENERIC_MESSAGE = "The server encountered an error while processing this request."


def render_error_page(title: str, message: str) -> str:
    """Minimal HTML error page. Both arguments are escaped."""
    return f"""<!DOCTYPE html>
<html>
<head>
    <title>{html_escape(title)}</title>
    <style>
        body {{ font-family: sans-serif; padding: 20px; }}
        h1 {{ color: #b00; }}
    </style>
</head>
<body>
    <h1>{html_escape(title)}</h1>
    <p>{html_escape(message)}</p>
</body>
</html>
"""


def generic_error_page() -> str:
    """500 page that reveals nothing about the failure."""
    return render_error_page("Internal Server Error", GENERIC_MESSAGE)


def render_source_listing(source: str, highlight: Optional[int] = None) -> str:
    """
    Line-numbered, escaped listing of a template.

    The line equal to `highlight` gets a red background.
    """
    rows = []
    for number, text in enumerate(source.splitlines(), start=1):
        style = ' style="background: #fee;"' if number == highlight else ""
        rows.append(f'<div{style}><span class="ln">{number:4d}</span>  {html_escape(text)}</div>')
    return "\n".join(rows)


def render_diagnostic_report(error: ScriptExecutionError) -> str:
    """
    Full developer report for a failed template: message, traceback,
    output produced before the failure and the annotated source.
    """
    location = html_escape(error.compiled.filename)
    if error.line is not None:
        location += f", line {error.line}"

    return f"""<!DOCTYPE html>
<html>
<head>
    <title>Script Error</title>
    <style>
        body {{ font-family: sans-serif; padding: 20px; }}
        h1 {{ color: #b00; }}
        pre {{ background: #f6f6f6; padding: 10px; overflow-x: auto; }}
        .source {{ font-family: monospace; white-space: pre; background: #f6f6f6; padding: 10px; }}
        .ln {{ color: #999; }}
    </style>
</head>
<body>
    <h1>Script Error</h1>
    <p>{location}</p>
    <pre><b>{html_escape(error.message)}</b></pre>
    <h2>Traceback</h2>
    <pre>{html_escape(error.trace)}</pre>
    <h2>Output before the error</h2>
    <pre>{html_escape(error.partial_output)}</pre>
    <h2>Source</h2>
    <div class="source">
{render_source_listing(error.compiled.source, error.line)}
    </div>
</body>
</html>
"""
