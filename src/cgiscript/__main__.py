"""
=============================================================================
CGISCRIPT CLI ENTRY POINT
=============================================================================

Runs one CGI request. Web servers invoke it with the request in the
environment and the body on stdin; it can also be run by hand to render a
template.

=============================================================================
USAGE
=============================================================================

    # As a CGI handler (Apache)
    Action cgiscript /cgi-bin/cgiscript
    AddHandler cgiscript .cgs

    # Render a template from the shell
    python -m cgiscript page.cgs

    # Restricted mode, diagnostic report on failure
    python -m cgiscript page.cgs --mode isolated --debug

    # Simulate a query string
    QUERY_STRING="name=Ada" python -m cgiscript hello.cgs

=============================================================================
"""

from typing import List, Optional
import argparse
import os
import sys

from . import __version__
from .config import LOG_FORMATS, LOG_LEVELS, RuntimeConfig
from .core.executor import ExecutionMode
from .runtime import CGIRuntime, setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cgiscript",
        description="Run a <? ?> template as a CGI request",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m cgiscript page.cgs                      # Render page.cgs
  python -m cgiscript page.cgs --mode direct        # Unrestricted mode
  python -m cgiscript page.cgs --debug              # Diagnostic report on error
  QUERY_STRING="a=1" python -m cgiscript page.cgs   # With query fields

Without a script argument the template is taken from PATH_TRANSLATED or
SCRIPT_FILENAME, as set by the web server.
        """
    )

    parser.add_argument(
        "script",
        nargs="?",
        help="Template to run (sets PATH_TRANSLATED)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # EXECUTION ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--mode", "-m",
        choices=[m.value for m in ExecutionMode],
        help="Execution mode (default: cached, or CGISCRIPT_MODE)"
    )

    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        help="Show the diagnostic report when a template fails"
    )

    # ─────────────────────────────────────────────────────────────────────
    # STORAGE ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--session-dir", help="Session directory")
    parser.add_argument("--upload-dir", help="Upload directory")
    parser.add_argument("--cache-dir", help="Compilation cache directory")

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=LOG_LEVELS,
        type=str.upper,
        help="Logging level (default: WARNING)"
    )

    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        help="Access log format (default: text)"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def config_from_args(args: argparse.Namespace, environ=None) -> RuntimeConfig:
    """Environment configuration with command-line overrides applied."""
    config = RuntimeConfig.from_env(environ)

    if args.mode:
        config.mode = args.mode
    if args.debug:
        config.debug = True
    if args.session_dir:
        config.session_dir = args.session_dir
    if args.upload_dir:
        config.upload_dir = args.upload_dir
    if args.cache_dir:
        config.cache_dir = args.cache_dir
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format

    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, serve the request and return the exit status."""
    args = build_parser().parse_args(argv)

    environ = dict(os.environ)
    if args.script:
        environ["PATH_TRANSLATED"] = os.path.abspath(args.script)
        environ.setdefault("REQUEST_METHOD", "GET")

    try:
        config = config_from_args(args, environ)
        config.validate()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(config)
    return CGIRuntime(config, environ=environ).run()


if __name__ == "__main__":
    sys.exit(main())
