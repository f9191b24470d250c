"""
Response bodies produced by the runtime itself rather than by a template.
"""

from .errors import (
    GENERIC_MESSAGE,
    generic_error_page,
    render_diagnostic_report,
    render_error_page,
    render_source_listing,
)

__all__ = [
    "GENERIC_MESSAGE",
    "generic_error_page",
    "render_diagnostic_report",
    "render_error_page",
    "render_source_listing",
]
