"""Console reporting for import sessions."""

from user_import.reporting.summary import (
    build_errors_table,
    build_preview_table,
    build_result_table,
    describe_reason,
    describe_session_error,
    render_session,
)

__all__ = [
    "describe_reason",
    "describe_session_error",
    "build_preview_table",
    "build_result_table",
    "build_errors_table",
    "render_session",
]
