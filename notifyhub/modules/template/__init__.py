"""Template engine module for notification content rendering."""

from notifyhub.modules.template.engine import (
    STANDARD_ROOTS,
    TemplateEngine,
    TemplateError,
    TemplateValidation,
    build_context,
    extract_variables,
    preview_template,
    render,
    resolve_path,
    validate_template,
)

__all__ = [
    "STANDARD_ROOTS",
    "TemplateEngine",
    "TemplateError",
    "TemplateValidation",
    "build_context",
    "extract_variables",
    "preview_template",
    "render",
    "resolve_path",
    "validate_template",
]
