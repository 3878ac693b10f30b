"""Error taxonomy for the report template engine.

Content-authoring errors (ValidationError, MinimumSectionError,
UniquenessError) are handled at the point of the user action.
Infrastructure errors (NotFoundError, TemplatePermissionError,
TransportError) bubble up to a page-level error with a retry action.
"""

from __future__ import annotations


class TemplateError(Exception):
    """Base class for every error raised by the template engine."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TemplateError):
    """One or more sections failed the HTML structural checks.

    ``errors`` maps section id -> list of human-readable reasons.
    """

    def __init__(self, errors: dict[str, list[str]]):
        self.errors = errors
        count = len(errors)
        noun = "section" if count == 1 else "sections"
        super().__init__(f"{count} {noun} failed validation")


class MinimumSectionError(TemplateError):
    def __init__(self, message: str = "Cannot delete the only section"):
        super().__init__(message)


class UniquenessError(TemplateError):
    def __init__(self, name: str):
        self.name = name
        super().__init__("A template with this name already exists")


class NotFoundError(TemplateError):
    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template {template_id} not found")


class TemplatePermissionError(TemplateError):
    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__("You do not have permission to edit this template")


class TransportError(TemplateError):
    """The backing store could not be reached or rejected the request."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class DecodeError(TemplateError):
    """Reserved. ``codec.decode`` degrades to a single section instead."""


class NoExpandedSectionError(TemplateError):
    def __init__(self, message: str = "Please expand a section to insert an image"):
        super().__init__(message)


class InvalidTemplateError(TemplateError):
    """A template is missing a required field (name, content)."""
