"""
Error types raised by the record linkage engine.

Configuration and validation errors always reach the caller. Comparator
failures never do: they are absorbed inside the comparator and only lower
that field's score.
"""

from typing import Any, Optional


class MatchingError(Exception):
    """Base error for all record linkage failures."""


class ConfigurationError(MatchingError):
    """Invalid or missing rules, weights or thresholds.

    Raised at construction time, before any record is processed.
    """

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(message)
        self.config_key = config_key


class ValidationError(MatchingError):
    """Malformed record, mapping or result at a call boundary."""

    def __init__(self, message: str, field_name: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field_name = field_name
        self.value = value


class MissingFieldError(ValidationError):
    """A required semantic field is absent from a record."""

    def __init__(self, field_name: str, side: str = "record"):
        super().__init__(f"{side.capitalize()} missing required field: {field_name}", field_name)
        self.side = side


class SemanticTypeError(MatchingError):
    """A field cannot be mapped to a semantic type unambiguously."""

    def __init__(self, message: str, semantic_type: Optional[str] = None):
        super().__init__(message)
        self.semantic_type = semantic_type


class DeadlineExceededError(MatchingError):
    """The caller-supplied deadline passed before a unit of work started."""
