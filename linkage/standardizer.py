"""
Field Standardizer

Canonicalizes raw values per semantic type before any comparison. Every rule
is idempotent: standardizing an already-standardized value returns it as is.
"""

import re
from typing import Any, Callable, Optional

from linkage.matching.address import normalize_address
from linkage.matching.dates import parse_date
from linkage.matching.geo import parse_coordinates
from linkage.models import ARRAY_TYPES, NAME_TYPES, SemanticType

_WHITESPACE = re.compile(r"\s+")
_NAME_PREFIX = re.compile(r"^(?:MR|MRS|MS|DR|PROF)\.?\s+")
_NAME_SUFFIX = re.compile(r"(?:\s*,\s*|\s+)(?:JR|SR|II|III|IV|V|ESQ|MD|PHD)\.?$")
_NON_DIGITS = re.compile(r"\D")

_GENDERS = {
    "M": "M",
    "MALE": "M",
    "MAN": "M",
    "F": "F",
    "FEMALE": "F",
    "WOMAN": "F",
}


def _collapse(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()


def standardize_name(value: str) -> str:
    """Uppercase, drop honorifics and generational/professional suffixes."""
    name = _collapse(value.upper())
    previous = None
    while previous != name:
        previous = name
        name = _NAME_PREFIX.sub("", name)
        name = _NAME_SUFFIX.sub("", name).strip()
    return _collapse(name)


def standardize_phone(value: str) -> str:
    return _NON_DIGITS.sub("", value)


def standardize_email(value: str) -> str:
    return value.strip().lower()


def standardize_postal_code(value: str) -> str:
    return _NON_DIGITS.sub("", value)[:5]


def standardize_date(value: Any) -> str:
    parsed = parse_date(value)
    if parsed is not None:
        return parsed.isoformat()
    return str(value).strip().upper()


def standardize_gender(value: str) -> str:
    text = value.strip().upper()
    return _GENDERS.get(text, text)


def standardize_default(value: str) -> str:
    return value.strip().upper()


class FieldStandardizer:
    """
    Applies the standardization rule for a semantic type.

    Usage:
        standardizer = FieldStandardizer()
        standardizer.standardize("  Mr. John Smith Jr. ", SemanticType.FIRST_NAME)
        # -> "JOHN SMITH"
    """

    def __init__(self):
        self._string_rules: dict[SemanticType, Callable[[str], str]] = {
            SemanticType.ADDRESS: normalize_address,
            SemanticType.PHONE: standardize_phone,
            SemanticType.EMAIL: standardize_email,
            SemanticType.POSTAL_CODE: standardize_postal_code,
            SemanticType.GENDER: standardize_gender,
        }
        for name_type in NAME_TYPES:
            self._string_rules[name_type] = standardize_name

    def standardize(self, value: Any, semantic_type: SemanticType) -> Optional[Any]:
        """
        Standardize a raw value.

        Args:
            value: Raw field value
            semantic_type: Semantic type selecting the rule

        Returns:
            Standardized string, a list for array types, a (lat, lng) tuple for
            parseable locations, or None for missing/blank values
        """
        if value is None:
            return None

        if semantic_type in ARRAY_TYPES:
            return self._standardize_array(value)
        if semantic_type == SemanticType.LOCATION:
            return self._standardize_location(value)
        if semantic_type == SemanticType.DATE_OF_BIRTH:
            if isinstance(value, str) and not value.strip():
                return None
            return standardize_date(value)

        text = str(value)
        if not text.strip():
            return None
        rule = self._string_rules.get(semantic_type, standardize_default)
        return rule(text) or None

    def _standardize_array(self, value: Any) -> list[str]:
        if isinstance(value, str):
            items = value.split(",")
        elif isinstance(value, (list, tuple, set, frozenset)):
            items = list(value)
        else:
            items = [value]
        cleaned = [str(item).strip() for item in items if item is not None]
        return [item for item in cleaned if item]

    def _standardize_location(self, value: Any) -> Optional[Any]:
        try:
            return parse_coordinates(value)
        except ValueError:
            text = str(value).strip()
            return text or None
