"""
Address normalization, parsing and similarity.
"""

import re
from dataclasses import dataclass, fields
from typing import Optional

from linkage.matching.metrics import StringMetrics

STREET_TYPES = {
    "ST": "STREET",
    "AVE": "AVENUE",
    "BLVD": "BOULEVARD",
    "RD": "ROAD",
    "LN": "LANE",
    "DR": "DRIVE",
    "CIR": "CIRCLE",
    "CT": "COURT",
    "PL": "PLACE",
    "TER": "TERRACE",
    "WAY": "WAY",
    "HWY": "HIGHWAY",
    "PKWY": "PARKWAY",
    "TRL": "TRAIL",
    "SQ": "SQUARE",
}

DIRECTIONALS = {
    "N": "NORTH",
    "S": "SOUTH",
    "E": "EAST",
    "W": "WEST",
    "NE": "NORTHEAST",
    "NW": "NORTHWEST",
    "SE": "SOUTHEAST",
    "SW": "SOUTHWEST",
}

UNIT_DESIGNATORS = {
    "APT": "APARTMENT",
    "UNIT": "UNIT",
    "STE": "SUITE",
    "RM": "ROOM",
    "FL": "FLOOR",
    "BLDG": "BUILDING",
}

ABBREVIATIONS = {**STREET_TYPES, **DIRECTIONALS, **UNIT_DESIGNATORS}

US_STATES = frozenset({
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "DC", "FL", "GA", "HI", "ID",
    "IL", "IN", "IA", "KS", "KY", "LA", "ME", "MD", "MA", "MI", "MN", "MS", "MO",
    "MT", "NE", "NV", "NH", "NJ", "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA",
    "RI", "SC", "SD", "TN", "TX", "UT", "VT", "VA", "WA", "WV", "WI", "WY", "PR",
})

# Weight of each parsed component in the component similarity
COMPONENT_WEIGHTS = {
    "street_number": 0.25,
    "street_name": 0.25,
    "street_type": 0.10,
    "unit": 0.05,
    "unit_number": 0.15,
    "city": 0.10,
    "state": 0.05,
    "zip": 0.05,
}

_FUZZY_COMPONENTS = {"street_name", "city"}
_PUNCTUATION = re.compile(r"[^\w\s-]")
_ZIP = re.compile(r"^\d{5}(?:-\d{4})?$")
_STREET_NUMBER = re.compile(r"^\d+[A-Z]?$")


@dataclass(frozen=True)
class AddressComponents:
    """Parsed address parts. Any part may be missing."""
    street_number: Optional[str] = None
    street_name: Optional[str] = None
    street_type: Optional[str] = None
    unit: Optional[str] = None
    unit_number: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None

    def present(self) -> dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name)}


def _state_before_zip(tokens: list[str]) -> Optional[int]:
    """Index of a state code directly followed by a trailing zip."""
    if len(tokens) >= 3 and _ZIP.match(tokens[-1]) and tokens[-2] in US_STATES:
        return len(tokens) - 2
    return None


def normalize_tokens(value: str) -> list[str]:
    """
    Uppercase, strip punctuation and expand abbreviations to long forms.

    A state code right before the zip is left alone so that ``FL 33101`` or
    ``CT 06103`` is not read as FLOOR or COURT.
    """
    tokens = _PUNCTUATION.sub(" ", str(value).upper()).split()
    state_index = _state_before_zip(tokens)
    return [
        token if index == state_index else ABBREVIATIONS.get(token, token)
        for index, token in enumerate(tokens)
    ]


def normalize_address(value: str) -> str:
    return " ".join(normalize_tokens(value))


def parse_address(value: str) -> AddressComponents:
    """
    Token parser for US-style single-line addresses.

    Layout assumed: [number] name... [type] [unit N] [city...] [state] [zip]
    """
    tokens = normalize_tokens(value)
    parts: dict[str, str] = {}

    if tokens and _ZIP.match(tokens[-1]):
        parts["zip"] = tokens.pop()[:5]
    if len(tokens) > 1 and tokens[-1] in US_STATES:
        parts["state"] = tokens.pop()

    unit_long_forms = set(UNIT_DESIGNATORS.values())
    for index, token in enumerate(tokens[:-1]):
        if token in unit_long_forms:
            parts["unit"] = token
            parts["unit_number"] = tokens[index + 1]
            del tokens[index:index + 2]
            break

    if tokens and _STREET_NUMBER.match(tokens[0]):
        parts["street_number"] = tokens.pop(0)

    street_long_forms = set(STREET_TYPES.values())
    type_index = next(
        (index for index, token in enumerate(tokens) if index > 0 and token in street_long_forms),
        None,
    )
    if type_index is not None:
        parts["street_type"] = tokens[type_index]
        street_tokens = tokens[:type_index]
        city_tokens = tokens[type_index + 1:]
    else:
        street_tokens = tokens
        city_tokens = []

    if street_tokens:
        parts["street_name"] = " ".join(street_tokens)
    if city_tokens:
        parts["city"] = " ".join(city_tokens)

    return AddressComponents(**parts)


def jaccard(a: set, b: set) -> float:
    """Jaccard index of two sets; two empty sets are identical."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def token_similarity(a: str, b: str) -> float:
    """0.6 * token-set Jaccard + 0.4 * street number agreement."""
    tokens_a = normalize_tokens(a)
    tokens_b = normalize_tokens(b)
    number_a = parse_address(a).street_number
    number_b = parse_address(b).street_number
    number_match = 1.0 if number_a and number_a == number_b else 0.0
    return 0.6 * jaccard(set(tokens_a), set(tokens_b)) + 0.4 * number_match


def component_similarity(
    a: AddressComponents,
    b: AddressComponents,
    metrics: StringMetrics,
) -> float:
    """Weighted blend over the components present on both sides."""
    present_a = a.present()
    present_b = b.present()

    weighted = 0.0
    weight_used = 0.0
    for name, weight in COMPONENT_WEIGHTS.items():
        if name not in present_a or name not in present_b:
            continue
        if name in _FUZZY_COMPONENTS:
            score = metrics.edit_similarity(present_a[name], present_b[name])
        elif name == "zip":
            score = 1.0 if present_a[name][:5] == present_b[name][:5] else 0.0
        else:
            score = 1.0 if present_a[name] == present_b[name] else 0.0
        weighted += score * weight
        weight_used += weight

    return weighted / weight_used if weight_used else 0.0


def address_similarity(a: str, b: str, metrics: StringMetrics) -> float:
    """max(token, component) * 0.8 + whole-string similarity * 0.2"""
    normalized_a = normalize_address(a)
    normalized_b = normalize_address(b)
    if normalized_a == normalized_b:
        return 1.0

    structural = max(
        token_similarity(a, b),
        component_similarity(parse_address(a), parse_address(b), metrics),
    )
    return structural * 0.8 + metrics.edit_similarity(normalized_a, normalized_b) * 0.2
