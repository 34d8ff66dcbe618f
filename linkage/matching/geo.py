"""
Geospatial similarity.

Great-circle (haversine) distance mapped onto [0, 1] through a decay curve.
"""

import math
import re
from typing import Any

from linkage.models import DistanceDecay

EARTH_RADIUS_KM = 6371.0

_PAIR = re.compile(r"^\s*\(?\s*(-?\d+(?:\.\d+)?)\s*[,;\s]\s*(-?\d+(?:\.\d+)?)\s*\)?\s*$")


def parse_coordinates(value: Any) -> tuple[float, float]:
    """
    Coerce a (lat, lng) pair from a tuple/list, mapping or "lat,lng" string.

    Raises:
        ValueError: If the value is not a valid coordinate pair
    """
    if isinstance(value, dict):
        lat = value.get("lat", value.get("latitude"))
        lng = value.get("lng", value.get("lon", value.get("longitude")))
    elif isinstance(value, str):
        match = _PAIR.match(value)
        if not match:
            raise ValueError(f"Not a coordinate pair: {value!r}")
        lat, lng = match.groups()
    elif isinstance(value, (tuple, list)) and len(value) == 2:
        lat, lng = value
    else:
        raise ValueError(f"Not a coordinate pair: {value!r}")

    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Not a coordinate pair: {value!r}") from exc

    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        raise ValueError(f"Coordinates out of range: {lat}, {lng}")
    return lat, lng


def haversine_km(a: tuple[float, float], b: tuple[float, float]) -> float:
    """Great-circle distance between two (lat, lng) points in kilometres."""
    lat1, lng1 = map(math.radians, a)
    lat2, lng2 = map(math.radians, b)
    d_lat = lat2 - lat1
    d_lng = lng2 - lng1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def decay_score(distance_km: float, max_distance_km: float, decay: DistanceDecay) -> float:
    """
    Map a distance onto [0, 1].

    Args:
        distance_km: Distance between the two points
        max_distance_km: Distance at and beyond which the score is 0
        decay: Curve used inside the range

    Returns:
        Similarity score
    """
    if distance_km >= max_distance_km:
        return 0.0
    if distance_km <= 0:
        return 1.0

    if decay == DistanceDecay.EXPONENTIAL:
        score = math.exp(-5 * distance_km / max_distance_km)
    elif decay == DistanceDecay.LOGARITHMIC:
        score = 1 - math.log1p(distance_km) / math.log1p(max_distance_km)
    else:
        score = 1 - distance_km / max_distance_km
    return max(0.0, min(1.0, score))


def geo_similarity(
    a: Any,
    b: Any,
    max_distance_km: float = 5.0,
    decay: DistanceDecay = DistanceDecay.LINEAR,
) -> float:
    return decay_score(
        haversine_km(parse_coordinates(a), parse_coordinates(b)),
        max_distance_km,
        decay,
    )
