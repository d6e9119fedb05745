"""
Zone Resolver

Maps request location parameters (coordinates, postal code, zone code)
to canonical zone descriptors. Without coordinates the default zone set
is returned in a stable order.
"""

import math
from typing import Any, List, Mapping, Optional, Union

from schemas.flood import LocationParams, Zone

DEFAULT_ZONES: List[Zone] = [
    Zone(id="Z1", name="Zone 1", center=(-98.4951, 29.4241)),
    Zone(id="Z2", name="Zone 2", center=(-98.5, 29.46)),
    Zone(id="Z3", name="Zone 3", center=(-98.48, 29.40)),
]

FALLBACK_ZONE_ID = "LOC"

# Accepted spellings for each location field
_KEYS = {
    "latitude": ("latitude", "lat"),
    "longitude": ("longitude", "lon", "lng"),
    "zone_id": ("zone_id", "zoneId", "zone"),
    "postal_code": ("postal_code", "postalCode", "postal", "pincode"),
    "location_name": ("location_name", "locationName", "location"),
}


class ZoneResolutionError(TypeError):
    """Raised when location parameters have an unexpected shape."""


def _first(params: Mapping[str, Any], field: str) -> Any:
    for key in _KEYS[field]:
        value = params.get(key)
        if value is not None and value != "":
            return value
    return None


def _coerce_coordinate(value: Any) -> Optional[float]:
    """Return a finite float, or None when the value is absent or malformed."""
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        raise ZoneResolutionError(f"Coordinate must be numeric, got {type(value).__name__}")
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _label(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, (str, int)):
        raise ZoneResolutionError(f"Zone label must be text, got {type(value).__name__}")
    text = str(value).strip()
    return text or None


def normalize_location(
    params: Union[LocationParams, Mapping[str, Any], None]
) -> LocationParams:
    """Coerce loosely-typed location input into LocationParams."""
    if params is None:
        return LocationParams()
    if isinstance(params, LocationParams):
        params = params.model_dump()
    if not isinstance(params, Mapping):
        raise ZoneResolutionError(
            f"Location parameters must be a mapping, got {type(params).__name__}"
        )

    zone_id = _label(_first(params, "zone_id"))
    postal_code = _label(_first(params, "postal_code"))
    return LocationParams(
        latitude=_coerce_coordinate(_first(params, "latitude")),
        longitude=_coerce_coordinate(_first(params, "longitude")),
        zone_id=zone_id.upper() if zone_id else None,
        postal_code=postal_code,
        location_name=_label(_first(params, "location_name")),
    )


def resolve_zones(
    params: Union[LocationParams, Mapping[str, Any], None] = None
) -> List[Zone]:
    """
    Resolve the zones a cycle or snapshot should cover.

    With both coordinates present, a single zone is synthesized:
      id = upper(zone_id or postal_code or "LOC"), center = (lon, lat),
      name = location_name or id.
    Otherwise the default zone set is returned.
    """
    location = normalize_location(params)
    if location.latitude is None or location.longitude is None:
        return list(DEFAULT_ZONES)

    zone_id = (location.zone_id or location.postal_code or FALLBACK_ZONE_ID).upper()
    return [
        Zone(
            id=zone_id,
            name=location.location_name or zone_id,
            center=(location.longitude, location.latitude),
        )
    ]
