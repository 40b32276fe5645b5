"""Data completeness score (0-100) for stored booths."""

from typing import Any, Mapping

from boothbeacon.services.normalization import has_street_number

# Field weights; address scores 7 instead of 15 without a street number
WEIGHTS: dict[str, int] = {
    "address": 15,
    "city": 10,
    "state": 5,
    "country": 5,
    "coordinates": 15,
    "phone": 10,
    "website": 10,
    "hours": 10,
    "cost": 5,
    "machine_model": 5,
    "description": 10,
}
PARTIAL_ADDRESS_WEIGHT = 7


def completeness_score(values: Mapping[str, Any]) -> int:
    score = 0
    address = values.get("address")
    if address:
        score += WEIGHTS["address"] if has_street_number(address) else PARTIAL_ADDRESS_WEIGHT
    if values.get("latitude") is not None and values.get("longitude") is not None:
        score += WEIGHTS["coordinates"]
    for field_name, weight in WEIGHTS.items():
        if field_name in ("address", "coordinates"):
            continue
        if values.get(field_name):
            score += weight
    return min(score, 100)


def booth_values(booth) -> dict[str, Any]:
    """Column values of a Booth row as a plain dict."""
    return {column.key: getattr(booth, column.key) for column in booth.__table__.columns}
