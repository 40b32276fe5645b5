"""Text, slug and distance helpers shared by validation, dedup and persistence.

Usage:
    from boothbeacon.services.normalization import normalize_text, make_slug, haversine_meters

    normalize_text("Café  Lomo!")       # "cafe lomo"
    make_slug("Lomo Booth", "Berlin")   # "lomo-booth-berlin"
"""

import hashlib
import math
import re
import unicodedata
from difflib import SequenceMatcher

EARTH_RADIUS_METERS = 6_371_000.0

# Filler words that carry no identity for venue names
_NAME_STOPWORDS = {"the", "a", "an", "at", "of", "and"}

_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)
_WS_RE = re.compile(r"\s+")
_SLUG_RE = re.compile(r"[^a-z0-9]+")
_STREET_NUMBER_RE = re.compile(r"\b\d+[a-z]?\b")

COUNTRY_ALIASES: dict[str, str] = {
    # United States
    "usa": "United States",
    "us": "United States",
    "u.s.": "United States",
    "u.s.a.": "United States",
    "america": "United States",
    "united states of america": "United States",
    "estados unidos": "United States",
    "untied states": "United States",
    "united stated": "United States",
    # United Kingdom
    "uk": "United Kingdom",
    "u.k.": "United Kingdom",
    "great britain": "United Kingdom",
    "britain": "United Kingdom",
    "england": "United Kingdom",
    "scotland": "United Kingdom",
    "wales": "United Kingdom",
    "northern ireland": "United Kingdom",
    # Europe
    "deutschland": "Germany",
    "de": "Germany",
    "fr": "France",
    "république française": "France",
    "holland": "Netherlands",
    "nl": "Netherlands",
    "the netherlands": "Netherlands",
    "czechia": "Czech Republic",
    "czech": "Czech Republic",
    "österreich": "Austria",
    "espana": "Spain",
    "españa": "Spain",
    "italia": "Italy",
    # Oceania
    "au": "Australia",
    "aus": "Australia",
}


def fold_accents(value: str) -> str:
    """Strip combining marks ("Café" -> "Cafe")."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(value: str | None) -> str:
    """Lowercase, fold accents, strip punctuation and collapse whitespace."""
    if not value:
        return ""
    text = fold_accents(value).lower()
    text = _PUNCT_RE.sub(" ", text)
    text = text.replace("_", " ")
    return _WS_RE.sub(" ", text).strip()


def name_tokens(value: str | None) -> set[str]:
    return {tok for tok in normalize_text(value).split() if tok not in _NAME_STOPWORDS}


def similarity(a: str | None, b: str | None) -> float:
    """SequenceMatcher ratio over normalized text, 0.0 when either side is empty."""
    na, nb = normalize_text(a), normalize_text(b)
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    return SequenceMatcher(None, na, nb).ratio()


def names_similar(a: str | None, b: str | None, threshold: float = 0.8) -> bool:
    """True when one name's tokens contain the other's, or the ratio clears threshold.

    "Lomo Booth" and "Lomo Photo Booth" match by containment.
    """
    ta, tb = name_tokens(a), name_tokens(b)
    if not ta or not tb:
        return False
    if ta <= tb or tb <= ta:
        return True
    return similarity(a, b) >= threshold


def has_street_number(address: str | None) -> bool:
    return bool(address and _STREET_NUMBER_RE.search(address))


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(a)))


def bounding_box(lat: float, lon: float, radius_meters: float) -> tuple[float, float, float, float]:
    """(min_lat, max_lat, min_lon, max_lon) enclosing a circle of radius_meters."""
    dlat = math.degrees(radius_meters / EARTH_RADIUS_METERS)
    cos_lat = max(math.cos(math.radians(lat)), 1e-6)
    dlon = math.degrees(radius_meters / (EARTH_RADIUS_METERS * cos_lat))
    return lat - dlat, lat + dlat, lon - dlon, lon + dlon


def make_slug(name: str, city: str | None = None) -> str:
    """URL slug from name and city. Uniqueness is handled by the caller."""
    base = fold_accents(" ".join(part for part in (name, city) if part)).lower()
    slug = _SLUG_RE.sub("-", base).strip("-")
    return slug[:200].rstrip("-") or "booth"


def standardize_country(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = _WS_RE.sub(" ", value).strip().rstrip(".")
    if not cleaned:
        return None
    alias = COUNTRY_ALIASES.get(cleaned.lower()) or COUNTRY_ALIASES.get(cleaned.lower() + ".")
    return alias or cleaned


def normalize_body(body: str) -> str:
    """Canonical page body for hashing: unified line endings, no trailing or outer whitespace."""
    text = body.replace("\r\n", "\n").replace("\r", "\n")
    return "\n".join(line.rstrip() for line in text.split("\n")).strip()


def content_hash(body: str) -> str:
    return hashlib.sha256(normalize_body(body).encode("utf-8")).hexdigest()
