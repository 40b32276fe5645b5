"""Candidate validation and sanitization.

validate() turns a CandidateRecord into a ValidatedRecord. It never raises for
data-quality problems: bad fields are dropped, sanitized or truncated and
recorded as issues, and only a missing name or missing location rejects the
whole record.
"""

import logging
import math
import re
from typing import Any
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from boothbeacon.errors import ValidationRejection
from boothbeacon.records import (
    BOOTH_FIELDS,
    CandidateRecord,
    ValidatedRecord,
    ValidationIssue,
    ValidationOutcome,
)
from boothbeacon.services.normalization import standardize_country

logger = logging.getLogger(__name__)

# Free-text fields and their maximum stored length
TEXT_LIMITS: dict[str, int] = {
    "name": 200,
    "address": 300,
    "city": 100,
    "state": 100,
    "country": 100,
    "postal_code": 20,
    "hours": 500,
    "cost": 255,
    "machine_model": 255,
    "machine_manufacturer": 255,
    "description": 2000,
}

VALID_STATUSES = ("active", "inactive", "closed", "unverified")

_STATUS_ALIASES = {
    "active": "active",
    "open": "active",
    "operational": "active",
    "working": "active",
    "inactive": "inactive",
    "removed": "inactive",
    "broken": "inactive",
    "out of order": "inactive",
    "no longer there": "inactive",
    "closed": "closed",
    "permanently closed": "closed",
    "unknown": "unverified",
    "unverified": "unverified",
}

_BOOTH_TYPES = {"analog", "chemical", "digital", "instant"}

_TRUTHY = {"true", "yes", "y", "1", "active", "operational"}
_FALSY = {"false", "no", "n", "0", "inactive", "closed"}

_SQL_STATEMENT = (
    r"(?:union\s+(?:all\s+)?select|select\s+.+?\s+from|insert\s+into|delete\s+from|drop\s+(?:table|database)"
    r"|update\s+\w+\s+set|alter\s+table|truncate\s+table|exec(?:ute)?\s*\()"
)

_SQL_INJECTION_PATTERNS = [
    # quote sequence followed by a statement: '; DROP TABLE ...
    re.compile(r"['\"`]\s*\)?\s*;?\s*" + _SQL_STATEMENT, re.IGNORECASE),
    # tautologies: OR 1=1, AND 'a'='a'
    re.compile(r"\b(?:or|and)\s+(['\"]?)(\w+)\1\s*=\s*\1\2\1", re.IGNORECASE),
    # statement followed by a comment terminator
    re.compile(_SQL_STATEMENT + r"[^\n]*?(?:--|/\*)", re.IGNORECASE),
    # stacked statement
    re.compile(r";\s*" + _SQL_STATEMENT, re.IGNORECASE),
]

_TAG_RE = re.compile(r"<[a-zA-Z!/?]")
_STRIP_ROUNDS = 3

_PHONE_CHARS_RE = re.compile(r"^[+\d\s\-().]+$")
_WS_RE = re.compile(r"\s+")

# Confidence penalties per issue action
_PENALTIES = {"flagged": 0.25, "dropped": 0.1, "sanitized": 0.1, "truncated": 0.05}


def _as_text(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def strip_html(value: str) -> str:
    """Remove tags; script and style blocks are removed with their contents.

    get_text() decodes entities, so "&lt;script&gt;" turns into a real tag.
    Parsing repeats until the text stops changing, up to _STRIP_ROUNDS.
    """
    for _ in range(_STRIP_ROUNDS):
        if "<" not in value and "&" not in value:
            break
        soup = BeautifulSoup(value, "html.parser")
        for tag in soup(["script", "style", "iframe", "object", "embed"]):
            tag.decompose()
        stripped = _WS_RE.sub(" ", soup.get_text(" ")).strip()
        if stripped == value:
            break
        value = stripped
    return value


def looks_like_sql_injection(value: str) -> bool:
    return any(p.search(value) for p in _SQL_INJECTION_PATTERNS)


def _check_text(field_name: str, raw: Any, issues: list[ValidationIssue]) -> str | None:
    text = _as_text(raw)
    if text is None:
        if raw not in (None, ""):
            issues.append(ValidationIssue(field_name, f"unusable value of type {type(raw).__name__}"))
        return None

    cleaned = strip_html(text)
    if cleaned != text:
        issues.append(ValidationIssue(field_name, "markup removed", action="sanitized"))
    if not cleaned:
        return None

    # Markup nested deeper than the strip rounds
    if _TAG_RE.search(cleaned):
        raise ValidationRejection(field_name, "markup remains after sanitization")
    if looks_like_sql_injection(cleaned):
        raise ValidationRejection(field_name, "suspicious SQL pattern")

    limit = TEXT_LIMITS.get(field_name)
    if limit and len(cleaned) > limit:
        issues.append(ValidationIssue(field_name, f"truncated to {limit} characters", action="truncated"))
        cleaned = cleaned[:limit].rstrip()
    return cleaned


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def _check_coordinates(lat_raw: Any, lng_raw: Any, issues: list[ValidationIssue]) -> tuple[float | None, float | None]:
    lat, lng = _as_float(lat_raw), _as_float(lng_raw)
    if lat_raw is not None and lat is None:
        issues.append(ValidationIssue("latitude", "not a number"))
    if lng_raw is not None and lng is None:
        issues.append(ValidationIssue("longitude", "not a number"))

    if lat is not None and not -90.0 <= lat <= 90.0:
        issues.append(ValidationIssue("latitude", f"out of range: {lat}"))
        lat = None
    if lng is not None and not -180.0 <= lng <= 180.0:
        issues.append(ValidationIssue("longitude", f"out of range: {lng}"))
        lng = None

    # Coordinates are only meaningful as a pair
    if (lat is None) != (lng is None):
        issues.append(ValidationIssue("coordinates", "incomplete pair"))
        return None, None
    return lat, lng


def _check_url(raw: Any, issues: list[ValidationIssue]) -> str | None:
    url = _as_text(raw)
    if url is None:
        return None
    if url.lower().startswith("www."):
        url = f"https://{url}"
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc or " " in url:
        issues.append(ValidationIssue("website", "malformed URL"))
        return None
    if len(url) > 1000:
        issues.append(ValidationIssue("website", "URL too long"))
        return None
    return url


def _check_phone(raw: Any, issues: list[ValidationIssue]) -> str | None:
    phone = _as_text(raw)
    if phone is None:
        return None
    phone = _WS_RE.sub(" ", phone)
    digits = sum(ch.isdigit() for ch in phone)
    if not _PHONE_CHARS_RE.match(phone) or not 7 <= digits <= 15:
        issues.append(ValidationIssue("phone", "not a phone number"))
        return None
    return phone


def _normalize_status(raw: Any, issues: list[ValidationIssue]) -> str | None:
    text = _as_text(raw)
    if text is None:
        return None
    status = _STATUS_ALIASES.get(text.lower())
    if status is None:
        issues.append(ValidationIssue("status", f"unknown status '{text[:40]}'"))
        return None
    return status


def _as_bool(raw: Any) -> bool | None:
    if isinstance(raw, bool):
        return raw
    text = _as_text(raw)
    if text is None:
        return None
    lowered = text.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    return None


def _normalize_booth_type(raw: Any) -> str | None:
    text = _as_text(raw)
    if text is None:
        return None
    lowered = text.lower()
    return lowered if lowered in _BOOTH_TYPES else None


def _confidence(issues: list[ValidationIssue]) -> float:
    score = 1.0 - sum(_PENALTIES.get(issue.action, 0.1) for issue in issues)
    return round(max(0.0, min(1.0, score)), 2)


def _rejected(candidate: CandidateRecord, issues: list[ValidationIssue], field: str, reason: str) -> ValidatedRecord:
    issues.append(ValidationIssue(field, reason, action="rejected"))
    logger.info(f"[{candidate.source_name}] Rejected candidate '{_as_text(candidate.name)}': {field}: {reason}")
    return ValidatedRecord(
        outcome=ValidationOutcome.REJECTED,
        issues=issues,
        confidence=0.0,
        source_id=candidate.source_id,
        source_name=candidate.source_name,
        source_url=candidate.source_url,
        extracted_at=candidate.extracted_at,
    )


def _has_location(values: dict[str, Any]) -> bool:
    has_coords = values.get("latitude") is not None and values.get("longitude") is not None
    return bool(values.get("address") or values.get("city") or has_coords)


def validate(candidate: CandidateRecord) -> ValidatedRecord:
    """Validate and sanitize one candidate."""
    issues: list[ValidationIssue] = []

    raw = {name: getattr(candidate, name, None) for name in BOOTH_FIELDS}
    if all(value in (None, "") for value in raw.values()):
        return _rejected(candidate, issues, "record", "empty record")

    # 1. Required fields
    if _as_text(raw["name"]) is None:
        return _rejected(candidate, issues, "name", "missing name")
    raw_has_coords = _as_float(raw["latitude"]) is not None and _as_float(raw["longitude"]) is not None
    if not (_as_text(raw["address"]) or _as_text(raw["city"]) or raw_has_coords):
        return _rejected(candidate, issues, "location", "no address, city or coordinates")

    values: dict[str, Any] = {}
    flagged = False

    # 2. Free text
    for field_name in TEXT_LIMITS:
        try:
            values[field_name] = _check_text(field_name, raw[field_name], issues)
        except ValidationRejection as exc:
            issues.append(ValidationIssue(exc.field, exc.reason, action="flagged"))
            values[field_name] = None
            flagged = True

    if not values["name"]:
        return _rejected(candidate, issues, "name", "empty after sanitization")

    values["country"] = standardize_country(values["country"])

    # 3. Coordinates
    values["latitude"], values["longitude"] = _check_coordinates(raw["latitude"], raw["longitude"], issues)

    # 4. URLs
    values["website"] = _check_url(raw["website"], issues)

    # 5. Phone
    values["phone"] = _check_phone(raw["phone"], issues)

    values["status"] = _normalize_status(raw["status"], issues)
    values["is_operational"] = _as_bool(raw["is_operational"])
    values["booth_type"] = _normalize_booth_type(raw["booth_type"])

    if not _has_location(values):
        return _rejected(candidate, issues, "location", "no usable location after sanitization")

    outcome = ValidationOutcome.NEEDS_REVIEW if flagged else ValidationOutcome.ACCEPTED
    return ValidatedRecord(
        outcome=outcome,
        issues=issues,
        confidence=_confidence(issues),
        source_id=candidate.source_id,
        source_name=candidate.source_name,
        source_url=candidate.source_url,
        extracted_at=candidate.extracted_at,
        **values,
    )
