"""LLM extraction engine: page content -> CandidateRecords.

Content is cleaned, cut down to the densest window of blocks that fits the
model input cap (or chunked for list-heavy strategies), sent to the LLM, and
the reply is parsed as a JSON array. Unparseable replies produce zero
candidates and an error note; only transport failures raise.
"""

import json
import logging
import re
import uuid
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any

from bs4 import BeautifulSoup
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from boothbeacon.config import Settings, get_settings
from boothbeacon.errors import ExtractionError
from boothbeacon.records import (
    BOOTH_FIELDS,
    CandidateRecord,
    ExtractionResult,
    FetchedPage,
    ParseResult,
)
from boothbeacon.services.llm_client import LLMClient
from boothbeacon.services.normalization import normalize_text
from boothbeacon.services.strategies import Strategy

logger = logging.getLogger(__name__)

# Markdown shorter than this is treated as a failed conversion and HTML is used instead
MIN_MARKDOWN_CHARS = 200

NOISE_TAGS = ["script", "style", "svg", "nav", "footer", "noscript", "iframe", "form"]

SYSTEM_PROMPT = """You are a photo booth data extraction specialist.

Extract EVERY analog or chemical photo booth location from the provided content.
The content may list many booths. Extract all of them; do not stop early or summarize.

BOOTH IDENTIFICATION:
- Terms: "photo booth", "photobooth", "photo-booth", "fotoautomat", "photomaton", "cabine photo", "fotocabina"
- Analog indicators: "chemical", "wet process", "analog", "film", "vintage", "classic"
- Machine models: "Photo-Me", "Photomaton", "Photomatic", "Auto-Photo", "Model 11", "Model 14"

RULES:
- Extract complete addresses including street numbers and postal codes
- Include the venue name when the booth is inside a business
- Extract coordinates only if present in the content
- Do not invent information that is not in the content
- If multiple booths are at one venue, return separate entries
- If a booth has moved, return only the current location
- If the content says a booth is gone or "no longer there", set status to "inactive"; if the venue closed, "closed"
- Standardize country names (USA -> United States, UK -> United Kingdom)

OUTPUT:
Return ONLY a JSON array. Each element is an object with these keys (use null when unknown):
name, address, city, state, country, postal_code, latitude, longitude, phone, website,
hours, cost, machine_model, machine_manufacturer, booth_type (analog|chemical|digital|instant),
is_operational (true|false), status (active|inactive|closed|unverified), description
If there are no booths, return []."""

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_BASE64_IMG_RE = re.compile(r"!\[[^\]]*\]\(data:image/[^)]*\)|<img[^>]+src=[\"']data:image/[^\"']*[\"'][^>]*>", re.IGNORECASE)
_HEADING_RE = re.compile(r"^#{1,6}\s")
_BLANK_SPLIT_RE = re.compile(r"\n\s*\n")

# Block scoring signals
_ADDRESS_RE = re.compile(
    r"\b\d{1,5}\s+[\w'.-]+(?:\s+[\w'.-]+){0,4}\s+"
    r"(?:st|street|ave|avenue|rd|road|blvd|boulevard|dr|drive|ln|lane|way|pl|place|sq|square|"
    r"strasse|straße|str|platz|rue|via|calle|ct|court|pkwy|hwy)\b\.?",
    re.IGNORECASE,
)
_BOOTH_KEYWORD_RE = re.compile(
    r"photo\s?-?booth|fotoautomat|photomaton|photomatic|cabine photo|fotocabina|photo-me|analog|chemical|"
    r"black and white|strip",
    re.IGNORECASE,
)
_COORD_RE = re.compile(r"-?\d{1,3}\.\d{3,}\s*,\s*-?\d{1,3}\.\d{3,}")
_PHONE_RE = re.compile(r"\+?\(?\d{2,4}\)?[\s.-]\d{3,4}[\s.-]\d{3,4}")
_POSTAL_RE = re.compile(r"\b\d{5}(?:-\d{4})?\b|\b[A-Z]{1,2}\d[A-Z\d]?\s*\d[A-Z]{2}\b")
_LINK_RE = re.compile(r"\[[^\]]*\]\([^)]*\)")
_IMAGE_RE = re.compile(r"!\[[^\]]*\]\([^)]*\)")

# Aliases the model sometimes uses instead of the schema keys
_KEY_ALIASES = {
    "lat": "latitude",
    "lng": "longitude",
    "lon": "longitude",
    "long": "longitude",
    "zip": "postal_code",
    "zip_code": "postal_code",
    "zipcode": "postal_code",
    "postcode": "postal_code",
    "url": "website",
    "venue": "name",
    "venue_name": "name",
    "booth_name": "name",
    "model": "machine_model",
    "manufacturer": "machine_manufacturer",
    "price": "cost",
    "street_address": "address",
}

_NUMERIC_FIELDS = {"latitude", "longitude"}
_CANDIDATE_FIELDS = {f.name for f in fields(CandidateRecord)}


@dataclass
class ExtractionContext:
    source_id: uuid.UUID | None
    source_name: str
    source_url: str | None = None


# ---------------------------------------------------------------------------
# Content preparation
# ---------------------------------------------------------------------------

def clean_html(html: str) -> str:
    """Visible text of an HTML page, minus navigation and embedded noise."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(NOISE_TAGS):
        tag.decompose()
    for img in soup.find_all("img"):
        if (img.get("src") or "").startswith("data:"):
            img.decompose()
    lines = [line.strip() for line in soup.get_text("\n").splitlines()]
    text = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def prepare_content(page: FetchedPage) -> str:
    markdown = _BASE64_IMG_RE.sub("", page.markdown or "").strip()
    if len(markdown) >= MIN_MARKDOWN_CHARS or not page.html:
        return markdown
    return clean_html(page.html)


def split_blocks(text: str) -> list[str]:
    """Split at blank lines and before headings."""
    blocks: list[str] = []
    for para in _BLANK_SPLIT_RE.split(text):
        current: list[str] = []
        for line in para.split("\n"):
            if _HEADING_RE.match(line) and current:
                blocks.append("\n".join(current))
                current = []
            current.append(line)
        if current:
            blocks.append("\n".join(current))
    return [b.strip() for b in blocks if b.strip()]


def score_block(block: str) -> float:
    """Information density of a block for booth extraction."""
    score = 0.0
    score += 3.0 * len(_ADDRESS_RE.findall(block))
    score += 2.0 * len(_BOOTH_KEYWORD_RE.findall(block))
    score += 3.0 * len(_COORD_RE.findall(block))
    score += 1.5 * len(_PHONE_RE.findall(block))
    score += 1.0 * len(_POSTAL_RE.findall(block))
    score -= 0.5 * len(_LINK_RE.findall(block))
    score -= 1.0 * len(_IMAGE_RE.findall(block))
    return score


def truncate(text: str, max_chars: int) -> str:
    """Keep the highest-scoring contiguous window of blocks that fits max_chars.

    Falls back to a plain prefix cut when no block fits on its own.
    """
    if len(text) <= max_chars:
        return text

    blocks = split_blocks(text)
    scores = [score_block(b) for b in blocks]
    sep = 2  # "\n\n"

    best_range: tuple[int, int] | None = None
    best_score = float("-inf")
    start = 0
    length = 0
    window_score = 0.0
    for end, block in enumerate(blocks):
        length += len(block) + (sep if end > start else 0)
        window_score += scores[end]
        while start <= end and length > max_chars:
            length -= len(blocks[start]) + (sep if start < end else 0)
            window_score -= scores[start]
            start += 1
        if start <= end and window_score > best_score:
            best_score = window_score
            best_range = (start, end)

    if best_range is None:
        logger.debug(f"No block fits in {max_chars} chars; using prefix cut")
        return text[:max_chars]
    return "\n\n".join(blocks[best_range[0]:best_range[1] + 1])


def chunk(text: str, max_chars: int, max_chunks: int) -> list[str]:
    """Pack blocks into chunks of at most max_chars, keeping the densest max_chunks."""
    if len(text) <= max_chars:
        return [text]

    chunks: list[str] = []
    current: list[str] = []
    size = 0
    for block in split_blocks(text):
        pieces = [block[i:i + max_chars] for i in range(0, len(block), max_chars)] if len(block) > max_chars else [block]
        for piece in pieces:
            added = len(piece) + (2 if current else 0)
            if current and size + added > max_chars:
                chunks.append("\n\n".join(current))
                current, size = [], 0
                added = len(piece)
            current.append(piece)
            size += added
    if current:
        chunks.append("\n\n".join(current))

    if len(chunks) > max_chunks:
        logger.warning(f"Content split into {len(chunks)} chunks; keeping the densest {max_chunks}")
        ranked = sorted(range(len(chunks)), key=lambda i: score_block(chunks[i]), reverse=True)[:max_chunks]
        chunks = [chunks[i] for i in sorted(ranked)]
    return chunks


def build_prompt(strategy: Strategy, content: str, source_name: str | None, index: int = 0, total: int = 1) -> str:
    label = strategy.name.replace("_", " ")
    prompt = f"Extract all photo booth locations from this {label} content"
    if source_name:
        prompt += f" from {source_name}"
    if total > 1:
        prompt += f" (chunk {index + 1} of {total})"
    prompt += ".\n\n"
    prompt += strategy.guidance + "\n\n"
    prompt += "CONTENT:\n\n" + content
    return prompt


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _match_bracket(text: str, start: int) -> int | None:
    """Index of the bracket closing text[start], skipping brackets inside JSON strings."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if depth == 0:
                return i
    return None


def _unwrap(value: Any) -> list | None:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in ("booths", "results", "data", "locations"):
            if isinstance(value.get(key), list):
                return value[key]
    return None


def parse_candidates(text: str | None, max_attempts: int = 50) -> ParseResult:
    """Locate a JSON array of objects in free-form model output. Never raises."""
    if not text or not text.strip():
        return ParseResult(error="empty response")

    cleaned = _FENCE_RE.sub("", text).strip()
    try:
        items = _unwrap(json.loads(cleaned))
        if items is not None:
            return ParseResult(items=[i for i in items if isinstance(i, dict)])
    except ValueError:
        pass

    attempts = 0
    pos = 0
    while attempts < max_attempts:
        starts = [p for p in (cleaned.find("[", pos), cleaned.find("{", pos)) if p != -1]
        if not starts:
            break
        start = min(starts)
        attempts += 1
        end = _match_bracket(cleaned, start)
        if end is not None:
            try:
                items = _unwrap(json.loads(cleaned[start:end + 1]))
            except ValueError:
                items = None
            # Skip bracketed prose like "[1]"
            if items is not None and (not items or any(isinstance(i, dict) for i in items)):
                return ParseResult(items=[i for i in items if isinstance(i, dict)])
        pos = start + 1

    return ParseResult(error=f"no JSON array found in {len(text)} chars of output")


def _coerce_value(key: str, value: Any) -> Any:
    if value is None:
        return None
    if key in _NUMERIC_FIELDS:
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip().rstrip("°NSEW").strip())
            except ValueError:
                return None
        return None
    if key == "is_operational":
        return value
    if isinstance(value, (list, tuple)):
        parts = [str(v).strip() for v in value if v is not None and str(v).strip()]
        return "; ".join(parts) or None
    if isinstance(value, dict):
        return None
    if isinstance(value, str):
        value = value.strip()
        if value.lower() in ("", "null", "none", "n/a", "unknown"):
            return None
        return value
    return str(value)


def coerce_candidate(item: Any, context: ExtractionContext, extracted_at: datetime | None = None) -> CandidateRecord | None:
    """Tolerantly map one raw item onto a CandidateRecord. Non-dicts yield None."""
    if not isinstance(item, dict):
        return None
    values: dict[str, Any] = {}
    for raw_key, raw_value in item.items():
        if not isinstance(raw_key, str):
            continue
        key = raw_key.strip().lower().replace(" ", "_")
        key = _KEY_ALIASES.get(key, key)
        if key not in BOOTH_FIELDS or key in values and values[key] is not None:
            continue
        values[key] = _coerce_value(key, raw_value)
    if not any(v is not None for v in values.values()):
        return None
    return CandidateRecord(
        source_id=context.source_id,
        source_name=context.source_name,
        source_url=context.source_url,
        extracted_at=extracted_at or datetime.now(timezone.utc),
        **{k: v for k, v in values.items() if k in _CANDIDATE_FIELDS},
    )


def _fold(a: CandidateRecord, b: CandidateRecord) -> CandidateRecord:
    for name in BOOTH_FIELDS:
        current, incoming = getattr(a, name), getattr(b, name)
        if current is None and incoming is not None:
            setattr(a, name, incoming)
        elif name == "description" and isinstance(incoming, str) and isinstance(current, str) and len(incoming) > len(current):
            a.description = incoming
    return a


def _fold_key(candidate: CandidateRecord) -> tuple:
    text = tuple(normalize_text(str(getattr(candidate, f) or "")) for f in ("name", "address", "city", "country"))
    lat, lng = candidate.latitude, candidate.longitude
    if isinstance(lat, (int, float)) and isinstance(lng, (int, float)):
        # ~100 m cells; anything closer is left to the matching engine
        return text + (round(lat, 3), round(lng, 3))
    return text + (None, None)


def dedupe_candidates(candidates: list[CandidateRecord]) -> list[CandidateRecord]:
    """Fold candidates with equal normalized (name, address, city, country) and
    coordinates, filling gaps."""
    seen: dict[tuple, CandidateRecord] = {}
    unkeyed: list[CandidateRecord] = []
    for candidate in candidates:
        key = _fold_key(candidate)
        if not any(key[:4]):
            unkeyed.append(candidate)
        elif key in seen:
            _fold(seen[key], candidate)
        else:
            seen[key] = candidate
    return list(seen.values()) + unkeyed


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ExtractionError) and exc.retryable


class ExtractionEngine:
    """Runs capped LLM calls over prepared content."""

    def __init__(self, llm: LLMClient, settings: Settings | None = None):
        self.llm = llm
        self.settings = settings or get_settings()

    async def _complete(self, prompt: str, label: str) -> str:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.settings.extract_max_attempts),
            wait=wait_exponential(multiplier=self.settings.retry_backoff_base, max=self.settings.retry_backoff_max),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
            before_sleep=lambda state: logger.warning(
                f"{label} LLM call failed (attempt {state.attempt_number}), retrying: {state.outcome.exception()}"
            ),
        ):
            with attempt:
                return await self.llm.complete(SYSTEM_PROMPT, prompt)
        raise ExtractionError(f"{label} LLM call did not run")

    async def extract(self, page: FetchedPage, strategy: Strategy, context: ExtractionContext) -> ExtractionResult:
        label = f"[{context.source_name}]"
        content = prepare_content(page)
        if not content:
            return ExtractionResult(errors=[f"{page.url}: no content to extract"])

        max_chars = self.settings.max_extraction_chars
        if strategy.chunked:
            pieces = chunk(content, max_chars, self.settings.max_extraction_chunks)
        else:
            pieces = [truncate(content, max_chars)]

        result = ExtractionResult(chunks=len(pieces))
        failures: list[ExtractionError] = []
        extracted_at = datetime.now(timezone.utc)
        page_context = ExtractionContext(context.source_id, context.source_name, page.url or context.source_url)

        for index, piece in enumerate(pieces):
            prompt = build_prompt(strategy, piece, context.source_name, index, len(pieces))
            try:
                text = await self._complete(prompt, label)
            except ExtractionError as e:
                failures.append(e)
                result.errors.append(f"{page.url} chunk {index + 1}: {e}")
                logger.error(f"{label} Extraction failed for chunk {index + 1}/{len(pieces)}: {e}")
                continue

            parsed = parse_candidates(text)
            if not parsed.ok:
                result.errors.append(f"{page.url} chunk {index + 1}: {parsed.error}")
                logger.warning(f"{label} Unparseable LLM output for chunk {index + 1}: {parsed.error}")
                continue

            for item in parsed.items:
                candidate = coerce_candidate(item, page_context, extracted_at)
                if candidate is not None:
                    result.candidates.append(candidate)

        # Every call failed in transport: surface it so the run is marked failed
        if failures and len(failures) == len(pieces):
            raise failures[-1]
        result.transport_failures = len(failures)

        before = len(result.candidates)
        result.candidates = dedupe_candidates(result.candidates)
        logger.info(
            f"{label} Extracted {len(result.candidates)} candidates from {page.url} "
            f"({len(pieces)} chunk(s), {before - len(result.candidates)} folded)"
        )
        return result
