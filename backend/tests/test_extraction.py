import uuid

import pytest

from conftest import BERLIN_PAGE, KASTANIENALLEE, FakeLLM, booths_json, page
from boothbeacon.errors import ConfigurationError, ExtractionError
from boothbeacon.records import CandidateRecord, FetchedPage
from boothbeacon.services.extraction import (
    ExtractionContext,
    ExtractionEngine,
    chunk,
    clean_html,
    coerce_candidate,
    dedupe_candidates,
    parse_candidates,
    prepare_content,
    score_block,
    truncate,
)
from boothbeacon.services.strategies import get_strategy, list_strategies

CONTEXT = ExtractionContext(source_id=uuid.uuid4(), source_name="Photoautomat Berlin", source_url="https://example.com")


# ---------------------------------------------------------------------------
# parse_candidates
# ---------------------------------------------------------------------------

def test_parse_plain_array():
    result = parse_candidates('[{"name": "A"}, {"name": "B"}]')
    assert result.ok
    assert [i["name"] for i in result.items] == ["A", "B"]


def test_parse_fenced_array_with_prose():
    text = 'Here are the booths I found:\n```json\n[{"name": "A", "address": "1 Main St"}]\n```\nLet me know!'
    result = parse_candidates(text)
    assert result.ok
    assert result.items == [{"name": "A", "address": "1 Main St"}]


def test_parse_skips_brackets_inside_strings_and_earlier_junk():
    text = 'Note [1]: see below. {"booths": [{"name": "Bar [upstairs]", "description": "has a ] bracket"}]}'
    result = parse_candidates(text)
    assert result.ok
    assert result.items[0]["name"] == "Bar [upstairs]"


def test_parse_empty_array_is_ok():
    result = parse_candidates("[]")
    assert result.ok
    assert result.items == []


def test_parse_garbage_returns_error_without_raising():
    for text in ["", "   ", "I could not find any booths.", "[{broken json", None]:
        result = parse_candidates(text)
        assert not result.ok
        assert result.items == []


def test_parse_drops_non_object_items():
    result = parse_candidates('[{"name": "A"}, "stray", 3, null]')
    assert result.items == [{"name": "A"}]


# ---------------------------------------------------------------------------
# Content preparation
# ---------------------------------------------------------------------------

def test_prepare_content_prefers_markdown():
    assert prepare_content(page()) == BERLIN_PAGE.strip()


def test_prepare_content_falls_back_to_html_for_short_markdown():
    html = "<html><nav>Home | About</nav><main><p>Photo booth at 12 Main Street</p></main><script>x()</script></html>"
    result = prepare_content(FetchedPage(url="https://example.com", markdown="Loading...", html=html))
    assert "Photo booth at 12 Main Street" in result
    assert "Home" not in result
    assert "x()" not in result


def test_prepare_content_strips_base64_images():
    markdown = BERLIN_PAGE + "\n![logo](data:image/png;base64,AAAA)\n" + "more text " * 20
    assert "data:image" not in prepare_content(FetchedPage(url="u", markdown=markdown))


def test_clean_html_collapses_blank_lines():
    assert "\n\n\n" not in clean_html("<p>a</p>\n\n\n\n<p>b</p>")


def test_score_block_prefers_addresses_over_links():
    dense = "Photo booth at Kastanienallee, 123 Main Street, 10119, +1 555-123-4567"
    sparse = "[Home](/) [About](/about) [Contact](/contact)"
    assert score_block(dense) > score_block(sparse)


def test_truncate_keeps_densest_window():
    filler = "\n\n".join(f"Paragraph {i} about the history of the neighbourhood and its cafes." for i in range(40))
    booths = "## Booths\n\nPhoto booth at 123 Main Street, 10001. Photo booth at 45 Elm Avenue, 10002."
    text = filler + "\n\n" + booths + "\n\n" + filler
    result = truncate(text, 300)
    assert len(result) <= 300
    assert "123 Main Street" in result


def test_truncate_prefix_cut_when_no_block_fits():
    text = "x" * 1000
    assert truncate(text, 100) == "x" * 100


def test_truncate_short_text_untouched():
    assert truncate("short", 100) == "short"


def test_chunk_respects_size_and_count():
    blocks = [f"Photo booth {i} at {i} Main Street" for i in range(50)]
    text = "\n\n".join(blocks)
    chunks = chunk(text, 200, 3)
    assert len(chunks) == 3
    assert all(len(c) <= 200 for c in chunks)


def test_chunk_splits_oversized_block():
    chunks = chunk("y" * 450, 200, 10)
    assert [len(c) for c in chunks] == [200, 200, 50]


# ---------------------------------------------------------------------------
# Candidate shaping
# ---------------------------------------------------------------------------

def test_coerce_candidate_maps_aliases_and_numbers():
    item = {"Venue Name": "Lomo", "lat": "52.5", "lng": 13.4, "zip": "10119", "url": "https://lomo.example", "hours": ["Mon", "Tue"]}
    candidate = coerce_candidate(item, CONTEXT)
    assert candidate.name == "Lomo"
    assert candidate.latitude == 52.5
    assert candidate.longitude == 13.4
    assert candidate.postal_code == "10119"
    assert candidate.website == "https://lomo.example"
    assert candidate.hours == "Mon; Tue"
    assert candidate.source_name == "Photoautomat Berlin"
    assert candidate.extracted_at is not None


def test_coerce_candidate_ignores_unknown_keys_and_nulls():
    candidate = coerce_candidate({"name": "A", "address": "null", "rating": 5, "city": "N/A"}, CONTEXT)
    assert candidate.name == "A"
    assert candidate.address is None
    assert candidate.city is None
    assert not hasattr(candidate, "rating")


def test_coerce_candidate_rejects_empty_and_non_dict():
    assert coerce_candidate("not a dict", CONTEXT) is None
    assert coerce_candidate({"rating": 5}, CONTEXT) is None


def test_dedupe_candidates_folds_and_fills_gaps():
    a = CandidateRecord(name="Lomo Booth", address="Kastanienallee 55", country="Germany", description="Booth")
    b = CandidateRecord(name="lomo booth", address="Kastanienallee 55.", country="germany", phone="+49 30 1234567", description="Classic booth near the bar")
    c = CandidateRecord(name="Other", address="Elsewhere 1", country="Germany")
    result = dedupe_candidates([a, b, c])
    assert len(result) == 2
    assert result[0].phone == "+49 30 1234567"
    assert result[0].description == "Classic booth near the bar"


def test_dedupe_candidates_keeps_same_name_in_other_cities():
    berlin = CandidateRecord(name="Photoautomat", city="Berlin")
    leipzig = CandidateRecord(name="Photoautomat", city="Leipzig")
    result = dedupe_candidates([berlin, leipzig, CandidateRecord(name="photoautomat", city="BERLIN")])
    assert [c.city for c in result] == ["Berlin", "Leipzig"]


def test_dedupe_candidates_keeps_distant_coordinates_apart():
    north = CandidateRecord(name="Photoautomat", country="Germany", latitude=52.5390, longitude=13.4095)
    south = CandidateRecord(name="Photoautomat", country="Germany", latitude=48.1351, longitude=11.5820)
    assert len(dedupe_candidates([north, south])) == 2


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def test_registered_strategies():
    assert set(list_strategies()) >= {"directory", "city_guide", "blog", "community", "operator"}
    assert get_strategy("directory").chunked
    assert not get_strategy("city_guide").chunked
    assert get_strategy("nope") is None


async def test_extract_returns_candidates_with_provenance(engine, fake_llm):
    result = await engine.extract(page(), get_strategy("city_guide"), CONTEXT)
    assert len(result.candidates) == 2
    assert result.errors == []
    assert result.chunks == 1
    first = result.candidates[0]
    assert first.name == KASTANIENALLEE["name"]
    assert first.source_id == CONTEXT.source_id
    assert first.source_url == page().url
    assert "from Photoautomat Berlin" in fake_llm.prompts[0]
    assert "city guide" in fake_llm.prompts[0]


async def test_extract_unparseable_output_is_not_an_error(settings):
    engine = ExtractionEngine(FakeLLM("Sorry, I can't help with that."), settings)
    result = await engine.extract(page(), get_strategy("city_guide"), CONTEXT)
    assert result.candidates == []
    assert len(result.errors) == 1


async def test_extract_retries_transient_failure_once(settings):
    llm = FakeLLM([ExtractionError("overloaded"), booths_json(KASTANIENALLEE)])
    engine = ExtractionEngine(llm, settings)
    result = await engine.extract(page(), get_strategy("city_guide"), CONTEXT)
    assert len(llm.prompts) == 2
    assert len(result.candidates) == 1


async def test_extract_raises_when_every_call_fails(settings):
    llm = FakeLLM(ExtractionError("connection reset"))
    engine = ExtractionEngine(llm, settings)
    with pytest.raises(ExtractionError):
        await engine.extract(page(), get_strategy("city_guide"), CONTEXT)
    assert len(llm.prompts) == settings.extract_max_attempts


async def test_extract_does_not_retry_non_retryable(settings):
    llm = FakeLLM(ExtractionError("bad request", retryable=False))
    engine = ExtractionEngine(llm, settings)
    with pytest.raises(ExtractionError):
        await engine.extract(page(), get_strategy("city_guide"), CONTEXT)
    assert len(llm.prompts) == 1


async def test_extract_propagates_credential_errors(settings):
    engine = ExtractionEngine(FakeLLM(ConfigurationError("bad key", systemic=True)), settings)
    with pytest.raises(ConfigurationError):
        await engine.extract(page(), get_strategy("city_guide"), CONTEXT)


async def test_extract_chunked_strategy_calls_per_chunk(settings):
    settings.max_extraction_chars = 120
    llm = FakeLLM(booths_json(KASTANIENALLEE))
    engine = ExtractionEngine(llm, settings)
    result = await engine.extract(page(), get_strategy("directory"), CONTEXT)
    assert result.chunks == len(llm.prompts) > 1
    assert "(chunk 1 of" in llm.prompts[0]
    # Identical booths from every chunk fold into one
    assert len(result.candidates) == 1


async def test_extract_empty_page(engine, fake_llm):
    result = await engine.extract(FetchedPage(url="u"), get_strategy("city_guide"), CONTEXT)
    assert result.candidates == []
    assert fake_llm.prompts == []
