import pytest

from boothbeacon.services.completeness import completeness_score
from boothbeacon.services.normalization import (
    bounding_box,
    content_hash,
    haversine_meters,
    make_slug,
    names_similar,
    normalize_text,
    standardize_country,
)


def test_normalize_text_folds_accents_and_punctuation():
    assert normalize_text("Café  Lomo!") == "cafe lomo"
    assert normalize_text("  Kastanienallee, 55 ") == "kastanienallee 55"
    assert normalize_text(None) == ""


def test_names_similar_by_token_containment():
    assert names_similar("Lomo Booth", "Lomo Photo Booth")
    assert names_similar("The Photo Booth", "photo booth")
    assert not names_similar("Lomo Booth", "Photoautomat Kastanienallee")
    assert not names_similar("", "Lomo Booth")


def test_make_slug():
    assert make_slug("Lomo Booth", "Berlin") == "lomo-booth-berlin"
    assert make_slug("Café Über", None) == "cafe-uber"
    assert make_slug("!!!", None) == "booth"
    assert len(make_slug("x" * 500, "Berlin")) == 200


def test_standardize_country():
    assert standardize_country("USA") == "United States"
    assert standardize_country("U.S.") == "United States"
    assert standardize_country("uk") == "United Kingdom"
    assert standardize_country("Deutschland") == "Germany"
    assert standardize_country("Japan") == "Japan"
    assert standardize_country("  ") is None


def test_haversine_and_bounding_box():
    # Two points ~30m apart on Kastanienallee
    distance = haversine_meters(52.5390, 13.4095, 52.53927, 13.4095)
    assert 25 < distance < 35

    min_lat, max_lat, min_lon, max_lon = bounding_box(52.5390, 13.4095, 50)
    assert min_lat < 52.5390 < max_lat
    assert min_lon < 13.4095 < max_lon
    assert haversine_meters(52.5390, 13.4095, max_lat, 13.4095) == pytest.approx(50, rel=0.01)


def test_content_hash_ignores_line_endings_and_trailing_whitespace():
    assert content_hash("a  \r\nb\r\n\n") == content_hash("a\nb")
    assert content_hash("a\nb") != content_hash("a\nc")


def test_completeness_score_weights():
    assert completeness_score({}) == 0
    # Address without a street number scores partially
    assert completeness_score({"address": "Kastanienallee"}) == 7
    assert completeness_score({"address": "Kastanienallee 55", "city": "Berlin"}) == 25
    # Coordinates count only as a pair
    assert completeness_score({"latitude": 52.5}) == 0
    assert completeness_score({"latitude": 52.5, "longitude": 13.4}) == 15
    full = {
        "address": "Kastanienallee 55",
        "city": "Berlin",
        "state": "Berlin",
        "country": "Germany",
        "latitude": 52.5,
        "longitude": 13.4,
        "phone": "+49 30 1234567",
        "website": "https://photoautomat.de",
        "hours": "24/7",
        "cost": "2 EUR",
        "machine_model": "Model 14",
        "description": "Classic chemical booth",
    }
    assert completeness_score(full) == 100
