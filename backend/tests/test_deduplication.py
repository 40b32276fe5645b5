import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from boothbeacon.records import BOOTH_FIELDS, Insert, MergeInto, Skip, ValidatedRecord, ValidationOutcome
from boothbeacon.services.deduplication import MatchPolicy, best_match, classify, plan_merge, resolve
from boothbeacon.services.normalization import normalize_text

POLICY = MatchPolicy()


def record(**values) -> ValidatedRecord:
    base = {"outcome": ValidationOutcome.ACCEPTED, "confidence": 1.0, "source_name": "Source B"}
    base.update(values)
    return ValidatedRecord(**base)


def stored(**values):
    """Stand-in for a Booth row."""
    row = {name: None for name in BOOTH_FIELDS}
    row.update(
        id=uuid.uuid4(),
        confidence=1.0,
        source_names=["Source A"],
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    row.update(values)
    row["normalized_name"] = normalize_text(row["name"])
    row["normalized_city"] = normalize_text(row["city"])
    return SimpleNamespace(**row)


def test_lomo_booth_merges_by_proximity():
    existing = stored(name="Lomo Booth", city="Berlin", latitude=52.52, longitude=13.40)
    incoming = record(name="Lomo Photo Booth", city="Berlin", latitude=52.5201, longitude=13.4001, phone="+49 30 1234567")

    match = classify(incoming, existing, POLICY)
    assert match.tier == "proximity"
    assert match.distance < 50

    resolution = resolve(incoming, [existing], POLICY)
    assert isinstance(resolution, MergeInto)
    assert resolution.target_id == existing.id
    assert resolution.changes["phone"] == "+49 30 1234567"
    # Equal confidence: the original name and coordinates stay
    assert "name" not in resolution.changes
    assert "latitude" not in resolution.changes


def test_same_name_same_address_is_strong():
    existing = stored(name="Photoautomat", address="Kastanienallee 55", city="Berlin")
    incoming = record(name="PHOTOAUTOMAT", address="Kastanienallee 55.", city="Berlin")
    assert classify(incoming, existing, POLICY).tier == "strong"


def test_name_city_match_without_coordinates():
    existing = stored(name="Photoautomat", city="Berlin")
    incoming = record(name="Photoautomat", city="berlin", address="Kastanienallee 55")
    assert classify(incoming, existing, POLICY).tier == "name_city"


def test_same_name_far_apart_is_not_a_match():
    # Chains: two "Photoautomat" booths in one city, 3km apart
    existing = stored(name="Photoautomat", city="Berlin", latitude=52.5390, longitude=13.4095)
    incoming = record(name="Photoautomat", city="Berlin", latitude=52.5058, longitude=13.4490)
    assert classify(incoming, existing, POLICY) is None
    assert isinstance(resolve(incoming, [existing], POLICY), Insert)


def test_nearby_but_different_names_do_not_match():
    existing = stored(name="Bar Tausend", city="Berlin", latitude=52.52, longitude=13.40)
    incoming = record(name="Photoautomat Kastanienallee", city="Berlin", latitude=52.5201, longitude=13.4001)
    assert classify(incoming, existing, POLICY) is None


def test_best_match_prefers_tier_then_fields_then_age():
    older = stored(name="Lomo Booth", city="Berlin", created_at=datetime(2023, 1, 1, tzinfo=timezone.utc))
    newer = stored(name="Lomo Booth", city="Berlin", created_at=older.created_at + timedelta(days=1))
    fuller = stored(name="Lomo Booth", city="Berlin", phone="+49 30 1234567", created_at=older.created_at + timedelta(days=2))
    incoming = record(name="Lomo Booth", city="Berlin")

    assert best_match(incoming, [newer, older], POLICY).booth is older
    assert best_match(incoming, [newer, older, fuller], POLICY).booth is fuller

    strong = stored(name="Lomo Booth", city="Berlin", address="Kastanienallee 55", created_at=fuller.created_at + timedelta(days=1))
    incoming = record(name="Lomo Booth", city="Berlin", address="Kastanienallee 55")
    assert best_match(incoming, [fuller, strong], POLICY).booth is strong


def test_resolve_skips_when_nothing_new_from_known_source():
    existing = stored(name="Lomo Booth", city="Berlin", source_names=["Source B"])
    incoming = record(name="Lomo Booth", city="Berlin")
    resolution = resolve(incoming, [existing], POLICY)
    assert isinstance(resolution, Skip)
    assert resolution.target_id == existing.id


def test_resolve_merges_new_source_even_without_changes():
    existing = stored(name="Lomo Booth", city="Berlin")
    resolution = resolve(record(name="Lomo Booth", city="Berlin"), [existing], POLICY)
    assert isinstance(resolution, MergeInto)
    assert resolution.changes == {}


def test_resolve_skips_rejected():
    rejected = record(outcome=ValidationOutcome.REJECTED)
    assert resolve(rejected, [], POLICY) == Skip(reason="rejected")


def test_plan_merge_null_never_overwrites():
    existing = stored(name="Lomo Booth", city="Berlin", phone="+49 30 1234567", hours="24/7")
    changes = plan_merge(record(name="Lomo Booth", city="Berlin", phone=None, hours=None), existing)
    assert changes == {}


def test_plan_merge_refreshable_fields_overwrite():
    existing = stored(name="Lomo Booth", city="Berlin", hours="9-5", status="active")
    changes = plan_merge(record(name="Lomo Booth", hours="10-6", status="inactive", confidence=0.5), existing)
    assert changes == {"hours": "10-6", "status": "inactive"}


def test_plan_merge_durable_fields_need_higher_confidence():
    existing = stored(name="Lomo Booth", address="Kastanienallee 5", city="Berlin", confidence=0.8)
    weaker = record(name="Lomo Booth", address="Kastanienallee 55", confidence=0.8)
    assert "address" not in plan_merge(weaker, existing)

    stronger = record(name="Lomo Booth", address="Kastanienallee 55", confidence=0.9)
    assert plan_merge(stronger, existing)["address"] == "Kastanienallee 55"


def test_plan_merge_fills_gaps_and_moves_coordinates_as_pair():
    existing = stored(name="Lomo Booth", city="Berlin", confidence=1.0)
    changes = plan_merge(record(name="Lomo Booth", postal_code="10119", latitude=52.5, longitude=13.4, confidence=0.3), existing)
    assert changes == {"postal_code": "10119", "latitude": 52.5, "longitude": 13.4}


def test_merge_never_regresses_populated_fields():
    """Applying any sequence of merges never turns a populated field null."""
    booth = stored(name="Lomo Booth", city="Berlin", confidence=0.5)
    incoming = [
        record(name="Lomo Booth", address="Kastanienallee 55", phone="+49 30 1234567", confidence=0.7),
        record(name="Lomo Booth", city=None, phone=None, hours="24/7", confidence=0.9),
        record(name="Lomo Booth", address=None, latitude=52.5, longitude=13.4, confidence=0.2),
        record(name="Lomo Booth", status="inactive", website=None, confidence=0.1),
    ]
    for rec in incoming:
        populated = {f for f in BOOTH_FIELDS if getattr(booth, f) is not None}
        for field_name, value in plan_merge(rec, booth).items():
            setattr(booth, field_name, value)
        booth.confidence = max(booth.confidence, rec.confidence)
        assert all(getattr(booth, f) is not None for f in populated)

    assert booth.address == "Kastanienallee 55"
    assert booth.phone == "+49 30 1234567"
    assert booth.hours == "24/7"
    assert booth.status == "inactive"
    assert booth.city == "Berlin"
