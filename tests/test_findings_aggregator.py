import pytest

from scopescan.models.photo import Photo
from scopescan.schemas.findings import Finding
from scopescan.services.findings_aggregator import (
    DEFAULT_OVERALL_CONFIDENCE,
    MAX_FINDINGS,
    MAX_NEEDS_MORE_PHOTOS,
    aggregate_findings,
    detect_painting_job,
    finding_key,
    infer_category,
    parse_square_feet,
)


def test_finding_key_normalizes_text():
    assert finding_key("painting", "  Peeling Paint near window ") == "painting:peeling paint near window"
    assert finding_key("damage", "Crack") != finding_key("repair", "Crack")


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Peeling paint near window", "painting"),
        ("Faded trim", "painting"),
        ("Leak under sink", "plumbing"),
        ("Exposed wire at outlet", "electrical"),
        ("Outdated light fixture", "upgrade"),
        ("Paint bubbling from pipe leak", "painting"),
        ("Loose hinge", "repair"),
    ],
)
def test_infer_category_first_rule_wins(text, expected):
    assert infer_category(text, "repair") == expected


def test_parse_square_feet():
    assert parse_square_feet("Wall approx 120 sq ft") == 120
    assert parse_square_feet("1,500 square feet of siding") == 1500
    assert parse_square_feet("about 8 ft tall") is None


def test_dedup_across_photos(make_photo):
    photos = [
        make_photo("p-1", issues=["peeling paint near window"]),
        make_photo("p-2", issues=["Peeling paint near window "]),
        make_photo("p-3", issues=["Loose cabinet hinge"]),
    ]

    result = aggregate_findings(photos)

    painting = [f for f in result.findings if f.category == "painting"]
    assert len(painting) == 1
    assert painting[0].photo_ids == ["p-1", "p-2"]
    assert painting[0].issue == "peeling paint near window"
    assert result.is_painting_job is True
    assert result.detected_trade == "painting"
    assert result.photos_used == 3


def test_merge_keeps_first_confidence(make_photo):
    photos = [
        make_photo("p-1", issues=["Loose cabinet hinge"], confidence=0.9),
        make_photo("p-2", issues=["Loose cabinet hinge"], confidence=0.1),
    ]
    result = aggregate_findings(photos)
    assert len(result.findings) == 1
    assert result.findings[0].confidence == pytest.approx(0.91)
    assert result.overall_confidence == pytest.approx((0.91 + 0.19) / 2)


def test_sources_and_default_categories(make_photo):
    photo = make_photo(
        "p-1",
        damage=["Water stain on floor"],
        issues=["Missing cabinet handle"],
        objects=[
            {"name": "Chandelier", "notes": "missing glass shades"},
            {"name": "Faucet", "notes": "old and dripping"},
            {"name": "Door", "notes": "broken latch"},
            {"name": "Table"},
        ],
        detector_labels=[("Rust", 92), ("Furniture", 99), ("Crack", 65)],
    )

    result = aggregate_findings([photo])
    by_issue = {f.issue: f for f in result.findings}

    assert by_issue["Water stain on floor"].category == "damage"
    assert by_issue["Missing cabinet handle"].category == "repair"
    assert by_issue["Chandelier - missing glass shades"].category == "repair"
    assert by_issue["Faucet - old and dripping"].category == "upgrade"
    assert by_issue["Door - broken latch"].category == "damage"
    assert by_issue["Rust"].category == "inspection"
    assert by_issue["Rust"].confidence == pytest.approx(0.92)
    assert "Furniture" not in by_issue
    assert "Crack" not in by_issue
    assert not any(issue.startswith("Table") for issue in by_issue)


def test_findings_sorted_and_capped(make_photo):
    photos = [make_photo(f"p-{i}", issues=[f"Loose hinge {i}"], confidence=i / 20) for i in range(20)]
    result = aggregate_findings(photos)
    confidences = [f.confidence for f in result.findings]
    assert len(result.findings) == MAX_FINDINGS
    assert confidences == sorted(confidences, reverse=True)


def test_needs_more_photos_deduped_and_capped(make_photo):
    photos = [
        make_photo("p-1", needs_more_photos=["Close-up of the crack", " close-up of the CRACK ", "Wide shot"]),
        make_photo("p-2", needs_more_photos=[f"Angle {i}" for i in range(8)]),
    ]
    result = aggregate_findings(photos)
    assert result.needs_more_photos[:2] == ["Close-up of the crack", "Wide shot"]
    assert len(result.needs_more_photos) == MAX_NEEDS_MORE_PHOTOS


def test_severity_from_estimate(make_photo):
    result = aggregate_findings([
        make_photo("p-1", damage=["Cracked tile"], estimated_severity="full"),
        make_photo("p-2", issues=["Loose hinge"], estimated_severity="spot"),
    ])
    by_issue = {f.issue: f for f in result.findings}
    assert by_issue["Cracked tile"].severity == "high"
    assert by_issue["Loose hinge"].severity == "low"


def test_scope_ambiguity_and_reasons(make_photo):
    result = aggregate_findings([
        make_photo("p-1", issues=["Loose hinge"], scope_ambiguous=True, clarification_reasons=["Unclear how many doors"]),
        make_photo("p-2", issues=["Loose hinge"], clarification_reasons=["Unclear how many doors", "Hidden damage possible"]),
    ])
    assert result.scope_ambiguous is True
    assert result.clarification_reasons == ["Unclear how many doors", "Hidden damage possible"]
    assert [u.description for u in result.unknowns] == ["Exact scope of work cannot be determined from photos alone"]
    assert result.is_painting_job is False


def test_painting_unknowns(make_photo):
    result = aggregate_findings([make_photo("p-1", issues=["Peeling paint"])])
    assert {u.id for u in result.unknowns} == {"unknown-paint-scope", "unknown-color-change"}


def test_estimated_area_from_measurements(make_photo):
    result = aggregate_findings([
        make_photo("p-1", issues=["Loose hinge"], measurements=["Room about 150 sq ft"]),
        make_photo("p-2", issues=["Loose hinge"], measurements=["Hallway 250 sqft", "door 3 ft wide"]),
    ])
    assert result.estimated_area_sqft == 250


def test_detector_only_photo_contributes(make_photo):
    result = aggregate_findings([make_photo("p-1", llm_ready=False, detector_labels=[("Peeling", 88)])])
    assert result.findings[0].category == "painting"
    assert result.findings[0].photo_ids == ["p-1"]
    assert result.overall_confidence == pytest.approx(0.55)
    assert result.is_painting_job is True


def test_suggested_problem(make_photo):
    painting = aggregate_findings([make_photo("p-1", issues=["Peeling paint", "Faded trim"])])
    assert painting.suggested_problem == "Address painting issues: Peeling paint, Faded trim"

    damage = aggregate_findings([make_photo("p-1", damage=["Cracked tile"])])
    assert damage.suggested_problem == "Repair damage: Cracked tile"

    other = aggregate_findings([make_photo("p-1", issues=["Loose hinge"])])
    assert other.suggested_problem == "Address: Loose hinge"


def test_no_usable_findings_defaults():
    broken = Photo(id="p-1", job_id="job-1", image_url="https://img.example.com/p.jpg", findings={"version": "v1"})
    empty = Photo(id="p-2", job_id="job-1", image_url="https://img.example.com/p.jpg", findings=None)

    result = aggregate_findings([broken, empty])

    assert result.findings == []
    assert result.overall_confidence == DEFAULT_OVERALL_CONFIDENCE
    assert result.photos_used == 0
    assert result.suggested_problem is None


def test_detect_painting_job_keyword_scan():
    assert detect_painting_job([Finding(id="x", issue="Scuffed baseboard", confidence=0.8, category="repair")])
    assert not detect_painting_job([Finding(id="y", issue="Loose hinge", confidence=0.8, category="repair")])
