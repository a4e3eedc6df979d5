"""Merge per-photo findings of a job into one deduplicated summary."""
import logging
import re

from pydantic import BaseModel, ValidationError

from scopescan.models.photo import Photo
from scopescan.schemas.findings import Finding, Unknown
from scopescan.schemas.vision import PhotoFindings

logger = logging.getLogger(__name__)

MAX_FINDINGS = 15
MAX_NEEDS_MORE_PHOTOS = 6
DEFAULT_OVERALL_CONFIDENCE = 0.5
DETECTOR_LABELS_CONSIDERED = 5
DETECTOR_LABEL_MIN_CONFIDENCE = 70

# Evaluated in order, first match wins. "outdated" also contains "dated", and
# a text mentioning both paint and a leak is painting; keep the order stable.
CATEGORY_RULES: list[tuple[tuple[str, ...], str]] = [
    (("paint", "peel", "fad"), "painting"),
    (("plumb", "pipe", "leak"), "plumbing"),
    (("electric", "wire", "outlet"), "electrical"),
    (("upgrade", "dated", "outdated"), "upgrade"),
]
OBJECT_NOTE_RULES = CATEGORY_RULES + [
    (("damage", "broken", "crack"), "damage"),
    (("old",), "upgrade"),
]

DETECTOR_ISSUE_KEYWORDS = (
    "crack", "rust", "damage", "leak", "stain", "mold", "rot", "wear", "broken",
    "missing", "incomplete", "old", "worn", "faded", "peeling", "chipped", "dent",
)
PAINTING_KEYWORDS = (
    "paint", "peeling", "fading", "discolor", "stain", "wall",
    "trim", "baseboard", "ceiling", "primer", "coat", "color",
)
SEVERITY_BY_ESTIMATE = {"spot": "low", "partial": "medium", "full": "high"}

SCOPE_AMBIGUOUS_UNKNOWN = "Exact scope of work cannot be determined from photos alone"
PAINTING_UNKNOWNS = [
    Unknown(
        id="unknown-paint-scope",
        description="Extent of painting needed beyond photographed area",
        impacts_scope=True,
        impacts_pricing=True,
    ),
    Unknown(
        id="unknown-color-change",
        description="Whether customer wants color change (affects primer coats)",
        impacts_scope=False,
        impacts_pricing=True,
    ),
]

_SQFT_RE = re.compile(r"(\d[\d,]*(?:\.\d+)?)\s*(?:sq\.?\s*ft\.?|sqft|square\s+f(?:ee|oo)t|sf\b)", re.IGNORECASE)


class JobAggregate(BaseModel):
    findings: list[Finding] = []
    unknowns: list[Unknown] = []
    detected_trade: str | None = None
    is_painting_job: bool = False
    overall_confidence: float = DEFAULT_OVERALL_CONFIDENCE
    suggested_problem: str | None = None
    needs_more_photos: list[str] = []
    clarification_reasons: list[str] = []
    scope_ambiguous: bool = False
    estimated_area_sqft: float | None = None
    photos_used: int = 0


def infer_category(text: str, default: str, rules=CATEGORY_RULES) -> str:
    lowered = text.lower()
    for keywords, category in rules:
        if any(kw in lowered for kw in keywords):
            return category
    return default


def finding_key(category: str, text: str) -> str:
    return f"{category}:{text.strip().lower()}"


def severity_from_estimate(estimate: str | None) -> str | None:
    return SEVERITY_BY_ESTIMATE.get(estimate) if estimate else None


def detect_painting_job(findings: list[Finding]) -> bool:
    for f in findings:
        if f.category == "painting":
            return True
        text = f"{f.issue} {f.description or ''} {f.location_guess or ''}".lower()
        if any(kw in text for kw in PAINTING_KEYWORDS):
            return True
    return False


def parse_square_feet(measurement: str) -> float | None:
    values = [float(m.replace(",", "")) for m in _SQFT_RE.findall(measurement)]
    return max(values) if values else None


def suggest_problem(findings: list[Finding]) -> str | None:
    painting = [f for f in findings if f.category == "painting"]
    if painting:
        return f"Address painting issues: {', '.join(f.issue for f in painting[:2])}"
    damage = [f for f in findings if f.category == "damage"]
    if damage:
        return f"Repair damage: {', '.join(f.issue for f in damage[:2])}"
    if findings:
        return f"Address: {findings[0].issue}"
    return None


def _load_findings(photo: Photo) -> PhotoFindings | None:
    if not photo.findings:
        return None
    try:
        return PhotoFindings.model_validate(photo.findings)
    except ValidationError:
        logger.warning("findings.invalid photo=%s - skipped", photo.id)
        return None


class _FindingsMap:
    def __init__(self):
        self._items: dict[str, Finding] = {}

    def add(self, photo_id: str, *, issue: str, category: str, confidence: float,
            description: str | None = None, severity: str | None = None) -> Finding:
        key = finding_key(category, issue)
        finding = self._items.get(key)
        if finding is None:
            finding = Finding(
                id=key,
                issue=issue.strip(),
                description=description,
                confidence=confidence,
                category=category,
                severity=severity,
            )
            self._items[key] = finding
        # Repeat sightings add evidence, the first recorded confidence stays.
        if photo_id not in finding.photo_ids:
            finding.photo_ids.append(photo_id)
        return finding

    def values(self) -> list[Finding]:
        return list(self._items.values())


def aggregate_findings(photos: list[Photo]) -> JobAggregate:
    """Aggregate ready photos; photos with no usable findings are ignored."""
    found = _FindingsMap()
    unknown_descriptions: list[str] = []
    reasons: list[str] = []
    needs_more: dict[str, str] = {}
    detected_trade = None
    is_painting = False
    scope_ambiguous = False
    confidences: list[float] = []
    areas: list[float] = []
    used = 0

    for photo in photos:
        record = _load_findings(photo)
        if record is None:
            continue
        used += 1
        combined = record.combined
        llm = record.llm.result if record.llm.status == "ready" else None
        detector = record.detector.result if record.detector.status == "ready" else None
        confidences.append(combined.confidence)

        if not detected_trade:
            detected_trade = combined.detected_trade or (llm.detected_trade if llm else None) or None

        if combined.is_painting_related or (llm and llm.is_painting_related):
            is_painting = True

        for reason in combined.clarification_reasons + (llm.clarification_reasons if llm else []):
            if reason and reason not in reasons:
                reasons.append(reason)

        for hint in combined.needs_more_photos:
            hint = hint.strip()
            if hint and hint.lower() not in needs_more:
                needs_more[hint.lower()] = hint

        if combined.scope_ambiguous or (llm and llm.scope_ambiguous):
            scope_ambiguous = True
            if SCOPE_AMBIGUOUS_UNKNOWN not in unknown_descriptions:
                unknown_descriptions.append(SCOPE_AMBIGUOUS_UNKNOWN)

        if llm is not None:
            severity = severity_from_estimate(llm.estimated_severity or combined.estimated_severity)

            for item in llm.damage:
                if not item.strip():
                    continue
                category = infer_category(item, "damage")
                found.add(photo.id, issue=item, category=category, confidence=combined.confidence,
                          description=f"Detected damage: {item}", severity=severity)
                is_painting = is_painting or category == "painting"

            for item in llm.issues:
                if not item.strip():
                    continue
                category = infer_category(item, "repair")
                found.add(photo.id, issue=item, category=category, confidence=combined.confidence,
                          description=f"Issue detected: {item}", severity=severity)
                is_painting = is_painting or category == "painting"

            for obj in llm.objects:
                if not obj.notes:
                    continue
                category = infer_category(obj.notes, "repair", OBJECT_NOTE_RULES)
                found.add(photo.id, issue=f"{obj.name} - {obj.notes}", category=category,
                          confidence=combined.confidence, description=obj.notes)
                is_painting = is_painting or category == "painting"

            for measurement in llm.measurements:
                area = parse_square_feet(measurement)
                if area is not None:
                    areas.append(area)

        if detector is not None:
            for label in detector.labels[:DETECTOR_LABELS_CONSIDERED]:
                lowered = label.name.lower()
                if label.confidence < DETECTOR_LABEL_MIN_CONFIDENCE:
                    continue
                if not any(kw in lowered for kw in DETECTOR_ISSUE_KEYWORDS):
                    continue
                category = infer_category(label.name, "inspection")
                found.add(photo.id, issue=label.name, category=category, confidence=label.confidence / 100,
                          description=f"Detected in photo with {round(label.confidence)}% confidence")
                is_painting = is_painting or category == "painting"

    all_findings = sorted(found.values(), key=lambda f: f.confidence, reverse=True)
    if not is_painting:
        is_painting = detect_painting_job(all_findings)

    unknowns = [
        Unknown(id=f"unknown-{i}", description=desc, impacts_scope=True, impacts_pricing=True)
        for i, desc in enumerate(unknown_descriptions)
    ]
    if is_painting:
        unknowns.extend(u.model_copy() for u in PAINTING_UNKNOWNS)

    return JobAggregate(
        findings=all_findings[:MAX_FINDINGS],
        unknowns=unknowns,
        detected_trade=detected_trade or ("painting" if is_painting else None),
        is_painting_job=is_painting,
        overall_confidence=sum(confidences) / len(confidences) if confidences else DEFAULT_OVERALL_CONFIDENCE,
        suggested_problem=suggest_problem(all_findings),
        needs_more_photos=list(needs_more.values())[:MAX_NEEDS_MORE_PHOTOS],
        clarification_reasons=reasons,
        scope_ambiguous=scope_ambiguous,
        estimated_area_sqft=max(areas) if areas else None,
        photos_used=used,
    )
