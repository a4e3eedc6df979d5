"""Decide whether a job can be priced as-is, and what to ask when it cannot."""
import logging

from pydantic import BaseModel

from scopescan.config import PricingConfig, settings
from scopescan.schemas.findings import (
    ClarifyingQuestion,
    DayRange,
    Finding,
    PriceRange,
    ScopeOption,
    ScopeSelection,
    ScopeTier,
)
from scopescan.services.findings_aggregator import JobAggregate, detect_painting_job
from scopescan.services.pricing_guardrails import measured_square_feet, round_half_up

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_THRESHOLD = 0.6
CONFIRM_ALL_ITEMS_MIN_FINDINGS = 5

PAINTING_SCOPE_OPTIONS = [
    ScopeOption(
        value="spot_repair",
        label="Spot repair only",
        description="Touch up and blend specific damaged areas (10-30 sq ft)",
        price_multiplier=1.0,
        estimated_sqft=20,
        is_default=True,
    ),
    ScopeOption(value="one_wall", label="Paint one wall", description="Full repaint of a single wall", price_multiplier=2.5),
    ScopeOption(
        value="entire_room",
        label="Paint entire room",
        description="All walls in the room (ceiling optional)",
        price_multiplier=6.0,
    ),
    ScopeOption(
        value="entire_house",
        label="Paint entire house",
        description="Full interior or exterior repaint",
        price_multiplier=20.0,
    ),
]

PAINTING_CLARIFYING_QUESTIONS = [
    ClarifyingQuestion(
        id="paint_scope",
        question="What's the scope of painting needed?",
        question_type="single_select",
        options=PAINTING_SCOPE_OPTIONS,
        required=True,
        impact_area="scope",
        help_text="If unsure, start with spot repair - you can always expand scope later",
    ),
    ClarifyingQuestion(
        id="room_size",
        question="Approximate room size?",
        question_type="number",
        unit="sq ft",
        min_value=50,
        max_value=5000,
        required=False,
        impact_area="pricing",
        help_text="Helps provide accurate pricing. A typical bedroom is 120-150 sq ft.",
    ),
    ClarifyingQuestion(
        id="ceiling_height",
        question="Ceiling height?",
        question_type="single_select",
        options=[
            ScopeOption(value="standard", label="Standard (8-9 ft)", price_multiplier=1.0),
            ScopeOption(value="tall", label="Tall (10-12 ft)", price_multiplier=1.3),
            ScopeOption(value="vaulted", label="Vaulted/Cathedral (12+ ft)", price_multiplier=1.6),
        ],
        required=False,
        impact_area="pricing",
    ),
    ClarifyingQuestion(
        id="include_ceiling",
        question="Include ceiling?",
        question_type="boolean",
        default_value=False,
        required=False,
        impact_area="scope",
    ),
    ClarifyingQuestion(
        id="color_change",
        question="Is this a color change?",
        question_type="boolean",
        default_value=False,
        required=False,
        help_text="Color changes may require additional primer coats",
        impact_area="pricing",
    ),
]

SCOPE_LEVEL_OPTIONS = [
    ScopeOption(value="minimum", label="Minimum repair", description="Fix only the critical issues", price_multiplier=1.0),
    ScopeOption(
        value="recommended",
        label="Recommended",
        description="Address all identified issues",
        price_multiplier=1.5,
        is_default=True,
    ),
    ScopeOption(value="premium", label="Premium", description="Complete overhaul with preventive work", price_multiplier=2.0),
]

WORK_AREA_SIZE_OPTIONS = [
    ScopeOption(value="small", label="Small (< 100 sq ft)", price_multiplier=1.0),
    ScopeOption(value="medium", label="Medium (100-300 sq ft)", price_multiplier=1.5),
    ScopeOption(value="large", label="Large (300+ sq ft)", price_multiplier=2.0),
]

PAINTING_SCOPE_TIERS = [
    ScopeTier(
        id="painting_tier_a",
        name="Spot Repair & Blend",
        description="Patch, prime, and paint damaged areas only (10-30 sq ft)",
        level="minimum",
        scope_items=[
            "Prep damaged area",
            "Sand and prime affected spots",
            "Apply matching paint",
            "Blend with surrounding area",
            "Touch-up as needed",
        ],
        estimated_days=DayRange(low=1, high=1),
    ),
    ScopeTier(
        id="painting_tier_b",
        name="One Wall Repaint",
        description="Full preparation and repaint of a single wall",
        level="recommended",
        scope_items=[
            "Protect floors and adjacent surfaces",
            "Fill holes and cracks",
            "Sand and prime wall",
            "Apply 2 coats of paint",
            "Clean up and touch-up",
        ],
        estimated_days=DayRange(low=1, high=2),
    ),
    ScopeTier(
        id="painting_tier_c",
        name="Entire Room",
        description="Complete room repaint including all walls",
        level="premium",
        scope_items=[
            "Move/cover furniture",
            "Protect floors with drop cloths",
            "Repair all wall imperfections",
            "Prime as needed",
            "Apply 2 coats to all walls",
            "Paint trim and baseboards",
            "Ceiling paint (optional)",
            "Final cleanup",
        ],
        estimated_days=DayRange(low=2, high=4),
        requires_confirmation=True,
        warnings=["Ensure room dimensions are confirmed before final pricing"],
    ),
]

PREMIUM_EXTRA_ITEMS = ["Preventive maintenance inspection", "Extended warranty coverage"]


class ClarificationDecision(BaseModel):
    needs_clarification: bool
    reason: str | None = None
    clarifying_questions: list[ClarifyingQuestion] = []
    suggested_tiers: list[ScopeTier] = []


def _low_confidence_majority(findings: list[Finding]) -> bool:
    low = sum(1 for f in findings if f.confidence < LOW_CONFIDENCE_THRESHOLD)
    return low > len(findings) / 2


def requires_scope_confirmation(
    findings: list[Finding],
    is_painting: bool = False,
    estimated_area: float | None = None,
    config: PricingConfig | None = None,
) -> tuple[bool, str | None]:
    """Return ``(required, reason)`` for the first rule that demands confirmation."""
    config = config or settings.pricing
    if is_painting or detect_painting_job(findings):
        return True, "Painting scope (spot repair vs. full room) cannot be determined from photos alone"
    if estimated_area and estimated_area > config.large_scope_sqft:
        return True, f"Estimated area ({estimated_area:g} sq ft) is large - please confirm before pricing"
    if _low_confidence_majority(findings):
        return True, "Multiple findings have low confidence - please verify scope"
    return False, None


def needs_clarification(
    findings: list[Finding],
    *,
    scope_ambiguous: bool = False,
    is_painting: bool = False,
    clarification_reasons: list[str] | None = None,
    estimated_area: float | None = None,
    config: PricingConfig | None = None,
) -> bool:
    config = config or settings.pricing
    return bool(
        scope_ambiguous
        or is_painting
        or clarification_reasons
        or _low_confidence_majority(findings)
        or (estimated_area is not None and estimated_area > config.large_scope_sqft)
    )


def generate_clarifying_questions(
    findings: list[Finding],
    is_painting: bool,
    clarification_reasons: list[str] | None = None,
    scope_reason: str | None = None,
    needs_answers: bool = True,
) -> list[ClarifyingQuestion]:
    """Painting jobs get the fixed painting set; other jobs a scope-level set.

    A job that can be priced as-is (``needs_answers`` false) gets no questions.
    """
    if is_painting:
        return [q.model_copy(deep=True) for q in PAINTING_CLARIFYING_QUESTIONS]
    if not needs_answers:
        return []

    reasons = clarification_reasons or []
    if scope_reason:
        help_text = f"Based on analysis: {scope_reason}"
    elif reasons:
        help_text = f"Clarification needed: {'; '.join(reasons[:2])}"
    else:
        help_text = None

    questions = [
        ClarifyingQuestion(
            id="scope_level",
            question="What level of work are you looking for?",
            question_type="single_select",
            options=[o.model_copy() for o in SCOPE_LEVEL_OPTIONS],
            required=True,
            impact_area="scope",
            help_text=help_text,
        ),
        ClarifyingQuestion(
            id="work_area_size",
            question="Approximate size of work area?",
            question_type="single_select",
            options=[o.model_copy() for o in WORK_AREA_SIZE_OPTIONS],
            required=False,
            impact_area="pricing",
        ),
    ]
    if len(findings) >= CONFIRM_ALL_ITEMS_MIN_FINDINGS:
        questions.append(
            ClarifyingQuestion(
                id="confirm_all_items",
                question="We identified multiple issues. Would you like us to address all of them?",
                question_type="boolean",
                default_value=True,
                required=True,
                help_text="You can also select specific items in the next step",
                impact_area="scope",
            )
        )
    return questions


def _painting_tier_price(tier: ScopeTier, sqft: float, config: PricingConfig) -> PriceRange:
    base = sqft * config.painting_base_price_per_sqft * config.tier_multipliers[tier.level]
    return PriceRange(
        low=round_half_up(base * config.tier_price_spread_low),
        high=round_half_up(base * config.tier_price_spread_high),
    )


def generate_scope_tiers(
    findings: list[Finding],
    is_painting: bool,
    selection: ScopeSelection | None = None,
    config: PricingConfig | None = None,
) -> list[ScopeTier]:
    config = config or settings.pricing

    if is_painting:
        sqft = measured_square_feet(selection)
        tiers = []
        for tier in PAINTING_SCOPE_TIERS:
            tier = tier.model_copy(deep=True)
            if sqft:
                tier.price_range = _painting_tier_price(tier, sqft, config)
            tiers.append(tier)
        return tiers

    all_issues = [f.issue for f in findings]
    return [
        ScopeTier(
            id="generic_minimum",
            name="Minimum Repair",
            description="Address critical issues only",
            level="minimum",
            scope_items=[f.issue for f in findings if f.severity == "high" or f.category == "damage"],
            estimated_days=DayRange(low=1, high=2),
        ),
        ScopeTier(
            id="generic_recommended",
            name="Recommended",
            description="Address all identified issues",
            level="recommended",
            scope_items=all_issues,
            estimated_days=DayRange(low=2, high=4),
        ),
        ScopeTier(
            id="generic_premium",
            name="Premium",
            description="Complete repairs plus preventive maintenance",
            level="premium",
            scope_items=all_issues + PREMIUM_EXTRA_ITEMS,
            estimated_days=DayRange(low=3, high=5),
            requires_confirmation=True,
        ),
    ]


def build_clarification(aggregate: JobAggregate, config: PricingConfig | None = None) -> ClarificationDecision:
    """Questions and tiers for an aggregated job."""
    config = config or settings.pricing
    findings = aggregate.findings
    required, reason = requires_scope_confirmation(
        findings, aggregate.is_painting_job, aggregate.estimated_area_sqft, config
    )
    needed = required or needs_clarification(
        findings,
        scope_ambiguous=aggregate.scope_ambiguous,
        is_painting=aggregate.is_painting_job,
        clarification_reasons=aggregate.clarification_reasons,
        estimated_area=aggregate.estimated_area_sqft,
        config=config,
    )
    questions = generate_clarifying_questions(
        findings, aggregate.is_painting_job, aggregate.clarification_reasons, reason, needs_answers=needed
    )
    tiers = generate_scope_tiers(findings, aggregate.is_painting_job, config=config)

    logger.info(
        "clarification.decided needs=%s painting=%s questions=%d reason=%s",
        needed, aggregate.is_painting_job, len(questions), reason,
    )
    return ClarificationDecision(
        needs_clarification=needed,
        reason=reason,
        clarifying_questions=questions,
        suggested_tiers=tiers,
    )
