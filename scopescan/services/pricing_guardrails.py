"""Pricing guardrails.

A price is never computed for a larger scope than the customer confirmed:
without a painting scope answer the price is for a spot repair and the result
asks for confirmation. Guardrails always return an answer; problems show up as
``warnings`` and ``requires_confirmation``, never as exceptions.
"""
import logging
import math

from scopescan.config import PricingConfig, settings
from scopescan.schemas.findings import Finding, PriceRange, ScopeSelection, ScopeTier
from scopescan.schemas.pricing import GuardrailResult, ScopeValidation

logger = logging.getLogger(__name__)

DEFAULT_PAINT_SCOPE = "spot_repair"
DEFAULT_TIER = "recommended"
MINIMUM_TIER_MAX_FINDINGS = 3
CONFIRM_ABOVE_FINDINGS = 5


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _has_painting_findings(findings: list[Finding]) -> bool:
    return any(
        f.category == "painting" or "paint" in f.issue.lower() or "peel" in f.issue.lower()
        for f in findings
    )


def _paint_scope(selection: ScopeSelection | None) -> str | None:
    if selection is None:
        return None
    value = selection.answers.get("paint_scope")
    return value if isinstance(value, str) and value else None


def measured_square_feet(selection: ScopeSelection | None) -> float | None:
    """Explicit square footage, or None when missing or not a usable positive number."""
    if selection is None or selection.measurements is None:
        return None
    sqft = selection.measurements.square_feet
    return sqft if sqft and sqft > 0 else None


def _price_for(sqft: float, scope: str, config: PricingConfig) -> PriceRange:
    rate = config.painting_price_per_sqft[scope]
    price = PriceRange(low=round_half_up(sqft * rate.low), high=round_half_up(sqft * rate.high))
    price.low = max(price.low, config.labor_floor_low)
    price.high = max(price.high, config.labor_floor_high)
    return price


def apply_guardrails(
    findings: list[Finding],
    selection: ScopeSelection | None = None,
    is_painting_job: bool = False,
    config: PricingConfig | None = None,
) -> GuardrailResult:
    config = config or settings.pricing
    if not is_painting_job and not _has_painting_findings(findings):
        return _apply_generic_guardrails(findings, selection)

    warnings: list[str] = []
    scope = _paint_scope(selection)
    sqft = measured_square_feet(selection)

    if scope is None:
        warnings.append("Painting scope not confirmed - defaulting to minimum (spot repair)")
        result = GuardrailResult(
            approved=True,
            requires_confirmation=True,
            reason="Painting scope ambiguous - please confirm scope before final pricing",
            suggested_price=_price_for(config.default_sqft[DEFAULT_PAINT_SCOPE], DEFAULT_PAINT_SCOPE, config),
            warnings=warnings,
            default_scope=DEFAULT_PAINT_SCOPE,
        )
        logger.info("pricing.guardrails.default scope=%s price=%s", DEFAULT_PAINT_SCOPE, result.suggested_price)
        return result

    if scope not in config.painting_price_per_sqft:
        warnings.append(f"Unknown painting scope '{scope}' - priced as spot repair")
        scope = DEFAULT_PAINT_SCOPE

    estimated = sqft
    if not estimated:
        estimated = config.default_sqft[scope]
        if scope == "entire_room":
            warnings.append("Room size not specified - using average estimate")
        elif scope == "entire_house":
            warnings.append("House size not specified - using average estimate")

    requires_confirmation = (
        (scope == "entire_room" and not sqft)
        or scope == "entire_house"
        or (estimated > config.large_scope_sqft and not sqft)
    )
    if requires_confirmation and not sqft:
        warnings.append(f"Large scope ({scope.replace('_', ' ')}) - please confirm room dimensions")

    price = _price_for(estimated, scope, config)
    logger.info(
        "pricing.guardrails.painting scope=%s sqft=%s price=%s confirm=%s",
        scope, estimated, price, requires_confirmation,
    )
    return GuardrailResult(
        approved=True,
        requires_confirmation=requires_confirmation,
        suggested_price=price,
        warnings=warnings,
        default_scope=scope,
    )


def _apply_generic_guardrails(findings: list[Finding], selection: ScopeSelection | None) -> GuardrailResult:
    warnings: list[str] = []
    tier = selection.selected_tier_id if selection else None
    if not tier:
        warnings.append("No scope tier selected - using recommended scope")

    high_severity = sum(1 for f in findings if f.severity == "high")
    if tier and "minimum" in tier:
        if len(findings) > MINIMUM_TIER_MAX_FINDINGS:
            warnings.append(
                f"{len(findings)} issues identified but minimum scope selected - some issues may not be addressed"
            )
        if high_severity:
            warnings.append(f"{high_severity} high-severity issue(s) may require attention beyond minimum scope")

    return GuardrailResult(
        approved=True,
        requires_confirmation=not tier or len(findings) > CONFIRM_ABOVE_FINDINGS,
        reason=None if tier else "Please confirm scope before final pricing",
        warnings=warnings,
        default_scope=tier or DEFAULT_TIER,
    )


def validate_scope_vs_findings(
    findings: list[Finding],
    selection: ScopeSelection,
    tier: ScopeTier | None = None,
) -> ScopeValidation:
    """Flag selections that look too large or too small for what the photos show."""
    warnings: list[str] = []
    painting = [f for f in findings if f.category == "painting" or "paint" in f.issue.lower()]
    scope = _paint_scope(selection)

    if scope == "entire_house" and len(painting) == 1:
        warnings.append("Warning: Only one painting issue detected but entire house scope selected")
    if scope == "entire_room" and len(painting) == 1:
        warnings.append("Note: Only one area photographed - confirm entire room needs painting")
    if scope == "spot_repair" and len(painting) > 3:
        warnings.append("Multiple painting issues detected - spot repair may not address all issues")

    if tier is not None and tier.price_range and findings:
        spread_per_finding = (tier.price_range.high - tier.price_range.low) / len(findings)
        if spread_per_finding < 20 and any(f.severity == "high" for f in findings):
            warnings.append("Selected tier price seems low for high-severity findings")

    return ScopeValidation(valid=not warnings, warnings=warnings)


def get_price_multiplier(selection: ScopeSelection, config: PricingConfig | None = None) -> float:
    config = config or settings.pricing
    answers = selection.answers
    multiplier = 1.0
    if answers.get("color_change") is True:
        multiplier *= config.color_change_factor
    ceiling = answers.get("ceiling_height")
    if ceiling == "tall":
        multiplier *= config.tall_ceiling_factor
    elif ceiling == "vaulted":
        multiplier *= config.vaulted_ceiling_factor
    if answers.get("include_ceiling") is True:
        multiplier *= config.include_ceiling_factor
    return multiplier


def format_price_range(price: PriceRange) -> str:
    if price.low == price.high:
        return f"${price.low:,}"
    return f"${price.low:,} - ${price.high:,}"


def is_large_scope(scope: str | None = None, square_feet: float | None = None) -> bool:
    if scope == "entire_house":
        return True
    if scope == "entire_room" and (not square_feet or square_feet > 300):
        return True
    return bool(square_feet and square_feet > 500)
