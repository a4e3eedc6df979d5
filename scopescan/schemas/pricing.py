from pydantic import BaseModel

from scopescan.schemas.findings import PriceRange


class GuardrailResult(BaseModel):
    approved: bool
    requires_confirmation: bool
    reason: str | None = None
    suggested_price: PriceRange | None = None
    warnings: list[str] = []
    default_scope: str | None = None


class ScopeValidation(BaseModel):
    valid: bool
    warnings: list[str] = []


class PricingResponse(BaseModel):
    guardrails: GuardrailResult
    validation: ScopeValidation | None = None
    price_multiplier: float = 1.0
    formatted_price: str | None = None
