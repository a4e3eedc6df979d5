from typing import Literal, Union

from pydantic import BaseModel, Field

FindingCategory = Literal[
    "damage",
    "repair",
    "maintenance",
    "upgrade",
    "inspection",
    "painting",
    "plumbing",
    "electrical",
    "structural",
    "other",
]
Severity = Literal["low", "medium", "high"]


class Finding(BaseModel):
    id: str
    issue: str
    description: str | None = None
    confidence: float = Field(ge=0, le=1)
    location_guess: str | None = None
    category: FindingCategory
    photo_ids: list[str] = []
    severity: Severity | None = None


class Unknown(BaseModel):
    id: str
    description: str
    impacts_scope: bool = True
    impacts_pricing: bool = True


class ScopeOption(BaseModel):
    value: str
    label: str
    description: str | None = None
    price_multiplier: float | None = None
    estimated_sqft: float | None = None
    is_default: bool | None = None


class ClarifyingQuestion(BaseModel):
    id: str
    question: str
    question_type: Literal["single_select", "multi_select", "number", "text", "boolean"]
    options: list[ScopeOption] | None = None
    unit: str | None = None
    min_value: float | None = None
    max_value: float | None = None
    required: bool = True
    default_value: Union[bool, float, str, None] = None
    help_text: str | None = None
    impact_area: Literal["scope", "pricing", "timeline", "materials"] | None = None


class PriceRange(BaseModel):
    low: int
    high: int


class DayRange(BaseModel):
    low: int
    high: int


class ScopeTier(BaseModel):
    id: str
    name: str
    description: str
    level: Literal["minimum", "recommended", "premium"]
    scope_items: list[str]
    estimated_days: DayRange
    price_range: PriceRange | None = None
    requires_confirmation: bool = False
    warnings: list[str] = []


class Measurements(BaseModel):
    square_feet: float | None = Field(default=None, gt=0)
    linear_feet: float | None = Field(default=None, gt=0)
    room_count: int | None = Field(default=None, gt=0)
    wall_count: int | None = Field(default=None, gt=0)
    ceiling_height: float | None = Field(default=None, gt=0)


class ScopeSelection(BaseModel):
    selected_tier_id: str | None = None
    answers: dict[str, Union[bool, float, str, list[str]]] = {}
    confirmed_scope_items: list[str] | None = None
    measurements: Measurements | None = None
    problem_statement: str | None = None


class FindingsSummary(BaseModel):
    status: Literal["ready", "analyzing", "no_photos"]
    findings: list[Finding] = []
    unknowns: list[Unknown] = []
    needs_clarification: bool = False
    clarifying_questions: list[ClarifyingQuestion] = []
    suggested_tiers: list[ScopeTier] | None = None
    overall_confidence: float = Field(default=0, ge=0, le=1)
    photos_analyzed: int = 0
    photos_total: int = 0
    suggested_problem: str | None = None
    needs_more_photos: list[str] | None = None
    detected_trade: str | None = None
    is_painting_job: bool = False
