from typing import Literal

from pydantic import BaseModel, Field, model_validator


class DetectorLabel(BaseModel):
    name: str
    confidence: float = Field(ge=0, le=100)


class DetectorResult(BaseModel):
    provider: Literal["google"] = "google"
    service: Literal["vision"] = "vision"
    model: str = "LABEL_DETECTION"
    labels: list[DetectorLabel] = []


class DetectedObject(BaseModel):
    name: str
    notes: str | None = None


class LlmVisionResult(BaseModel):
    provider: Literal["openai"] = "openai"
    model: str = ""
    schema_version: Literal["v1"] = "v1"
    confidence: float = Field(default=0.5, ge=0, le=1)
    kind_guess: str | None = None
    labels: list[str] = []
    objects: list[DetectedObject] = []
    materials: list[str] = []
    damage: list[str] = []
    issues: list[str] = []
    measurements: list[str] = []
    needs_more_photos: list[str] = []
    needs_clarification: bool = False
    scope_ambiguous: bool = False
    clarification_reasons: list[str] = []
    detected_trade: str | None = None
    is_painting_related: bool = False
    estimated_severity: Literal["spot", "partial", "full"] | None = None


class DetectorBranch(BaseModel):
    status: Literal["ready", "failed"]
    result: DetectorResult | None = None
    error: str | None = None


class LlmBranch(BaseModel):
    status: Literal["ready", "failed"]
    result: LlmVisionResult | None = None
    error: str | None = None


class CombinedFindings(BaseModel):
    confidence: float = Field(ge=0, le=1)
    summary_labels: list[str] = []
    needs_more_photos: list[str] = []
    needs_clarification: bool = False
    scope_ambiguous: bool = False
    clarification_reasons: list[str] = []
    detected_trade: str | None = None
    is_painting_related: bool = False
    estimated_severity: Literal["spot", "partial", "full"] | None = None


class PhotoFindings(BaseModel):
    """Structured per-photo analysis persisted on ``Photo.findings``."""

    version: Literal["v1"] = "v1"
    image_url: str
    kind: str
    detector: DetectorBranch
    llm: LlmBranch
    combined: CombinedFindings

    @model_validator(mode="after")
    def _one_provider_ready(self):
        if self.detector.status != "ready" and self.llm.status != "ready":
            raise ValueError("at least one vision provider must be ready")
        return self
