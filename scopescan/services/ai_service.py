import base64
import json
import logging
import time

from pydantic import ValidationError

from scopescan.config import settings
from scopescan.schemas.vision import LlmVisionResult
from scopescan.services.image_fetcher import content_type_for
from scopescan.utils.exceptions import ProviderError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are a senior field estimator helping contractors create accurate job scopes and quotes.

Identify ALL actionable issues a contractor should address, including:
- Visible damage (cracks, stains, rot, water damage, etc.)
- Missing components (missing light shades, missing hardware, incomplete fixtures)
- Items in disrepair or poor condition (worn, dated, broken, non-functional)
- Fixtures or elements that need replacement or upgrade
- Safety concerns (exposed wiring, unstable fixtures, hazards)

Rules:
- List physical damage in "damage" (cracks, stains, rot)
- List other issues in "issues" (missing parts, dated items, things needing replacement)
- Add notes to objects when they have problems (e.g. "Chandelier" with notes "missing glass shades")
- If unsure about details, add a needs_more_photos item
- Do not guess measurements. If unknown, leave measurements empty
- Set scope_ambiguous to true when the photo cannot tell how much work is needed
  (e.g. spot repair vs. whole wall), and explain why in clarification_reasons
- Set is_painting_related and detected_trade when the work is clearly one trade
- estimated_severity is "spot", "partial" or "full" (or null when unknown)

Respond ONLY with a JSON object (no extra text) with these keys:
{
  "schema_version": "v1",
  "confidence": 0.0-1.0,
  "kind_guess": string or null,
  "labels": [string],
  "objects": [{"name": string, "notes": string or null}],
  "materials": [string],
  "damage": [string],
  "issues": [string],
  "measurements": [string],
  "needs_more_photos": [string],
  "needs_clarification": bool,
  "scope_ambiguous": bool,
  "clarification_reasons": [string],
  "detected_trade": string or null,
  "is_painting_related": bool,
  "estimated_severity": "spot" | "partial" | "full" | null
}
"""


def _build_api_kwargs(model: str, messages: list[dict]) -> dict:
    """Build OpenAI API kwargs based on model type."""
    api_kwargs: dict = {
        "model": model,
        "messages": messages,
        "response_format": {"type": "json_object"},
    }

    if model.startswith("o"):
        # o-series reasoning models: no temperature, max_completion_tokens only
        api_kwargs["max_completion_tokens"] = 4096
    else:
        api_kwargs["max_tokens"] = 2000
        api_kwargs["temperature"] = 0.2

    return api_kwargs


def _strip_code_fences(raw_text: str) -> str:
    text = raw_text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = [l for l in lines if not l.strip().startswith("```")]
        text = "\n".join(lines)
    return text


def parse_llm_response(raw_text: str, model: str) -> LlmVisionResult:
    """Parse and validate the model's JSON answer."""
    if not raw_text.strip():
        raise ProviderError("OpenAI returned no content", code="LLM_EMPTY_RESPONSE")
    try:
        parsed = json.loads(_strip_code_fences(raw_text))
    except json.JSONDecodeError as e:
        logger.error("vision.llm.parse_error text=%s", raw_text[:200])
        raise ProviderError(f"Failed to parse response as JSON: {e}", code="LLM_PARSE_ERROR") from e
    if not isinstance(parsed, dict):
        raise ProviderError("Response JSON is not an object", code="LLM_PARSE_ERROR")

    # JSON mode sends null for absent lists
    cleaned = {k: v for k, v in parsed.items() if v is not None}
    cleaned.pop("provider", None)
    cleaned["model"] = model
    try:
        return LlmVisionResult.model_validate(cleaned)
    except ValidationError as e:
        raise ProviderError(f"Response failed validation: {e.error_count()} errors", code="LLM_SCHEMA_ERROR") from e


def _classify_openai_error(error: Exception) -> ProviderError | None:
    import openai

    if isinstance(error, openai.AuthenticationError):
        return ProviderError("Invalid OpenAI API key", code="LLM_AUTH_ERROR")
    if isinstance(error, openai.RateLimitError):
        return ProviderError("OpenAI rate limit exceeded, please retry", code="LLM_RATE_LIMITED")
    if isinstance(error, openai.BadRequestError) and "image" in str(error).lower():
        return ProviderError("OpenAI could not process the image - ensure it is a valid JPEG/PNG", code="LLM_IMAGE_ERROR")
    if isinstance(error, openai.APIError):
        return ProviderError(f"{type(error).__name__}: {error}", code="LLM_API_ERROR")
    return None


def _client():
    from openai import AsyncOpenAI

    if not settings.openai_api_key:
        # No API key = error, not silent mock
        raise ProviderError("OPENAI_API_KEY not configured", code="LLM_NO_API_KEY")
    return AsyncOpenAI(api_key=settings.openai_api_key, timeout=settings.http_timeout_seconds)


async def analyze_with_llm(image_bytes: bytes, kind: str, label_hints: list[str]) -> LlmVisionResult:
    """Ask the generative vision model for structured findings on one photo."""
    client = _client()
    model = settings.openai_vision_model
    b64 = base64.b64encode(image_bytes).decode("utf-8")

    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": f"Photo kind hint: {kind}\nDetector labels (hints): {', '.join(label_hints)}"},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{content_type_for(image_bytes)};base64,{b64}", "detail": "high"},
                },
            ],
        },
    ]

    start = time.monotonic()
    logger.info("vision.llm.request model=%s kind=%s hints=%d", model, kind, len(label_hints))
    try:
        response = await client.chat.completions.create(**_build_api_kwargs(model, messages))
    except Exception as e:
        classified = _classify_openai_error(e)
        logger.error("vision.llm.failed error=%s duration_ms=%d", type(e).__name__, int((time.monotonic() - start) * 1000))
        if classified is not None:
            raise classified from e
        raise

    raw_text = response.choices[0].message.content or ""
    result = parse_llm_response(raw_text, model)
    logger.info(
        "vision.llm.success model=%s confidence=%.2f damage=%d issues=%d objects=%d duration_ms=%d",
        model, result.confidence, len(result.damage), len(result.issues), len(result.objects),
        int((time.monotonic() - start) * 1000),
    )
    return result


async def embed_text(text: str) -> list[float]:
    """Embed a job description text with the configured embedding model."""
    client = _client()
    model = settings.openai_embedding_model
    try:
        response = await client.embeddings.create(model=model, input=text)
    except Exception as e:
        classified = _classify_openai_error(e)
        if classified is not None:
            raise classified from e
        raise
    return list(response.data[0].embedding)
