import uuid as uuid_mod

from fastapi import APIRouter, HTTPException, Request

from scopescan.database import async_session
from scopescan.models.job import Job
from scopescan.schemas.findings import ScopeSelection
from scopescan.schemas.pricing import PricingResponse
from scopescan.services.analysis import (
    advance_analysis,
    get_analysis_progress,
    get_findings_summary,
    retry_failed_photos,
)
from scopescan.services.clarification import generate_scope_tiers
from scopescan.services.pricing_guardrails import (
    apply_guardrails,
    format_price_range,
    get_price_multiplier,
    validate_scope_vs_findings,
)
from scopescan.utils.exceptions import AppException
from scopescan.utils.response import success_response

router = APIRouter(prefix="/jobs", tags=["findings"])

# Per-request photo budget: POST kicks off work, GET polls and nudges.
ANALYZE_POST_BATCH = 2
ANALYZE_POLL_BATCH = 1


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id") or uuid_mod.uuid4().hex[:12]


async def _require_job(job_id: str) -> None:
    async with async_session() as session:
        if not await session.get(Job, job_id):
            raise HTTPException(status_code=404, detail="Job not found")


@router.post("/{job_id}/photos/analyze")
async def start_analysis(job_id: str, request: Request):
    await _require_job(job_id)
    processed = await advance_analysis(job_id, ANALYZE_POST_BATCH, _request_id(request))
    progress = await get_analysis_progress(job_id, processed)
    return success_response(data=progress.model_dump())


@router.get("/{job_id}/photos/analyze")
async def poll_analysis(job_id: str, request: Request):
    await _require_job(job_id)
    processed = await advance_analysis(job_id, ANALYZE_POLL_BATCH, _request_id(request))
    progress = await get_analysis_progress(job_id, processed)
    return success_response(data=progress.model_dump())


@router.post("/{job_id}/photos/retry")
async def retry_analysis(job_id: str, request: Request):
    await _require_job(job_id)
    result = await retry_failed_photos(job_id, _request_id(request))
    progress = await get_analysis_progress(job_id, result["processed"])
    return success_response(data={"reset": result["reset"], **progress.model_dump()})


@router.get("/{job_id}/findings")
async def get_findings(job_id: str):
    await _require_job(job_id)
    summary = await get_findings_summary(job_id)
    return success_response(data=summary.model_dump(mode="json"))


@router.post("/{job_id}/pricing")
async def price_scope(job_id: str, selection: ScopeSelection):
    await _require_job(job_id)
    summary = await get_findings_summary(job_id)
    if summary.status != "ready":
        raise AppException(f"Findings not ready ({summary.status})", status_code=409)

    guardrails = apply_guardrails(summary.findings, selection, summary.is_painting_job)

    tier = None
    if selection.selected_tier_id:
        tiers = generate_scope_tiers(summary.findings, summary.is_painting_job, selection)
        tier = next((t for t in tiers if t.id == selection.selected_tier_id), None)

    response = PricingResponse(
        guardrails=guardrails,
        validation=validate_scope_vs_findings(summary.findings, selection, tier),
        price_multiplier=get_price_multiplier(selection),
        formatted_price=format_price_range(guardrails.suggested_price) if guardrails.suggested_price else None,
    )
    return success_response(data=response.model_dump(mode="json"))
