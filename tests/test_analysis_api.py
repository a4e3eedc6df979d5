from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from scopescan.database import async_session
from scopescan.main import app
from scopescan.models.embedding import EmbeddingTask
from scopescan.models.photo import Photo
from scopescan.services.analysis import advance_analysis, get_findings_summary
from scopescan.utils.exceptions import VisionFailedError

ANALYZE = "scopescan.services.vision_fusion.analyze_photo"


async def _create_job(client, photo_count=0):
    response = await client.post("/api/v1/jobs", json={"title": "Living room", "address": "12 Elm St"})
    assert response.status_code == 201
    job_id = response.json()["data"]["id"]
    for i in range(photo_count):
        response = await client.post(
            f"/api/v1/jobs/{job_id}/photos",
            json={"image_url": f"https://img.example.com/{job_id}/{i}.jpg", "kind": "interior"},
        )
        assert response.status_code == 201
    return job_id


async def _photos(job_id):
    async with async_session() as session:
        result = await session.execute(select(Photo).where(Photo.job_id == job_id).order_by(Photo.created_at))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_create_and_get_job():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post("/api/v1/jobs", json={"title": "Porch", "id": "job-fixed-id"})
        again = await client.post("/api/v1/jobs", json={"title": "Porch", "id": "job-fixed-id"})
        fetched = await client.get("/api/v1/jobs/job-fixed-id")

    assert response.json()["data"]["id"] == "job-fixed-id"
    assert again.status_code == 201
    assert fetched.json()["data"]["title"] == "Porch"


@pytest.mark.asyncio
async def test_unknown_job_returns_404():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        assert (await client.get("/api/v1/jobs/nonexistent")).status_code == 404
        assert (await client.get("/api/v1/jobs/nonexistent/findings")).status_code == 404
        assert (await client.post("/api/v1/jobs/nonexistent/photos/analyze")).status_code == 404
        response = await client.post("/api/v1/jobs/nonexistent/photos", json={"image_url": "https://img.example.com/x.jpg"})
        assert response.status_code == 404


@pytest.mark.asyncio
async def test_photos_start_pending():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        job_id = await _create_job(client, photo_count=2)
        response = await client.get(f"/api/v1/jobs/{job_id}/photos")

    photos = response.json()["data"]
    assert len(photos) == 2
    assert {p["findings_status"] for p in photos} == {"pending"}
    assert all(p["attempts"] == 0 for p in photos)


@pytest.mark.asyncio
async def test_findings_without_photos():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        job_id = await _create_job(client)
        response = await client.get(f"/api/v1/jobs/{job_id}/findings")

    data = response.json()["data"]
    assert data["status"] == "no_photos"
    assert data["photos_total"] == 0
    assert data["findings"] == []


@pytest.mark.asyncio
async def test_analyze_then_findings_summary(make_findings):
    painting = make_findings(issues=["peeling paint near window"], confidence=0.8)
    other = make_findings(issues=["Loose cabinet hinge"], confidence=0.8)
    analyze = AsyncMock(side_effect=[painting, painting, other])

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        job_id = await _create_job(client, photo_count=3)

        with patch(ANALYZE, new=analyze):
            started = await client.post(f"/api/v1/jobs/{job_id}/photos/analyze")
            pending = await client.get(f"/api/v1/jobs/{job_id}/findings")
            polled = await client.get(f"/api/v1/jobs/{job_id}/photos/analyze")

        findings = await client.get(f"/api/v1/jobs/{job_id}/findings")

    assert started.json()["data"] == {"status": "analyzing", "photos_analyzed": 2, "photos_total": 3, "processed": 2}
    assert pending.json()["data"]["status"] == "analyzing"
    assert polled.json()["data"]["status"] == "ready"
    assert analyze.await_count == 3

    data = findings.json()["data"]
    assert data["status"] == "ready"
    assert data["photos_analyzed"] == 3
    assert data["photos_total"] == 3
    assert data["is_painting_job"] is True
    assert data["needs_clarification"] is True
    assert [q["id"] for q in data["clarifying_questions"]] == [
        "paint_scope", "room_size", "ceiling_height", "include_ceiling", "color_change",
    ]
    peeling = [f for f in data["findings"] if f["category"] == "painting"]
    assert len(peeling) == 1
    assert len(peeling[0]["photo_ids"]) == 2
    assert data["overall_confidence"] == pytest.approx(0.82)

    async with async_session() as session:
        tasks = (await session.execute(select(EmbeddingTask).where(EmbeddingTask.job_id == job_id))).scalars().all()
    assert len(tasks) == 1
    assert tasks[0].status == "pending"


@pytest.mark.asyncio
async def test_pricing_endpoint_defaults_to_spot_repair(make_findings):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        job_id = await _create_job(client, photo_count=1)
        with patch(ANALYZE, new=AsyncMock(return_value=make_findings(issues=["Peeling paint on trim"]))):
            await client.post(f"/api/v1/jobs/{job_id}/photos/analyze")

        response = await client.post(f"/api/v1/jobs/{job_id}/pricing", json={})
        confirmed = await client.post(
            f"/api/v1/jobs/{job_id}/pricing",
            json={"answers": {"paint_scope": "entire_house", "color_change": True}},
        )
        negative = await client.post(
            f"/api/v1/jobs/{job_id}/pricing",
            json={"answers": {"paint_scope": "entire_room"}, "measurements": {"square_feet": -500}},
        )

    assert negative.status_code == 422

    data = response.json()["data"]
    assert data["guardrails"]["default_scope"] == "spot_repair"
    assert data["guardrails"]["requires_confirmation"] is True
    assert data["guardrails"]["suggested_price"] == {"low": 150, "high": 200}
    assert data["formatted_price"] == "$150 - $200"

    confirmed_data = confirmed.json()["data"]
    assert confirmed_data["guardrails"]["default_scope"] == "entire_house"
    assert confirmed_data["guardrails"]["requires_confirmation"] is True
    assert confirmed_data["validation"]["valid"] is False
    assert confirmed_data["price_multiplier"] == pytest.approx(1.2)


@pytest.mark.asyncio
async def test_pricing_before_analysis_conflicts():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        job_id = await _create_job(client, photo_count=1)
        response = await client.post(f"/api/v1/jobs/{job_id}/pricing", json={})
    assert response.status_code == 409
    assert response.json()["status"] == "error"
    assert response.json()["message"] == "Findings not ready (analyzing)"


@pytest.mark.asyncio
async def test_failed_analysis_goes_back_to_queue():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        job_id = await _create_job(client, photo_count=1)

    with patch(ANALYZE, new=AsyncMock(side_effect=VisionFailedError("detector=x llm=y"))):
        processed = await advance_analysis(job_id, 2, request_id="req-1")

    # The backoff keeps the photo from being picked up twice in one pass.
    assert processed == 1
    (photo,) = await _photos(job_id)
    assert photo.findings_status == "pending"
    assert photo.attempts == 1
    assert photo.findings_error.startswith("VISION_FAILED")
    assert photo.locked_by is None
    assert photo.findings is None

    summary = await get_findings_summary(job_id)
    assert summary.status == "analyzing"


@pytest.mark.asyncio
async def test_all_photos_failed_reports_no_photos_then_retry(make_findings):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        job_id = await _create_job(client, photo_count=1)
        async with async_session() as session:
            (photo,) = await _photos(job_id)
            photo = await session.get(Photo, photo.id)
            photo.findings_status = "failed"
            photo.attempts = 5
            photo.findings_error = "VISION_FAILED: detector=x llm=y"
            await session.commit()

        failed = await client.get(f"/api/v1/jobs/{job_id}/findings")

        with patch(ANALYZE, new=AsyncMock(return_value=make_findings(issues=["Loose hinge"]))):
            retried = await client.post(f"/api/v1/jobs/{job_id}/photos/retry")

        findings = await client.get(f"/api/v1/jobs/{job_id}/findings")

    assert failed.json()["data"]["status"] == "no_photos"
    assert failed.json()["data"]["photos_total"] == 1

    retry_data = retried.json()["data"]
    assert retry_data["reset"] == 1
    assert retry_data["processed"] == 1
    assert retry_data["status"] == "ready"

    data = findings.json()["data"]
    assert data["status"] == "ready"
    assert data["is_painting_job"] is False
    assert data["findings"][0]["issue"] == "Loose hinge"
