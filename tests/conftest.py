import os
import tempfile

# Must be set before scopescan.config is imported anywhere.
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(tempfile.mkdtemp(), 'scopescan-test.sqlite3')}"

import pytest

from scopescan.models.photo import Photo
from scopescan.schemas.vision import DetectedObject, DetectorLabel, DetectorResult, LlmVisionResult
from scopescan.services.vision_fusion import fuse_results


@pytest.fixture(autouse=True, scope="session")
def setup_test_db():
    import asyncio

    # Providers must never be reached from tests
    from scopescan.config import settings
    settings.openai_api_key = ""
    settings.google_vision_api_key = ""

    from scopescan.database import create_tables

    asyncio.run(create_tables())


@pytest.fixture
def make_findings():
    """Build a fused per-photo findings record from LLM/detector fields."""

    def _make(
        damage=(),
        issues=(),
        objects=(),
        labels=(),
        confidence=0.8,
        detector_labels=None,
        llm_ready=True,
        **llm_fields,
    ):
        llm = None
        if llm_ready:
            llm = LlmVisionResult(
                model="gpt-4o-mini",
                confidence=confidence,
                damage=list(damage),
                issues=list(issues),
                objects=[DetectedObject(**o) for o in objects],
                labels=list(labels),
                **llm_fields,
            )
        detector = None
        if detector_labels is not None:
            detector = DetectorResult(labels=[DetectorLabel(name=n, confidence=c) for n, c in detector_labels])
        return fuse_results(
            "https://img.example.com/photo.jpg",
            "site",
            detector,
            llm,
            detector_error=None if detector else "DETECTOR_NO_API_KEY: not configured",
            llm_error=None if llm else "LLM_NO_API_KEY: not configured",
        )

    return _make


@pytest.fixture
def make_photo(make_findings):
    """A ready Photo row (not persisted) carrying fused findings."""

    def _make(photo_id, job_id="job-1", **finding_fields):
        record = make_findings(**finding_fields)
        return Photo(
            id=photo_id,
            job_id=job_id,
            image_url=record.image_url,
            kind="site",
            findings_status="ready",
            findings=record.model_dump(mode="json"),
        )

    return _make
