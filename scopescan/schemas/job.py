from datetime import datetime

from pydantic import BaseModel


class JobCreate(BaseModel):
    title: str
    address: str | None = None
    id: str | None = None


class JobResponse(BaseModel):
    id: str
    title: str
    address: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PhotoCreate(BaseModel):
    image_url: str
    kind: str = "site"


class PhotoResponse(BaseModel):
    id: str
    job_id: str
    image_url: str
    kind: str
    findings_status: str
    findings_error: str | None = None
    attempts: int
    analyzed_at: datetime | None = None

    model_config = {"from_attributes": True}


class AnalysisProgress(BaseModel):
    status: str
    photos_analyzed: int
    photos_total: int
    processed: int = 0
