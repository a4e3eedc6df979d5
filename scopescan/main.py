from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scopescan.config import settings
from scopescan.database import create_tables
from scopescan.routers.findings import router as findings_router
from scopescan.routers.jobs import router as jobs_router
from scopescan.routers.tasks import router as tasks_router
from scopescan.utils.exceptions import register_exception_handlers


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()
    yield


app = FastAPI(
    title="ScopeScan API",
    description="Photo triage to job scope: findings, clarifying questions and guarded pricing",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(jobs_router, prefix="/api/v1")
app.include_router(findings_router, prefix="/api/v1")
app.include_router(tasks_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    return {"status": "success", "data": {"service": "scopescan-api", "version": "0.1.0"}, "message": None}
