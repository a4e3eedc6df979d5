import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from scopescan.database import Base
from scopescan.models.job import Job
from scopescan.models.photo import Photo
from scopescan.models.embedding import EmbeddingTask, JobEmbedding


@pytest_asyncio.fixture
async def db_session():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session
    await engine.dispose()


@pytest.mark.asyncio
async def test_create_job(db_session):
    job = Job(id="job-001", title="Bedroom touch-up", address="12 Elm St")
    db_session.add(job)
    await db_session.commit()

    result = await db_session.get(Job, "job-001")
    assert result is not None
    assert result.title == "Bedroom touch-up"
    assert result.created_at is not None


@pytest.mark.asyncio
async def test_create_photo_defaults(db_session):
    db_session.add(Job(id="job-001", title="Bedroom touch-up"))
    photo = Photo(id="p-001", job_id="job-001", image_url="https://img.example.com/p-001.jpg")
    db_session.add(photo)
    await db_session.commit()

    result = await db_session.get(Photo, "p-001")
    assert result is not None
    assert result.kind == "site"
    assert result.findings_status == "pending"
    assert result.attempts == 0
    assert result.locked_by is None
    assert result.findings is None


@pytest.mark.asyncio
async def test_photo_findings_json_round_trip(db_session):
    db_session.add(Job(id="job-001", title="Bedroom touch-up"))
    db_session.add(Photo(
        id="p-001", job_id="job-001", image_url="https://img.example.com/p-001.jpg",
        findings={"combined": {"confidence": 0.82, "summary_labels": ["wall"]}},
    ))
    await db_session.commit()

    result = await db_session.get(Photo, "p-001")
    assert result.findings["combined"]["summary_labels"] == ["wall"]


@pytest.mark.asyncio
async def test_create_embedding_rows(db_session):
    db_session.add(Job(id="job-001", title="Bedroom touch-up"))
    task = EmbeddingTask(job_id="job-001")
    db_session.add(task)
    db_session.add(JobEmbedding(job_id="job-001", model="text-embedding-3-small", embedding=[0.1, 0.2]))
    await db_session.commit()

    assert task.id is not None
    assert task.status == "pending"
    assert task.attempts == 0

    emb = await db_session.get(JobEmbedding, "job-001")
    assert emb.embedding == [0.1, 0.2]
