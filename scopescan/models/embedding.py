from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey

from scopescan.database import Base
from scopescan.utils.clock import utcnow


class EmbeddingTask(Base):
    __tablename__ = "embedding_tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default="pending")  # pending, processing, done, failed
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime, nullable=True)
    locked_by = Column(String, nullable=True)
    locked_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    error = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)


class JobEmbedding(Base):
    __tablename__ = "job_embeddings"

    job_id = Column(String, ForeignKey("jobs.id"), primary_key=True)
    model = Column(String, nullable=False)
    embedding = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
