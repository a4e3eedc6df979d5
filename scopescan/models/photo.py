from sqlalchemy import Column, String, Integer, DateTime, JSON
from sqlalchemy import ForeignKey

from scopescan.database import Base
from scopescan.utils.clock import utcnow


class Photo(Base):
    __tablename__ = "photos"

    id = Column(String, primary_key=True)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=False, index=True)
    image_url = Column(String, nullable=False)
    kind = Column(String, nullable=False, default="site")

    # pending -> processing -> ready | pending (backoff) | failed
    findings_status = Column(String, nullable=False, default="pending")
    findings = Column(JSON, nullable=True)
    findings_error = Column(String, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    locked_by = Column(String, nullable=True)
    locked_at = Column(DateTime, nullable=True)
    next_attempt_at = Column(DateTime, nullable=True)
    analyzed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
