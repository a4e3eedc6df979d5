from sqlalchemy import Column, String, DateTime

from scopescan.database import Base
from scopescan.utils.clock import utcnow


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    address = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
