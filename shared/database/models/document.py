from sqlalchemy import JSON, Boolean, Column, DateTime, String, func

from ..base import Base


class Document(Base):
    __tablename__ = "documents"

    collection = Column(String(64), primary_key=True)
    id = Column(String(128), primary_key=True)
    body = Column(JSON, nullable=False)
    # Denormalized from body for equality queries
    relevance = Column(String(32), nullable=True, index=True)
    topic_filtered = Column(Boolean, nullable=True, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
