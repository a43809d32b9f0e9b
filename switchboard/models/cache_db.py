"""
Offline thread cache tables (SQLAlchemy).

Each row wraps one domain object as JSON together with the instant it was
captured (epoch milliseconds). Rows never expire on their own.
"""

from sqlalchemy import JSON, BigInteger, Column, String

from switchboard.core.database import Base


class ThreadMetadataRow(Base):
    """Cached ThreadMetadata keyed by thread id."""

    __tablename__ = "thread_metadata"

    id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    cached_at = Column(BigInteger, nullable=False, index=True)

    def __repr__(self):
        return f"<ThreadMetadataRow(id={self.id}, cached_at={self.cached_at})>"


class ThreadDetailRow(Base):
    """Cached ThreadDetail (bodies included) keyed by thread id."""

    __tablename__ = "thread_detail"

    id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    cached_at = Column(BigInteger, nullable=False)

    def __repr__(self):
        return f"<ThreadDetailRow(id={self.id}, cached_at={self.cached_at})>"
