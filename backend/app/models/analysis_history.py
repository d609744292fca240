import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Float, Integer, String, Text
from sqlalchemy.types import CHAR, TypeDecorator

from ..database import Base


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses CHAR(36) to store UUIDs as strings, compatible with all backends
    including SQLite.
    """

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            return uuid.UUID(value)
        return value


class AnalysisHistory(Base):
    __tablename__ = "analysis_history"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(128), nullable=True, index=True)
    session_id = Column(String(128), nullable=True, index=True)
    website_url = Column(String(2048), nullable=False)
    analysis_type = Column(String(64), nullable=False)
    status = Column(String(32), nullable=False, default="completed")  # completed | failed

    competitor_count = Column(Integer, nullable=False, default=0)
    primary_threshold = Column(Integer, nullable=True)
    average_threshold = Column(Float, nullable=True)
    median_threshold = Column(Float, nullable=True)

    result_json = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
