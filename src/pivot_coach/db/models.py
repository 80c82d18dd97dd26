"""SQLAlchemy models for the context store."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, LargeBinary, String, Text

from .database import Base


class DocumentRecord(Base):
    """Context document with its embedding blob."""

    __tablename__ = "documents"

    id = Column(String(255), primary_key=True)
    contact_id = Column(String(255), nullable=True, index=True)
    type = Column(String(50), nullable=False, default="note")
    content = Column(Text, nullable=False)
    embedding = Column(LargeBinary, nullable=False)  # little-endian float64 array
    created_at = Column(DateTime, default=datetime.now)

    # Insertion order, used as the stable tie-break in similarity search
    seq = Column(Integer, nullable=False, default=0)


class ContactRecord(Base):
    """Locally persisted contact."""

    __tablename__ = "contacts"

    id = Column(String(255), primary_key=True)
    first_name = Column(String(100), default="")
    last_name = Column(String(100), default="")
    email = Column(String(255), default="")
    company = Column(String(255), default="")
    phone = Column(String(50), default="")
    deal_stage = Column(String(100), nullable=True)
    notes = Column(JSON, nullable=True)  # JSON array of strings
    last_activity = Column(DateTime, nullable=True)
    synced_at = Column(DateTime, default=datetime.now)
