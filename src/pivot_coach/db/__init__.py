"""Database module for the context store."""

from .database import Base, create_db_engine, init_db
from .models import ContactRecord, DocumentRecord
from .vectors import decode_vector, encode_vector

__all__ = [
    "Base",
    "create_db_engine",
    "init_db",
    "ContactRecord",
    "DocumentRecord",
    "decode_vector",
    "encode_vector",
]
