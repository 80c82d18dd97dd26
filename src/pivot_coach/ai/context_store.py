"""
Context Store.

SQLite-backed store of (content, embedding) documents keyed by owner
(contact or session), searched by brute-force cosine similarity.
Also persists contacts for prompt grounding.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..db.database import create_db_engine, init_db
from ..db.models import ContactRecord, DocumentRecord
from ..db.vectors import decode_vector, encode_vector
from ..errors import EmbeddingUnavailable, OpenFailed, QueryFailed
from ..models.schemas import Contact, ContextDocument
from .embeddings import EmbeddingEngine

logger = logging.getLogger(__name__)


class ContextStore:
    """
    Persistent vector store for coaching context.

    All access goes through a single lock per instance, so writes are
    serialized and never overlap a read.
    """

    def __init__(self, db_path: Path, embeddings: EmbeddingEngine):
        """
        Open (or create) the store.

        Args:
            db_path: SQLite file path
            embeddings: Engine used to embed documents and queries

        Raises:
            OpenFailed: If the file cannot be opened or initialized
        """
        self.db_path = Path(db_path)
        self.embeddings = embeddings
        self._lock = threading.RLock()
        self._dimensions: Optional[int] = None

        try:
            self._engine = create_db_engine(self.db_path)
            self._session_factory = init_db(self._engine)
        except (SQLAlchemyError, OSError) as e:
            raise OpenFailed(f"Cannot open context store {self.db_path}: {e}") from e

        logger.info(f"Context store opened: {self.db_path} ({self.count()} documents)")

    def close(self) -> None:
        """Dispose of pooled connections."""
        self._engine.dispose()

    # ============================================
    # Documents
    # ============================================

    def upsert(self, doc: ContextDocument) -> bool:
        """
        Insert or replace a document by id.

        Documents whose content cannot be embedded are skipped.

        Returns:
            True if the document was stored
        """
        vector = doc.vector if doc.vector else self.embeddings.embed(doc.content)
        if vector is None:
            logger.warning(f"Could not create embedding for: {doc.content[:50]}...")
            return False

        with self._lock:
            dimensions = self._stored_dimensions()
            if dimensions is not None and len(vector) != dimensions:
                raise QueryFailed(
                    f"vector has {len(vector)} dimensions, store uses {dimensions}"
                )

            with self._session_factory() as session:
                try:
                    record = session.get(DocumentRecord, doc.id)
                    if record is None:
                        next_seq = (session.query(func.max(DocumentRecord.seq)).scalar() or 0) + 1
                        record = DocumentRecord(id=doc.id, seq=next_seq)
                        session.add(record)

                    record.contact_id = doc.owner_id
                    record.type = doc.kind
                    record.content = doc.content
                    record.embedding = encode_vector(vector)
                    record.created_at = doc.created_at
                    session.commit()
                except SQLAlchemyError as e:
                    session.rollback()
                    raise QueryFailed(str(e)) from e

            self._dimensions = len(vector)

        logger.debug(f"Upserted document: {doc.id}")
        return True

    def search(
        self,
        query: str,
        owner_id: Optional[str] = None,
        limit: int = 5,
    ) -> list[tuple[str, float]]:
        """
        Find the documents most similar to a query.

        Args:
            query: Query text
            owner_id: Restrict to one owner (None searches everything)
            limit: Maximum number of results

        Returns:
            (content, score) pairs by descending score; ties keep insertion order
        """
        if limit <= 0:
            return []

        query_vector = self.embeddings.embed(query)
        if query_vector is None:
            return []

        with self._lock, self._session_factory() as session:
            try:
                rows = session.query(DocumentRecord.content, DocumentRecord.embedding)
                if owner_id is not None:
                    rows = rows.filter(DocumentRecord.contact_id == owner_id)
                rows = rows.order_by(DocumentRecord.seq).all()
            except SQLAlchemyError as e:
                raise QueryFailed(str(e)) from e

        results = [
            (content, EmbeddingEngine.similarity(query_vector, decode_vector(blob)))
            for content, blob in rows
        ]
        # sort() is stable, so equal scores stay in insertion order
        results.sort(key=lambda item: item[1], reverse=True)
        return results[:limit]

    def get(self, doc_id: str) -> Optional[ContextDocument]:
        """Get a document by id."""
        with self._lock, self._session_factory() as session:
            try:
                record = session.get(DocumentRecord, doc_id)
            except SQLAlchemyError as e:
                raise QueryFailed(str(e)) from e

            if record is None:
                return None

            return ContextDocument(
                id=record.id,
                owner_id=record.contact_id,
                kind=record.type,
                content=record.content,
                vector=decode_vector(record.embedding).tolist(),
                created_at=record.created_at,
            )

    def delete_by_owner(self, owner_id: str) -> int:
        """
        Delete all documents of an owner.

        Returns:
            Number of documents deleted
        """
        with self._lock, self._session_factory() as session:
            try:
                deleted = (
                    session.query(DocumentRecord)
                    .filter(DocumentRecord.contact_id == owner_id)
                    .delete(synchronize_session=False)
                )
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise QueryFailed(str(e)) from e

        logger.info(f"Deleted {deleted} documents for owner {owner_id}")
        return deleted

    def count(self) -> int:
        """Number of stored documents."""
        with self._lock, self._session_factory() as session:
            try:
                return session.query(DocumentRecord).count()
            except SQLAlchemyError as e:
                raise QueryFailed(str(e)) from e

    def ingest_directory(
        self,
        docs_dir: Path,
        owner_id: Optional[str] = None,
        kind: str = "note",
    ) -> int:
        """
        Bulk load .txt and .md files as documents.

        Document ids are the file stems, prefixed by the owner when given.

        Returns:
            Number of documents stored

        Raises:
            EmbeddingUnavailable: No word-embedding table is loaded
        """
        if not self.embeddings.is_available:
            raise EmbeddingUnavailable("No word-embedding table loaded, nothing can be indexed")

        docs_dir = Path(docs_dir)
        stored = 0

        for pattern in ("**/*.txt", "**/*.md"):
            for file_path in sorted(docs_dir.glob(pattern)):
                try:
                    content = file_path.read_text(encoding="utf-8").strip()
                except (OSError, UnicodeDecodeError) as e:
                    logger.warning(f"Skipping unreadable file {file_path}: {e}")
                    continue
                if not content:
                    continue

                doc_id = f"{owner_id}:{file_path.stem}" if owner_id else file_path.stem
                if self.upsert(ContextDocument(id=doc_id, owner_id=owner_id, kind=kind, content=content)):
                    stored += 1

        logger.info(f"Loaded {stored} documents from {docs_dir}")
        return stored

    def _stored_dimensions(self) -> Optional[int]:
        if self._dimensions is None:
            with self._session_factory() as session:
                try:
                    blob = session.query(DocumentRecord.embedding).limit(1).scalar()
                except SQLAlchemyError as e:
                    raise QueryFailed(str(e)) from e
            if blob is not None:
                self._dimensions = len(decode_vector(blob))
        return self._dimensions

    # ============================================
    # Contacts
    # ============================================

    def upsert_contact(self, contact: Contact) -> None:
        """Insert or replace a contact."""
        with self._lock, self._session_factory() as session:
            try:
                record = session.get(ContactRecord, contact.id)
                if record is None:
                    record = ContactRecord(id=contact.id)
                    session.add(record)

                record.first_name = contact.first_name
                record.last_name = contact.last_name
                record.email = contact.email
                record.company = contact.company
                record.phone = contact.phone
                record.deal_stage = contact.deal_stage
                record.notes = list(contact.notes)
                record.last_activity = contact.last_activity
                record.synced_at = datetime.now()
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise QueryFailed(str(e)) from e

    def get_contact(self, contact_id: str) -> Optional[Contact]:
        """Get a contact by id."""
        with self._lock, self._session_factory() as session:
            try:
                record = session.get(ContactRecord, contact_id)
            except SQLAlchemyError as e:
                raise QueryFailed(str(e)) from e
            return self._to_contact(record) if record else None

    def list_contacts(self) -> list[Contact]:
        """All contacts ordered by last name."""
        with self._lock, self._session_factory() as session:
            try:
                records = (
                    session.query(ContactRecord)
                    .order_by(ContactRecord.last_name, ContactRecord.first_name)
                    .all()
                )
            except SQLAlchemyError as e:
                raise QueryFailed(str(e)) from e
            return [self._to_contact(r) for r in records]

    @staticmethod
    def _to_contact(record: ContactRecord) -> Contact:
        return Contact(
            id=record.id,
            first_name=record.first_name or "",
            last_name=record.last_name or "",
            email=record.email or "",
            company=record.company or "",
            phone=record.phone or "",
            deal_stage=record.deal_stage,
            notes=record.notes or [],
            last_activity=record.last_activity,
        )


class NullContextStore:
    """
    Stand-in used when the real store cannot be opened.

    Search always returns nothing and writes are dropped.
    """

    def upsert(self, doc: ContextDocument) -> bool:
        return False

    def search(
        self,
        query: str,
        owner_id: Optional[str] = None,
        limit: int = 5,
    ) -> list[tuple[str, float]]:
        return []

    def get(self, doc_id: str) -> Optional[ContextDocument]:
        return None

    def delete_by_owner(self, owner_id: str) -> int:
        return 0

    def count(self) -> int:
        return 0

    def ingest_directory(self, docs_dir: Path, owner_id: Optional[str] = None, kind: str = "note") -> int:
        return 0

    def upsert_contact(self, contact: Contact) -> None:
        return None

    def get_contact(self, contact_id: str) -> Optional[Contact]:
        return None

    def list_contacts(self) -> list[Contact]:
        return []

    def close(self) -> None:
        return None
