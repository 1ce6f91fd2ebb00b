"""
Document storage contract and its SQLAlchemy implementation.

Documents are JSON objects grouped into collections. Writes overwrite the
whole document atomically. Queries support equality filters on the indexed
fields only.
"""

from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Dict, List, Optional

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from shared.app_logging.logger import get_logger
from shared.errors import StorageUnavailable, StorageWriteFailure

from .models.document import Document

logger = get_logger("database.store")

ARTICLES = "articles"
PROFILES = "profiles"
SKIPPED = "skipped"

PROFILE_ID = "user-profile"

INDEXED_FIELDS = ("relevance", "topic_filtered")


def _check_document(doc: Dict[str, Any]) -> None:
    unset = [key for key, value in doc.items() if value is None]
    if unset:
        raise StorageWriteFailure(f"Document contains unset fields: {', '.join(sorted(unset))}")


class DocumentStore(ABC):
    """Any document store satisfying get/put/query."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def put(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> None:
        """Atomically overwrite the whole document."""

    @abstractmethod
    def add(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> bool:
        """Insert only if absent. Returns False when the id already exists."""

    @abstractmethod
    def query(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> bool:
        ...

    @abstractmethod
    def ping(self) -> None:
        """Raise StorageUnavailable if the store cannot be reached."""

    def exists(self, collection: str, doc_id: str) -> bool:
        return self.get(collection, doc_id) is not None


class SQLDocumentStore(DocumentStore):
    """Document store backed by a single SQLAlchemy table."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def _row_values(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "body": doc,
            "relevance": doc.get("relevance"),
            "topic_filtered": bool(doc.get("topic_filtered", False)),
        }

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        session = self._session_factory()
        try:
            row = session.get(Document, (collection, doc_id))
            return dict(row.body) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Error reading {collection}/{doc_id}: {e}")
            raise StorageUnavailable(str(e)) from e
        finally:
            session.close()

    def put(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> None:
        _check_document(doc)
        session = self._session_factory()
        try:
            row = session.get(Document, (collection, doc_id))
            values = self._row_values(doc)
            if row:
                for key, value in values.items():
                    setattr(row, key, value)
            else:
                session.add(Document(collection=collection, id=doc_id, **values))
            session.commit()
            logger.debug(f"Wrote {collection}/{doc_id}")
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error writing {collection}/{doc_id}: {e}")
            raise StorageWriteFailure(f"Failed to write {collection}/{doc_id}: {e}") from e
        finally:
            session.close()

    def add(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> bool:
        _check_document(doc)
        session = self._session_factory()
        try:
            session.add(Document(collection=collection, id=doc_id, **self._row_values(doc)))
            session.commit()
            return True
        except IntegrityError:
            session.rollback()
            logger.debug(f"{collection}/{doc_id} already exists")
            return False
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error inserting {collection}/{doc_id}: {e}")
            raise StorageWriteFailure(f"Failed to insert {collection}/{doc_id}: {e}") from e
        finally:
            session.close()

    def query(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        unknown = set(filters) - set(INDEXED_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported query fields: {', '.join(sorted(unknown))}")

        stmt = select(Document).where(Document.collection == collection)
        for field_name, value in filters.items():
            stmt = stmt.where(getattr(Document, field_name) == value)

        session = self._session_factory()
        try:
            return [dict(row.body) for row in session.scalars(stmt)]
        except SQLAlchemyError as e:
            logger.error(f"Error querying {collection} with {filters}: {e}")
            raise StorageUnavailable(str(e)) from e
        finally:
            session.close()

    def delete(self, collection: str, doc_id: str) -> bool:
        session = self._session_factory()
        try:
            row = session.get(Document, (collection, doc_id))
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error deleting {collection}/{doc_id}: {e}")
            raise StorageWriteFailure(f"Failed to delete {collection}/{doc_id}: {e}") from e
        finally:
            session.close()

    def ping(self) -> None:
        session = self._session_factory()
        try:
            session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Database unreachable: {e}") from e
        finally:
            session.close()


@lru_cache()
def get_document_store() -> DocumentStore:
    """Get the process-wide document store, creating tables on first use."""
    from shared.database.session import SessionLocal, init_db

    try:
        init_db()
    except SQLAlchemyError as e:
        raise StorageUnavailable(f"Database unreachable: {e}") from e
    return SQLDocumentStore(SessionLocal)
