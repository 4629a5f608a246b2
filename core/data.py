"""
Data Layer Base Classes.

The data layer provides the Repository pattern for data access.
This abstracts away the specific document store (Cosmos DB, in-memory)
and provides a clean interface for the processors.

Key principles:
- Repositories handle document CRUD only
- No business logic in repositories
- Documents are plain dicts carrying an "id" and an "_etag"
- Support for different backends via dependency injection
"""

import copy
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Generic, Iterator, List, Optional, TypeVar

from .errors import ConcurrencyConflict, NotFound, PosError

# Type variable for entity types
T = TypeVar("T")

Document = Dict[str, Any]


class DuplicateDocument(PosError):
    """A document with the same id already exists."""

    code = "duplicate"
    status_code = 409


@dataclass
class QueryOptions:
    """
    Options for repository queries.

    Attributes:
        filters: Equality filters, keyed by (dotted) field path
        prefix_filters: Case-sensitive "starts with" filters
        search: Case-insensitive substring matched against search_fields
        search_fields: Fields (dotted paths) searched by `search`
        min_filters: Inclusive lower bounds (field >= value)
        max_filters: Inclusive upper bounds (field <= value)
        exclude: Inequality filters (field != value)
    """
    limit: int = 100
    offset: int = 0
    order_by: Optional[str] = None
    order_desc: bool = False
    filters: Dict[str, Any] = field(default_factory=dict)
    prefix_filters: Dict[str, str] = field(default_factory=dict)
    search: Optional[str] = None
    search_fields: List[str] = field(default_factory=list)
    min_filters: Dict[str, Any] = field(default_factory=dict)
    max_filters: Dict[str, Any] = field(default_factory=dict)
    exclude: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QueryResult(Generic[T]):
    """Result of a repository query with pagination info."""
    data: List[T]
    total_count: int
    has_more: bool
    next_offset: Optional[int] = None


class Repository(ABC):
    """
    Abstract base class for document repositories.

    A Repository provides data access methods for one document container.
    It abstracts the underlying data store and provides a consistent interface.
    """

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[Document]:
        """
        Get a document by its ID.

        Args:
            id: The document's unique identifier

        Returns:
            The document if found, None otherwise
        """
        pass

    @abstractmethod
    def find(self, options: Optional[QueryOptions] = None) -> QueryResult[Document]:
        """
        Find documents matching the query options.

        Args:
            options: Query options for filtering, pagination, sorting

        Returns:
            QueryResult containing the matching documents
        """
        pass

    @abstractmethod
    def create(self, entity: Document) -> Document:
        """
        Insert a new document.

        Raises:
            DuplicateDocument: If the id is already taken
        """
        pass

    @abstractmethod
    def save(self, entity: Document) -> Document:
        """
        Save a document (create or update).

        Args:
            entity: The document to save

        Returns:
            The saved document (with a fresh _etag)
        """
        pass

    @abstractmethod
    def replace(self, entity: Document, etag: str) -> Document:
        """
        Replace a document only if it is unchanged since it was read.

        Args:
            entity: The new document body
            etag: The _etag the caller read

        Raises:
            ConcurrencyConflict: If the stored document has moved on
            NotFound: If the document no longer exists
        """
        pass

    @abstractmethod
    def increment(
        self,
        id: str,
        deltas: Dict[str, float],
        set_fields: Optional[Dict[str, Any]] = None,
    ) -> Document:
        """
        Atomically add deltas to numeric top-level fields.

        Args:
            id: The document id
            deltas: Amount to add, keyed by field name
            set_fields: Fields overwritten in the same operation

        Returns:
            The document after the increment
        """
        pass

    @abstractmethod
    def delete(self, id: str) -> bool:
        """
        Delete a document by ID.

        Returns:
            True if deleted, False if not found
        """
        pass

    def count(self, options: Optional[QueryOptions] = None) -> int:
        """Count documents matching the options."""
        return self.find(options or QueryOptions(limit=0)).total_count


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================

def get_path(document: Document, path: str) -> Any:
    """Resolve a dotted path ("customer.name") inside a document."""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _sort_key(value: Any):
    # None sorts first; mixed types are compared by their string form
    if value is None:
        return (0, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value)
    return (2, str(value))


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory document container.

    Mirrors the Cosmos DB semantics the application relies on: generated
    _etag per write, conditional replace and atomic increments. Used for
    local development (DATA_BACKEND=memory) and the test suite.
    """

    def __init__(self, name: str = "documents"):
        self.name = name
        self._documents: Dict[str, Document] = {}
        self._lock = threading.RLock()

    def _stamp(self, entity: Document) -> Document:
        stored = copy.deepcopy(entity)
        stored["_etag"] = uuid.uuid4().hex
        return stored

    def get_by_id(self, id: str) -> Optional[Document]:
        with self._lock:
            document = self._documents.get(id)
            return copy.deepcopy(document) if document is not None else None

    def _matches(self, document: Document, options: QueryOptions) -> bool:
        for path, expected in options.filters.items():
            if get_path(document, path) != expected:
                return False
        for path, unwanted in options.exclude.items():
            if get_path(document, path) == unwanted:
                return False
        for path, prefix in options.prefix_filters.items():
            value = get_path(document, path)
            if not isinstance(value, str) or not value.startswith(prefix):
                return False
        for path, lower in options.min_filters.items():
            value = get_path(document, path)
            if value is None or value < lower:
                return False
        for path, upper in options.max_filters.items():
            value = get_path(document, path)
            if value is None or value > upper:
                return False
        if options.search:
            term = options.search.lower()
            hit = False
            for path in options.search_fields:
                value = get_path(document, path)
                if isinstance(value, str) and term in value.lower():
                    hit = True
                    break
            if not hit:
                return False
        return True

    def find(self, options: Optional[QueryOptions] = None) -> QueryResult[Document]:
        options = options or QueryOptions()
        with self._lock:
            matched = [d for d in self._documents.values() if self._matches(d, options)]
            if options.order_by:
                matched.sort(
                    key=lambda d: _sort_key(get_path(d, options.order_by)),
                    reverse=options.order_desc,
                )
            total = len(matched)
            page = matched[options.offset:options.offset + options.limit]
            data = [copy.deepcopy(d) for d in page]

        next_offset = options.offset + len(data)
        has_more = next_offset < total
        return QueryResult(
            data=data,
            total_count=total,
            has_more=has_more,
            next_offset=next_offset if has_more else None,
        )

    def create(self, entity: Document) -> Document:
        with self._lock:
            if entity["id"] in self._documents:
                raise DuplicateDocument(f"{self.name} document {entity['id']} already exists")
            stored = self._stamp(entity)
            self._documents[stored["id"]] = stored
            return copy.deepcopy(stored)

    def save(self, entity: Document) -> Document:
        with self._lock:
            stored = self._stamp(entity)
            self._documents[stored["id"]] = stored
            return copy.deepcopy(stored)

    def replace(self, entity: Document, etag: str) -> Document:
        with self._lock:
            current = self._documents.get(entity["id"])
            if current is None:
                raise NotFound(f"{self.name} document {entity['id']} not found")
            if current.get("_etag") != etag:
                raise ConcurrencyConflict(
                    f"{self.name} document {entity['id']} was modified concurrently"
                )
            stored = self._stamp(entity)
            self._documents[stored["id"]] = stored
            return copy.deepcopy(stored)

    def increment(
        self,
        id: str,
        deltas: Dict[str, float],
        set_fields: Optional[Dict[str, Any]] = None,
    ) -> Document:
        with self._lock:
            current = self._documents.get(id)
            if current is None:
                raise NotFound(f"{self.name} document {id} not found")
            updated = dict(current)
            for field_name, delta in deltas.items():
                updated[field_name] = (current.get(field_name) or 0) + delta
            updated.update(set_fields or {})
            stored = self._stamp(updated)
            self._documents[id] = stored
            return copy.deepcopy(stored)

    def delete(self, id: str) -> bool:
        with self._lock:
            return self._documents.pop(id, None) is not None


# =============================================================================
# HELPERS
# =============================================================================

PAGE_SIZE = 500


def public_document(doc: Document) -> Document:
    """Strip store metadata (_etag, _rid, _ts, ...) from a document."""
    return {k: v for k, v in doc.items() if not k.startswith("_")}


def iter_documents(repository: Repository, options: Optional[QueryOptions] = None) -> Iterator[Document]:
    """Page through every document matching the options."""
    options = options or QueryOptions()
    offset = 0
    while True:
        page = repository.find(replace(options, limit=PAGE_SIZE, offset=offset))
        yield from page.data
        if not page.has_more:
            return
        offset = page.next_offset
