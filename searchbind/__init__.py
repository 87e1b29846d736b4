"""searchbind: full-text search for application entities.

Declare which attributes of an entity kind are searchable, keep a search
backend populated, and query it with free text and field conditions.
"""

from searchbind.backends import HttpSearchBackend, SqliteFtsBackend, build_backend
from searchbind.errors import (
    BackendError,
    BackendUnavailable,
    DocumentMappingError,
    DuplicateNamespace,
    EmptyQuery,
    InvalidCondition,
    InvalidSchema,
    InvalidSearchOption,
    MalformedBackendQuery,
    MissingEntityKey,
    SearchBindError,
    SearchRequestError,
    UnknownNamespace,
)
from searchbind.schema import SchemaDescriptor, SchemaRegistry
from searchbind.search.engine import SearchEngine, SearchPage
from searchbind.search.hydrator import SearchResult
from searchbind.search.indexer import IndexResult
from searchbind.search.tracking import ChangeTracker
from searchbind.store import SqlAlchemyEntityStore

__all__ = [
    "BackendError",
    "BackendUnavailable",
    "ChangeTracker",
    "DocumentMappingError",
    "DuplicateNamespace",
    "EmptyQuery",
    "HttpSearchBackend",
    "IndexResult",
    "InvalidCondition",
    "InvalidSchema",
    "InvalidSearchOption",
    "MalformedBackendQuery",
    "MissingEntityKey",
    "SchemaDescriptor",
    "SchemaRegistry",
    "SearchBindError",
    "SearchEngine",
    "SearchPage",
    "SearchRequestError",
    "SearchResult",
    "SqlAlchemyEntityStore",
    "SqliteFtsBackend",
    "UnknownNamespace",
    "build_backend",
]
