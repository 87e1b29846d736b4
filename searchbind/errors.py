"""Exception hierarchy for the search binding layer.

Configuration errors (``InvalidSchema``, ``DuplicateNamespace``,
``UnknownNamespace``) are raised while registering or resolving index
definitions.  Caller errors (``SearchRequestError`` subclasses) are raised
before any request reaches the backend.  Backend errors wrap transport and
query failures reported by the search service.
"""

from __future__ import annotations


class SearchBindError(Exception):
    """Base class for all errors raised by searchbind."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class InvalidSchema(SearchBindError):
    """Raised when an index definition is malformed (bad namespace or fields)."""


class DuplicateNamespace(SearchBindError):
    """Raised when a namespace is registered twice.

    Attributes:
        namespace: The namespace that was already registered.
    """

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace
        super().__init__(f"Namespace '{namespace}' is already registered")


class UnknownNamespace(SearchBindError):
    """Raised when a namespace has no registered index definition.

    Attributes:
        namespace: The namespace that was looked up.
    """

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace
        super().__init__(f"Namespace '{namespace}' is not registered")


# ---------------------------------------------------------------------------
# Document mapping
# ---------------------------------------------------------------------------


class DocumentMappingError(SearchBindError):
    """Raised when an entity cannot be converted into an index document."""


class MissingEntityKey(DocumentMappingError):
    """Raised when an entity has no value for its key attribute."""

    def __init__(self, namespace: str, key_attr: str) -> None:
        self.namespace = namespace
        self.key_attr = key_attr
        super().__init__(f"Entity for namespace '{namespace}' has no value for key attribute '{key_attr}'")


# ---------------------------------------------------------------------------
# Caller errors
# ---------------------------------------------------------------------------


class SearchRequestError(SearchBindError):
    """Base class for invalid search requests, rejected before the backend is called."""


class EmptyQuery(SearchRequestError):
    """Raised when neither a search term nor conditions were given."""

    def __init__(self) -> None:
        super().__init__("Nothing to search: empty term and no conditions")


class InvalidCondition(SearchRequestError):
    """Raised when a query condition has an unknown field or an unusable value."""


class InvalidSearchOption(SearchRequestError):
    """Raised for invalid fetch/snippet fields or pagination values."""


# ---------------------------------------------------------------------------
# Backend errors
# ---------------------------------------------------------------------------


class BackendError(SearchBindError):
    """Raised when the search backend rejects a request."""


class BackendUnavailable(BackendError):
    """Raised when the search backend cannot be reached (connection, timeout, 5xx)."""


class MalformedBackendQuery(BackendError):
    """Raised when the backend rejects a translated query string.

    This indicates a defect in query translation rather than a caller error.

    Attributes:
        query: The query string the backend rejected.
        detail: The backend's error message.
    """

    def __init__(self, query: str, detail: str | None = None) -> None:
        self.query = query
        self.detail = detail
        message = f"Search backend rejected query {query!r}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
