from enum import StrEnum

# Reserved backend field holding the namespace of every document.
TYPE_FIELD = "__type"

# Field names that collide with backend columns or query operators.
RESERVED_FIELD_NAMES: frozenset[str] = frozenset({"rank", "rowid", "AND", "OR", "NOT", "NEAR"})


class HydrationMode(StrEnum):
    FULL = "full"
    PARTIAL = "partial"
    SNIPPET = "snippet"


class FreeTextMode(StrEnum):
    """How unquoted free-text words are combined."""

    ALL_TOKENS = "all_tokens"
    PHRASE = "phrase"


class BackendKind(StrEnum):
    SQLITE = "sqlite"
    HTTP = "http"
