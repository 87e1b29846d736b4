# @TASK P2-T2.1 - Free text + condition map to backend query translation
# @TEST tests/test_translator.py

"""Query translator.

Turns a free-text term plus a condition map into one backend query string:

- Free text is matched against every declared field.  Words are AND-ed
  (each must match somewhere in the document, in any order).  Uppercase
  ``OR`` between two words ORs them, ``NOT word`` excludes the word from the
  whole document, ``word*`` is a prefix match and ``"quoted words"`` form a
  phrase.
- ``{"tags": "decent"}`` scopes a value to one field; a list value requires
  every item, ``"terrible OR discontinued"`` requires either part.
- ``{"-href": "apple"}`` and ``{"NOT href": "apple"}`` exclude matching
  documents no matter what else matched.

Everything is lowercased; the backend lowercases documents at index time.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence, Set
from dataclasses import dataclass
from typing import Any

from searchbind.constants import TYPE_FIELD, FreeTextMode
from searchbind.errors import EmptyQuery, InvalidCondition
from searchbind.schema import SchemaDescriptor, SchemaRegistry
from searchbind.search.dialects import Fts5Dialect, QueryDialect
from searchbind.search.query import Exclude, Match, Node, conjoin, disjoin

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r'"([^"]*)"|(\S+)')
_WORD_RE = re.compile(r"\w")
_NOT_KEY_RE = re.compile(r"^NOT\s+(\S+)$")

_OR = "OR"
_NOT = "NOT"
_VALUE_OR = " OR "

Conditions = Mapping[str, Any]


@dataclass(frozen=True)
class _Term:
    text: str
    prefix: bool = False
    quoted: bool = False


def _make_term(raw: str, quoted: bool = False) -> _Term | None:
    """Normalize one word or phrase; None when nothing searchable remains."""
    text = raw.strip().lower()
    if not quoted and len(text) >= 2 and text[0] == text[-1] == '"':
        text = text[1:-1]
        quoted = True
    prefix = text.endswith("*")
    text = " ".join(text.rstrip("*").replace('"', " ").split())
    if not _WORD_RE.search(text):
        return None
    return _Term(text=text, prefix=prefix, quoted=quoted)


@dataclass
class _FreeText:
    groups: list[list[_Term]]
    negated: list[_Term]


class QueryTranslator:
    """Builds backend query strings from free text and condition maps.

    Args:
        registry: Registry used to resolve a namespace's declared fields.
        dialect: Renderer for the target backend's query language.
        free_text_mode: Whether unquoted words are matched independently
            (``all_tokens``) or as one phrase (``phrase``).
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        dialect: QueryDialect | None = None,
        free_text_mode: FreeTextMode = FreeTextMode.ALL_TOKENS,
    ) -> None:
        self._registry = registry
        self._dialect = dialect or Fts5Dialect()
        self._free_text_mode = FreeTextMode(free_text_mode)

    @property
    def dialect(self) -> QueryDialect:
        return self._dialect

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def translate(self, namespace: str, term: str = "", conditions: Conditions | None = None) -> str:
        """Translate a search request into the dialect's query string.

        Args:
            namespace: Registered namespace to search.
            term: Free-text term (may be empty).
            conditions: Field conditions (may be empty or None).

        Returns:
            The backend query string.

        Raises:
            UnknownNamespace: If the namespace is not registered.
            EmptyQuery: If there is nothing to search.
            InvalidCondition: If a condition is malformed.
        """
        query = self._dialect.render(self.build(namespace, term, conditions))
        logger.debug("Translated search on '%s' (term=%r, conditions=%r): %s", namespace, term, conditions, query)
        return query

    def build(self, namespace: str, term: str = "", conditions: Conditions | None = None) -> Node:
        """Build the clause tree for a search request (see :meth:`translate`)."""
        schema = self._registry.get(namespace)
        if conditions is None:
            conditions = {}
        if not isinstance(conditions, Mapping):
            raise InvalidCondition(f"Conditions must be a mapping, got {type(conditions).__name__}")
        if term is None:
            term = ""
        if not isinstance(term, str):
            raise InvalidCondition(f"Search term must be a string, got {type(term).__name__}")

        positives, negatives = self._free_text_clauses(schema, term)
        for raw_key, value in conditions.items():
            field, negated = self._parse_key(schema, raw_key)
            clause = self._condition_clause(field, value)
            (negatives if negated else positives).append(clause)

        if not positives and not negatives:
            raise EmptyQuery()

        # FTS5's NOT is binary: pure exclusions need a base matching the whole namespace.
        base = conjoin(positives) if positives else Match((TYPE_FIELD,), namespace.lower())
        if negatives:
            return Exclude(base, tuple(negatives))
        return base

    # ------------------------------------------------------------------
    # Free text
    # ------------------------------------------------------------------

    def _free_text_clauses(self, schema: SchemaDescriptor, term: str) -> tuple[list[Node], list[Node]]:
        parsed = self._parse_free_text(term)
        groups = parsed.groups
        if self._free_text_mode is FreeTextMode.PHRASE:
            groups = self._merge_phrases(groups)

        positives: list[Node] = [
            disjoin([Match(schema.fields, t.text, t.prefix) for t in group]) for group in groups
        ]
        negatives: list[Node] = [Match(schema.fields, t.text, t.prefix) for t in parsed.negated]
        return positives, negatives

    @staticmethod
    def _parse_free_text(term: str) -> _FreeText:
        groups: list[list[_Term]] = []
        negated: list[_Term] = []
        pending_not = False
        pending_or = False

        for match in _TOKEN_RE.finditer(term):
            quoted_text, word = match.group(1), match.group(2)
            if word == _NOT and not pending_not:
                pending_not = True
                continue
            if word == _OR and groups and not pending_or and not pending_not:
                pending_or = True
                continue

            parsed = _make_term(quoted_text, quoted=True) if quoted_text is not None else _make_term(word)
            if parsed is not None:
                if pending_not:
                    negated.append(parsed)
                elif pending_or:
                    groups[-1].append(parsed)
                else:
                    groups.append([parsed])
            pending_not = pending_or = False

        # Dangling operators are searched as plain words.
        if pending_not:
            groups.append([_Term("not")])
        if pending_or:
            groups.append([_Term("or")])
        return _FreeText(groups=groups, negated=negated)

    @staticmethod
    def _merge_phrases(groups: list[list[_Term]]) -> list[list[_Term]]:
        """Join runs of plain single words into one phrase each."""
        merged: list[list[_Term]] = []
        run: list[str] = []

        def flush() -> None:
            if run:
                merged.append([_Term(" ".join(run))])
                run.clear()

        for group in groups:
            single = group[0]
            if len(group) == 1 and not single.prefix and not single.quoted:
                run.append(single.text)
                continue
            flush()
            merged.append(group)
        flush()
        return merged

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_key(schema: SchemaDescriptor, raw_key: Any) -> tuple[str, bool]:
        if not isinstance(raw_key, str):
            raise InvalidCondition(f"Condition keys must be strings, got {raw_key!r}")
        key = raw_key.strip()
        negated = False
        if key.startswith("-"):
            key, negated = key[1:].strip(), True
        elif (not_match := _NOT_KEY_RE.match(key)) is not None:
            key, negated = not_match.group(1), True

        if not schema.has_field(key):
            raise InvalidCondition(f"Unknown field {key!r} for namespace '{schema.namespace}'")
        return key, negated

    def _condition_clause(self, field: str, value: Any) -> Node:
        if isinstance(value, str):
            return self._value_clause(field, value)
        if isinstance(value, (Sequence, Set)) and not isinstance(value, (bytes, bytearray)):
            items = list(value)
            if not items:
                raise InvalidCondition(f"Condition on {field!r} has an empty list of values")
            for item in items:
                if not isinstance(item, str):
                    raise InvalidCondition(f"Condition values for {field!r} must be strings, got {item!r}")
            return conjoin([self._value_clause(field, item) for item in items])
        raise InvalidCondition(
            f"Condition on {field!r} must be a string or a list of strings, got {type(value).__name__}"
        )

    @staticmethod
    def _value_clause(field: str, value: str) -> Node:
        alternatives: list[Node] = []
        for part in value.split(_VALUE_OR):
            parsed = _make_term(part)
            if parsed is None:
                raise InvalidCondition(f"Condition on {field!r} has an empty or unsearchable value: {value!r}")
            alternatives.append(Match((field,), parsed.text, parsed.prefix))
        return disjoin(alternatives)
