# @TASK P2-T2.2 - Query dialects (SQLite FTS5, Lucene-style search services)
# @TEST tests/test_translator.py

"""Renderers turning a clause tree into a backend's query language.

``Fts5Dialect`` targets SQLite FTS5 ``MATCH`` expressions::

    {name href tags} : "palm" * AND tags : "decent" NOT (href : "apple")

``LuceneDialect`` targets IndexTank/Lucene-style services::

    (name:(palm*) OR href:(palm*)) AND tags:(decent) AND NOT (href:(apple))
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

from searchbind.search.query import All, AnyOf, Exclude, Match, Node

_LUCENE_SPECIAL_RE = re.compile(r'([+\-&|!(){}\[\]^"~*?:\\/])')


class QueryDialect(ABC):
    """Renders clause trees for one backend."""

    name: str = "abstract"

    def render(self, node: Node) -> str:
        if isinstance(node, Match):
            return self.render_match(node)
        if isinstance(node, All):
            return " AND ".join(self._wrap(child) for child in node.children)
        if isinstance(node, AnyOf):
            return " OR ".join(self._wrap(child) for child in node.children)
        if isinstance(node, Exclude):
            return self.render_exclude(node)
        raise TypeError(f"Unsupported clause node: {node!r}")

    def _wrap(self, node: Node) -> str:
        rendered = self.render(node)
        return rendered if isinstance(node, Match) else f"({rendered})"

    @abstractmethod
    def render_match(self, node: Match) -> str: ...

    @abstractmethod
    def render_exclude(self, node: Exclude) -> str: ...


class Fts5Dialect(QueryDialect):
    """SQLite FTS5 query syntax.

    Every term is emitted as a quoted string so punctuation never reaches
    the FTS5 parser as syntax.  FTS5's ``NOT`` is binary, which is why
    exclusions always hang off a base clause.
    """

    name = "fts5"

    def render_match(self, node: Match) -> str:
        phrase = '"' + node.text.replace('"', '""') + '"'
        if node.prefix:
            phrase += " *"
        if len(node.fields) == 1:
            return f"{node.fields[0]} : {phrase}"
        return "{" + " ".join(node.fields) + "} : " + phrase

    def render_exclude(self, node: Exclude) -> str:
        rendered = self._wrap(node.base)
        for excluded in node.excluded:
            rendered += f" NOT {self._wrap(excluded)}"
        return rendered


class LuceneDialect(QueryDialect):
    """Lucene-style syntax used by IndexTank-compatible search services."""

    name = "lucene"

    @staticmethod
    def _escape(word: str) -> str:
        return _LUCENE_SPECIAL_RE.sub(r"\\\1", word)

    def _value(self, node: Match) -> str:
        words = node.text.split()
        if not node.prefix:
            if len(words) == 1:
                return self._escape(words[0])
            return '"' + node.text.replace("\\", "\\\\").replace('"', '\\"') + '"'
        # Phrase prefixes are not supported: require each word, last one as prefix.
        rendered = [self._escape(word) for word in words]
        rendered[-1] += "*"
        return " AND ".join(rendered)

    def render_match(self, node: Match) -> str:
        value = self._value(node)
        clauses = [f"{field}:({value})" for field in node.fields]
        if len(clauses) == 1:
            return clauses[0]
        return "(" + " OR ".join(clauses) + ")"

    def render_exclude(self, node: Exclude) -> str:
        rendered = self._wrap(node.base)
        for excluded in node.excluded:
            rendered += f" AND NOT {self._wrap(excluded)}"
        return rendered
