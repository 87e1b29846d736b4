"""Backend-neutral clause tree produced by the query translator.

Dialects render these nodes into a backend's native query string.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Match:
    """A word or phrase matched within one or more fields.

    Attributes:
        fields: Fields the text may match in (any of them).
        text: Lowercased word or space-separated phrase.
        prefix: Whether the last word is a prefix (``palm*``).
    """

    fields: tuple[str, ...]
    text: str
    prefix: bool = False


@dataclass(frozen=True)
class All:
    """Every child must match."""

    children: tuple[Node, ...]


@dataclass(frozen=True)
class AnyOf:
    """At least one child must match."""

    children: tuple[Node, ...]


@dataclass(frozen=True)
class Exclude:
    """Documents matching ``base`` minus those matching any of ``excluded``."""

    base: Node
    excluded: tuple[Node, ...]


Node = Match | All | AnyOf | Exclude


def conjoin(nodes: list[Node]) -> Node:
    """AND together ``nodes``, collapsing the single-node case."""
    if len(nodes) == 1:
        return nodes[0]
    return All(tuple(nodes))


def disjoin(nodes: list[Node]) -> Node:
    """OR together ``nodes``, collapsing the single-node case."""
    if len(nodes) == 1:
        return nodes[0]
    return AnyOf(tuple(nodes))
