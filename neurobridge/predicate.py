"""
Declarative row-filter predicates.

A predicate is a small tree of comparisons over record columns.  It is data,
not code: the storage layer translates it into its own query language (via
``model_dump()`` or ``render()``), and ``matches()`` evaluates the same tree
against an in-memory record so that filtering and per-record decisions can be
checked against each other.

Build predicates with ``eq``, ``in_``, ``all_of`` and ``any_of`` rather than
the classes directly; the helpers fold constant clauses so the rendered form
stays minimal (``all_of(ALWAYS, x)`` is ``x``, ``any_of()`` is ``NEVER``).
"""

from __future__ import annotations

from typing import Annotated, Any, Iterable, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _Node(BaseModel):
    model_config = ConfigDict(frozen=True)


class Always(_Node):
    kind: Literal["always"] = "always"

    def matches(self, record: Mapping[str, Any]) -> bool:
        return True

    def render(self) -> str:
        return "TRUE"


class Never(_Node):
    kind: Literal["never"] = "never"

    def matches(self, record: Mapping[str, Any]) -> bool:
        return False

    def render(self) -> str:
        return "FALSE"


class Eq(_Node):
    """``column = value``.  A missing or NULL column never matches."""

    kind: Literal["eq"] = "eq"
    column: str
    value: str

    def matches(self, record: Mapping[str, Any]) -> bool:
        actual = record.get(self.column)
        return actual is not None and str(actual) == self.value

    def render(self) -> str:
        return f"{self.column} = {_quote(self.value)}"


class In(_Node):
    """``column IN (values...)``.  Values are kept sorted so equal sets compare equal."""

    kind: Literal["in"] = "in"
    column: str
    values: tuple[str, ...]

    def matches(self, record: Mapping[str, Any]) -> bool:
        actual = record.get(self.column)
        return actual is not None and str(actual) in self.values

    def render(self) -> str:
        if not self.values:
            return "FALSE"
        return f"{self.column} IN ({', '.join(_quote(v) for v in self.values)})"


class AllOf(_Node):
    kind: Literal["all_of"] = "all_of"
    clauses: tuple[Predicate, ...]

    def matches(self, record: Mapping[str, Any]) -> bool:
        return all(clause.matches(record) for clause in self.clauses)

    def render(self) -> str:
        return " AND ".join(_render_operand(clause) for clause in self.clauses)


class AnyOf(_Node):
    kind: Literal["any_of"] = "any_of"
    clauses: tuple[Predicate, ...]

    def matches(self, record: Mapping[str, Any]) -> bool:
        return any(clause.matches(record) for clause in self.clauses)

    def render(self) -> str:
        return " OR ".join(_render_operand(clause) for clause in self.clauses)


Predicate = Annotated[
    Union[Always, Never, Eq, In, AllOf, AnyOf],
    Field(discriminator="kind"),
]

AllOf.model_rebuild()
AnyOf.model_rebuild()

ALWAYS = Always()
NEVER = Never()


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def eq(column: str, value: Optional[str]) -> Predicate:
    """``column = value``; comparing against ``None`` can never match."""
    if value is None:
        return NEVER
    return Eq(column=column, value=value)


def in_(column: str, values: Iterable[str]) -> Predicate:
    unique = tuple(sorted(set(values)))
    if not unique:
        return NEVER
    return In(column=column, values=unique)


def all_of(*clauses: Predicate) -> Predicate:
    kept: list[Predicate] = []
    for clause in clauses:
        if isinstance(clause, Never):
            return NEVER
        if isinstance(clause, Always):
            continue
        if isinstance(clause, AllOf):
            kept.extend(clause.clauses)
        else:
            kept.append(clause)
    if not kept:
        return ALWAYS
    if len(kept) == 1:
        return kept[0]
    return AllOf(clauses=tuple(kept))


def any_of(*clauses: Predicate) -> Predicate:
    kept: list[Predicate] = []
    for clause in clauses:
        if isinstance(clause, Always):
            return ALWAYS
        if isinstance(clause, Never):
            continue
        if isinstance(clause, AnyOf):
            kept.extend(clause.clauses)
        else:
            kept.append(clause)
    if not kept:
        return NEVER
    if len(kept) == 1:
        return kept[0]
    return AnyOf(clauses=tuple(kept))


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _render_operand(clause: Predicate) -> str:
    if isinstance(clause, (AllOf, AnyOf)):
        return f"({clause.render()})"
    return clause.render()
