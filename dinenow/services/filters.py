"""
Typed Query Predicates

Read projections describe their filters as a list of small predicate
objects and translate them to SQLAlchemy expressions in one place. Values
always travel as bound parameters, and a filter list can be built and
inspected without touching the store.

Example:
    >>> predicates = [Equals(Order.restaurant_id, rid), InSet(Order.status, statuses)]
    >>> query = select(Order).where(*to_clauses(predicates))
"""

from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from sqlalchemy import ColumnElement, or_


@dataclass(frozen=True)
class Predicate:
    def to_clause(self) -> ColumnElement[bool]:
        raise NotImplementedError


@dataclass(frozen=True)
class Equals(Predicate):
    column: Any
    value: Any

    def to_clause(self) -> ColumnElement[bool]:
        return self.column == self.value


@dataclass(frozen=True)
class InSet(Predicate):
    column: Any
    values: tuple

    def to_clause(self) -> ColumnElement[bool]:
        return self.column.in_(self.values)


@dataclass(frozen=True)
class AtLeast(Predicate):
    column: Any
    value: Any

    def to_clause(self) -> ColumnElement[bool]:
        return self.column >= self.value


@dataclass(frozen=True)
class AtMost(Predicate):
    column: Any
    value: Any

    def to_clause(self) -> ColumnElement[bool]:
        return self.column <= self.value


@dataclass(frozen=True)
class Before(Predicate):
    """Strict upper bound, for half-open ranges."""
    column: Any
    value: Any

    def to_clause(self) -> ColumnElement[bool]:
        return self.column < self.value


@dataclass(frozen=True)
class Contains(Predicate):
    """Case-insensitive substring match across one or more columns."""
    columns: tuple
    text: str

    def to_clause(self) -> ColumnElement[bool]:
        pattern = f"%{_escape_like(self.text)}%"
        return or_(*(column.ilike(pattern, escape="\\") for column in self.columns))


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def in_set(column: Any, values: Iterable[Any]) -> InSet:
    return InSet(column, tuple(values))


def to_clauses(predicates: Sequence[Predicate]) -> list[ColumnElement[bool]]:
    return [predicate.to_clause() for predicate in predicates]
