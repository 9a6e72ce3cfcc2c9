"""Filter predicates shared by table queries and realtime subscriptions."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

_OPERATORS = frozenset({"eq", "neq", "lt", "lte", "gt", "gte", "in", "is"})


@dataclass(frozen=True, slots=True)
class Filter:
    column: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, row: Mapping[str, Any]) -> bool:
        """Evaluate the predicate against a plain row dictionary."""

        if self.column not in row:
            return False
        current = row[self.column]
        if self.op == "eq":
            return current == self.value
        if self.op == "neq":
            return current != self.value
        if self.op == "is":
            return current is self.value
        if self.op == "in":
            return current in tuple(self.value)
        if current is None:
            return False
        if self.op == "lt":
            return current < self.value
        if self.op == "lte":
            return current <= self.value
        if self.op == "gt":
            return current > self.value
        return current >= self.value


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", value)


def lt(column: str, value: Any) -> Filter:
    return Filter(column, "lt", value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", value)


def gt(column: str, value: Any) -> Filter:
    return Filter(column, "gt", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


def is_(column: str, value: Any) -> Filter:
    return Filter(column, "is", value)


def matches_all(row: Mapping[str, Any], filters: Iterable[Filter]) -> bool:
    return all(item.matches(row) for item in filters)


__all__ = ["Filter", "eq", "neq", "lt", "lte", "gt", "gte", "in_", "is_", "matches_all"]
