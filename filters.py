"""
Mongo filter clauses.

Listings collect clause objects and only collapse them into one predicate at
the end, so independent conditions (ownership, visibility, search groups)
never overwrite each other's keys.
"""
import re
from dataclasses import dataclass
from typing import Any, List, Tuple


@dataclass(frozen=True)
class Equals:
    field: str
    value: Any

    def to_query(self) -> dict:
        return {self.field: self.value}


@dataclass(frozen=True)
class Contains:
    """Case-insensitive substring match; on array fields any element may match."""

    field: str
    text: str

    def to_query(self) -> dict:
        return {self.field: {"$regex": re.escape(self.text), "$options": "i"}}


@dataclass(frozen=True)
class Missing:
    field: str

    def to_query(self) -> dict:
        return {self.field: {"$exists": False}}


@dataclass(frozen=True)
class AnyOf:
    clauses: Tuple[Any, ...]

    def to_query(self) -> dict:
        return {"$or": [clause.to_query() for clause in self.clauses]}


def search_any(fields, text: str) -> AnyOf:
    return AnyOf(tuple(Contains(name, text) for name in fields))


def collapse(clauses: List[Any]) -> dict:
    if not clauses:
        return {}
    if len(clauses) == 1:
        return clauses[0].to_query()
    return {"$and": [clause.to_query() for clause in clauses]}
