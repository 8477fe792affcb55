"""Owner-field visitors over decoded JSON records.

A record is a tree of three node kinds: mappings, sequences and scalars.
Each visitor returns a fresh tree and never mutates its input.
"""

from __future__ import annotations

from collections.abc import Iterable
from functools import singledispatchmethod
from typing import Any


class JsonVisitor:
    """Copying visitor; subclasses override the mapping entry hook."""

    @singledispatchmethod
    def visit(self, node: Any) -> Any:
        return node

    @visit.register(dict)
    def _visit_mapping(self, node: dict) -> dict:
        out: dict[str, Any] = {}
        for key, value in node.items():
            self.visit_entry(out, key, value)
        return out

    @visit.register(list)
    def _visit_sequence(self, node: list) -> list:
        return [self.visit(item) for item in node]

    def visit_entry(self, out: dict[str, Any], key: str, value: Any) -> None:
        out[key] = self.visit(value)


class OwnershipCleanser(JsonVisitor):
    """Overwrite every owner field, at any depth, with the importing tenant."""

    def __init__(self, tenant: str, owner_fields: Iterable[str] = ("userId",)) -> None:
        self.tenant = tenant
        self.owner_fields = frozenset(owner_fields)
        self.replaced = 0

    def visit_entry(self, out: dict[str, Any], key: str, value: Any) -> None:
        if key in self.owner_fields:
            out[key] = self.tenant
            self.replaced += 1
        else:
            out[key] = self.visit(value)


class OwnershipStripper(JsonVisitor):
    """Drop every owner field, at any depth, for a detached bundle."""

    def __init__(self, owner_fields: Iterable[str] = ("userId",)) -> None:
        self.owner_fields = frozenset(owner_fields)

    def visit_entry(self, out: dict[str, Any], key: str, value: Any) -> None:
        if key not in self.owner_fields:
            out[key] = self.visit(value)


def collect_owner_values(node: Any, owner_fields: Iterable[str] = ("userId",)) -> list[Any]:
    """Every owner value found in ``node``; used to check the ownership invariant."""
    fields = frozenset(owner_fields)
    found: list[Any] = []
    stack = [node]
    while stack:
        cur = stack.pop()
        if isinstance(cur, dict):
            for key, value in cur.items():
                if key in fields:
                    found.append(value)
                else:
                    stack.append(value)
        elif isinstance(cur, list):
            stack.extend(cur)
    return found
