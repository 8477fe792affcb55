"""Ownership cleanse and foreign-key repair for incoming records.

Word references are stored redundantly as ``{id, english}`` pairs, which is
what makes repair possible: when a record was remapped into another tenant,
each reference is re-pointed at the importing tenant's word with the same
English text. References that cannot be matched are left untouched and
reported.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from Lexicarium.tools.ids import remap_id
from Lexicarium.transfer.natural_keys import NaturalKeyIndex
from Lexicarium.transfer.scopes import Scope
from Lexicarium.transfer.visitors import OwnershipCleanser


@dataclass(frozen=True)
class ReferenceSite:
    """Where word references live inside a record.

    ``container`` is the path to a list of items (``*`` walks every value of
    a mapping); ``ref`` is the path from an item to the reference object, empty
    when the item is the reference itself.
    """

    name: str
    container: tuple[str, ...]
    ref: tuple[str, ...] = ()
    id_fields: tuple[str, ...] = ("id",)
    key_field: str = "english"


WORD_REFERENCE_SITES: dict[Scope, tuple[ReferenceSite, ...]] = {
    Scope.WORDS: (),
    Scope.PERFORMANCE: (),
    Scope.HISTORY: (
        ReferenceSite("answers", ("answers",), ("wordRef",)),
        ReferenceSite("detailedAnswers", ("exportData", "detailedAnswers"), ("word",)),
        ReferenceSite("wrongWords", ("wrongWords",)),
        ReferenceSite("exportData.wrongWords", ("exportData", "wrongWords")),
        ReferenceSite("insights", ("insights",), id_fields=("wordId",)),
        ReferenceSite(
            "analytics.insights", ("analytics", "insights"), ("data",), id_fields=("wordId",)
        ),
    ),
    Scope.STATISTICS: (
        ReferenceSite("chapterStats", ("chapterStats", "*", "words")),
        ReferenceSite(
            "wordPerformances",
            ("performanceData", "wordPerformances"),
            id_fields=("wordId", "id"),
        ),
    ),
}

SESSION_REFERENCE_FIELDS = ("id", "sessionId")


@dataclass(frozen=True)
class UnresolvedReference:
    """A reference left stale because the importing tenant has no match for it."""

    record_id: str | None
    site: str
    key: str | None
    ref_id: str | None


@dataclass
class RewriteResult:
    record: dict[str, Any]
    repaired: int = 0
    unresolved: list[UnresolvedReference] = field(default_factory=list)


def _walk(node: Any, path: tuple[str, ...]) -> Iterator[Any]:
    if not path:
        yield node
        return
    head, rest = path[0], path[1:]
    if not isinstance(node, dict):
        return
    if head == "*":
        for value in node.values():
            yield from _walk(value, rest)
    elif head in node:
        yield from _walk(node[head], rest)


def _iter_references(record: dict[str, Any], site: ReferenceSite) -> Iterator[dict[str, Any]]:
    for container in _walk(record, site.container):
        if not isinstance(container, list):
            continue
        for item in container:
            for ref in _walk(item, site.ref):
                if isinstance(ref, dict):
                    yield ref


def _repair_word_references(
    result: RewriteResult,
    sites: Iterable[ReferenceSite],
    words: NaturalKeyIndex,
) -> None:
    record = result.record
    for site in sites:
        for ref in _iter_references(record, site):
            current = next((ref.get(f) for f in site.id_fields if ref.get(f)), None)
            key = ref.get(site.key_field)
            target = words.lookup(key)
            if target is None:
                if current is not None or key:
                    result.unresolved.append(
                        UnresolvedReference(
                            record_id=record.get("id"),
                            site=site.name,
                            key=key if isinstance(key, str) else None,
                            ref_id=str(current) if current is not None else None,
                        )
                    )
                continue
            if ref.get(site.id_fields[0]) != target:
                for f in site.id_fields:
                    ref[f] = target
                result.repaired += 1


def _repair_session_references(
    result: RewriteResult, sessions: NaturalKeyIndex, tenant: str
) -> None:
    record = result.record
    recent = record.get("recentSessions")
    if not isinstance(recent, list):
        return
    collection = Scope.HISTORY.layout.collection
    for pos, entry in enumerate(recent):
        if isinstance(entry, dict):
            fields = [f for f in SESSION_REFERENCE_FIELDS if entry.get(f)]
            ref_id = str(entry[fields[0]]) if fields else None
        elif isinstance(entry, str):
            fields = []
            ref_id = entry
        else:
            continue
        if ref_id is None or sessions.contains_id(ref_id):
            continue
        # History imported earlier may have moved the session to its remap id
        candidate = remap_id(collection, tenant, ref_id)
        if not sessions.contains_id(candidate):
            result.unresolved.append(
                UnresolvedReference(
                    record_id=record.get("id"), site="recentSessions", key=None, ref_id=ref_id
                )
            )
            continue
        if isinstance(entry, dict):
            for f in fields:
                entry[f] = candidate
        else:
            recent[pos] = candidate
        result.repaired += 1


def rewrite(
    scope: Scope,
    record: Mapping[str, Any],
    tenant: str,
    *,
    remapped: bool,
    words: NaturalKeyIndex,
    sessions: NaturalKeyIndex | None = None,
    owner_fields: Iterable[str] = ("userId",),
    repair: str = "remapped",
) -> RewriteResult:
    """Return a cleansed, repaired copy of ``record``; the input is left untouched.

    The ownership cleanse always runs: nested copies of the original owner
    can survive even when the top-level owner is already correct. Reference
    repair runs for remapped records, or for every record when ``repair`` is
    ``"always"``.
    """
    cleanser = OwnershipCleanser(tenant, owner_fields)
    result = RewriteResult(record=cleanser.visit(dict(record)))
    if not (remapped or repair == "always"):
        return result
    _repair_word_references(result, WORD_REFERENCE_SITES[scope], words)
    if scope is Scope.STATISTICS and sessions is not None:
        _repair_session_references(result, sessions, tenant)
    return result
