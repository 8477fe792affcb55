"""Import/export scopes and their per-scope record layout."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

# Bundle wrapper keys that never hold records
BUNDLE_META_KEYS = frozenset({"exportDate", "exportType", "version"})


class Scope(str, enum.Enum):
    """The four independently importable record categories.

    Values are the ``exportType`` tags written into bundles.
    """

    WORDS = "words_only"
    PERFORMANCE = "performance_only"
    HISTORY = "test_history_only"
    STATISTICS = "statistics_only"

    @property
    def layout(self) -> ScopeLayout:
        return SCOPE_LAYOUTS[self]

    @classmethod
    def parse(cls, value: str | Scope) -> Scope:
        """Accept an exportType tag, a member name, or a bundle key."""
        if isinstance(value, Scope):
            return value
        text = str(value).strip()
        for scope in cls:
            layout = SCOPE_LAYOUTS[scope]
            if text in (scope.value, scope.name.lower(), layout.bundle_key, layout.short_name):
                return scope
        raise ValueError(f"unknown scope: {value!r}")


@dataclass(frozen=True)
class ScopeLayout:
    short_name: str
    bundle_key: str
    collection: str
    # Fields that may carry the record's own identifier, in priority order
    id_fields: tuple[str, ...] = ("id",)
    # Case-insensitive natural key field, if the collection has one
    natural_key_field: str | None = None
    # Canonical owner lives under the metadata object as well as at the top level
    owner_in_metadata: bool = True
    # Dotted path of the soft-delete flag honored on export
    soft_delete_path: str | None = None


SCOPE_LAYOUTS: dict[Scope, ScopeLayout] = {
    Scope.WORDS: ScopeLayout(
        short_name="words",
        bundle_key="words",
        collection="words",
        natural_key_field="english",
    ),
    Scope.PERFORMANCE: ScopeLayout(
        short_name="performance",
        bundle_key="wordPerformance",
        collection="performance",
        id_fields=("id", "wordId"),
        natural_key_field="english",
        soft_delete_path="firestoreMetadata.deleted",
    ),
    Scope.HISTORY: ScopeLayout(
        short_name="history",
        bundle_key="testHistory",
        collection="detailedTestSessions",
        id_fields=("id", "sessionId"),
        owner_in_metadata=False,
        soft_delete_path="deleted",
    ),
    Scope.STATISTICS: ScopeLayout(
        short_name="statistics",
        bundle_key="statistics",
        collection="statistics",
    ),
}

if set(SCOPE_LAYOUTS) != set(Scope):  # pragma: no cover - guards future scopes
    raise RuntimeError("every Scope needs a ScopeLayout entry")


def normalize_key(value: Any) -> str | None:
    """Natural keys compare as lower-cased text; non-text or empty means no key."""
    if not isinstance(value, str) or not value:
        return None
    return value.lower()


def record_id(scope: Scope, record: Mapping[str, Any]) -> str | None:
    for name in scope.layout.id_fields:
        value = record.get(name)
        if value is not None and value != "":
            return str(value)
    return None


def natural_key(scope: Scope, record: Mapping[str, Any]) -> str | None:
    field = scope.layout.natural_key_field
    if field is None:
        return None
    return normalize_key(record.get(field))
