"""Sequential batch committer for decoded import records.

For each record, in bundle order: deduplicate, decide the target document
(natural-key match, ownership resolution), rewrite owner fields and word
references, persist, then register the new document so later records of the
same batch can resolve against it. One failing record never aborts the batch.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from Lexicarium.config import TransferConfig
from Lexicarium.errors import RecordRejected, TransferError
from Lexicarium.metrics import inc_counter
from Lexicarium.store import DocumentStore
from Lexicarium.transfer.dedup import Deduplicator
from Lexicarium.transfer.natural_keys import NaturalKeyIndex
from Lexicarium.transfer.ownership import OwnershipResolver, Resolution
from Lexicarium.transfer.references import UnresolvedReference, rewrite
from Lexicarium.transfer.scopes import Scope, natural_key, record_id
from Lexicarium.transfer.visitors import collect_owner_values

log = structlog.get_logger()

METADATA_FIELD = "firestoreMetadata"
TRANSLATION_FIELDS = ("translation", "italian")


@dataclass(frozen=True)
class RecordError:
    record_id: str | None
    reason: str
    error_type: str


@dataclass(frozen=True)
class RecordSkip:
    record_id: str | None
    reason: str


@dataclass(frozen=True)
class Remap:
    """An ownership conflict: the declared id belonged to another tenant."""

    original_id: str
    new_id: str
    previous_owner: str | None


@dataclass
class BatchResult:
    scope: Scope
    tenant: str
    committed: int = 0
    skipped: int = 0
    repaired: int = 0
    errors: list[RecordError] = field(default_factory=list)
    skips: list[RecordSkip] = field(default_factory=list)
    remaps: list[Remap] = field(default_factory=list)
    unresolved: list[UnresolvedReference] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    committed_ids: list[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def partial(self) -> bool:
        return bool(self.errors) and self.committed > 0

    def summary(self) -> dict[str, Any]:
        return {
            "scope": self.scope.value,
            "tenant": self.tenant,
            "ok": self.ok,
            "partial": self.partial,
            "committed": self.committed,
            "skipped": self.skipped,
            "failed": self.failed,
            "remapped": len(self.remaps),
            "repaired_references": self.repaired,
            "unresolved_references": len(self.unresolved),
            "errors": [{"record_id": e.record_id, "reason": e.reason} for e in self.errors],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class _Target:
    record_id: str
    resolution: Resolution
    key: str | None


class BatchCommitter:
    """Applies one decoded batch of ``scope`` records for ``tenant``.

    Holds the batch-scoped state (deduplicator, natural-key indexes); build a
    new committer per import.
    """

    def __init__(
        self,
        store: DocumentStore,
        scope: Scope,
        tenant: str,
        *,
        words: NaturalKeyIndex,
        sessions: NaturalKeyIndex | None = None,
        config: TransferConfig | None = None,
    ) -> None:
        self.store = store
        self.scope = scope
        self.tenant = tenant
        self.words = words
        self.sessions = sessions
        self.config = config or TransferConfig()
        self._dedup = Deduplicator()
        self._resolver = OwnershipResolver(store)
        self._log = log.bind(scope=scope.value, tenant=tenant)

    @classmethod
    async def prepare(
        cls,
        store: DocumentStore,
        scope: Scope,
        tenant: str,
        *,
        config: TransferConfig | None = None,
    ) -> BatchCommitter:
        """Build the batch indexes from the store; raises StoreUnavailable before any write."""
        words = await NaturalKeyIndex.build(store, Scope.WORDS, tenant)
        sessions = None
        if scope is Scope.STATISTICS:
            sessions = await NaturalKeyIndex.build(store, Scope.HISTORY, tenant)
        return cls(store, scope, tenant, words=words, sessions=sessions, config=config)

    async def commit(self, records: Iterable[Mapping[str, Any]]) -> BatchResult:
        result = BatchResult(scope=self.scope, tenant=self.tenant)
        for position, record in enumerate(records):
            label = record_id(self.scope, record) or f"#{position}"
            try:
                await self._commit_one(record, result)
            except TransferError as exc:
                self._fail(result, label, exc)
            except Exception as exc:
                self._log.error("transfer.record.error", record_id=label, exc_info=True)
                self._fail(result, label, exc)
        inc_counter("transfer.batch.completed")
        if result.errors:
            inc_counter("transfer.batch.partial" if result.committed else "transfer.batch.failed")
        self._log.info(
            "transfer.batch.completed",
            committed=result.committed,
            skipped=result.skipped,
            failed=result.failed,
            remapped=len(result.remaps),
            repaired=result.repaired,
            unresolved=len(result.unresolved),
        )
        return result

    def _fail(self, result: BatchResult, label: str, exc: Exception) -> None:
        result.errors.append(
            RecordError(record_id=label, reason=str(exc), error_type=type(exc).__name__)
        )
        inc_counter("transfer.record.failed")
        self._log.warning(
            "transfer.record.failed", record_id=label, error=type(exc).__name__, reason=str(exc)
        )

    def _skip(self, result: BatchResult, label: str | None, reason: str) -> None:
        result.skipped += 1
        result.skips.append(RecordSkip(record_id=label, reason=reason))
        inc_counter("transfer.record.skipped")
        self._log.debug("transfer.record.skipped", record_id=label, reason=reason)

    async def _commit_one(self, record: Mapping[str, Any], result: BatchResult) -> None:
        if self.scope is Scope.WORDS:
            target = await self._target_for_word(record, result)
        elif self.scope is Scope.PERFORMANCE:
            target = await self._target_for_performance(record, result)
        else:
            target = await self._target_by_id(record, result)
        if target is None:
            return

        resolution = target.resolution
        if resolution.remapped:
            result.remaps.append(
                Remap(
                    original_id=target.record_id,
                    new_id=resolution.target_id,
                    previous_owner=resolution.previous_owner,
                )
            )
            inc_counter("transfer.record.remapped")

        rewritten = rewrite(
            self.scope,
            self._prepare_body(record, resolution.target_id),
            self.tenant,
            remapped=resolution.remapped,
            words=self.words,
            sessions=self.sessions,
            owner_fields=self.config.owner_fields,
            repair=self.config.repair_references,
        )
        body = self._stamp_owner(rewritten.record)
        owners = collect_owner_values(body, self.config.owner_fields)
        foreign = [v for v in owners if v != self.tenant]
        if foreign:
            raise RecordRejected(f"record still carries foreign owner values: {foreign!r}")

        await self.store.put(self.scope.layout.collection, resolution.target_id, body)

        result.committed += 1
        result.committed_ids.append(resolution.target_id)
        result.repaired += rewritten.repaired
        result.unresolved.extend(rewritten.unresolved)
        if rewritten.repaired:
            inc_counter("transfer.reference.repaired", rewritten.repaired)
        if rewritten.unresolved:
            inc_counter("transfer.reference.unresolved", len(rewritten.unresolved))
        inc_counter("transfer.record.committed")
        self._register(target.key, resolution.target_id)
        self._log.debug(
            "transfer.record.committed",
            record_id=target.record_id,
            target_id=resolution.target_id,
            remapped=resolution.remapped,
        )

    # --- target selection per scope -------------------------------------

    async def _target_for_word(
        self, record: Mapping[str, Any], result: BatchResult
    ) -> _Target | None:
        declared = record_id(self.scope, record)
        key = natural_key(self.scope, record)
        if key is None:
            self._skip(result, declared, "missing english")
            return None
        if not _has_translation(record):
            self._skip(result, declared, "missing translation")
            return None
        if not self._dedup.should_process(record_id=declared, natural_key=key):
            self._skip(result, declared, "duplicate")
            return None
        existing = self.words.lookup(key)
        if existing is not None:
            # Same word already in this tenant's vocabulary: overwrite it in place
            if existing != declared:
                self._log.debug(
                    "transfer.record.merged", record_id=declared, target_id=existing, key=key
                )
            return _Target(
                record_id=declared or existing,
                resolution=Resolution(target_id=existing, remapped=False, exists=True),
                key=key,
            )
        if declared is None:
            raise RecordRejected("word has no id")
        resolution = await self._resolver.resolve(self.scope, declared, self.tenant)
        return _Target(record_id=declared, resolution=resolution, key=key)

    async def _target_for_performance(
        self, record: Mapping[str, Any], result: BatchResult
    ) -> _Target | None:
        key = natural_key(self.scope, record)
        word_id = record.get("wordId")
        declared = record_id(self.scope, record)
        dedup_key = key if key is not None else (f"wordId:{word_id}" if word_id else None)
        if dedup_key is None:
            self._skip(result, declared, "missing english")
            return None
        if not self._dedup.should_process(natural_key=dedup_key):
            self._skip(result, declared, "duplicate")
            return None

        # A performance record is keyed by the importing tenant's word id
        target_id = self.words.lookup(key) if key is not None else None
        if target_id is None and isinstance(word_id, str) and self.words.contains_id(word_id):
            target_id = word_id
        if target_id is None:
            self._skip(result, declared, "no matching word")
            return None

        resolution = await self._resolver.resolve(self.scope, target_id, self.tenant)
        if resolution.remapped:
            raise RecordRejected(
                f"performance document {target_id} belongs to tenant {resolution.previous_owner!r}"
            )
        return _Target(record_id=declared or target_id, resolution=resolution, key=None)

    async def _target_by_id(
        self, record: Mapping[str, Any], result: BatchResult
    ) -> _Target | None:
        declared = record_id(self.scope, record)
        if declared is None:
            self._skip(result, None, "missing id")
            return None
        if not self._dedup.should_process(record_id=declared):
            self._skip(result, declared, "duplicate")
            return None
        resolution = await self._resolver.resolve(self.scope, declared, self.tenant)
        key = resolution.target_id if self.scope is Scope.HISTORY else None
        return _Target(record_id=declared, resolution=resolution, key=key)

    # --- record shaping ---------------------------------------------------

    def _prepare_body(self, record: Mapping[str, Any], target_id: str) -> dict[str, Any]:
        body = dict(record)
        body["id"] = target_id
        if self.scope is Scope.PERFORMANCE:
            body = {k: v for k, v in body.items() if v is not None}
            body["wordId"] = target_id
        elif self.scope is Scope.HISTORY:
            body["sessionId"] = target_id
            if body.get("deleted") is None:
                body["deleted"] = False
        return body

    def _stamp_owner(self, body: dict[str, Any]) -> dict[str, Any]:
        owner_field = self.config.owner_fields[0]
        body[owner_field] = self.tenant
        if self.scope.layout.owner_in_metadata:
            meta = body.get(METADATA_FIELD)
            meta = dict(meta) if isinstance(meta, dict) else {}
            meta[owner_field] = self.tenant
            body[METADATA_FIELD] = meta
        return body

    def _register(self, key: str | None, target_id: str) -> None:
        if self.scope is Scope.WORDS:
            self.words.register(key, target_id)
        elif self.scope is Scope.HISTORY and self.sessions is not None:
            self.sessions.register(key, target_id)


def _has_translation(record: Mapping[str, Any]) -> bool:
    return any(
        isinstance(record.get(f), str) and record[f].strip() for f in TRANSLATION_FIELDS
    )
