"""Caller-facing import and export operations."""

from __future__ import annotations

import time
from typing import Any

import structlog
from structlog.contextvars import bound_contextvars

from Lexicarium.config import Settings, load_settings
from Lexicarium.metrics import inc_counter, observe_histogram, timed
from Lexicarium.store import OWNER_FILTER, DocumentStore, SqlDocumentStore, get_path
from Lexicarium.transfer.codec import decode_bundle, encode_bundle
from Lexicarium.transfer.committer import BatchCommitter, BatchResult
from Lexicarium.transfer.notify import ChangeNotifier
from Lexicarium.transfer.scopes import Scope

log = structlog.get_logger()


async def import_bundle(
    scope: Scope | str,
    data: bytes | str,
    tenant: str,
    *,
    store: DocumentStore,
    notifier: ChangeNotifier | None = None,
    settings: Settings | None = None,
) -> BatchResult:
    """Merge a scoped bundle into ``tenant``'s data.

    Raises ``MalformedBundle``/``ScopeMismatch`` before any write, and
    ``StoreUnavailable`` if the tenant's indexes cannot be loaded. Anything
    that goes wrong after that is reported per record in the result.
    """
    if not tenant:
        raise ValueError("tenant is required")
    scope = Scope.parse(scope)
    settings = settings or load_settings()
    cfg = settings.transfer
    start = time.perf_counter()
    with bound_contextvars(scope=scope.value, tenant=tenant):
        inc_counter("transfer.import.started")
        log.info("transfer.import.started", size=len(data))
        try:
            decoded = decode_bundle(data, scope, on_mismatch=cfg.on_scope_mismatch)
            committer = await BatchCommitter.prepare(store, scope, tenant, config=cfg)
        except Exception:
            inc_counter("transfer.import.aborted")
            log.warning("transfer.import.aborted", exc_info=True)
            raise
        result = await committer.commit(decoded.records)
        result.warnings[:0] = decoded.warnings

        duration_ms = int((time.perf_counter() - start) * 1000)
        observe_histogram("transfer.import.duration_ms", duration_ms)
        inc_counter("transfer.import.completed")
        log.info("transfer.import.completed", duration_ms=duration_ms, **_log_summary(result))

        if notifier is not None and cfg.notify_on_import and result.ok and result.committed > 0:
            await notifier.data_changed(scope)
    return result


def _log_summary(result: BatchResult) -> dict[str, Any]:
    summary = result.summary()
    return {
        k: summary[k]
        for k in ("committed", "skipped", "failed", "remapped", "unresolved_references")
    }


async def export_bundle(
    scope: Scope | str,
    tenant: str,
    *,
    store: DocumentStore,
    settings: Settings | None = None,
    export_date: str | None = None,
) -> bytes:
    """Serialize every live ``scope`` document of ``tenant`` with owner fields removed."""
    if not tenant:
        raise ValueError("tenant is required")
    scope = Scope.parse(scope)
    settings = settings or load_settings()
    layout = scope.layout
    with bound_contextvars(scope=scope.value, tenant=tenant), timed("transfer.export.duration_ms"):
        docs = await store.query(layout.collection, {OWNER_FILTER: tenant})
        records = [
            {**doc.data, "id": doc.id}
            for doc in docs
            if not (layout.soft_delete_path and get_path(doc.data, layout.soft_delete_path))
        ]
        payload = encode_bundle(
            scope,
            records,
            owner_fields=settings.transfer.owner_fields,
            export_date=export_date,
        )
        inc_counter("transfer.export.completed")
        inc_counter("transfer.export.records", len(records))
        log.info(
            "transfer.export.completed",
            records=len(records),
            excluded=len(docs) - len(records),
            size=len(payload),
        )
    return payload


def _database_store(settings: Settings) -> SqlDocumentStore:
    return SqlDocumentStore(owner_fields=tuple(settings.transfer.owner_fields))


async def import_bundle_with_database(
    scope: Scope | str,
    data: bytes | str,
    tenant: str,
    *,
    notifier: ChangeNotifier | None = None,
    settings: Settings | None = None,
) -> BatchResult:
    settings = settings or load_settings()
    return await import_bundle(
        scope,
        data,
        tenant,
        store=_database_store(settings),
        notifier=notifier,
        settings=settings,
    )


async def export_bundle_with_database(
    scope: Scope | str,
    tenant: str,
    *,
    settings: Settings | None = None,
    export_date: str | None = None,
) -> bytes:
    settings = settings or load_settings()
    return await export_bundle(
        scope, tenant, store=_database_store(settings), settings=settings, export_date=export_date
    )
