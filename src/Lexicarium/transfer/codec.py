"""Scoped bundle codec: owner-stripped JSON snapshots of one scope.

Bundle layout::

    {"<bundle key>": [record, ...], "exportDate": "<ISO-8601>", "exportType": "<scope>"}

Decoding also accepts the shapes older exports produced: a bare array of
records, an object keyed by record id, a single bare record, and the bundle
object wrapped in a one-element array.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

import orjson
import structlog

from Lexicarium.errors import MalformedBundle, ScopeMismatch
from Lexicarium.metrics import inc_counter
from Lexicarium.tools.ids import content_id, derive_id
from Lexicarium.transfer.scopes import (
    BUNDLE_META_KEYS,
    SCOPE_LAYOUTS,
    Scope,
    natural_key,
    record_id,
)
from Lexicarium.transfer.visitors import OwnershipStripper

log = structlog.get_logger()

# Top-level fields that mark an object as one record rather than a keyed collection
_RECORD_MARKERS = ("id", "sessionId", "wordId", "english")


@dataclass
class DecodedBundle:
    scope: Scope
    records: list[dict[str, Any]]
    declared_scope: str | None = None
    export_date: str | None = None
    warnings: list[str] = field(default_factory=list)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def encode_bundle(
    scope: Scope,
    records: Iterable[Mapping[str, Any]],
    *,
    owner_fields: Iterable[str] = ("userId",),
    export_date: str | None = None,
) -> bytes:
    """Serialize ``records`` as a bundle of ``scope`` with every owner field removed."""
    stripper = OwnershipStripper(owner_fields)
    bundle = {
        scope.layout.bundle_key: [stripper.visit(dict(r)) for r in records],
        "exportDate": export_date or _now_iso(),
        "exportType": scope.value,
    }
    return orjson.dumps(bundle, option=orjson.OPT_INDENT_2)


def _looks_like_record(obj: Mapping[str, Any]) -> bool:
    if any(k in obj and not isinstance(obj[k], (dict, list)) for k in _RECORD_MARKERS):
        return True
    return not all(isinstance(v, dict) for v in obj.values())


def _from_keyed(scope: Scope, obj: Mapping[str, Any]) -> list[Any]:
    """Records of an object keyed by id; the key fills a missing id."""
    id_field = "wordId" if scope is Scope.PERFORMANCE else "id"
    out: list[Any] = []
    for key, value in obj.items():
        if isinstance(value, dict) and record_id(scope, value) is None:
            value = {**value, id_field: key}
        out.append(value)
    return out


def _foreign_bundle_keys(scope: Scope, payload: Mapping[str, Any]) -> list[str]:
    """Other scopes' bundle keys present in a wrapper object that lacks ``scope``'s own."""
    if scope.layout.bundle_key in payload:
        return []
    if any(k in payload and not isinstance(payload[k], (dict, list)) for k in _RECORD_MARKERS):
        return []
    return [
        layout.bundle_key
        for other, layout in SCOPE_LAYOUTS.items()
        if other is not scope and isinstance(payload.get(layout.bundle_key), (dict, list))
    ]


def _extract(scope: Scope, payload: dict[str, Any] | list[Any]) -> list[Any]:
    if isinstance(payload, list):
        return list(payload)
    key = scope.layout.bundle_key
    if key in payload:
        body = payload[key]
    else:
        body = {k: v for k, v in payload.items() if k not in BUNDLE_META_KEYS}
    if isinstance(body, list):
        return body
    if not isinstance(body, dict):
        raise MalformedBundle(f"{key!r} must hold an array or an object")
    if not body:
        return []
    if _looks_like_record(body):
        return [body]
    return _from_keyed(scope, body)


def _ensure_id(scope: Scope, record: dict[str, Any]) -> dict[str, Any]:
    if record_id(scope, record) is not None:
        if "id" not in record or record["id"] in (None, ""):
            record["id"] = record_id(scope, record)
        return record
    collection = scope.layout.collection
    key = natural_key(scope, record)
    if key is not None:
        record["id"] = derive_id("natural", collection, key)
    else:
        record["id"] = content_id(collection, record)
    inc_counter("transfer.codec.id_allocated")
    return record


def decode_bundle(
    data: bytes | str,
    scope: Scope | str,
    *,
    on_mismatch: Literal["reject", "warn"] = "reject",
) -> DecodedBundle:
    """Parse bundle bytes into the record array for ``scope``.

    Raises ``MalformedBundle`` for unparseable input and ``ScopeMismatch``
    when the bundle declares another scope and ``on_mismatch`` is "reject".
    """
    scope = Scope.parse(scope)
    try:
        payload = orjson.loads(data)
    except orjson.JSONDecodeError as exc:
        raise MalformedBundle(f"bundle is not valid JSON: {exc}") from exc

    # Legacy: bundle object wrapped in a one-element array
    if (
        isinstance(payload, list)
        and len(payload) == 1
        and isinstance(payload[0], dict)
        and (scope.layout.bundle_key in payload[0] or "exportType" in payload[0])
    ):
        payload = payload[0]

    if not isinstance(payload, (dict, list)):
        raise MalformedBundle(
            f"bundle top-level value must be an object or an array, got {type(payload).__name__}"
        )

    decoded = DecodedBundle(scope=scope, records=[])
    if isinstance(payload, dict):
        declared = payload.get("exportType")
        decoded.declared_scope = declared if isinstance(declared, str) else None
        export_date = payload.get("exportDate")
        decoded.export_date = export_date if isinstance(export_date, str) else None
        if decoded.declared_scope and decoded.declared_scope != scope.value:
            if on_mismatch == "reject":
                inc_counter("transfer.codec.scope_mismatch")
                raise ScopeMismatch(scope.value, decoded.declared_scope)
            decoded.warnings.append(
                f"bundle declares exportType {decoded.declared_scope!r}, "
                f"importing as {scope.value!r}"
            )
            log.warning("transfer.codec.scope_mismatch", declared=declared, expected=scope.value)

    foreign = _foreign_bundle_keys(scope, payload) if isinstance(payload, dict) else []
    if foreign:
        # Another scope's bundle: its records are never read as ours
        decoded.warnings.append(
            f"bundle holds no {scope.layout.bundle_key!r} records (found {', '.join(foreign)}); "
            "nothing imported"
        )
        log.warning("transfer.codec.foreign_bundle", found=foreign, expected=scope.value)
        return decoded

    for pos, item in enumerate(_extract(scope, payload)):
        if not isinstance(item, dict):
            decoded.warnings.append(f"entry {pos} is not an object; ignored")
            continue
        decoded.records.append(_ensure_id(scope, item))

    log.debug("transfer.codec.decoded", scope=scope.value, records=len(decoded.records))
    return decoded
