"""At-most-once processing of incoming records within one batch."""

from __future__ import annotations


class Deduplicator:
    """Per-batch record of identities already processed.

    A record is identified by its declared id, its natural key, or both;
    it is processed only if none of its identities was seen before. Owned by
    a single batch and discarded with it.
    """

    def __init__(self) -> None:
        self._seen: set[tuple[str, str]] = set()

    def should_process(
        self, *, record_id: str | None = None, natural_key: str | None = None
    ) -> bool:
        keys = []
        if record_id:
            keys.append(("id", record_id))
        if natural_key:
            keys.append(("key", natural_key.lower()))
        if any(k in self._seen for k in keys):
            return False
        self._seen.update(keys)
        return True

    def __len__(self) -> int:
        return len(self._seen)
