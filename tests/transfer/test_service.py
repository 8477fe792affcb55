import orjson
import pytest

from Lexicarium.config import Settings, TransferConfig
from Lexicarium.errors import MalformedBundle, ScopeMismatch, StoreUnavailable
from Lexicarium.metrics import get_counter, get_counters
from Lexicarium.transfer import (
    CallbackNotifier,
    Scope,
    export_bundle,
    export_bundle_with_database,
    import_bundle,
    import_bundle_with_database,
)


def _bundle(key: str, records, export_type: str | None = None) -> bytes:
    payload = {key: records, "exportDate": "2024-05-01T10:00:00Z"}
    if export_type:
        payload["exportType"] = export_type
    return orjson.dumps(payload)


async def test_import_words_bundle(store, settings, make_word):
    data = _bundle("words", [make_word("w1", "cat", owner="bob")], "words_only")
    result = await import_bundle("words", data, "alice", store=store, settings=settings)
    assert result.ok
    assert result.committed == 1
    assert get_counter("transfer.import.completed") == 1
    assert get_counters()["histo.transfer.import.duration_ms.count"] == 1


async def test_malformed_bundle_commits_nothing(memory_store, settings):
    with pytest.raises(MalformedBundle):
        await import_bundle(Scope.WORDS, b"{oops", "alice", store=memory_store, settings=settings)
    assert memory_store.puts == []
    assert get_counter("transfer.import.aborted") == 1


async def test_scope_mismatch_rejected_before_writes(memory_store, settings, make_word):
    data = _bundle("words", [make_word("w1", "cat")], "words_only")
    with pytest.raises(ScopeMismatch):
        await import_bundle(Scope.HISTORY, data, "alice", store=memory_store, settings=settings)
    assert memory_store.puts == []


async def test_scope_mismatch_warning_is_reported(memory_store, make_session):
    settings = Settings(transfer=TransferConfig(on_scope_mismatch="warn"))
    data = _bundle("testHistory", [make_session("s1")], "words_only")
    result = await import_bundle(
        Scope.HISTORY, data, "alice", store=memory_store, settings=settings
    )
    assert result.committed == 1
    assert len(result.warnings) == 1


async def test_store_unavailable_while_indexing_is_fatal(memory_store, flaky_store, settings):
    data = _bundle("words", [{"id": "w1", "english": "cat"}])
    with pytest.raises(StoreUnavailable):
        await import_bundle(
            Scope.WORDS,
            data,
            "alice",
            store=flaky_store(memory_store, fail_query=True),
            settings=settings,
        )
    assert memory_store.puts == []


async def test_tenant_is_required(memory_store, settings):
    with pytest.raises(ValueError):
        await import_bundle(Scope.WORDS, b"[]", "", store=memory_store, settings=settings)
    with pytest.raises(ValueError):
        await export_bundle(Scope.WORDS, "", store=memory_store, settings=settings)


async def test_notifier_called_after_committing_import(memory_store, settings, make_word):
    notifier = CallbackNotifier()
    seen = []
    notifier.subscribe(seen.append)

    await import_bundle(
        Scope.WORDS,
        _bundle("words", [make_word("w1", "cat")]),
        "alice",
        store=memory_store,
        notifier=notifier,
        settings=settings,
    )
    assert seen == [Scope.WORDS]

    # nothing committed: no notification
    await import_bundle(
        Scope.WORDS,
        _bundle("words", []),
        "alice",
        store=memory_store,
        notifier=notifier,
        settings=settings,
    )
    assert seen == [Scope.WORDS]


async def test_partial_import_does_not_notify(memory_store, flaky_store, settings, make_word):
    notifier = CallbackNotifier()
    seen = []
    notifier.subscribe(seen.append)
    result = await import_bundle(
        Scope.WORDS,
        _bundle("words", [make_word("w1", "cat"), make_word("w2", "dog")]),
        "alice",
        store=flaky_store(memory_store, fail_put_ids=("w2",)),
        notifier=notifier,
        settings=settings,
    )
    assert result.committed == 1
    assert result.partial
    assert seen == []


async def test_notifier_disabled_by_config(memory_store, make_word):
    settings = Settings(transfer=TransferConfig(notify_on_import=False))
    notifier = CallbackNotifier()
    seen = []
    notifier.subscribe(seen.append)
    await import_bundle(
        Scope.WORDS,
        _bundle("words", [make_word("w1", "cat")]),
        "alice",
        store=memory_store,
        notifier=notifier,
        settings=settings,
    )
    assert seen == []


async def test_export_strips_owner_and_soft_deleted(store, settings, make_word):
    await store.put("performance", "a-cat", {"wordId": "a-cat", "correct": 2, "userId": "alice"})
    await store.put(
        "performance",
        "a-dog",
        {
            "wordId": "a-dog",
            "userId": "alice",
            "firestoreMetadata": {"userId": "alice", "deleted": True},
        },
    )
    await store.put("performance", "b-cow", {"wordId": "b-cow", "userId": "bob"})

    data = await export_bundle(
        Scope.PERFORMANCE,
        "alice",
        store=store,
        settings=settings,
        export_date="2024-05-01T10:00:00Z",
    )

    payload = orjson.loads(data)
    assert payload == {
        "wordPerformance": [{"wordId": "a-cat", "correct": 2, "id": "a-cat"}],
        "exportDate": "2024-05-01T10:00:00Z",
        "exportType": "performance_only",
    }
    assert get_counter("transfer.export.records") == 1


async def test_export_history_skips_deleted_sessions(store, settings, make_session):
    await store.put("detailedTestSessions", "s1", make_session("s1", owner="alice"))
    await store.put("detailedTestSessions", "s2", make_session("s2", owner="alice", deleted=True))
    payload = orjson.loads(await export_bundle("history", "alice", store=store, settings=settings))
    assert [r["id"] for r in payload["testHistory"]] == ["s1"]
    assert "userId" not in payload["testHistory"][0]


async def test_round_trip_into_another_tenant(store, settings, make_word):
    await store.put("words", "w1", make_word("w1", "cat", owner="alice"))
    await store.put("words", "w2", make_word("w2", "dog", owner="alice"))

    data = await export_bundle(Scope.WORDS, "alice", store=store, settings=settings)
    result = await import_bundle(Scope.WORDS, data, "carol", store=store, settings=settings)

    assert result.committed == 2
    assert len(result.remaps) == 2
    carol = await store.query("words", {"owner": "carol"})
    assert sorted(d.data["english"] for d in carol) == ["cat", "dog"]
    alice = await store.query("words", {"owner": "alice"})
    assert sorted(d.id for d in alice) == ["w1", "w2"]

    again = await import_bundle(Scope.WORDS, data, "carol", store=store, settings=settings)
    assert again.committed == 2
    assert len(await store.query("words", {})) == 4


async def test_round_trip_same_tenant_is_identity(store, settings, make_word):
    await store.put("words", "w1", make_word("w1", "cat", owner="alice"))
    before = {d.id: d.data for d in await store.query("words", {})}

    data = await export_bundle(Scope.WORDS, "alice", store=store, settings=settings)
    await import_bundle(Scope.WORDS, data, "alice", store=store, settings=settings)

    after = {d.id: d.data for d in await store.query("words", {})}
    assert after == before


async def test_database_conveniences(database, settings, make_word):
    data = _bundle("words", [make_word("w1", "cat")])
    result = await import_bundle_with_database(Scope.WORDS, data, "alice", settings=settings)
    assert result.committed == 1
    exported = orjson.loads(
        await export_bundle_with_database(Scope.WORDS, "alice", settings=settings)
    )
    assert [r["english"] for r in exported["words"]] == ["cat"]


async def test_words_then_history_into_another_tenant(store, settings, make_word, make_session):
    await store.put("words", "a-apple", make_word("a-apple", "apple", owner="anna"))
    await store.put(
        "detailedTestSessions",
        "s1",
        make_session(
            "s1", owner="anna", answers=[{"wordRef": {"id": "a-apple", "english": "apple"}}]
        ),
    )
    words = await export_bundle(Scope.WORDS, "anna", store=store, settings=settings)
    history = await export_bundle(Scope.HISTORY, "anna", store=store, settings=settings)

    await import_bundle(Scope.WORDS, words, "ben", store=store, settings=settings)
    result = await import_bundle(Scope.HISTORY, history, "ben", store=store, settings=settings)

    (ben_apple,) = await store.query("words", {"owner": "ben"})
    (ben_session,) = await store.query("detailedTestSessions", {"owner": "ben"})
    assert ben_apple.id != "a-apple"
    assert ben_session.data["answers"][0]["wordRef"]["id"] == ben_apple.id
    assert result.repaired == 1
    assert result.unresolved == []
