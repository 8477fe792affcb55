import pytest

from Lexicarium.errors import RecordRejected
from Lexicarium.metrics import get_counter
from Lexicarium.tools.ids import remap_id
from Lexicarium.transfer.ownership import OwnershipResolver
from Lexicarium.transfer.scopes import Scope


async def test_absent_document_keeps_its_id(store):
    res = await OwnershipResolver(store).resolve(Scope.WORDS, "w1", "alice")
    assert res.target_id == "w1"
    assert not res.remapped
    assert not res.exists


async def test_own_document_is_overwritten_in_place(store, make_word):
    await store.put("words", "w1", make_word("w1", "cat", owner="alice"))
    res = await OwnershipResolver(store).resolve(Scope.WORDS, "w1", "alice")
    assert res.target_id == "w1"
    assert not res.remapped
    assert res.exists
    assert res.previous_owner == "alice"


async def test_unowned_document_is_claimed(store, make_word):
    await store.put("words", "w1", make_word("w1", "cat"))
    res = await OwnershipResolver(store).resolve(Scope.WORDS, "w1", "alice")
    assert res.target_id == "w1"
    assert not res.remapped


async def test_foreign_document_is_remapped(store, make_word):
    await store.put("words", "w1", make_word("w1", "cat", owner="bob"))
    res = await OwnershipResolver(store).resolve(Scope.WORDS, "w1", "alice")
    assert res.remapped
    assert res.previous_owner == "bob"
    assert res.target_id == remap_id("words", "alice", "w1")
    assert get_counter("transfer.ownership.conflict") == 1


async def test_remap_target_owned_by_another_tenant_is_rejected(store, make_word):
    await store.put("words", "w1", make_word("w1", "cat", owner="bob"))
    clash = remap_id("words", "alice", "w1")
    await store.put("words", clash, make_word(clash, "cat", owner="carol"))
    with pytest.raises(RecordRejected):
        await OwnershipResolver(store).resolve(Scope.WORDS, "w1", "alice")


async def test_session_owner_is_read_from_top_level(store, make_session):
    await store.put("detailedTestSessions", "s1", make_session("s1", owner="bob"))
    res = await OwnershipResolver(store).resolve(Scope.HISTORY, "s1", "alice")
    assert res.remapped
    assert res.target_id == remap_id("detailedTestSessions", "alice", "s1")
