from Lexicarium.tools.ids import ID_LENGTH, content_id, derive_id, is_derived_id, remap_id


def test_derive_id_is_deterministic_and_well_formed():
    a = derive_id("natural", "words", "cat")
    assert a == derive_id("natural", "words", "cat")
    assert len(a) == ID_LENGTH
    assert is_derived_id(a)


def test_derive_id_framing_separates_components():
    assert derive_id("ab", "c") != derive_id("a", "bc")


def test_remap_id_depends_on_tenant_and_collection():
    base = remap_id("words", "alice", "w1")
    assert base == remap_id("words", "alice", "w1")
    assert base != remap_id("words", "bob", "w1")
    assert base != remap_id("performance", "alice", "w1")
    assert base != "w1"


def test_content_id_ignores_key_order():
    assert content_id("statistics", {"a": 1, "b": 2}) == content_id("statistics", {"b": 2, "a": 1})
    assert content_id("statistics", {"a": 1}) != content_id("statistics", {"a": 2})


def test_is_derived_id_rejects_other_shapes():
    assert not is_derived_id("w1")
    assert not is_derived_id("I" * ID_LENGTH)
