from Lexicarium.transfer.dedup import Deduplicator


def test_first_occurrence_is_processed_once():
    d = Deduplicator()
    assert d.should_process(record_id="w1")
    assert not d.should_process(record_id="w1")


def test_natural_key_is_case_insensitive():
    d = Deduplicator()
    assert d.should_process(record_id="w1", natural_key="Cat")
    assert not d.should_process(record_id="w2", natural_key="cat")


def test_any_seen_identity_blocks_the_record():
    d = Deduplicator()
    assert d.should_process(record_id="w1", natural_key="cat")
    assert not d.should_process(record_id="w1", natural_key="dog")
    # the rejected record's new key is not remembered
    assert d.should_process(record_id="w3", natural_key="dog")


def test_ids_and_keys_do_not_collide():
    d = Deduplicator()
    assert d.should_process(record_id="cat")
    assert d.should_process(natural_key="cat")
    assert len(d) == 2


def test_record_without_identity_is_always_processed():
    d = Deduplicator()
    assert d.should_process()
    assert d.should_process()
