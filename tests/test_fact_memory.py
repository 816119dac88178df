import json
import threading

import pytest

from llmp.models.core import fact_namespace
from llmp.services.fact_memory import EXTRACTION_PROMPT, FactMemoryError
from tests.conftest import blend, unit

USER = 'u1'


def test_get_facts_for_new_user_is_empty(fact_service):
    assert fact_service.get_facts(USER) == []


def test_get_facts_when_store_unavailable_returns_empty(fact_service, blob_store):
    blob_store.fail = True
    assert fact_service.get_facts(USER) == []


def test_get_facts_with_corrupt_blob_returns_empty(fact_service, blob_store):
    blob_store.items[fact_namespace(USER)] = '{not json'
    assert fact_service.get_facts(USER) == []


def test_update_facts_stores_record_and_vector(fact_service, blob_store, vector_index):
    fact = fact_service.update_facts(USER, '  I live in Paris.  ')

    assert fact.text == 'I live in Paris.'
    assert fact_service.get_facts(USER) == ['I live in Paris.']
    assert vector_index.ids(fact_namespace(USER)) == [fact.id]

    stored = json.loads(blob_store.items[fact_namespace(USER)])
    assert stored == [{'id': fact.id, 'text': 'I live in Paris.', 'created_at': fact.created_at}]


def test_near_duplicate_fact_supersedes_existing(fact_service, embedder, vector_index):
    embedder.vectors['My favorite color is blue.'] = unit(0)
    embedder.vectors['My favourite colour is blue.'] = blend(0, 1, 0.95)

    old = fact_service.update_facts(USER, 'My favorite color is blue.')
    new = fact_service.update_facts(USER, 'My favourite colour is blue.')

    assert fact_service.get_facts(USER) == ['My favourite colour is blue.']
    assert vector_index.ids(fact_namespace(USER)) == [new.id]
    assert old.id != new.id


def test_dissimilar_facts_are_both_kept(fact_service, embedder, vector_index):
    embedder.vectors['I live in Paris.'] = unit(0)
    embedder.vectors['I live in Lyon.'] = blend(0, 1, 0.85)

    fact_service.update_facts(USER, 'I live in Paris.')
    fact_service.update_facts(USER, 'I live in Lyon.')

    assert fact_service.get_facts(USER) == ['I live in Paris.', 'I live in Lyon.']
    assert len(vector_index.ids(fact_namespace(USER))) == 2


def test_identical_fact_is_replaced_not_duplicated(fact_service):
    fact_service.update_facts(USER, 'I have a dog.')
    fact_service.update_facts(USER, 'I have a dog.')

    assert fact_service.get_facts(USER) == ['I have a dog.']


def test_dedup_keeps_order_of_other_facts(fact_service, embedder):
    embedder.vectors['first'] = unit(0)
    embedder.vectors['second'] = unit(1)
    embedder.vectors['first again'] = blend(0, 2, 0.97)

    fact_service.update_facts(USER, 'first')
    fact_service.update_facts(USER, 'second')
    fact_service.update_facts(USER, 'first again')

    assert fact_service.get_facts(USER) == ['second', 'first again']


def test_dedup_removes_dangling_vector(fact_service, embedder, vector_index):
    embedder.vectors['stale'] = unit(0)
    embedder.vectors['fresh'] = blend(0, 1, 0.99)
    vector_index.upsert(fact_namespace(USER), 'orphan', unit(0))

    fresh = fact_service.update_facts(USER, 'fresh')

    assert vector_index.ids(fact_namespace(USER)) == [fresh.id]
    assert fact_service.get_facts(USER) == ['fresh']


def test_facts_are_isolated_per_user(fact_service, vector_index):
    fact_service.update_facts('alice', 'I like tea.')
    fact_service.update_facts('bob', 'I like tea.')

    assert fact_service.get_facts('alice') == ['I like tea.']
    assert fact_service.get_facts('bob') == ['I like tea.']
    assert len(vector_index.ids(fact_namespace('alice'))) == 1
    assert len(vector_index.ids(fact_namespace('bob'))) == 1


def test_update_facts_rejects_blank_fact(fact_service):
    with pytest.raises(ValueError):
        fact_service.update_facts(USER, '   ')


def test_update_facts_wraps_store_failure(fact_service, blob_store):
    blob_store.fail = True
    with pytest.raises(FactMemoryError):
        fact_service.update_facts(USER, 'I live in Paris.')


def test_update_facts_wraps_embedding_failure(fact_service, embedder):
    embedder.fail = True
    with pytest.raises(FactMemoryError):
        fact_service.update_facts(USER, 'I live in Paris.')


def test_remove_fact_removes_from_list_and_index(fact_service, vector_index):
    fact_service.update_facts(USER, 'I live in Paris.')
    dog = fact_service.update_facts(USER, 'I have a dog.')

    removed = fact_service.remove_fact(USER, 'I live in Paris.')

    assert removed == 1
    assert fact_service.get_facts(USER) == ['I have a dog.']
    assert vector_index.ids(fact_namespace(USER)) == [dog.id]


def test_remove_fact_does_not_reembed(fact_service, embedder):
    fact_service.update_facts(USER, 'I live in Paris.')
    calls_before = len(embedder.calls)

    fact_service.remove_fact(USER, 'I live in Paris.')

    assert len(embedder.calls) == calls_before


def test_remove_missing_fact_is_noop(fact_service, vector_index):
    fact_service.update_facts(USER, 'I have a dog.')

    assert fact_service.remove_fact(USER, 'I live in Paris.') == 0
    assert fact_service.get_facts(USER) == ['I have a dog.']
    assert len(vector_index.ids(fact_namespace(USER))) == 1


def test_remove_fact_from_legacy_blob(fact_service, blob_store, vector_index):
    blob_store.items[fact_namespace(USER)] = json.dumps(['I live in Paris.'])
    vector_index.upsert(fact_namespace(USER), 'I live in Paris.', unit(0))

    assert fact_service.get_facts(USER) == ['I live in Paris.']
    assert fact_service.remove_fact(USER, 'I live in Paris.') == 1
    assert fact_service.get_facts(USER) == []
    assert vector_index.ids(fact_namespace(USER)) == []


def test_extract_and_update_facts_stores_each_line(fact_service, llm):
    llm.responses = ['I live in Paris.\n\n  I have a dog.  \n']

    stored = fact_service.extract_and_update_facts(USER, 'I live in Paris. I have a dog.')

    assert [fact.text for fact in stored] == ['I live in Paris.', 'I have a dog.']
    assert fact_service.get_facts(USER) == ['I live in Paris.', 'I have a dog.']
    assert llm.calls == [(EXTRACTION_PROMPT, 'I live in Paris. I have a dog.')]


def test_extract_calls_update_facts_once_per_line(fact_service, llm, monkeypatch):
    llm.responses = ['I live in Paris.\nI have a dog.']
    seen = []
    original = fact_service.update_facts

    def spy(user_id, fact):
        seen.append(fact)
        return original(user_id, fact)

    monkeypatch.setattr(fact_service, 'update_facts', spy)
    fact_service.extract_and_update_facts(USER, 'I live in Paris. I have a dog.')

    assert seen == ['I live in Paris.', 'I have a dog.']


def test_extracted_facts_dedup_against_each_other(fact_service, llm, embedder):
    embedder.vectors['I own a cat.'] = unit(0)
    embedder.vectors['I have a cat.'] = blend(0, 1, 0.96)
    llm.responses = ['I own a cat.\nI have a cat.']

    fact_service.extract_and_update_facts(USER, 'cats')

    assert fact_service.get_facts(USER) == ['I have a cat.']


def test_extract_ignores_code_fence(fact_service, llm):
    llm.responses = ['```\nI live in Paris.\n```']

    fact_service.extract_and_update_facts(USER, 'I live in Paris.')

    assert fact_service.get_facts(USER) == ['I live in Paris.']


def test_extract_with_llm_failure_stores_nothing(fact_service, llm):
    llm.error = RuntimeError('backend down')

    assert fact_service.extract_and_update_facts(USER, 'I live in Paris.') == []
    assert fact_service.get_facts(USER) == []


def test_extract_with_empty_text_skips_llm(fact_service, llm):
    assert fact_service.extract_and_update_facts(USER, '  ') == []
    assert llm.calls == []


def test_fact_exactly_at_threshold_supersedes(fact_service, embedder, vector_index):
    # cos = 9 / (1 * 10) with every intermediate exact in floating point
    near = [0.0] * len(unit(0))
    near[0], near[1], near[2], near[3] = 9.0, 3.0, 3.0, 1.0
    embedder.vectors['I work at Acme.'] = unit(0)
    embedder.vectors['I am employed by Acme.'] = near

    fact_service.update_facts(USER, 'I work at Acme.')
    new = fact_service.update_facts(USER, 'I am employed by Acme.')

    assert fact_service.get_facts(USER) == ['I am employed by Acme.']
    assert vector_index.ids(fact_namespace(USER)) == [new.id]


def test_user_locks_are_released_when_idle(fact_service, llm):
    llm.responses = ['I have a dog.']
    fact_service.update_facts('alice', 'I like tea.')
    fact_service.remove_fact('alice', 'I like tea.')
    fact_service.extract_and_update_facts('bob', 'I have a dog.')

    assert fact_service._user_locks == {}


def test_user_lock_is_shared_while_held(fact_service):
    with fact_service._user_lock(USER):
        with fact_service._user_lock(USER):
            assert fact_service._user_locks[USER][1] == 2
        assert USER in fact_service._user_locks

    assert USER not in fact_service._user_locks


def test_extraction_call_does_not_block_writers(fact_service):
    finished = []

    class ConcurrentWriteLLM:

        def generate(self, system_prompt, user_message):
            writer = threading.Thread(target=lambda: finished.append(fact_service.update_facts(USER, 'I have a cat.')))
            writer.start()
            writer.join(timeout=5)
            return 'I live in Paris.'

    fact_service.llm = ConcurrentWriteLLM()

    fact_service.extract_and_update_facts(USER, 'I live in Paris.')

    assert len(finished) == 1
    assert fact_service.get_facts(USER) == ['I have a cat.', 'I live in Paris.']
