from unittest.mock import MagicMock

import pytest
from opensearchpy.exceptions import ConflictError, NotFoundError

from unmute.models.core import EvidenceUnit, MatchStatus
from unmute.stores.match_store import (LIST_SORT, MERGE_EVIDENCE_SCRIPT, MatchStore, MatchStoreConflictError,
                                       MatchStoreError, MatchUpsert, new_match_document)
from unmute.utils.config import load_config
from unmute.utils.opensearch_client import OpenSearchClient

NOW = '2026-01-01T00:00:00+00:00'


@pytest.fixture
def low_level():
    return MagicMock()


@pytest.fixture
def store(low_level):
    return MatchStore(OpenSearchClient(load_config().opensearch, client=low_level))


def _upsert():
    upsert = MatchUpsert(user_a='alice', user_b='bob')
    upsert.add(EvidenceUnit('v2', 'v1', 0.8), ['Anxious', 'Sad'])
    upsert.add(EvidenceUnit('v3', 'v1', 0.5), ['Anxious'])
    return upsert


def test_add_rejects_same_content_pair_in_either_order():
    upsert = MatchUpsert(user_a='alice', user_b='bob')
    assert upsert.add(EvidenceUnit('v1', 'v2', 0.8), ['Sad'])
    assert not upsert.add(EvidenceUnit('v2', 'v1', 0.8), ['Happy'])
    assert upsert.emotions == ['Sad']


def test_bulk_action_is_a_scripted_upsert_keyed_by_pair():
    action, body = _upsert().to_bulk_actions('unmute_matches', NOW, weight=1.0, retry_on_conflict=5)

    assert action == {'update': {'_index': 'unmute_matches', '_id': 'alice:bob', 'retry_on_conflict': 5}}
    assert body['scripted_upsert'] is True
    assert body['script']['source'] == MERGE_EVIDENCE_SCRIPT
    params = body['script']['params']
    assert [e['key'] for e in params['evidence']] == ['v1|v2', 'v1|v3']
    assert params['emotions'] == ['Anxious', 'Sad']
    assert params['weight'] == 1.0
    assert body['upsert'] == new_match_document('alice', 'bob', NOW)
    assert body['upsert']['status'] == 'pending'


def test_apply_merges_once_and_keeps_lifecycle_fields():
    upsert = _upsert()
    doc = upsert.apply(None, NOW, weight=1.0)
    assert doc['match_score'] == pytest.approx(1.3)
    assert doc['status'] == 'pending'

    doc.update(status='accepted', user_a_accepted=True, user_b_accepted=True)
    again = upsert.apply(doc, '2026-01-02T00:00:00+00:00', weight=1.0)

    assert again['match_score'] == pytest.approx(1.3)
    assert len(again['content_pair_evidence']) == 2
    assert again['status'] == 'accepted'
    assert again['user_a_accepted'] and again['user_b_accepted']
    assert again['created_at'] == NOW


def test_apply_scales_new_evidence_by_weight():
    doc = _upsert().apply(None, NOW, weight=0.5)
    assert doc['match_score'] == pytest.approx(0.65)


def test_bulk_upsert_sends_one_request(store, low_level):
    low_level.bulk.return_value = {'errors': False, 'items': []}

    written = store.bulk_upsert([_upsert(), MatchUpsert('carol', 'dave', [EvidenceUnit('v7', 'v8', 0.9)])], weight=1.0)

    assert written == 2
    assert low_level.bulk.call_count == 1
    body = low_level.bulk.call_args.kwargs['body']
    assert len(body) == 4
    assert [line['update']['_id'] for line in body[::2]] == ['alice:bob', 'carol:dave']


def test_bulk_upsert_skips_empty_pass(store, low_level):
    assert store.bulk_upsert([], weight=1.0) == 0
    low_level.bulk.assert_not_called()


def test_bulk_item_error_raises(store, low_level):
    low_level.bulk.return_value = {
        'errors': True,
        'items': [{
            'update': {
                '_id': 'alice:bob',
                'error': {
                    'type': 'script_exception'
                }
            }
        }]
    }

    with pytest.raises(MatchStoreError, match='alice:bob'):
        store.bulk_upsert([_upsert()], weight=1.0)


def test_get_match_returns_concurrency_tokens(store, low_level):
    low_level.get.return_value = {
        '_source': dict(new_match_document('alice', 'bob', NOW), match_score=0.7),
        '_seq_no': 12,
        '_primary_term': 3
    }

    record, seq_no, primary_term = store.get_match('alice:bob')

    assert record.id == 'alice:bob'
    assert record.match_score == pytest.approx(0.7)
    assert (seq_no, primary_term) == (12, 3)


def test_get_match_missing(store, low_level):
    low_level.get.side_effect = NotFoundError(404, 'not_found', {})
    assert store.get_match('alice:bob') is None


def test_update_status_is_guarded(store, low_level):
    store.update_status('alice:bob', MatchStatus.ACCEPTED, True, True, seq_no=4, primary_term=1)

    kwargs = low_level.update.call_args.kwargs
    assert kwargs['id'] == 'alice:bob'
    assert kwargs['if_seq_no'] == 4 and kwargs['if_primary_term'] == 1
    assert kwargs['body']['doc']['status'] == 'accepted'


def test_update_status_conflict(store, low_level):
    low_level.update.side_effect = ConflictError(409, 'version_conflict_engine_exception', {})

    with pytest.raises(MatchStoreConflictError):
        store.update_status('alice:bob', MatchStatus.ACCEPTED, True, False, seq_no=4, primary_term=1)


def test_list_for_user_by_role(store, low_level):
    low_level.search.return_value = {'hits': {'hits': [{'_source': new_match_document('alice', 'bob', NOW)}]}}

    records = store.list_for_user('bob', statuses=[MatchStatus.PENDING], role='received')

    assert [r.id for r in records] == ['alice:bob']
    body = low_level.search.call_args.kwargs['body']
    assert {'term': {'user_b': 'bob'}} in body['query']['bool']['filter']
    assert {'terms': {'status': ['pending']}} in body['query']['bool']['filter']
    assert body['sort'] == LIST_SORT
    assert low_level.search.call_count == 1


def test_list_for_user_pages_past_one_request(store, low_level):
    pages = [[new_match_document('alice', f'user{n:03d}', NOW) for n in range(i, i + 500)] for i in (0, 500)]
    pages[1] = pages[1][:120]
    low_level.search.side_effect = [
        {'hits': {'hits': [{'_source': doc, 'sort': [NOW, doc['user_a'], doc['user_b']]} for doc in page]}}
        for page in pages
    ]

    records = store.list_for_user('alice')

    assert len(records) == 620
    second = low_level.search.call_args_list[1].kwargs['body']
    assert second['search_after'] == [NOW, 'alice', 'user499']


def test_purge_content_evidence_runs_script(store, low_level):
    low_level.update_by_query.return_value = {'updated': 2, 'failures': []}

    assert store.purge_content_evidence('v1', weight=1.0) == 2
    script = low_level.update_by_query.call_args.kwargs['body']['script']
    assert script['params']['content_id'] == 'v1'


def test_list_party_ids_unions_both_sides(store, low_level):
    low_level.search.side_effect = [
        {'aggregations': {'values': {'buckets': [{'key': {'value': 'alice'}}, {'key': {'value': 'bob'}}]}}},
        {'aggregations': {'values': {'buckets': [{'key': {'value': 'bob'}}, {'key': {'value': 'carol'}}]}}},
    ]

    assert store.list_party_ids() == ['alice', 'bob', 'carol']


def test_list_party_ids_follows_composite_pages(store, low_level):
    low_level.search.side_effect = [
        {'aggregations': {'values': {'buckets': [{'key': {'value': 'alice'}}],
                                     'after_key': {'value': 'alice'}}}},
        {'aggregations': {'values': {'buckets': [{'key': {'value': 'dave'}}],
                                     'after_key': {'value': 'dave'}}}},
        {'aggregations': {'values': {'buckets': []}}},
        {'aggregations': {'values': {'buckets': [{'key': {'value': 'erin'}}]}}},
    ]

    assert store.list_party_ids() == ['alice', 'dave', 'erin']
    bodies = [c.kwargs['body'] for c in low_level.search.call_args_list]
    assert 'after' not in bodies[0]['aggs']['values']['composite']
    assert bodies[1]['aggs']['values']['composite']['after'] == {'value': 'alice'}
    assert bodies[2]['aggs']['values']['composite']['after'] == {'value': 'dave'}
    assert bodies[3]['aggs']['values']['composite']['sources'] == [{'value': {'terms': {'field': 'user_b'}}}]
