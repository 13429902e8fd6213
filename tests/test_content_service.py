import pytest

from unmute.models.core import MatchStatus
from unmute.services.errors import (ContentAuthorizationError, ContentError, ContentNotFoundError,
                                    ContentValidationError)
from unmute.services.similarity import text_similarity


@pytest.mark.parametrize('owner_id,text,emotion,kind', [
    ('', 'anxious work', 'Anxious', 'vent'),
    ('alice', '   ', 'Anxious', 'vent'),
    ('alice', 'anxious work', 'Grateful', 'vent'),
    ('alice', 'anxious work', 'Anxious', 'diary'),
])
async def test_create_validates_input(registry, owner_id, text, emotion, kind):
    with pytest.raises(ContentValidationError) as excinfo:
        await registry.content.create_content(owner_id, text, emotion, kind=kind)
    assert excinfo.value.http_status == 400


async def test_journal_allows_wider_emotion_set(registry, content_store):
    item = await registry.content.create_content('alice', 'grateful quiet morning', 'Grateful', kind='journal')
    await registry.scheduler.drain()

    assert content_store.items[item.id].kind == 'journal'


async def test_create_indexes_links_and_recomputes(registry, content_store, match_store, neptune, embedder):
    content_store.add('v9', 'bob', 'Feel anxious about work deadlines', 'Sad')
    content_store.nearest_hits = [{'id': 'v9', 'score': 0.92, 'document': {'owner_id': 'bob', 'emotion': 'Sad'}}]

    item = await registry.content.create_content('alice', "I'm so anxious about work deadlines", 'Anxious')
    await registry.scheduler.drain()

    assert item.id in content_store.embeddings
    assert embedder.calls == ['document']
    assert neptune.edges[('alice', 'bob')]['similarity'] == pytest.approx(0.92)
    record = match_store.record('alice', 'bob')
    assert record.match_score == pytest.approx(1.0)
    assert set(record.common_emotions) == {'Anxious', 'Sad'}


@pytest.mark.parametrize('status', [MatchStatus.REJECTED, MatchStatus.UNMATCHED])
async def test_new_content_does_not_relink_closed_pair(registry, content_store, match_store, neptune, status):
    content_store.add('v1', 'alice', 'anxious work deadlines', 'Anxious')
    content_store.add('v9', 'bob', 'Feel anxious about work deadlines', 'Anxious')
    await registry.aggregator.recompute_matches_for_user('alice')
    match_store.set_status('alice:bob', status)
    content_store.nearest_hits = [{'id': 'v9', 'score': 0.9, 'document': {'owner_id': 'bob', 'emotion': 'Anxious'}}]

    await registry.content.create_content('alice', 'still anxious about work deadlines', 'Anxious')
    await registry.scheduler.drain()

    assert ('alice', 'bob') not in neptune.edges
    assert match_store.record('alice', 'bob').status == status


async def test_pending_pair_is_still_linked(registry, content_store, match_store, neptune):
    content_store.add('v1', 'alice', 'anxious work deadlines', 'Anxious')
    content_store.add('v9', 'bob', 'Feel anxious about work deadlines', 'Anxious')
    await registry.aggregator.recompute_matches_for_user('alice')
    content_store.nearest_hits = [{'id': 'v9', 'score': 0.8, 'document': {'owner_id': 'bob', 'emotion': 'Anxious'}}]

    await registry.content.create_content('alice', 'still anxious about work deadlines', 'Anxious')
    await registry.scheduler.drain()

    assert neptune.edges[('alice', 'bob')]['similarity'] == pytest.approx(0.8)


async def test_create_survives_embedding_and_graph_outage(registry, content_store, match_store, neptune, embedder):
    embedder.fail = True
    neptune.fail = True
    content_store.add('v9', 'bob', 'Feel anxious about work deadlines')

    item = await registry.content.create_content('alice', "I'm so anxious about work deadlines", 'Anxious')
    await registry.scheduler.drain()

    assert item.id in content_store.items
    assert content_store.embeddings == {}
    assert match_store.record('alice', 'bob') is not None


async def test_create_fails_when_primary_write_fails(registry, content_store):
    content_store.fail_writes = True

    with pytest.raises(ContentError):
        await registry.content.create_content('alice', 'anxious work', 'Anxious')


async def test_delete_checks_existence_and_ownership(registry, content_store):
    content_store.add('v1', 'alice', 'anxious work')

    with pytest.raises(ContentNotFoundError):
        await registry.content.delete_content('missing', 'alice')
    with pytest.raises(ContentAuthorizationError):
        await registry.content.delete_content('v1', 'bob')
    with pytest.raises(ContentValidationError):
        await registry.content.delete_content('', 'alice')

    assert 'v1' in content_store.items


async def test_partial_delete_takes_back_evidence(registry, content_store, match_store):
    content_store.add('v1', 'alice', 'anxious work deadlines')
    content_store.add('v3', 'alice', 'work deadlines boss')
    content_store.add('v2', 'bob', 'anxious work deadlines boss')
    await registry.aggregator.recompute_matches_for_user('alice')
    assert len(match_store.record('alice', 'bob').content_pair_evidence) == 2

    await registry.content.delete_content('v3', 'alice')
    await registry.scheduler.drain()

    record = match_store.record('alice', 'bob')
    assert [e.key for e in record.content_pair_evidence] == ['v1|v2']
    assert record.match_score == pytest.approx(text_similarity('anxious work deadlines', 'anxious work deadlines boss'))


async def test_deleting_last_item_clears_matches(registry, content_store, match_store):
    content_store.add('v1', 'alice', 'anxious work deadlines')
    content_store.add('v2', 'bob', 'anxious work deadlines')
    await registry.aggregator.recompute_matches_for_user('alice')

    await registry.content.delete_content('v1', 'alice')
    await registry.scheduler.drain()

    assert match_store.docs == {}
