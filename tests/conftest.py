"""
Shared fixtures: in-memory stand-ins for OpenSearch, Neptune and Bedrock.

The match store fake merges evidence with MatchUpsert.apply, the Python
rendition of the Painless script the real store sends.
"""

import dataclasses
import threading
from typing import Any, Dict, List, Optional, Tuple

import pytest

from unmute.models.core import ContentItem, GraphMatch, MatchRecord, MatchStatus, Recommendation
from unmute.services.registry import ServiceRegistry
from unmute.stores.content_store import ContentStoreError
from unmute.stores.match_store import MatchStoreConflictError, MatchStoreError, MatchUpsert
from unmute.utils.bedrock_embed import BedrockEmbedError
from unmute.utils.config import load_config
from unmute.utils.neptune_client import NeptuneError
from unmute.utils.timestamp_utils import to_iso_str, utc_now


class InMemoryContentStore:
    """ContentStore stand-in."""

    def __init__(self):
        self.items: Dict[str, ContentItem] = {}
        self.embeddings: Dict[str, List[float]] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.nearest_hits: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def add(self, content_id: str, owner_id: str, text: str, emotion: str = 'Neutral') -> ContentItem:
        item = ContentItem(id=content_id, owner_id=owner_id, text=text, emotion=emotion, created_at=utc_now())
        self.items[content_id] = item
        return item

    def ensure_index(self):
        pass

    def create_content(self, item: ContentItem) -> ContentItem:
        if self.fail_writes:
            raise ContentStoreError('content index unavailable')
        with self._lock:
            self.items[item.id] = item
        return item

    def get_content(self, content_id: str) -> Optional[ContentItem]:
        self._check_reads()
        return self.items.get(content_id)

    def get_content_many(self, content_ids: List[str]) -> List[ContentItem]:
        self._check_reads()
        return [self.items[cid] for cid in content_ids if cid in self.items]

    def list_content_by_owner(self, owner_id: str) -> List[ContentItem]:
        self._check_reads()
        return [i for i in self.items.values() if i.owner_id == owner_id]

    def list_content_excluding_owner(self, owner_id: str) -> List[ContentItem]:
        self._check_reads()
        return [i for i in self.items.values() if i.owner_id != owner_id]

    def list_owner_ids(self) -> List[str]:
        self._check_reads()
        return sorted({i.owner_id for i in self.items.values()})

    def delete_content(self, content_id: str) -> bool:
        if self.fail_writes:
            raise ContentStoreError('content index unavailable')
        with self._lock:
            self.embeddings.pop(content_id, None)
            return self.items.pop(content_id, None) is not None

    def set_embedding(self, content_id: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        self.embeddings[content_id] = vector

    def nearest(self, vector: List[float], k: int, exclude_owner: Optional[str] = None) -> List[Dict[str, Any]]:
        hits = [h for h in self.nearest_hits if h['document'].get('owner_id') != exclude_owner]
        return hits[:k]

    def _check_reads(self):
        if self.fail_reads:
            raise ContentStoreError('content index unavailable')


class InMemoryMatchStore:
    """MatchStore stand-in with per-document versions."""

    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.versions: Dict[str, int] = {}
        self.fail_bulk = False
        self.conflicts_to_raise = 0
        self.bulk_calls = 0
        self._lock = threading.Lock()

    def ensure_index(self):
        pass

    def bulk_upsert(self, upserts: List[MatchUpsert], weight: float, retry_on_conflict: int = 5) -> int:
        self.bulk_calls += 1
        if self.fail_bulk:
            raise MatchStoreError('bulk request had 1 failed items')
        now = to_iso_str()
        with self._lock:
            for upsert in upserts:
                self.docs[upsert.match_id] = upsert.apply(self.docs.get(upsert.match_id), now, weight)
                self.versions[upsert.match_id] = self.versions.get(upsert.match_id, 0) + 1
        return len(upserts)

    def get_match(self, match_id: str) -> Optional[Tuple[MatchRecord, int, int]]:
        with self._lock:
            doc = self.docs.get(match_id)
            if doc is None:
                return None
            return MatchRecord.from_document(doc), self.versions[match_id], 1

    def update_status(self, match_id, status, user_a_accepted, user_b_accepted, seq_no, primary_term) -> None:
        with self._lock:
            if self.conflicts_to_raise > 0:
                self.conflicts_to_raise -= 1
                self.versions[match_id] += 1
                raise MatchStoreConflictError(f'Version conflict on {match_id}')
            if self.versions.get(match_id) != seq_no:
                raise MatchStoreConflictError(f'Version conflict on {match_id}')
            self.docs[match_id].update(status=status.value,
                                       user_a_accepted=user_a_accepted,
                                       user_b_accepted=user_b_accepted,
                                       updated_at=to_iso_str())
            self.versions[match_id] += 1

    def delete_matches_for_user(self, user_id: str) -> int:
        with self._lock:
            doomed = [k for k, d in self.docs.items() if user_id in (d['user_a'], d['user_b'])]
            for key in doomed:
                del self.docs[key]
                del self.versions[key]
        return len(doomed)

    def purge_content_evidence(self, content_id: str, weight: float) -> int:
        updated = 0
        with self._lock:
            for key, doc in self.docs.items():
                evidence = doc['content_pair_evidence']
                kept = [e for e in evidence if content_id not in (e['content_id_a'], e['content_id_b'])]
                if len(kept) == len(evidence):
                    continue
                removed = sum(e['pair_score'] * weight for e in evidence if e not in kept)
                doc['content_pair_evidence'] = kept
                doc['match_score'] = max(0.0, doc['match_score'] - removed)
                self.versions[key] += 1
                updated += 1
        return updated

    def list_for_user(self, user_id, statuses=None, role=None, min_score=None) -> List[MatchRecord]:
        records = []
        for doc in list(self.docs.values()):
            if role == 'sent' and doc['user_a'] != user_id:
                continue
            if role == 'received' and doc['user_b'] != user_id:
                continue
            if role is None and user_id not in (doc['user_a'], doc['user_b']):
                continue
            if statuses and doc['status'] not in [s.value for s in statuses]:
                continue
            if min_score is not None and doc['match_score'] < min_score:
                continue
            records.append(MatchRecord.from_document(doc))
        return records

    def list_party_ids(self) -> List[str]:
        return sorted({d['user_a'] for d in self.docs.values()} | {d['user_b'] for d in self.docs.values()})

    def record(self, user_x: str, user_y: str) -> Optional[MatchRecord]:
        a, b = sorted((user_x, user_y))
        doc = self.docs.get(f'{a}:{b}')
        return MatchRecord.from_document(doc) if doc else None

    def set_status(self, match_id: str, status: MatchStatus, a_flag: bool = False, b_flag: bool = False):
        self.docs[match_id].update(status=status.value, user_a_accepted=a_flag, user_b_accepted=b_flag)
        self.versions[match_id] += 1


class FakeNeptune:
    """NeptuneClient stand-in holding edges in a dict."""

    def __init__(self):
        self.edges: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.fail = False
        self.closed = False

    def upsert_match_edge(self, from_user, to_user, similarity, common_emotions):
        self._check()
        edge = self.edges.get((from_user, to_user))
        if edge is None:
            self.edges[(from_user, to_user)] = {'similarity': similarity, 'common_emotions': list(common_emotions)}
        else:
            edge['similarity'] = (edge['similarity'] + similarity) / 2
            edge['common_emotions'] = edge['common_emotions'] + list(common_emotions)
        return True

    def delete_match_edge(self, from_user, to_user):
        self._check()
        self.edges.pop((from_user, to_user), None)
        return True

    def delete_user_edges(self, user_id):
        self._check()
        for key in [k for k in self.edges if user_id in k]:
            del self.edges[key]
        return True

    def find_direct_matches(self, user_id, limit=10):
        self._check()
        found = [GraphMatch(user_id=to, similarity=e['similarity'], common_emotions=e['common_emotions'])
                 for (frm, to), e in self.edges.items() if frm == user_id]
        return sorted(found, key=lambda m: -m.similarity)[:limit]

    def find_second_degree(self, user_id, limit=10):
        self._check()
        direct = {to for (frm, to) in self.edges if frm == user_id} | {frm for (frm, to) in self.edges if to == user_id}
        scores: Dict[str, List[float]] = {}
        for friend in {to for (frm, to) in self.edges if frm == user_id}:
            for (frm, to), e in self.edges.items():
                if frm == friend and to != user_id and to not in direct:
                    scores.setdefault(to, []).append(e['similarity'])
        recs = [Recommendation(user_id=u, avg_similarity=sum(v) / len(v)) for u, v in scores.items()]
        return sorted(recs, key=lambda r: -r.avg_similarity)[:limit]

    def close(self):
        self.closed = True

    def _check(self):
        if self.fail:
            raise NeptuneError('Failed to reach graph: connection refused')


class FakeEmbedder:
    """BedrockEmbed stand-in returning a fixed-size vector."""

    def __init__(self, dimension: int = 4):
        self.dimension = dimension
        self.fail = False
        self.calls: List[str] = []

    def embed(self, text: str, purpose: str = 'document') -> List[float]:
        self.calls.append(purpose)
        if self.fail:
            raise BedrockEmbedError('Bedrock Embed failed after 3 attempts: throttled')
        return [float(len(text) % 7), 1.0, 0.5, 0.25][:self.dimension]


@pytest.fixture
def app_config():
    base = load_config()
    matching = dataclasses.replace(base.matching,
                                   similarity_threshold=0.3,
                                   evidence_weight=1.0,
                                   suggestion_min_score=0.6,
                                   candidate_strategy='full_scan',
                                   side_call_timeout=2.0,
                                   sweep_concurrency=4)
    return dataclasses.replace(base, matching=matching)


@pytest.fixture
def content_store():
    return InMemoryContentStore()


@pytest.fixture
def match_store():
    return InMemoryMatchStore()


@pytest.fixture
def neptune():
    return FakeNeptune()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def registry(app_config, content_store, match_store, neptune, embedder, notifications):

    async def notify(event, record, actor_id):
        notifications.append((event, record.id, actor_id))

    return ServiceRegistry.assemble(app_config,
                                    content_store,
                                    match_store,
                                    embedder=embedder,
                                    neptune=neptune,
                                    notifier=notify)
