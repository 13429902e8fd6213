"""
Match record store backed by an OpenSearch index.

Every record lives under its canonical pair key. Evidence is merged in-store
by a Painless script sent as a scripted upsert, so concurrent recompute passes
on the same pair are serialized per document by OpenSearch and increments are
never lost. The script only touches evidence fields; status and acceptance
flags are written by the lifecycle service through ``update_status``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..models.core import EvidenceUnit, MatchRecord, MatchStatus, content_pair_key
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchConflictError, OpenSearchError
from ..utils.timestamp_utils import to_iso_str

logger = get_logger(__name__)

MERGE_EVIDENCE_SCRIPT = """
if (ctx._source.content_pair_evidence == null) { ctx._source.content_pair_evidence = []; }
if (ctx._source.common_emotions == null) { ctx._source.common_emotions = []; }
if (ctx._source.match_score == null) { ctx._source.match_score = 0.0; }
Set seen = new HashSet();
for (def e : ctx._source.content_pair_evidence) {
  String a = e.content_id_a; String b = e.content_id_b;
  seen.add(a.compareTo(b) < 0 ? a + '|' + b : b + '|' + a);
}
for (def e : params.evidence) {
  if (seen.add(e.key)) {
    ctx._source.content_pair_evidence.add(['content_id_a': e.content_id_a, 'content_id_b': e.content_id_b, 'pair_score': e.pair_score]);
    ctx._source.match_score += e.pair_score * params.weight;
  }
}
for (def emotion : params.emotions) {
  if (!ctx._source.common_emotions.contains(emotion)) { ctx._source.common_emotions.add(emotion); }
}
ctx._source.updated_at = params.now;
"""

PURGE_CONTENT_SCRIPT = """
def kept = [];
double removed = 0.0;
for (def e : ctx._source.content_pair_evidence) {
  if (e.content_id_a == params.content_id || e.content_id_b == params.content_id) {
    removed += e.pair_score * params.weight;
  } else {
    kept.add(e);
  }
}
if (kept.size() == ctx._source.content_pair_evidence.size()) {
  ctx.op = 'noop';
} else {
  ctx._source.content_pair_evidence = kept;
  ctx._source.match_score = Math.max(0.0, ctx._source.match_score - removed);
  ctx._source.updated_at = params.now;
}
"""

# Newest first; the user pair is unique per record and breaks ties between pages.
LIST_SORT = [{'updated_at': {'order': 'desc'}}, {'user_a': {'order': 'asc'}}, {'user_b': {'order': 'asc'}}]


class MatchStoreError(Exception):
    """Custom exception for match store errors."""
    pass


class MatchStoreConflictError(MatchStoreError):
    """Raised when a guarded status write lost against a concurrent writer."""
    pass


def new_match_document(user_a: str, user_b: str, now: str) -> Dict[str, Any]:
    """Body inserted when a pair sees its first qualifying evidence."""
    return {
        'id': f'{user_a}:{user_b}',
        'user_a': user_a,
        'user_b': user_b,
        'match_score': 0.0,
        'common_emotions': [],
        'content_pair_evidence': [],
        'status': MatchStatus.PENDING.value,
        'user_a_accepted': False,
        'user_b_accepted': False,
        'created_at': now,
        'updated_at': now
    }


@dataclass
class MatchUpsert:
    """All evidence one aggregation pass gathered for a single user pair."""
    user_a: str
    user_b: str
    evidence: List[EvidenceUnit] = field(default_factory=list)
    emotions: List[str] = field(default_factory=list)

    @property
    def match_id(self) -> str:
        return f'{self.user_a}:{self.user_b}'

    def add(self, unit: EvidenceUnit, emotions: List[str]) -> bool:
        """Fold one evidence unit in; returns False for a content pair already folded."""
        if any(existing.key == unit.key for existing in self.evidence):
            return False
        self.evidence.append(unit)
        for emotion in emotions:
            if emotion and emotion not in self.emotions:
                self.emotions.append(emotion)
        return True

    def script_params(self, now: str, weight: float) -> Dict[str, Any]:
        return {
            'evidence': [dict(e.to_document(), key=e.key) for e in self.evidence],
            'emotions': list(self.emotions),
            'weight': weight,
            'now': now
        }

    def to_bulk_actions(self, index_name: str, now: str, weight: float, retry_on_conflict: int) -> List[Dict[str, Any]]:
        """Action and body lines of a scripted upsert for the _bulk API."""
        action = {'update': {'_index': index_name, '_id': self.match_id, 'retry_on_conflict': retry_on_conflict}}
        body = {
            'scripted_upsert': True,
            'script': {
                'lang': 'painless',
                'source': MERGE_EVIDENCE_SCRIPT,
                'params': self.script_params(now, weight)
            },
            'upsert': new_match_document(self.user_a, self.user_b, now)
        }
        return [action, body]

    def apply(self, source: Optional[Dict[str, Any]], now: str, weight: float) -> Dict[str, Any]:
        """Python rendition of MERGE_EVIDENCE_SCRIPT for stores that cannot run Painless."""
        doc = dict(source) if source is not None else new_match_document(self.user_a, self.user_b, now)
        evidence = list(doc.get('content_pair_evidence') or [])
        emotions = list(doc.get('common_emotions') or [])
        score = float(doc.get('match_score') or 0.0)

        seen = {content_pair_key(e['content_id_a'], e['content_id_b']) for e in evidence}
        for unit in self.evidence:
            if unit.key in seen:
                continue
            seen.add(unit.key)
            evidence.append(unit.to_document())
            score += unit.pair_score * weight
        for emotion in self.emotions:
            if emotion not in emotions:
                emotions.append(emotion)

        doc.update(content_pair_evidence=evidence, common_emotions=emotions, match_score=score, updated_at=now)
        return doc


class MatchStore:
    """Persistence for match records."""

    def __init__(self, opensearch: OpenSearchClient):
        self.opensearch = opensearch
        self.index_name = opensearch.config.match_index

    def ensure_index(self) -> None:
        try:
            self.opensearch.create_index_if_not_exists(self.index_name, self.opensearch.match_index_body())
        except OpenSearchError as e:
            raise MatchStoreError(f'Failed to prepare match index: {e}')

    def bulk_upsert(self, upserts: List[MatchUpsert], weight: float, retry_on_conflict: int = 5) -> int:
        """
        Merge a pass worth of evidence in a single _bulk request.

        Args:
            upserts: One MatchUpsert per canonical pair
            weight: Multiplier applied to each new pair score
            retry_on_conflict: Per-document retries inside OpenSearch

        Returns:
            Number of pairs written

        Raises:
            MatchStoreError: If the request or any item failed
        """
        if not upserts:
            return 0

        now = to_iso_str()
        actions: List[Dict[str, Any]] = []
        for upsert in upserts:
            actions.extend(upsert.to_bulk_actions(self.index_name, now, weight, retry_on_conflict))

        try:
            self.opensearch.bulk(actions)
        except OpenSearchError as e:
            raise MatchStoreError(f'Bulk merge of {len(upserts)} match records failed: {e}')
        return len(upserts)

    def get_match(self, match_id: str) -> Optional[Tuple[MatchRecord, int, int]]:
        """Load a record with the seq_no and primary_term needed for a guarded write."""
        try:
            found = self.opensearch.get_document(self.index_name, match_id)
        except OpenSearchError as e:
            raise MatchStoreError(f'Failed to load match {match_id}: {e}')
        if found is None:
            return None
        source, seq_no, primary_term = found
        return MatchRecord.from_document(source), seq_no, primary_term

    def update_status(self, match_id: str, status: MatchStatus, user_a_accepted: bool, user_b_accepted: bool,
                      seq_no: int, primary_term: int) -> None:
        """
        Write status and acceptance flags if the record is unchanged since it was read.

        Raises:
            MatchStoreConflictError: If another writer got there first
            MatchStoreError: For any other failure
        """
        partial = {
            'status': status.value,
            'user_a_accepted': user_a_accepted,
            'user_b_accepted': user_b_accepted,
            'updated_at': to_iso_str()
        }
        try:
            self.opensearch.update_document(self.index_name, match_id, partial, if_seq_no=seq_no, if_primary_term=primary_term)
        except OpenSearchConflictError as e:
            raise MatchStoreConflictError(str(e))
        except OpenSearchError as e:
            raise MatchStoreError(f'Failed to update match {match_id}: {e}')

    def delete_matches_for_user(self, user_id: str) -> int:
        try:
            deleted = self.opensearch.delete_by_query(self.index_name, self._party_query(user_id))
        except OpenSearchError as e:
            raise MatchStoreError(f'Failed to delete matches of {user_id}: {e}')
        logger.debug(f'Deleted {deleted} match records of {user_id}')
        return deleted

    def purge_content_evidence(self, content_id: str, weight: float) -> int:
        """Strip evidence citing a deleted content item and take back its score."""
        query = {
            'bool': {
                'should': [{
                    'term': {
                        'content_pair_evidence.content_id_a': content_id
                    }
                }, {
                    'term': {
                        'content_pair_evidence.content_id_b': content_id
                    }
                }],
                'minimum_should_match': 1
            }
        }
        script = {
            'lang': 'painless',
            'source': PURGE_CONTENT_SCRIPT,
            'params': {
                'content_id': content_id,
                'weight': weight,
                'now': to_iso_str()
            }
        }
        try:
            return self.opensearch.update_by_query(self.index_name, query, script)
        except OpenSearchError as e:
            raise MatchStoreError(f'Failed to purge evidence of content {content_id}: {e}')

    def list_for_user(self,
                      user_id: str,
                      statuses: Optional[List[MatchStatus]] = None,
                      role: Optional[str] = None,
                      min_score: Optional[float] = None) -> List[MatchRecord]:
        """
        Records involving a user, newest update first.

        Args:
            user_id: The user
            statuses: Restrict to these statuses
            role: 'sent' for records where the user is user_a, 'received' for user_b
            min_score: Minimum match_score
        """
        if role == 'sent':
            filters = [{'term': {'user_a': user_id}}]
        elif role == 'received':
            filters = [{'term': {'user_b': user_id}}]
        else:
            filters = [self._party_query(user_id)]

        if statuses:
            filters.append({'terms': {'status': [s.value for s in statuses]}})
        if min_score is not None:
            filters.append({'range': {'match_score': {'gte': min_score}}})

        try:
            docs = self.opensearch.search_all(self.index_name, {'bool': {'filter': filters}}, sort=LIST_SORT)
        except OpenSearchError as e:
            raise MatchStoreError(f'Failed to list matches of {user_id}: {e}')
        return [MatchRecord.from_document(doc) for doc in docs]

    def list_party_ids(self) -> List[str]:
        """Every user id that appears on either side of a record."""
        try:
            parties = set(self.opensearch.distinct_values(self.index_name, 'user_a'))
            parties.update(self.opensearch.distinct_values(self.index_name, 'user_b'))
        except OpenSearchError as e:
            raise MatchStoreError(f'Failed to list match parties: {e}')
        return sorted(parties)

    @staticmethod
    def _party_query(user_id: str) -> Dict[str, Any]:
        return {'bool': {'should': [{'term': {'user_a': user_id}}, {'term': {'user_b': user_id}}], 'minimum_should_match': 1}}
