"""
Core data models for match scoring.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..utils.timestamp_utils import from_iso_str, to_iso_str

VENT_EMOTIONS = ('Happy', 'Sad', 'Angry', 'Anxious', 'Neutral', 'Burnout')
JOURNAL_EMOTIONS = VENT_EMOTIONS + ('Peaceful', 'Excited', 'Grateful', 'Overwhelmed', 'Hopeful', 'Disappointed')

CONTENT_KINDS = ('vent', 'journal')


class MatchStatus(str, Enum):
    """Lifecycle states of a match record."""
    PENDING = 'pending'
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'
    UNMATCHED = 'unmatched'


def canonical_pair(user_x: str, user_y: str) -> Tuple[str, str]:
    """Order two user ids so the lower one comes first."""
    return (user_x, user_y) if user_x < user_y else (user_y, user_x)


def pair_key(user_x: str, user_y: str) -> str:
    """Canonical pair key, also used as the match record id."""
    user_a, user_b = canonical_pair(user_x, user_y)
    return f'{user_a}:{user_b}'


def content_pair_key(content_x: str, content_y: str) -> str:
    """Unordered content-id pair identifier used to deduplicate evidence."""
    first, second = sorted((content_x, content_y))
    return f'{first}|{second}'


@dataclass
class ContentItem:
    """A matching-eligible piece of writing (a vent or a journal entry)."""
    id: str
    owner_id: str
    text: str
    emotion: str
    created_at: datetime
    kind: str = 'vent'
    title: str = ''

    def to_document(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'text': self.text,
            'emotion': self.emotion,
            'kind': self.kind,
            'title': self.title,
            'created_at': to_iso_str(self.created_at)
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'ContentItem':
        return cls(id=doc['id'],
                   owner_id=doc['owner_id'],
                   text=doc.get('text', ''),
                   emotion=doc.get('emotion', 'Neutral'),
                   kind=doc.get('kind', 'vent'),
                   title=doc.get('title', ''),
                   created_at=from_iso_str(doc.get('created_at')))


@dataclass
class EvidenceUnit:
    """One qualifying content-to-content similarity between two different users."""
    content_id_a: str
    content_id_b: str
    pair_score: float

    @property
    def key(self) -> str:
        return content_pair_key(self.content_id_a, self.content_id_b)

    def to_document(self) -> Dict[str, Any]:
        return {'content_id_a': self.content_id_a, 'content_id_b': self.content_id_b, 'pair_score': self.pair_score}

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'EvidenceUnit':
        return cls(content_id_a=doc['content_id_a'],
                   content_id_b=doc['content_id_b'],
                   pair_score=float(doc.get('pair_score', 0.0)))


@dataclass
class MatchRecord:
    """Aggregated affinity between two distinct users, stored once per unordered pair.

    ``user_a < user_b`` always holds; the record id is the canonical pair key.
    Evidence fields belong to the aggregator, status and acceptance flags to the
    lifecycle service.
    """
    user_a: str
    user_b: str
    match_score: float = 0.0
    common_emotions: List[str] = field(default_factory=list)
    content_pair_evidence: List[EvidenceUnit] = field(default_factory=list)
    status: MatchStatus = MatchStatus.PENDING
    user_a_accepted: bool = False
    user_b_accepted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        return pair_key(self.user_a, self.user_b)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.user_a, self.user_b)

    def other_party(self, user_id: str) -> str:
        return self.user_b if user_id == self.user_a else self.user_a

    @property
    def mean_pair_score(self) -> float:
        """Average cosine of the evidence, in [0, 1] unlike the accumulated match_score."""
        if not self.content_pair_evidence:
            return 0.0
        return sum(e.pair_score for e in self.content_pair_evidence) / len(self.content_pair_evidence)

    def to_document(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_a': self.user_a,
            'user_b': self.user_b,
            'match_score': self.match_score,
            'common_emotions': list(self.common_emotions),
            'content_pair_evidence': [e.to_document() for e in self.content_pair_evidence],
            'status': self.status.value,
            'user_a_accepted': self.user_a_accepted,
            'user_b_accepted': self.user_b_accepted,
            'created_at': to_iso_str(self.created_at) if self.created_at else None,
            'updated_at': to_iso_str(self.updated_at) if self.updated_at else None
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'MatchRecord':
        return cls(user_a=doc['user_a'],
                   user_b=doc['user_b'],
                   match_score=float(doc.get('match_score', 0.0)),
                   common_emotions=list(doc.get('common_emotions') or []),
                   content_pair_evidence=[EvidenceUnit.from_document(e) for e in doc.get('content_pair_evidence') or []],
                   status=MatchStatus(doc.get('status', MatchStatus.PENDING.value)),
                   user_a_accepted=bool(doc.get('user_a_accepted', False)),
                   user_b_accepted=bool(doc.get('user_b_accepted', False)),
                   created_at=from_iso_str(doc.get('created_at')),
                   updated_at=from_iso_str(doc.get('updated_at')))


@dataclass
class GraphMatch:
    """A direct MATCHED neighbour read from the graph store."""
    user_id: str
    similarity: float
    common_emotions: List[str] = field(default_factory=list)


@dataclass
class Recommendation:
    """A friend-of-friend recommendation read from the graph store."""
    user_id: str
    avg_similarity: float
