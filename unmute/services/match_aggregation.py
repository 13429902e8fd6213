"""
Match aggregation: turns pairwise content similarity into per-pair match records.

A recompute pass for one user scores each of their content items against the
candidate content of other users, groups qualifying evidence by canonical user
pair and sends one scripted upsert per pair in a single bulk request.

Evidence is deduplicated by unordered content-id pair, both inside a pass and
against what the record already holds, and the score increment is gated on
that dedup. Each content pair therefore contributes ``pair_score * weight``
exactly once, whichever side's pass finds it first, and repeating a pass over
unchanged content leaves the record's score, emotions and evidence as they
were.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..models.core import ContentItem, EvidenceUnit, canonical_pair, pair_key
from ..stores.content_store import ContentStore, ContentStoreError
from ..stores.match_store import MatchStore, MatchStoreError, MatchUpsert
from ..utils.async_utils import run_blocking
from ..utils.config import MatchingConfig, config
from ..utils.logging_config import get_logger
from .candidates import CandidateSource, FullScanCandidates
from .errors import MatchAggregationError, MatchValidationError
from .graph_sync import GraphSyncService
from .similarity import cosine_similarity, vectorize

logger = get_logger(__name__)


@dataclass
class AggregationResult:
    """Summary of one recompute pass."""
    user_id: str
    pairs_upserted: int = 0
    evidence_units: int = 0
    cleared: int = 0


def build_upserts(user_id: str, own_items: List[ContentItem], candidate_items: List[ContentItem],
                  threshold: float) -> Tuple[List[MatchUpsert], int]:
    """
    Score own content against candidates and group the qualifying evidence.

    Args:
        user_id: User whose pass this is
        own_items: The user's content
        candidate_items: Other users' content
        threshold: Pairs must score strictly above this to count

    Returns:
        (one MatchUpsert per canonical pair, number of evidence units folded)
    """
    # Vectorize each text once per pass
    own_vectors = [(item, vectorize(item.text)) for item in own_items]
    candidate_vectors = [(item, vectorize(item.text)) for item in candidate_items]

    upserts: Dict[str, MatchUpsert] = {}
    folded = 0
    for own, own_vector in own_vectors:
        for other, other_vector in candidate_vectors:
            if not other.owner_id or other.owner_id == user_id or other.id == own.id:
                continue

            score = cosine_similarity(own_vector, other_vector)
            if score <= threshold:
                continue

            key = pair_key(user_id, other.owner_id)
            if key not in upserts:
                user_a, user_b = canonical_pair(user_id, other.owner_id)
                upserts[key] = MatchUpsert(user_a=user_a, user_b=user_b)

            unit = EvidenceUnit(content_id_a=own.id, content_id_b=other.id, pair_score=score)
            if upserts[key].add(unit, [own.emotion, other.emotion]):
                folded += 1

    return list(upserts.values()), folded


class MatchAggregator:
    """Recomputes and persists a user's matches."""

    def __init__(self,
                 content_store: ContentStore,
                 match_store: MatchStore,
                 candidates: Optional[CandidateSource] = None,
                 graph: Optional[GraphSyncService] = None,
                 matching: Optional[MatchingConfig] = None):
        self.content_store = content_store
        self.match_store = match_store
        self.candidates = candidates or FullScanCandidates(content_store)
        self.graph = graph
        self.matching = matching or config.matching

    async def recompute_matches_for_user(self, user_id: str) -> AggregationResult:
        """
        Rescore one user against the candidate universe and merge the result.

        Safe to run concurrently for different users and repeatedly for the same
        user.

        Args:
            user_id: User to recompute

        Returns:
            AggregationResult summary

        Raises:
            MatchValidationError: If user_id is missing
            MatchAggregationError: If content could not be read or the bulk
                merge failed; the whole pass may be retried
        """
        if not isinstance(user_id, str) or not user_id.strip():
            raise MatchValidationError('User ID is required')

        result = AggregationResult(user_id=user_id)
        logger.debug(f'Recomputing matches for user {user_id}')

        try:
            own_items = await run_blocking(self.content_store.list_content_by_owner, user_id)

            if not own_items:
                result.cleared = await run_blocking(self.match_store.delete_matches_for_user, user_id)
                logger.info(f'User {user_id} has no content; cleared {result.cleared} matches')
                if self.graph is not None:
                    await self.graph.remove_user(user_id)
                return result

            candidate_items = await self.candidates.candidates_for(user_id, own_items)
        except ContentStoreError as e:
            logger.error(f'Content lookup failed while recomputing {user_id}: {e}')
            raise MatchAggregationError(f'Recompute for {user_id} failed: {e}')
        except MatchStoreError as e:
            logger.error(f'Clearing matches of {user_id} failed: {e}')
            raise MatchAggregationError(f'Recompute for {user_id} failed: {e}')

        if not candidate_items:
            logger.debug(f'No candidate content for {user_id}; nothing to score')
            return result

        upserts, result.evidence_units = build_upserts(user_id, own_items, candidate_items,
                                                       self.matching.similarity_threshold)
        if not upserts:
            logger.debug(f'No qualifying pairs for {user_id}')
            return result

        try:
            result.pairs_upserted = await run_blocking(self.match_store.bulk_upsert, upserts,
                                                       self.matching.evidence_weight,
                                                       self.matching.bulk_retry_on_conflict)
        except MatchStoreError as e:
            logger.error(f'Bulk match merge failed for {user_id}: {e}')
            raise MatchAggregationError(f'Recompute for {user_id} failed: {e}')

        logger.info(f'Merged {result.evidence_units} evidence units into {result.pairs_upserted} matches for {user_id}')
        return result
