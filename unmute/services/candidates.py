"""
Candidate retrieval for the match aggregator.

The aggregator only folds and merges; which foreign content it compares
against is decided here.

``FullScanCandidates`` compares against every other user's content. That is
O(U x N^2) across a full sweep and is the known scaling limit of the default
configuration. ``NearestNeighbourCandidates`` restricts the universe to the
semantic neighbours of the user's own items and can replace it without any
change to the aggregation logic.
"""

from typing import List

from ..models.core import ContentItem
from ..stores.content_store import ContentStore
from ..utils.async_utils import run_blocking
from ..utils.logging_config import get_logger
from .embedding_index import EmbeddingIndexService

logger = get_logger(__name__)


class CandidateSource:
    """Supplies the foreign content a user's items are scored against."""

    async def candidates_for(self, user_id: str, own_items: List[ContentItem]) -> List[ContentItem]:
        raise NotImplementedError


class FullScanCandidates(CandidateSource):
    """Every content item not owned by the user."""

    def __init__(self, content_store: ContentStore):
        self.content_store = content_store

    async def candidates_for(self, user_id: str, own_items: List[ContentItem]) -> List[ContentItem]:
        return await run_blocking(self.content_store.list_content_excluding_owner, user_id)


class NearestNeighbourCandidates(CandidateSource):
    """Content returned by the vector index for any of the user's own items.

    Embedding or index failures yield no candidates for the affected item.
    """

    def __init__(self, content_store: ContentStore, embedding_index: EmbeddingIndexService, k: int = 10):
        self.content_store = content_store
        self.embedding_index = embedding_index
        self.k = k

    async def candidates_for(self, user_id: str, own_items: List[ContentItem]) -> List[ContentItem]:
        candidate_ids = []
        for item in own_items:
            for hit in await self.embedding_index.find_similar(item, self.k):
                if hit['id'] not in candidate_ids:
                    candidate_ids.append(hit['id'])

        if not candidate_ids:
            logger.debug(f'Vector index returned no candidates for {user_id}')
            return []

        items = await run_blocking(self.content_store.get_content_many, candidate_ids)
        return [item for item in items if item.owner_id != user_id]
