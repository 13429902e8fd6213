"""
Content ingestion: the vent/journal create and delete flow that feeds matching.

The content store write is the only step that can fail a request. Embedding,
vector index, neighbour search and graph writes happen after it has committed
and are each guarded individually. Recomputes are triggered, not awaited.
"""

import uuid
from typing import List, Optional

from ..models.core import CONTENT_KINDS, JOURNAL_EMOTIONS, VENT_EMOTIONS, ContentItem, MatchStatus, pair_key
from ..stores.content_store import ContentStore, ContentStoreError
from ..stores.match_store import MatchStore, MatchStoreError
from ..utils.async_utils import run_blocking
from ..utils.config import MatchingConfig, config
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import utc_now
from .embedding_index import EmbeddingIndexService
from .errors import ContentAuthorizationError, ContentError, ContentNotFoundError, ContentValidationError
from .graph_sync import GraphSyncService
from .match_scheduler import MatchScheduler

logger = get_logger(__name__)

# Pairs whose graph edge was removed on purpose and must not be re-created.
CLOSED_STATUSES = (MatchStatus.REJECTED, MatchStatus.UNMATCHED)


class ContentService:
    """Creates and deletes matching-eligible content."""

    def __init__(self,
                 content_store: ContentStore,
                 match_store: MatchStore,
                 embedding_index: EmbeddingIndexService,
                 graph: GraphSyncService,
                 scheduler: MatchScheduler,
                 matching: Optional[MatchingConfig] = None):
        self.content_store = content_store
        self.match_store = match_store
        self.embedding_index = embedding_index
        self.graph = graph
        self.scheduler = scheduler
        self.matching = matching or config.matching

    async def create_content(self, owner_id: str, text: str, emotion: str, kind: str = 'vent', title: str = '') -> ContentItem:
        """
        Store a vent or journal entry and kick off matching for it.

        Args:
            owner_id: Author
            text: Body text
            emotion: Emotion tag
            kind: 'vent' or 'journal'
            title: Optional title

        Returns:
            The stored ContentItem

        Raises:
            ContentValidationError: If a required field is missing or invalid
            ContentError: If the primary store write failed
        """
        self._validate(owner_id, text, emotion, kind)

        item = ContentItem(id=uuid.uuid4().hex,
                           owner_id=owner_id,
                           text=text,
                           emotion=emotion,
                           kind=kind,
                           title=title or '',
                           created_at=utc_now())
        try:
            await run_blocking(self.content_store.create_content, item)
        except ContentStoreError as e:
            logger.error(f'Failed to store {kind} for {owner_id}: {e}')
            raise ContentError(f'Failed to store {kind}: {e}')

        logger.info(f'Stored {kind} {item.id} for {owner_id}')

        vector = await self.embedding_index.index_content(item)
        neighbours = await self.embedding_index.find_similar(item, self.matching.nearest_k, vector=vector)
        if not neighbours:
            logger.debug(f'No similar content found for {item.id}')

        touched: List[str] = []
        for neighbour in neighbours:
            neighbour_owner = neighbour['metadata'].get('owner_id')
            if not neighbour_owner or neighbour_owner == owner_id:
                continue
            if not await self._may_link(owner_id, neighbour_owner):
                continue
            await self.graph.link(owner_id, neighbour_owner, float(neighbour['score']), [emotion])
            if neighbour_owner not in touched:
                touched.append(neighbour_owner)

        for user_id in touched:
            self.scheduler.trigger(user_id)
        self.scheduler.trigger(owner_id)
        return item

    async def delete_content(self, content_id: str, owner_id: str) -> None:
        """
        Delete an item owned by ``owner_id`` and rescore the author.

        Raises:
            ContentValidationError: If an id is missing
            ContentNotFoundError: If the item does not exist
            ContentAuthorizationError: If the item belongs to someone else
            ContentError: If the primary delete failed
        """
        if not content_id or not owner_id:
            raise ContentValidationError('Content ID and owner ID are required')

        try:
            item = await run_blocking(self.content_store.get_content, content_id)
            if item is None:
                raise ContentNotFoundError(f'Content {content_id} not found')
            if item.owner_id != owner_id:
                raise ContentAuthorizationError(f'Content {content_id} does not belong to {owner_id}')
            await run_blocking(self.content_store.delete_content, content_id)
        except ContentStoreError as e:
            logger.error(f'Failed to delete content {content_id}: {e}')
            raise ContentError(f'Failed to delete content: {e}')

        logger.info(f'Deleted {item.kind} {content_id} of {owner_id}')

        try:
            purged = await run_blocking(self.match_store.purge_content_evidence, content_id, self.matching.evidence_weight)
            logger.debug(f'Purged evidence of {content_id} from {purged} matches')
        except MatchStoreError as e:
            logger.error(f'Evidence purge for deleted content {content_id} failed: {e}')

        self.scheduler.trigger(owner_id)

    async def _may_link(self, owner_id: str, other_id: str) -> bool:
        """False when the pair was rejected or unmatched, or its status cannot be read."""
        try:
            found = await run_blocking(self.match_store.get_match, pair_key(owner_id, other_id))
        except MatchStoreError as e:
            logger.warning(f'Skipping graph link {owner_id}->{other_id}: match lookup failed: {e}')
            return False
        if found is None:
            return True
        record = found[0]
        if record.status in CLOSED_STATUSES:
            logger.debug(f'Not linking {owner_id}->{other_id}: match is {record.status.value}')
            return False
        return True

    @staticmethod
    def _validate(owner_id: str, text: str, emotion: str, kind: str) -> None:
        if not owner_id:
            raise ContentValidationError('Owner ID is required')
        if not text or not text.strip():
            raise ContentValidationError('Text is required')
        if kind not in CONTENT_KINDS:
            raise ContentValidationError(f"Kind must be one of {', '.join(CONTENT_KINDS)}")
        allowed = VENT_EMOTIONS if kind == 'vent' else JOURNAL_EMOTIONS
        if emotion not in allowed:
            raise ContentValidationError(f'Emotion {emotion!r} is not allowed for a {kind}')
