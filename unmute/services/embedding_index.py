"""
Best-effort semantic embedding and nearest-neighbour lookup for content items.

Every call is individually guarded: a Bedrock or OpenSearch failure or timeout
is logged and answered with an empty result, never raised.
"""

from typing import Any, Dict, List, Optional

from ..models.core import ContentItem
from ..stores.content_store import ContentStore
from ..utils.async_utils import best_effort
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class EmbeddingIndexService:
    """Wraps the embedding model and the content index's knn field."""

    def __init__(self, embedder: Optional[BedrockEmbed], content_store: ContentStore, timeout: float = 10.0):
        self.embedder = embedder
        self.content_store = content_store
        self.timeout = timeout

    async def embed(self, text: str, purpose: str = 'document') -> Optional[List[float]]:
        if self.embedder is None:
            return None
        return await best_effort(self.embedder.embed, text, purpose, timeout=self.timeout, description='Embedding generation')

    async def upsert(self, content_id: str, vector: List[float], metadata: Dict[str, Any]) -> bool:
        result = await best_effort(self.content_store.set_embedding,
                                   content_id,
                                   vector,
                                   metadata,
                                   timeout=self.timeout,
                                   description=f'Vector index upsert of {content_id}',
                                   default=False)
        return result is not False

    async def query_nearest(self, vector: List[float], k: int, exclude_owner: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Nearest stored content to ``vector``.

        Returns:
            List of {'id', 'score', 'metadata'}; empty when the lookup failed
        """
        hits = await best_effort(self.content_store.nearest,
                                 vector,
                                 k,
                                 exclude_owner,
                                 timeout=self.timeout,
                                 description='Nearest-neighbour query',
                                 default=[])
        results = []
        for hit in hits:
            doc = hit.get('document', {})
            results.append({
                'id': hit['id'],
                'score': hit.get('score', 0.0),
                'metadata': {
                    'owner_id': doc.get('owner_id'),
                    'emotion': doc.get('emotion')
                }
            })
        return results

    async def index_content(self, item: ContentItem) -> Optional[List[float]]:
        """Embed a freshly stored item and attach the vector to it."""
        vector = await self.embed(item.text)
        if vector is None:
            return None
        await self.upsert(item.id, vector, {'owner_id': item.owner_id, 'emotion': item.emotion})
        return vector

    async def find_similar(self, item: ContentItem, k: int, vector: Optional[List[float]] = None) -> List[Dict[str, Any]]:
        """Neighbours of an item written by other users."""
        if vector is None:
            vector = await self.embed(item.text, purpose='query')
        if vector is None:
            logger.debug(f'No embedding for {item.id}; skipping neighbour search')
            return []
        return await self.query_nearest(vector, k, exclude_owner=item.owner_id)
