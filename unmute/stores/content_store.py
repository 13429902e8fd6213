"""
Content item store backed by the OpenSearch content index.

The same index doubles as the vector index: each document can carry an
``embedding`` knn field written after the primary save.
"""

from typing import Any, Dict, List, Optional

from ..models.core import ContentItem
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError

logger = get_logger(__name__)


class ContentStoreError(Exception):
    """Custom exception for content store errors."""
    pass


class ContentStore:
    """Reads and writes vents and matching-eligible journal entries."""

    def __init__(self, opensearch: OpenSearchClient):
        self.opensearch = opensearch
        self.index_name = opensearch.config.content_index

    def ensure_index(self) -> None:
        try:
            self.opensearch.create_index_if_not_exists(self.index_name, self.opensearch.content_index_body())
        except OpenSearchError as e:
            raise ContentStoreError(f'Failed to prepare content index: {e}')

    def create_content(self, item: ContentItem) -> ContentItem:
        try:
            if not self.opensearch.index_document(self.index_name, item.id, item.to_document()):
                raise ContentStoreError(f'Content {item.id} was not stored')
        except OpenSearchError as e:
            raise ContentStoreError(f'Failed to store content {item.id}: {e}')
        logger.debug(f'Stored {item.kind} {item.id} for {item.owner_id}')
        return item

    def get_content(self, content_id: str) -> Optional[ContentItem]:
        try:
            found = self.opensearch.get_document(self.index_name, content_id)
        except OpenSearchError as e:
            raise ContentStoreError(f'Failed to load content {content_id}: {e}')
        return ContentItem.from_document(found[0]) if found else None

    def get_content_many(self, content_ids: List[str]) -> List[ContentItem]:
        try:
            docs = self.opensearch.get_documents(self.index_name, content_ids)
        except OpenSearchError as e:
            raise ContentStoreError(f'Failed to load {len(content_ids)} content items: {e}')
        return [ContentItem.from_document(doc) for doc in docs]

    def list_content_by_owner(self, owner_id: str) -> List[ContentItem]:
        return self._scan({'term': {'owner_id': owner_id}})

    def list_content_excluding_owner(self, owner_id: str) -> List[ContentItem]:
        """Every other user's content: the full-scan candidate universe."""
        return self._scan({'bool': {'must_not': [{'term': {'owner_id': owner_id}}]}})

    def list_owner_ids(self) -> List[str]:
        try:
            return self.opensearch.distinct_values(self.index_name, 'owner_id')
        except OpenSearchError as e:
            raise ContentStoreError(f'Failed to list content owners: {e}')

    def delete_content(self, content_id: str) -> bool:
        try:
            return self.opensearch.delete_document(self.index_name, content_id)
        except OpenSearchError as e:
            raise ContentStoreError(f'Failed to delete content {content_id}: {e}')

    def set_embedding(self, content_id: str, vector: List[float], metadata: Dict[str, Any]) -> None:
        """Attach the semantic embedding (and search metadata) to a stored item."""
        partial = dict(metadata)
        partial['embedding'] = vector
        try:
            self.opensearch.update_document(self.index_name, content_id, partial)
        except OpenSearchError as e:
            raise ContentStoreError(f'Failed to attach embedding to {content_id}: {e}')

    def nearest(self, vector: List[float], k: int, exclude_owner: Optional[str] = None) -> List[Dict[str, Any]]:
        must_not = [{'term': {'owner_id': exclude_owner}}] if exclude_owner else None
        try:
            return self.opensearch.vector_search(self.index_name, vector, top_k=k, must_not=must_not)
        except OpenSearchError as e:
            raise ContentStoreError(f'Nearest-neighbour query failed: {e}')

    def _scan(self, query: Dict[str, Any]) -> List[ContentItem]:
        try:
            return [ContentItem.from_document(doc) for doc in self.opensearch.scan(self.index_name, query)]
        except OpenSearchError as e:
            raise ContentStoreError(f'Failed to scan content: {e}')
