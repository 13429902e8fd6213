"""
OpenSearch client wrapper for the content index and the match record store.
"""

from typing import Any, Dict, Iterator, List, Optional, Tuple

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection, helpers
from opensearchpy.exceptions import ConflictError, NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


class OpenSearchConflictError(OpenSearchError):
    """Raised when an optimistic-concurrency write loses against another writer."""
    pass


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, client: Optional[OpenSearch] = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Pre-built low level client, mainly for tests
        """
        self.config = config

        if client is not None:
            self.client = client
            return

        # Get AWS credentials and create auth
        credentials = boto3.Session().get_credentials()
        auth = AWS4Auth(region=config.region, service=config.service, refreshable_credentials=credentials)
        # Parse endpoint to get host and port
        endpoint = config.endpoint
        if '://' in endpoint:
            # Remove protocol if present
            endpoint = endpoint.split('://', 1)[1]

        self.client = OpenSearch(hosts=[{
            'host': endpoint,
            'port': config.port
        }],
                                 http_auth=auth,
                                 use_ssl=True,
                                 verify_certs=True,
                                 connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def content_index_body(self) -> Dict[str, Any]:
        """Mapping for content items, with a knn field for semantic neighbours."""
        return {
            'mappings': {
                'properties': {
                    'id': {
                        'type': 'keyword'
                    },
                    'owner_id': {
                        'type': 'keyword'
                    },
                    'title': {
                        'type': 'text'
                    },
                    'text': {
                        'type': 'text'
                    },
                    'emotion': {
                        'type': 'keyword'
                    },
                    'kind': {
                        'type': 'keyword'
                    },
                    'embedding': {
                        'type': 'knn_vector',
                        'dimension': self.config.dimension,
                        'method': {
                            'name': 'hnsw',
                            'space_type': 'cosinesimil',
                            'engine': 'nmslib'
                        }
                    },
                    'created_at': {
                        'type': 'date'
                    }
                }
            },
            'settings': {
                'index': {
                    'knn': True,
                    'knn.algo_param.ef_search': 100
                }
            }
        }

    def match_index_body(self) -> Dict[str, Any]:
        """Mapping for match records, one document per canonical user pair."""
        return {
            'mappings': {
                'properties': {
                    'id': {
                        'type': 'keyword'
                    },
                    'user_a': {
                        'type': 'keyword'
                    },
                    'user_b': {
                        'type': 'keyword'
                    },
                    'match_score': {
                        'type': 'double'
                    },
                    'common_emotions': {
                        'type': 'keyword'
                    },
                    'content_pair_evidence': {
                        'properties': {
                            'content_id_a': {
                                'type': 'keyword'
                            },
                            'content_id_b': {
                                'type': 'keyword'
                            },
                            'pair_score': {
                                'type': 'double'
                            }
                        }
                    },
                    'status': {
                        'type': 'keyword'
                    },
                    'user_a_accepted': {
                        'type': 'boolean'
                    },
                    'user_b_accepted': {
                        'type': 'boolean'
                    },
                    'created_at': {
                        'type': 'date'
                    },
                    'updated_at': {
                        'type': 'date'
                    }
                }
            }
        }

    def create_index_if_not_exists(self, index_name: str, index_body: Dict[str, Any]) -> str:
        """
        Create index if it doesn't exist.

        Args:
            index_name: Name of the index
            index_body: Mappings and settings for a new index

        Returns:
            'exists', 'created' or 'failed'
        """
        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=index_name, body=index_body)
            if response.get('acknowledged', False):
                logger.info(f'Created index {index_name}')
                return 'created'
            return 'failed'

        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    def index_document(self, index_name: str, doc_id: str, document: Dict[str, Any], refresh: str = 'wait_for') -> bool:
        """
        Index (create or replace) a document under an explicit id.

        Args:
            index_name: Name of the index
            doc_id: Document id
            document: Document body
            refresh: Refresh policy for the write

        Returns:
            True if the document was created or updated
        """
        try:
            response = self.client.index(index=index_name, id=doc_id, body=document, refresh=refresh)

            success = response.get('result') in ['created', 'updated']
            if success:
                logger.debug(f'Indexed document {doc_id} in {index_name}')
            else:
                logger.warning(f'Unexpected result indexing document: {response}')

            return success

        except OpenSearchException as e:
            logger.error(f'Error indexing document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to index document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error indexing document {doc_id}: {e}')
            raise OpenSearchError(f'Unexpected error indexing document: {e}')

    def get_document(self, index_name: str, doc_id: str) -> Optional[Tuple[Dict[str, Any], int, int]]:
        """
        Fetch a document with its concurrency tokens.

        Args:
            index_name: Name of the index
            doc_id: Document id

        Returns:
            (source, seq_no, primary_term), or None if the document is absent
        """
        try:
            response = self.client.get(index=index_name, id=doc_id, _source_excludes=['embedding'])
            return response['_source'], response['_seq_no'], response['_primary_term']

        except NotFoundError:
            return None
        except OpenSearchException as e:
            logger.error(f'Error getting document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to get document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error getting document {doc_id}: {e}')
            raise OpenSearchError(f'Unexpected error getting document: {e}')

    def get_documents(self, index_name: str, doc_ids: List[str]) -> List[Dict[str, Any]]:
        """Fetch several documents by id; missing ids are skipped."""
        if not doc_ids:
            return []

        try:
            response = self.client.mget(index=index_name, body={'ids': list(doc_ids)}, _source_excludes=['embedding'])
            return [doc['_source'] for doc in response['docs'] if doc.get('found')]

        except OpenSearchException as e:
            logger.error(f'Error getting {len(doc_ids)} documents from {index_name}: {e}')
            raise OpenSearchError(f'Failed to get documents: {e}')
        except Exception as e:
            logger.error(f'Unexpected error getting documents from {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error getting documents: {e}')

    def update_document(self,
                        index_name: str,
                        doc_id: str,
                        partial: Dict[str, Any],
                        if_seq_no: Optional[int] = None,
                        if_primary_term: Optional[int] = None) -> Dict[str, Any]:
        """
        Apply a partial document update, optionally guarded by concurrency tokens.

        Raises:
            OpenSearchConflictError: If the document changed since it was read
            OpenSearchError: For any other failure
        """
        params = {}
        if if_seq_no is not None and if_primary_term is not None:
            params = {'if_seq_no': if_seq_no, 'if_primary_term': if_primary_term}

        try:
            return self.client.update(index=index_name, id=doc_id, body={'doc': partial}, refresh='wait_for', **params)

        except ConflictError as e:
            logger.debug(f'Version conflict updating {doc_id}: {e}')
            raise OpenSearchConflictError(f'Version conflict on {doc_id}')
        except OpenSearchException as e:
            logger.error(f'Error updating document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to update document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error updating document {doc_id}: {e}')
            raise OpenSearchError(f'Unexpected error updating document: {e}')

    def scan(self, index_name: str, query: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        """Iterate every matching source with the scroll helper."""
        try:
            for hit in helpers.scan(self.client,
                                    index=index_name,
                                    query={'query': query, '_source': {'excludes': ['embedding']}}):
                yield hit['_source']

        except OpenSearchException as e:
            logger.error(f'Error scanning {index_name}: {e}')
            raise OpenSearchError(f'Scan failed: {e}')

    def search_all(self,
                   index_name: str,
                   query: Dict[str, Any],
                   sort: List[Dict[str, Any]],
                   page_size: int = 500) -> List[Dict[str, Any]]:
        """
        Every matching source in ``sort`` order, paged with search_after.

        Args:
            index_name: Name of the index
            query: OpenSearch query clause
            sort: Sort clause; must end in a unique tiebreaker so pages neither overlap nor skip
            page_size: Hits fetched per request

        Returns:
            List of document sources
        """
        search_body = {'size': page_size, 'query': query, 'sort': sort, '_source': {'excludes': ['embedding']}}
        results = []

        try:
            while True:
                response = self.client.search(index=index_name, body=search_body)
                hits = response['hits']['hits']
                results.extend(hit['_source'] for hit in hits)
                if len(hits) < page_size:
                    break
                search_body = dict(search_body, search_after=hits[-1]['sort'])

        except OpenSearchException as e:
            logger.error(f'Error paging through {index_name}: {e}')
            raise OpenSearchError(f'Search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error paging through {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error in search: {e}')

        logger.debug(f'Paged search on {index_name} returned {len(results)} results')
        return results

    def distinct_values(self, index_name: str, field: str, page_size: int = 1000) -> List[str]:
        """Every distinct keyword value of ``field``, paged through a composite aggregation."""
        composite = {'size': page_size, 'sources': [{'value': {'terms': {'field': field}}}]}
        values = []

        try:
            while True:
                response = self.client.search(index=index_name,
                                              body={'size': 0, 'aggs': {'values': {'composite': composite}}})
                aggregation = response['aggregations']['values']
                values.extend(bucket['key']['value'] for bucket in aggregation['buckets'])
                after_key = aggregation.get('after_key')
                if not aggregation['buckets'] or after_key is None:
                    break
                composite = dict(composite, after=after_key)

        except OpenSearchException as e:
            logger.error(f'Error aggregating {field} on {index_name}: {e}')
            raise OpenSearchError(f'Aggregation failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error aggregating {field} on {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error in aggregation: {e}')

        return values

    def vector_search(self,
                      index_name: str,
                      query_vector: List[float],
                      top_k: int = 10,
                      filters: Optional[List[Dict[str, Any]]] = None,
                      must_not: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
        """
        Perform vector similarity search.

        Args:
            index_name: Name of the index
            query_vector: Query vector for similarity search
            top_k: Number of results to return
            filters: Optional filter clauses
            must_not: Optional exclusion clauses

        Returns:
            List of {'id', 'score', 'document'} results
        """
        bool_query: Dict[str, Any] = {'must': [{'knn': {'embedding': {'vector': query_vector, 'k': top_k}}}]}
        if filters:
            bool_query['filter'] = filters
        if must_not:
            bool_query['must_not'] = must_not

        search_body = {
            'size': top_k,
            'query': {
                'bool': bool_query
            },
            '_source': {
                'excludes': ['embedding']  # Don't return embedding in results
            }
        }

        try:
            response = self.client.search(index=index_name, body=search_body)

            results = []
            for hit in response['hits']['hits']:
                results.append({'id': hit['_id'], 'score': hit['_score'], 'document': hit['_source']})

            logger.debug(f'Vector search on {index_name} returned {len(results)} results')
            return results

        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in vector search: {e}')
            raise OpenSearchError(f'Unexpected error in vector search: {e}')

    def bulk(self, actions: List[Dict[str, Any]], refresh: str = 'wait_for') -> Dict[str, Any]:
        """
        Send a list of bulk action lines (action/metadata and body pairs).

        Raises:
            OpenSearchError: If the request fails or any item reports an error
        """
        if not actions:
            return {'errors': False, 'items': []}

        try:
            response = self.client.bulk(body=actions, refresh=refresh)
        except OpenSearchException as e:
            logger.error(f'Error in bulk request: {e}')
            raise OpenSearchError(f'Bulk request failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in bulk request: {e}')
            raise OpenSearchError(f'Unexpected error in bulk request: {e}')

        if response.get('errors'):
            failed = []
            for item in response.get('items', []):
                outcome = next(iter(item.values()))
                if outcome.get('error'):
                    failed.append(f"{outcome.get('_id')}: {outcome['error']}")
            logger.error(f'Bulk request had {len(failed)} failed items')
            raise OpenSearchError(f'Bulk request had {len(failed)} failed items: {"; ".join(failed[:5])}')

        return response

    def update_by_query(self, index_name: str, query: Dict[str, Any], script: Dict[str, Any]) -> int:
        """Run a script over every matching document; returns the updated count."""
        try:
            response = self.client.update_by_query(index=index_name,
                                                   body={
                                                       'query': query,
                                                       'script': script
                                                   },
                                                   refresh=True)
            if response.get('failures'):
                raise OpenSearchError(f"Update by query reported failures: {response['failures'][:3]}")
            return int(response.get('updated', 0))

        except OpenSearchError:
            raise
        except OpenSearchException as e:
            logger.error(f'Error in update by query on {index_name}: {e}')
            raise OpenSearchError(f'Update by query failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in update by query on {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error in update by query: {e}')

    def delete_by_query(self, index_name: str, query: Dict[str, Any]) -> int:
        """Delete every matching document; returns the deleted count."""
        try:
            response = self.client.delete_by_query(index=index_name, body={'query': query}, refresh=True)
            return int(response.get('deleted', 0))

        except OpenSearchException as e:
            logger.error(f'Error in delete by query on {index_name}: {e}')
            raise OpenSearchError(f'Delete by query failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in delete by query on {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error in delete by query: {e}')

    def delete_document(self, index_name: str, doc_id: str) -> bool:
        """
        Delete a document from the index.

        Args:
            index_name: Name of the index
            doc_id: Document ID to delete

        Returns:
            True if deletion was successful, False if the document was absent
        """
        try:
            response = self.client.delete(index=index_name, id=doc_id, refresh='wait_for')

            success = response.get('result') == 'deleted'
            if success:
                logger.debug(f'Deleted document {doc_id} from {index_name}')
            else:
                logger.warning(f'Document {doc_id} not found for deletion')

            return success

        except NotFoundError:
            logger.warning(f'Document {doc_id} not found for deletion')
            return False
        except OpenSearchException as e:
            logger.error(f'Error deleting document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to delete document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error deleting document {doc_id}: {e}')
            raise OpenSearchError(f'Unexpected error deleting document: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.config.match_index)
            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
