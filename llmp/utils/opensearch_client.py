"""
OpenSearch client wrapper used as the namespaced vector index.
"""

from typing import Any, Dict, Iterable, List

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from ..models.core import VectorMatch
from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


def score_to_cosine(score: float) -> float:
    """Convert a lucene ``cosinesimil`` hit score back to cosine similarity.

    The engine reports ``(1 + cos) / 2``, which lies in ``[0, 1]``.
    """
    return min(1.0, max(-1.0, 2.0 * score - 1.0))


class OpenSearchClient:
    """OpenSearch k-NN index partitioned by namespace, with AWS SigV4 authentication."""

    def __init__(self, config: OpenSearchConfig, client=None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Optional pre-built OpenSearch client
        """
        self.config = config
        self.index_name = config.index_name

        if client is None:
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service='es', refreshable_credentials=credentials)
            endpoint = config.endpoint
            if '://' in endpoint:
                # Remove protocol if present
                endpoint = endpoint.split('://', 1)[1]

            client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                http_auth=auth,
                                use_ssl=True,
                                verify_certs=True,
                                connection_class=RequestsHttpConnection)
        self.client = client

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    @staticmethod
    def _document_id(namespace: str, vector_id: str) -> str:
        # Vector ids are only unique inside a namespace
        return f'{namespace}:{vector_id}'

    def _write_params(self) -> Dict[str, Any]:
        return {'refresh': 'true'} if self.config.refresh_on_write else {}

    def create_index_if_not_exists(self) -> str:
        """
        Create the vector index if it doesn't exist.

        Returns:
            'exists', 'created' or 'failed'
        """
        try:
            if self.client.indices.exists(index=self.index_name):
                logger.debug(f'Index {self.index_name} already exists')
                return 'exists'

            index_body = {
                'mappings': {
                    'properties': {
                        'namespace': {
                            'type': 'keyword'
                        },
                        'vector_id': {
                            'type': 'keyword'
                        },
                        'embedding': {
                            'type': 'knn_vector',
                            'dimension': self.config.dimension,
                            'method': {
                                'name': 'hnsw',
                                'space_type': 'cosinesimil',
                                # lucene applies the namespace filter during the graph search
                                'engine': 'lucene'
                            }
                        }
                    }
                },
                'settings': {
                    'index': {
                        'knn': True
                    }
                }
            }

            response = self.client.indices.create(index=self.index_name, body=index_body)
            if response.get('acknowledged', False):
                logger.info(f'Created index {self.index_name}')
                return 'created'
            logger.warning(f'Index creation not acknowledged: {response}')
            return 'failed'

        except OpenSearchException as e:
            logger.error(f'Error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    def upsert(self, namespace: str, vector_id: str, vector: List[float]) -> None:
        """
        Insert or overwrite one vector. Re-storing the same id replaces the previous document.

        Args:
            namespace: Partition the vector belongs to
            vector_id: Id of the vector inside the namespace
            vector: Embedding values

        Raises:
            OpenSearchError: If indexing fails
        """
        document = {'namespace': namespace, 'vector_id': vector_id, 'embedding': vector}

        try:
            response = self.client.index(index=self.index_name,
                                         id=self._document_id(namespace, vector_id),
                                         body=document,
                                         **self._write_params())

            if response.get('result') in ['created', 'updated']:
                logger.debug(f'Upserted vector {vector_id} in {namespace}')
            else:
                logger.warning(f'Unexpected result upserting vector: {response}')

        except OpenSearchException as e:
            logger.error(f'Error upserting vector {vector_id}: {e}')
            raise OpenSearchError(f'Failed to upsert vector: {e}')
        except Exception as e:
            logger.error(f'Unexpected error upserting vector {vector_id}: {e}')
            raise OpenSearchError(f'Unexpected error upserting vector: {e}')

    def query(self, namespace: str, vector: List[float], top_k: int) -> List[VectorMatch]:
        """
        Perform vector similarity search inside one namespace.

        Args:
            namespace: Partition to search
            vector: Query vector
            top_k: Maximum number of matches

        Returns:
            Matches ordered by descending cosine similarity

        Raises:
            OpenSearchError: If the search fails
        """
        if top_k <= 0:
            return []

        # Filter inside the knn clause so the k nearest are taken from this namespace only
        search_body = {
            'size': top_k,
            'query': {
                'knn': {
                    'embedding': {
                        'vector': vector,
                        'k': top_k,
                        'filter': {
                            'term': {
                                'namespace': namespace
                            }
                        }
                    }
                }
            },
            '_source': {
                'excludes': ['embedding']  # Don't return embedding in results
            }
        }

        try:
            response = self.client.search(index=self.index_name, body=search_body)
        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in vector search: {e}')
            raise OpenSearchError(f'Unexpected error in vector search: {e}')

        matches = []
        for hit in response['hits']['hits']:
            source = hit.get('_source', {})
            vector_id = source.get('vector_id') or hit['_id'].split(f'{namespace}:', 1)[-1]
            matches.append(VectorMatch(id=str(vector_id), score=score_to_cosine(hit['_score'])))

        matches.sort(key=lambda m: m.score, reverse=True)
        logger.debug(f'Vector search returned {len(matches)} results in {namespace}')
        return matches[:top_k]

    def delete(self, namespace: str, ids: Iterable[str]) -> None:
        """
        Delete vectors by id. Ids that are not present are ignored.

        Args:
            namespace: Partition the vectors belong to
            ids: Vector ids to delete

        Raises:
            OpenSearchError: If a deletion fails for any reason other than a missing document
        """
        for vector_id in ids:
            doc_id = self._document_id(namespace, vector_id)
            try:
                response = self.client.delete(index=self.index_name, id=doc_id, **self._write_params())
                if response.get('result') == 'deleted':
                    logger.debug(f'Deleted vector {vector_id} from {namespace}')
                else:
                    logger.warning(f'Vector {vector_id} not found for deletion')

            except NotFoundError:
                logger.warning(f'Vector {vector_id} not found for deletion')
            except OpenSearchException as e:
                logger.error(f'Error deleting vector {vector_id}: {e}')
                raise OpenSearchError(f'Failed to delete vector: {e}')
            except Exception as e:
                logger.error(f'Unexpected error deleting vector {vector_id}: {e}')
                raise OpenSearchError(f'Unexpected error deleting vector: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name)

            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
