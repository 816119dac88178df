"""
Retrieval service that turns a query embedding into relevant prior message text.
"""

from typing import List, Optional

from ..models.core import message_namespace
from ..models.interfaces import MessageStore, VectorIndex
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient
from ..utils.sqlite_client import SQLiteMessageStore

logger = get_logger(__name__)


class RetrievalService:
    """Semantic recall over a user's message log via the ``messages:{user_id}`` namespace."""

    def __init__(self, vector_index: Optional[VectorIndex] = None, message_store: Optional[MessageStore] = None):
        """Initialize the retrieval service.

        Args:
            vector_index: Index holding message embeddings (OpenSearch if None)
            message_store: Store used to resolve message ids (SQLite if None)
        """
        self.vector_index = vector_index if vector_index is not None else OpenSearchClient(config.opensearch)
        self.message_store = message_store if message_store is not None else SQLiteMessageStore(config.message_store)
        logger.info('Initialized RetrievalService')

    def retrieve_relevant_texts(self, user_id: str, query_embedding: List[float], top_k: int) -> List[str]:
        """Return up to ``top_k`` message texts most similar to the query, most similar first.

        Vector ids that no longer resolve to a stored message are skipped. Any
        index or store failure yields an empty list.

        Args:
            user_id: Owner of the messages
            query_embedding: Embedding of the current query
            top_k: Maximum number of texts to return

        Returns:
            Relevant message texts
        """
        if top_k <= 0:
            return []

        logger.debug(f'Retrieving relevant texts for user {user_id} (top_k={top_k})')
        try:
            matches = self.vector_index.query(message_namespace(user_id), query_embedding, top_k)
            message_ids = []
            for match in matches:
                try:
                    message_ids.append(int(match.id))
                except ValueError:
                    logger.warning(f'Skipping non-numeric message vector id: {match.id}')
            logger.debug(f'Relevant message ids: {message_ids}')

            if not message_ids:
                logger.debug('No relevant messages found')
                return []

            texts_by_id = self.message_store.select_by_ids(message_ids)
        except Exception as e:
            logger.error(f'Error retrieving relevant texts: {e}')
            return []

        texts = []
        for message_id in message_ids:
            text = texts_by_id.get(message_id)
            if text is None:
                logger.warning(f'Message {message_id} has a vector but no stored row, skipping')
                continue
            texts.append(text)

        logger.debug(f'Fetched {len(texts)} relevant messages')
        return texts[:top_k]

    def store_embedding(self, user_id: str, message_id: str, embedding: List[float]) -> None:
        """Store a message embedding keyed by the message id. Storing the same id again overwrites it.

        Raises:
            Exception: Whatever the vector index raises
        """
        logger.debug(f'Storing embedding for message {message_id}')
        self.vector_index.upsert(message_namespace(user_id), str(message_id), embedding)
        logger.debug(f'Embedding stored for message {message_id}')
