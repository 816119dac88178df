"""
Query orchestrator that sequences persistence, retrieval and generation for one user turn.
"""

from typing import List, Optional

from ..models.core import MessageRole
from ..models.interfaces import Embedder, MessageStore
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import ContextConfig, config
from ..utils.logging_config import get_logger
from ..utils.sqlite_client import SQLiteMessageStore
from .chat import ChatService
from .fact_memory import FactMemoryService
from .retrieval import RetrievalService

logger = get_logger(__name__)


class OrchestratorError(Exception):
    """Custom exception for query handling errors."""
    pass


class PreconditionError(OrchestratorError):
    """A collaborator broke its contract, e.g. an insert that returned no id."""
    pass


def merge_context(*sources: List[str]) -> List[str]:
    """Union several text lists, dropping repeats and keeping first-seen order."""
    return list(dict.fromkeys(text for source in sources for text in source))


class QueryOrchestrator:
    """Runs the per-query pipeline.

    Steps run strictly in sequence: persist the query, embed it, store the
    vector, gather recent and relevant messages, read facts, generate. The
    reply itself is not persisted, embedded, or mined for facts here.
    """

    def __init__(self,
                 message_store: Optional[MessageStore] = None,
                 embedder: Optional[Embedder] = None,
                 retrieval: Optional[RetrievalService] = None,
                 facts: Optional[FactMemoryService] = None,
                 chat: Optional[ChatService] = None,
                 context_config: Optional[ContextConfig] = None):
        self.message_store = message_store if message_store is not None else SQLiteMessageStore(config.message_store)
        self.embedder = embedder if embedder is not None else BedrockEmbed(config.bedrock_embed)
        self.retrieval = retrieval if retrieval is not None else RetrievalService(message_store=self.message_store)
        self.facts = facts if facts is not None else FactMemoryService(embedder=self.embedder)
        self.chat = chat if chat is not None else ChatService()
        self.context_config = context_config or config.context

        logger.info('Initialized QueryOrchestrator')

    def _recent_messages(self, user_id: str) -> List[str]:
        try:
            return self.message_store.select_recent(user_id, self.context_config.recent_message_limit)
        except Exception as e:
            logger.error(f'Error fetching previous messages: {e}')
            return []

    def handle_query(self, user_id: str, query: str, user_preferences: Optional[str] = None) -> str:
        """Answer one user query with grounded context.

        Args:
            user_id: Caller; every store access is scoped to it
            query: User message
            user_preferences: Optional free-form preferences

        Returns:
            Generated reply text

        Raises:
            ValueError: If user_id or query is blank
            PreconditionError: If the message store returns no id
            OrchestratorError: If persisting, embedding or indexing the query fails
            GenerationError: If the generation backend fails
        """
        if not user_id or not user_id.strip():
            raise ValueError('User ID is required')
        if not query or not query.strip():
            raise ValueError('Query is required')

        logger.info(f'Received user query for user {user_id}')

        try:
            message_id = self.message_store.insert(user_id, query, MessageRole.USER)
        except Exception as e:
            logger.error(f'Error saving user message: {e}')
            raise OrchestratorError(f'Failed to save user message: {e}')
        if message_id is None:
            raise PreconditionError('Message store did not return an id for the saved query')

        logger.debug(f'Generating embeddings for user message {message_id}')
        try:
            [query_embedding] = self.embedder.embed([query])
        except Exception as e:
            logger.error(f'Error embedding user message {message_id}: {e}')
            raise OrchestratorError(f'Failed to embed user message: {e}')

        try:
            self.retrieval.store_embedding(user_id, str(message_id), query_embedding)
            logger.debug(f'Stored user message embedding {message_id}')
        except Exception as e:
            logger.error(f'Error storing embedding for message {message_id}: {e}')
            raise OrchestratorError(f'Failed to store user message embedding: {e}')

        previous_messages = self._recent_messages(user_id)
        logger.debug(f'Retrieved {len(previous_messages)} previous messages for context')

        relevant_texts = self.retrieval.retrieve_relevant_texts(user_id, query_embedding,
                                                                self.context_config.relevant_top_k)
        logger.debug(f'Retrieved {len(relevant_texts)} relevant texts')

        facts = self.facts.get_facts(user_id)
        logger.debug(f'Retrieved {len(facts)} facts')

        full_context = merge_context(previous_messages, relevant_texts)

        response = self.chat.generate_response(user_id=user_id,
                                               query=query,
                                               context='\n'.join(full_context),
                                               user_preferences=user_preferences or '',
                                               facts='\n'.join(facts))

        logger.info('Generated AI response')
        return response
