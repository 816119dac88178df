"""
Fact Memory Service for a per-user, deduplicated long-term fact store.

Facts live in two places: the authoritative ordered list, serialized as one
JSON blob per user under ``facts:{user_id}``, and a mirror of their embeddings
in the vector index under the namespace of the same name. Every change is a
delete-then-insert; a live fact is never edited in place.
"""

import json
import threading
import uuid
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from ..models.core import Fact, fact_namespace
from ..models.interfaces import Embedder, FactBlobStore, GenerationBackend, VectorIndex
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import config
from ..utils.dynamodb_client import DynamoDBFactStore
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient
from ..utils.text_utils import clean_code_fence, split_lines
from ..utils.timestamp_utils import to_iso

logger = get_logger(__name__)

EXTRACTION_PROMPT = """Extract any new facts or information from the following text and present them as a list of concise statements.

Write exactly one statement per line, without numbering, bullets or any other text.
If there are no new facts, return an empty response."""  # noqa: E501


class FactMemoryError(Exception):
    """Custom exception for fact memory errors."""
    pass


class FactMemoryService:
    """Owns the fact consistency protocol: dedup on write, removal by id, and extraction."""

    def __init__(self,
                 blob_store: Optional[FactBlobStore] = None,
                 vector_index: Optional[VectorIndex] = None,
                 embedder: Optional[Embedder] = None,
                 llm: Optional[GenerationBackend] = None,
                 dedup_threshold: Optional[float] = None):
        """Initialize the fact memory service.

        Args:
            blob_store: Durable store for the serialized fact list (DynamoDB if None)
            vector_index: Index mirroring fact embeddings (OpenSearch if None)
            embedder: Embedding generator (Bedrock if None)
            llm: Generation backend used for extraction (Bedrock if None)
            dedup_threshold: Similarity at or above which a new fact replaces its nearest neighbour
        """
        self.blob_store = blob_store if blob_store is not None else DynamoDBFactStore(config.dynamodb)
        self.vector_index = vector_index if vector_index is not None else OpenSearchClient(config.opensearch)
        self.embedder = embedder if embedder is not None else BedrockEmbed(config.bedrock_embed)
        self.llm = llm if llm is not None else BedrockLLM(config.bedrock_llm)
        self.dedup_threshold = config.facts.dedup_threshold if dedup_threshold is None else dedup_threshold

        # One writer per user inside this process. Entries are [lock, holders]
        # and are dropped once no thread holds or waits on the lock.
        self._user_locks: Dict[str, list] = {}
        self._user_locks_guard = threading.Lock()

        logger.info(f'Initialized FactMemoryService (dedup threshold {self.dedup_threshold})')

    @contextmanager
    def _user_lock(self, user_id: str) -> Iterator[None]:
        with self._user_locks_guard:
            entry = self._user_locks.get(user_id)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._user_locks[user_id] = entry
            entry[1] += 1

        try:
            with entry[0]:
                yield
        finally:
            with self._user_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._user_locks[user_id]

    def _load_records(self, user_id: str) -> List[Fact]:
        raw = self.blob_store.get(fact_namespace(user_id))
        if not raw:
            return []

        data = json.loads(raw)
        if not isinstance(data, list):
            raise FactMemoryError(f'Fact blob for user {user_id} is not a list')
        return [Fact.from_dict(item) for item in data]

    def _save_records(self, user_id: str, records: List[Fact]) -> None:
        payload = json.dumps([record.to_dict() for record in records], ensure_ascii=False)
        self.blob_store.put(fact_namespace(user_id), payload)

    def list_fact_records(self, user_id: str) -> List[Fact]:
        """Return the live fact records in insertion order, or [] if the store cannot be read."""
        logger.debug(f'Retrieving facts for user {user_id}')
        try:
            records = self._load_records(user_id)
        except Exception as e:
            logger.error(f'Error getting facts for user {user_id}: {e}')
            return []

        if records:
            logger.debug(f'Facts retrieved: {len(records)}')
        else:
            logger.debug('No facts found')
        return records

    def get_facts(self, user_id: str) -> List[str]:
        """Return the texts of the live facts in insertion order.

        Never raises: an empty or unavailable store yields an empty list.
        """
        return [record.text for record in self.list_fact_records(user_id)]

    def update_facts(self, user_id: str, new_fact: str) -> Fact:
        """Add a fact, replacing its nearest existing neighbour when they are near-duplicates.

        Args:
            user_id: Owner of the fact
            new_fact: Statement to store

        Returns:
            The stored fact record

        Raises:
            ValueError: If the fact is blank
            FactMemoryError: If any store or embedding call fails
        """
        new_fact = new_fact.strip()
        if not new_fact:
            raise ValueError('Fact text is required')

        namespace = fact_namespace(user_id)
        logger.debug(f'Updating facts for user {user_id}: {new_fact}')

        with self._user_lock(user_id):
            try:
                [embedding] = self.embedder.embed([new_fact])
                matches = self.vector_index.query(namespace, embedding, 1)
                records = self._load_records(user_id)

                if matches and matches[0].score >= self.dedup_threshold:
                    neighbour = matches[0]
                    kept = [record for record in records if record.id != neighbour.id]
                    if len(kept) == len(records):
                        logger.warning(f'Nearest fact vector {neighbour.id} has no stored record, deleting it')
                    records = kept
                    self.vector_index.delete(namespace, [neighbour.id])
                    logger.debug(f'Existing fact superseded: {neighbour.id} (score {neighbour.score:.3f})')

                fact = Fact(id=str(uuid.uuid4()), text=new_fact, created_at=to_iso())
                records.append(fact)
                self._save_records(user_id, records)
                logger.debug(f'New fact stored: {fact.id}')

                self.vector_index.upsert(namespace, fact.id, embedding)
                logger.debug(f'New fact embedding stored: {fact.id}')
                return fact

            except FactMemoryError:
                raise
            except Exception as e:
                logger.error(f'Error updating facts: {e}')
                raise FactMemoryError(f'Fact update failed: {e}')

    def remove_fact(self, user_id: str, fact: str) -> int:
        """Remove every live fact whose text equals ``fact``, from the list and the index.

        Vectors are deleted by the ids stored with each record.

        Returns:
            Number of facts removed

        Raises:
            FactMemoryError: If any store call fails
        """
        fact = fact.strip()
        logger.debug(f'Removing fact for user {user_id}: {fact}')

        with self._user_lock(user_id):
            try:
                records = self._load_records(user_id)
                removed = [record for record in records if record.text == fact]
                if not removed:
                    logger.debug('Fact not found, nothing to remove')
                    return 0

                self._save_records(user_id, [record for record in records if record.text != fact])
                logger.debug(f'Fact removed from fact store: {fact}')

                self.vector_index.delete(fact_namespace(user_id), [record.id for record in removed])
                logger.debug(f'Fact removed from vector index: {fact}')
                return len(removed)

            except FactMemoryError:
                raise
            except Exception as e:
                logger.error(f'Error removing fact: {e}')
                raise FactMemoryError(f'Fact removal failed: {e}')

    def extract_and_update_facts(self, user_id: str, text: str) -> List[Fact]:
        """Extract facts from text with the LLM and store them one at a time.

        The model call runs without the user's write lock. The lock is held
        only while the extracted lines go through ``update_facts`` in order,
        so later lines can supersede ones stored earlier in the same call.
        Errors are logged and end the extraction.

        Returns:
            Facts stored by this call
        """
        if not text or not text.strip():
            logger.debug('Empty text provided for fact extraction')
            return []

        logger.debug(f'Extracting facts for user {user_id}')
        stored: List[Fact] = []

        try:
            response = self.llm.generate(EXTRACTION_PROMPT, text)
            extracted = split_lines(clean_code_fence(response))
            logger.debug(f'Facts extracted: {len(extracted)}')

            with self._user_lock(user_id):
                for fact in extracted:
                    stored.append(self.update_facts(user_id, fact))
                    logger.debug(f'Fact updated: {fact}')

        except Exception as e:
            logger.error(f'Error extracting and updating facts: {e}')

        return stored
