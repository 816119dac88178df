import math
import sqlite3
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

# Add project root to sys.path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from llmp.models.core import VectorMatch  # noqa: E402
from llmp.services.chat import ChatService  # noqa: E402
from llmp.services.fact_memory import FactMemoryService  # noqa: E402
from llmp.services.orchestrator import QueryOrchestrator  # noqa: E402
from llmp.services.retrieval import RetrievalService  # noqa: E402
from llmp.utils.config import ContextConfig, MessageStoreConfig  # noqa: E402
from llmp.utils.sqlite_client import SQLiteMessageStore  # noqa: E402

DIMENSION = 64


def cosine(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def unit(index: int) -> List[float]:
    vector = [0.0] * DIMENSION
    vector[index] = 1.0
    return vector


def blend(index_a: int, index_b: int, similarity: float) -> List[float]:
    """Unit vector whose cosine with unit(index_a) is ``similarity``."""
    vector = [0.0] * DIMENSION
    vector[index_a] = similarity
    vector[index_b] = math.sqrt(1.0 - similarity * similarity)
    return vector


class FakeEmbedder:
    """Deterministic embedder: preset vectors, otherwise one fresh axis per distinct text."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None):
        self.vectors = dict(vectors or {})
        self.calls: List[List[str]] = []
        self._next_axis = 0
        self.fail = False

    def _allocate(self, text: str) -> List[float]:
        # Axes from the top down, so tests can use low axes for presets
        axis = DIMENSION - 1 - self._next_axis
        self._next_axis += 1
        self.vectors[text] = unit(axis)
        return self.vectors[text]

    def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise RuntimeError('embedding backend down')
        return [list(self.vectors.get(text) or self._allocate(text)) for text in texts]


class InMemoryVectorIndex:
    """Exact cosine search over namespaced vectors."""

    def __init__(self):
        self.namespaces: Dict[str, Dict[str, List[float]]] = {}
        self.fail_query = False
        self.fail_upsert = False

    def upsert(self, namespace: str, vector_id: str, vector: List[float]) -> None:
        if self.fail_upsert:
            raise RuntimeError('index unavailable')
        self.namespaces.setdefault(namespace, {})[vector_id] = list(vector)

    def query(self, namespace: str, vector: List[float], top_k: int) -> List[VectorMatch]:
        if self.fail_query:
            raise RuntimeError('index unavailable')
        vectors = self.namespaces.get(namespace, {})
        matches = [VectorMatch(id=vector_id, score=cosine(vector, stored)) for vector_id, stored in vectors.items()]
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    def delete(self, namespace: str, ids: Iterable[str]) -> None:
        vectors = self.namespaces.get(namespace, {})
        for vector_id in ids:
            vectors.pop(vector_id, None)

    def ids(self, namespace: str) -> List[str]:
        return list(self.namespaces.get(namespace, {}))


class InMemoryBlobStore:

    def __init__(self):
        self.items: Dict[str, str] = {}
        self.fail = False

    def get(self, key: str) -> Optional[str]:
        if self.fail:
            raise RuntimeError('blob store unavailable')
        return self.items.get(key)

    def put(self, key: str, value: str) -> None:
        if self.fail:
            raise RuntimeError('blob store unavailable')
        self.items[key] = value


class FakeLLM:
    """Returns queued responses and records every prompt."""

    def __init__(self, responses: Optional[List[str]] = None):
        self.responses = list(responses or [])
        self.calls: List[tuple] = []
        self.error: Optional[Exception] = None

    def generate(self, system_prompt: str, user_message: str) -> str:
        self.calls.append((system_prompt, user_message))
        if self.error is not None:
            raise self.error
        return self.responses.pop(0) if self.responses else 'ok'


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def vector_index():
    return InMemoryVectorIndex()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def message_store():
    store = SQLiteMessageStore(MessageStoreConfig(database_path=':memory:'),
                               connection=sqlite3.connect(':memory:', check_same_thread=False))
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def fact_service(blob_store, vector_index, embedder, llm):
    return FactMemoryService(blob_store=blob_store,
                             vector_index=vector_index,
                             embedder=embedder,
                             llm=llm,
                             dedup_threshold=0.9)


@pytest.fixture
def retrieval(vector_index, message_store):
    return RetrievalService(vector_index=vector_index, message_store=message_store)


@pytest.fixture
def orchestrator(message_store, embedder, retrieval, fact_service, llm):
    return QueryOrchestrator(message_store=message_store,
                             embedder=embedder,
                             retrieval=retrieval,
                             facts=fact_service,
                             chat=ChatService(llm=llm, system_prompt='You are a helpful assistant', include_date=False),
                             context_config=ContextConfig(recent_message_limit=10, relevant_top_k=5))
