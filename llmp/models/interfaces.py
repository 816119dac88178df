"""
Collaborator interfaces the context pipeline depends on.

Concrete adapters live in ``llmp.utils``; services accept any object that
satisfies these protocols, so alternate backends plug in by composition.
"""

from typing import Dict, Iterable, List, Optional, Protocol, runtime_checkable

from .core import Message, MessageRole, VectorMatch


@runtime_checkable
class MessageStore(Protocol):
    def insert(self, user_id: str, text: str, role: MessageRole) -> Optional[int]: ...

    def select_recent(self, user_id: str, limit: int) -> List[str]: ...

    def select_by_ids(self, ids: Iterable[int]) -> Dict[int, str]: ...

    def get_by_id(self, message_id: int) -> Optional[Message]: ...


@runtime_checkable
class VectorIndex(Protocol):
    def upsert(self, namespace: str, vector_id: str, vector: List[float]) -> None: ...

    def query(self, namespace: str, vector: List[float], top_k: int) -> List[VectorMatch]: ...

    def delete(self, namespace: str, ids: Iterable[str]) -> None: ...


@runtime_checkable
class FactBlobStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def put(self, key: str, value: str) -> None: ...


@runtime_checkable
class Embedder(Protocol):
    def embed(self, texts: List[str]) -> List[List[float]]: ...


@runtime_checkable
class GenerationBackend(Protocol):
    def generate(self, system_prompt: str, user_message: str) -> str: ...
