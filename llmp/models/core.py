"""
Core data models for conversation messages and long-term facts.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Union

MESSAGES_NAMESPACE_PREFIX = 'messages'
FACTS_NAMESPACE_PREFIX = 'facts'


class MessageRole(str, Enum):
    """Author of a stored message."""
    USER = 'user'
    AI = 'ai'

    @classmethod
    def parse(cls, value: Union[str, 'MessageRole']) -> 'MessageRole':
        if isinstance(value, MessageRole):
            return value
        normalized = value.strip().lower()
        if normalized == 'assistant':
            return cls.AI
        return cls(normalized)


@dataclass
class Message:
    """Represents one turn in a user's message log."""
    id: int  # Monotonically increasing, doubles as the vector id
    user_id: str
    text: str
    role: MessageRole
    created_at: datetime


@dataclass
class VectorMatch:
    """A nearest-neighbour hit from the vector index."""
    id: str
    score: float  # Cosine similarity, higher is closer


@dataclass
class Fact:
    """A short statement about a user, stored with the id of its mirrored vector."""
    id: str
    text: str
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Union[str, Dict[str, Any]]) -> 'Fact':
        # Older blobs hold bare strings whose vector id is the text itself
        if isinstance(data, str):
            return cls(id=data, text=data, created_at='')
        return cls(id=str(data['id']), text=str(data['text']), created_at=str(data.get('created_at', '')))


def message_namespace(user_id: str) -> str:
    """Vector namespace holding a user's message embeddings."""
    return f'{MESSAGES_NAMESPACE_PREFIX}:{user_id}'


def fact_namespace(user_id: str) -> str:
    """Vector namespace holding a user's fact embeddings. Also the fact blob key."""
    return f'{FACTS_NAMESPACE_PREFIX}:{user_id}'
