"""
SQLite-backed message log.

One row per message, append-only. Ids are monotonically increasing and double
as the vector ids of message embeddings.
"""

import sqlite3
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from ..models.core import Message, MessageRole
from .config import MessageStoreConfig
from .logging_config import get_logger

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    message TEXT NOT NULL,
    summary TEXT,
    role TEXT NOT NULL CHECK(role IN ('user', 'ai')),
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_messages_user_id ON messages(user_id);
CREATE INDEX IF NOT EXISTS idx_messages_role ON messages(role);
CREATE INDEX IF NOT EXISTS idx_messages_created_at ON messages(created_at);
"""


class MessageStoreError(Exception):
    """Custom exception for message store errors."""
    pass


def _parse_timestamp(value: Union[str, datetime, None]) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return datetime.fromtimestamp(0)
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return datetime.fromtimestamp(0)


class SQLiteMessageStore:
    """Per-user message log stored in a single SQLite table."""

    def __init__(self, config: MessageStoreConfig, connection: Optional[sqlite3.Connection] = None):
        """
        Open the message database.

        Args:
            config: MessageStoreConfig with the database path
            connection: Optional already-open connection
        """
        self.config = config
        self.conn = connection or sqlite3.connect(config.database_path, check_same_thread=False)
        self._lock = threading.Lock()

        logger.info(f'Initialized SQLite message store at {config.database_path}')

    def initialize(self) -> None:
        """Create the messages table and its indexes if missing."""
        try:
            with self._lock, self.conn:
                self.conn.executescript(SCHEMA)
            logger.debug("Table 'messages' is ready")
        except sqlite3.Error as e:
            logger.error(f'Error creating messages table: {e}')
            raise MessageStoreError(f'Failed to initialize message store: {e}')

    def check_table_exists(self) -> None:
        """
        Verify the messages table is present.

        Raises:
            MessageStoreError: If the table is missing or the database is unreachable
        """
        try:
            with self._lock:
                self.conn.execute('SELECT 1 FROM messages LIMIT 1').fetchall()
            logger.debug("Table 'messages' exists in the database")
        except sqlite3.OperationalError as e:
            if 'no such table' in str(e):
                logger.error("Table 'messages' does not exist in the database")
                raise MessageStoreError("Table 'messages' does not exist in the database.")
            logger.error(f'Error checking if table exists: {e}')
            raise MessageStoreError(f'Failed to check messages table: {e}')
        except sqlite3.Error as e:
            logger.error(f'Error checking if table exists: {e}')
            raise MessageStoreError(f'Failed to check messages table: {e}')

    def insert(self, user_id: str, text: str, role: Union[MessageRole, str]) -> Optional[int]:
        """
        Append a message.

        Args:
            user_id: Owner of the message
            text: Message text
            role: Author role

        Returns:
            Id of the new row

        Raises:
            MessageStoreError: If the insert fails
        """
        role = MessageRole.parse(role)
        logger.debug(f'Saving message for user {user_id} with role {role.value}')

        try:
            with self._lock, self.conn:
                cursor = self.conn.execute('INSERT INTO messages (user_id, message, role) VALUES (?, ?, ?)',
                                           (user_id, text, role.value))
                message_id = cursor.lastrowid
        except sqlite3.Error as e:
            logger.error(f'Error saving message: {e}')
            raise MessageStoreError(f'Failed to save message: {e}')

        logger.debug(f'Message saved: {message_id}')
        return message_id

    def select_recent(self, user_id: str, limit: int) -> List[str]:
        """
        Return the texts of a user's latest messages, most recent first.

        Raises:
            MessageStoreError: If the query fails
        """
        if limit <= 0:
            return []

        sql = """
            SELECT message FROM messages
            WHERE user_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
        """
        try:
            with self._lock:
                rows = self.conn.execute(sql, (user_id, limit)).fetchall()
        except sqlite3.Error as e:
            logger.error(f'Error fetching previous messages: {e}')
            raise MessageStoreError(f'Failed to fetch previous messages: {e}')

        logger.debug(f'Fetched {len(rows)} previous messages for user {user_id}')
        return [row[0] for row in rows]

    def select_by_ids(self, ids: Iterable[int]) -> Dict[int, str]:
        """
        Map message ids to their text. Unknown ids are absent from the result.

        Raises:
            MessageStoreError: If the query fails
        """
        ids = list(dict.fromkeys(ids))
        if not ids:
            return {}

        placeholders = ','.join('?' for _ in ids)
        sql = f'SELECT id, message FROM messages WHERE id IN ({placeholders})'
        try:
            with self._lock:
                rows = self.conn.execute(sql, ids).fetchall()
        except sqlite3.Error as e:
            logger.error(f'Error fetching messages by id: {e}')
            raise MessageStoreError(f'Failed to fetch messages by id: {e}')

        return {row[0]: row[1] for row in rows}

    def get_by_id(self, message_id: int) -> Optional[Message]:
        """Return one message, or None when it does not exist or cannot be read."""
        sql = 'SELECT id, user_id, message, role, created_at FROM messages WHERE id = ?'
        try:
            with self._lock:
                row = self.conn.execute(sql, (message_id,)).fetchone()
        except sqlite3.Error as e:
            logger.error(f'Error fetching message {message_id}: {e}')
            return None

        if row is None:
            logger.warning(f'Message not found: {message_id}')
            return None

        return Message(id=row[0],
                       user_id=row[1],
                       text=row[2],
                       role=MessageRole.parse(row[3]),
                       created_at=_parse_timestamp(row[4]))

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def health_check(self) -> bool:
        try:
            self.check_table_exists()
            return True
        except MessageStoreError:
            return False
