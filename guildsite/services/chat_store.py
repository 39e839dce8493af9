"""
ChatStore Class - Bounded chat log on disk

The log is a JSON array, oldest message first, capped at the most recent
`limit` entries. Writes go through a temp file and an atomic replace.
"""

import asyncio
from typing import List

from guildsite.errors import StorageError
from guildsite.models.data_models import ChatMessage
from guildsite.utils.helpers import read_json, write_json_atomic
from guildsite.utils.logger import get_logger

log = get_logger("services.chat_store")


class ChatStore:
    """
    Manages the persisted chat log.
    Responsibilities:
    - Load history (empty on missing or corrupt file)
    - Save a trimmed history atomically
    - Serialize appends

    Disk access from the async methods runs in a worker thread.
    """

    def __init__(self, file_path: str, limit: int = 200):
        self.file_path = file_path
        self.limit = limit
        self._lock = asyncio.Lock()

    def load(self) -> List[ChatMessage]:
        try:
            return self._read()
        except StorageError as e:
            log.warning("Chat log unreadable, starting empty: %s", e)
            return []

    def _read(self) -> List[ChatMessage]:
        try:
            raw = read_json(self.file_path)
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            raise StorageError(f"{self.file_path}: {e}") from e

        if not isinstance(raw, list):
            raise StorageError(f"{self.file_path}: expected a JSON array")

        messages: List[ChatMessage] = []
        for item in raw:
            try:
                messages.append(ChatMessage.from_dict(item))
            except (KeyError, TypeError, ValueError):
                log.debug("Skipping malformed chat entry: %r", item)
        return messages

    def save(self, messages: List[ChatMessage]) -> List[ChatMessage]:
        trimmed = list(messages)[-self.limit:] if self.limit > 0 else []
        try:
            write_json_atomic(self.file_path, [m.to_dict() for m in trimmed])
        except OSError as e:
            raise StorageError(f"{self.file_path}: {e}") from e
        return trimmed

    async def append(self, message: ChatMessage) -> List[ChatMessage]:
        """Load, add, trim and save under the store lock. Returns the saved log."""
        async with self._lock:
            messages = await asyncio.to_thread(self.load)
            messages.append(message)
            return await asyncio.to_thread(self.save, messages)

    async def load_async(self) -> List[ChatMessage]:
        return await asyncio.to_thread(self.load)
