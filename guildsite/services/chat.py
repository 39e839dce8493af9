"""
ChatBroadcaster Class - Real-time chat fan-out

Validates and rate-limits sends, persists them through the ChatStore and
pushes each new message to every connected viewer. Connecting, sending and
broadcasting share one lock, so a viewer's history snapshot and its live
messages never overlap or leave a gap.
"""

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from guildsite.config import MEDIA_URL_PREFIX
from guildsite.errors import RateLimitedError, StorageError, UnsupportedTypeError, ValidationError
from guildsite.models.data_models import ChatMessage, MessageType
from guildsite.models.schemas import ChatSendIn
from guildsite.services.chat_store import ChatStore
from guildsite.utils.helpers import Clock, now_ms
from guildsite.utils.logger import get_logger

log = get_logger("services.chat")

HISTORY_EVENT = "history"
NEW_MESSAGE_EVENT = "new-message"

Sender = Callable[[str, Any], Awaitable[None]]


class ChatConnection:
    """One connected viewer: a send callable plus its throttle stamp."""

    def __init__(self, send: Sender, peer: str = "unknown"):
        self._send = send
        self.peer = peer
        self.last_sent_ms: Optional[int] = None

    async def emit(self, event: str, data: Any) -> None:
        await self._send(event, data)


class ChatBroadcaster:
    def __init__(
        self,
        store: ChatStore,
        clock: Optional[Clock] = None,
        throttle_ms: int = 1200,
        text_max: int = 300,
        author_max: int = 30,
        url_max: int = 2048,
        anonymous: str = "Anonymous",
        media_prefix: str = MEDIA_URL_PREFIX,
        emit_timeout_s: float = 5.0,
    ):
        self.store = store
        self._clock = clock or now_ms
        self.throttle_ms = throttle_ms
        self.text_max = text_max
        self.author_max = author_max
        self.url_max = url_max
        self.anonymous = anonymous
        self.media_prefix = media_prefix
        self.emit_timeout_s = emit_timeout_s
        self._connections: Set[ChatConnection] = set()
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, conn: ChatConnection) -> None:
        """Send the current history once, then start live delivery."""
        async with self._lock:
            history = await self.store.load_async()
            await self._emit(conn, HISTORY_EVENT, [m.to_dict() for m in history])
            self._connections.add(conn)
        log.info("Chat viewer connected (%s), %d online", conn.peer, len(self._connections))

    def disconnect(self, conn: ChatConnection) -> None:
        if conn in self._connections:
            self._connections.discard(conn)
            log.info("Chat viewer disconnected (%s), %d online", conn.peer, len(self._connections))

    async def send(self, conn: ChatConnection, payload: Any) -> ChatMessage:
        """
        Handle one send from `conn`.

        Raises RateLimitedError, ValidationError or UnsupportedTypeError;
        those are for the sender only and nothing is stored or broadcast.
        """
        now = self._clock()
        if conn.last_sent_ms is not None and now - conn.last_sent_ms < self.throttle_ms:
            raise RateLimitedError("Sending too fast, try again shortly.")
        conn.last_sent_ms = now

        message = self.build_message(payload, now)

        async with self._lock:
            await self.store.append(message)
            await self._broadcast(NEW_MESSAGE_EVENT, message.to_dict())
        return message

    def build_message(self, payload: Any, now: int) -> ChatMessage:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid payload")
        try:
            data = ChatSendIn.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError("Invalid payload") from e

        try:
            msg_type = MessageType(data.type)
        except ValueError:
            raise UnsupportedTypeError("Unsupported message type") from None

        return ChatMessage(
            id=uuid.uuid4().hex,
            ts=now,
            author=self._author(data.author),
            type=msg_type,
            content=self._content(msg_type, data),
        )

    def _author(self, raw: Optional[str]) -> str:
        author = (raw or "").strip()[: self.author_max].strip()
        return author or self.anonymous

    def _content(self, msg_type: MessageType, data: ChatSendIn) -> str:
        if msg_type is MessageType.TEXT:
            text = (data.text or "").strip()
            if not text:
                raise ValidationError("Empty message")
            if len(text) > self.text_max:
                raise ValidationError(f"Message longer than {self.text_max} characters")
            return text

        url = (data.url or "").strip()
        if len(url) > self.url_max:
            raise ValidationError("URL too long")

        if msg_type in (MessageType.IMAGE, MessageType.VIDEO):
            if not url.startswith(self.media_prefix) or ".." in url:
                raise ValidationError("Invalid media URL")
            return url

        # sticker
        if not url:
            raise ValidationError("Invalid sticker")
        return url

    async def _emit(self, conn: ChatConnection, event: str, data: Any) -> None:
        await asyncio.wait_for(conn.emit(event, data), timeout=self.emit_timeout_s)

    async def _broadcast(self, event: str, data: Dict[str, Any]) -> None:
        conns = list(self._connections)
        # viewers are written in parallel, so one stalled socket costs at most one timeout
        results = await asyncio.gather(
            *(self._emit(conn, event, data) for conn in conns),
            return_exceptions=True,
        )
        dead: List[ChatConnection] = []
        for conn, result in zip(conns, results):
            if isinstance(result, Exception):  # transport errors vary by server
                log.debug("Dropping chat viewer %s: %r", conn.peer, result)
                dead.append(conn)
        for conn in dead:
            self.disconnect(conn)


async def handle_send(broadcaster: ChatBroadcaster, conn: ChatConnection, payload: Any) -> Dict[str, Any]:
    """Run a send and shape the acknowledgement for the sender."""
    try:
        await broadcaster.send(conn, payload)
    except (RateLimitedError, ValidationError, UnsupportedTypeError) as e:
        log.debug("Chat send rejected (%s): %s", conn.peer, e)
        return {"ok": False, "error": str(e)}
    except StorageError as e:
        log.error("Chat send failed to persist: %s", e)
        return {"ok": False, "error": "Server error"}
    return {"ok": True}
