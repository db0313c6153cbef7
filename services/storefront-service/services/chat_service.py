"""Order support chat: history paging, optimistic sends and realtime sync."""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import redis
from pydantic import ValidationError

from config import CHAT_AUTOSCROLL_THRESHOLD_PX, CHAT_PAGE_SIZE
from schemas import Message
from services.gateway_service import (
    ABORTED,
    GatewayClient,
    GatewayError,
    QueryResult,
    RequestAborted,
    safe_query
)
from services.realtime_service import RealtimeChannel, Subscription
from monitoring import chat_messages_counter, realtime_events_counter

logger = logging.getLogger(__name__)

LIVE_UPDATES_LOST = "Live updates disconnected. Reload the chat to reconnect."


async def fetch_page(
    gateway: GatewayClient,
    order_id: str,
    offset: int = 0,
    limit: int = CHAT_PAGE_SIZE
) -> List[Message]:
    """
    Fetch one page of an order's messages, newest first.

    Args:
        gateway: Gateway client bound to the viewer
        order_id: Order identifier
        offset: Number of newest messages to skip
        limit: Page size

    Returns:
        Messages in descending created_at order
    """
    rows = await gateway.select(
        "messages",
        {"order_id": order_id},
        order="created_at",
        ascending=False,
        limit=limit,
        offset=offset
    )
    return [Message.model_validate(row) for row in rows]


async def post_message(
    gateway: GatewayClient,
    realtime: RealtimeChannel,
    order_id: str,
    sender_id: str,
    content: str
) -> Message:
    """
    Persist a message and announce it on the order's realtime channel.

    Raises:
        GatewayError: If the message could not be stored
    """
    try:
        row = await gateway.insert("messages", {
            "order_id": order_id,
            "sender_id": sender_id,
            "content": content
        })
        message = Message.model_validate(row)
    except GatewayError:
        chat_messages_counter.add(1, {"status": "failed"})
        raise
    except ValidationError as e:
        chat_messages_counter.add(1, {"status": "failed"})
        raise GatewayError("Malformed message record from gateway") from e

    chat_messages_counter.add(1, {"status": "sent"})
    try:
        await realtime.publish_insert("messages", "order_id", message.model_dump(mode="json"))
    except redis.RedisError as e:
        # stored already; other viewers pick it up on their next page load
        logger.error("Failed to publish chat message", extra={
            "order_id": order_id,
            "message_id": message.id,
            "error": str(e)
        })
    return message


# --- list entries ---

@dataclass(frozen=True)
class Confirmed:
    """Message the gateway has stored."""
    message: Message


@dataclass(frozen=True)
class Pending:
    """Optimistic message awaiting persistence."""
    local_id: str
    content: str
    created_at: datetime


@dataclass(frozen=True)
class Failed:
    """Optimistic message the gateway refused; kept visible."""
    local_id: str
    content: str
    created_at: datetime
    error: str


ChatEntry = Union[Confirmed, Pending, Failed]


class ChatState(str, Enum):
    INITIAL_LOAD = "initial-load"
    IDLE = "idle"
    LOADING_OLDER = "loading-older"
    SENDING = "sending"
    ERROR = "error"


@dataclass(frozen=True)
class ChatEvent:
    """Change notification for the bound view."""
    kind: str
    scroll_to_bottom: bool = False


class ScrollTracker:
    """Remembers whether the viewer is reading near the bottom of the feed."""

    def __init__(self, threshold: int = CHAT_AUTOSCROLL_THRESHOLD_PX):
        self.threshold = threshold
        self.near_bottom = True

    def update(self, scroll_top: float, scroll_height: float, client_height: float) -> bool:
        distance = scroll_height - scroll_top - client_height
        self.near_bottom = distance <= self.threshold
        return self.near_bottom


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OrderChat:
    """
    Message feed for one order as seen by one viewer.

    Durable ids of confirmed messages are tracked so realtime echoes and
    overlapping pages never produce duplicates. Temporary ids stay local
    and are never compared with durable ones.
    """

    def __init__(
        self,
        gateway: GatewayClient,
        realtime: RealtimeChannel,
        order_id: str,
        viewer_id: str,
        page_size: int = CHAT_PAGE_SIZE,
        on_change: Optional[Callable[[ChatEvent], Any]] = None
    ):
        """
        Initialize order chat.

        Args:
            gateway: Gateway client bound to the viewer's session
            realtime: Realtime channel for inbound inserts
            order_id: Order being discussed
            viewer_id: Profile id of the viewer (sender of outgoing messages)
            page_size: History page size
            on_change: Called with a ChatEvent after every visible change
        """
        self.gateway = gateway
        self.realtime = realtime
        self.order_id = order_id
        self.viewer_id = viewer_id
        self.page_size = page_size
        self.on_change = on_change
        self.entries: List[ChatEntry] = []
        self.has_more = False
        self.error: Optional[str] = None
        self.viewport = ScrollTracker()
        self._known_ids: Set[str] = set()
        self._subscription: Optional[Subscription] = None
        self._generation = 0
        self._closed = False
        self._initial_loading = False
        self._loading_older = False
        self._sending = 0

    # --- state ---

    @property
    def state(self) -> ChatState:
        if self._initial_loading:
            return ChatState.INITIAL_LOAD
        if self._loading_older:
            return ChatState.LOADING_OLDER
        if self._sending:
            return ChatState.SENDING
        if self.error:
            return ChatState.ERROR
        return ChatState.IDLE

    @property
    def confirmed_count(self) -> int:
        return sum(1 for entry in self.entries if isinstance(entry, Confirmed))

    @property
    def closed(self) -> bool:
        return self._closed

    def report_error(self, message: str) -> None:
        self.error = message
        self._notify("error")

    def _live_updates_lost(self, error: BaseException) -> None:
        self.report_error(LIVE_UPDATES_LOST)

    def dismiss_error(self) -> None:
        self.error = None
        self._notify("error")

    def _notify(self, kind: str, scroll_to_bottom: bool = False) -> None:
        if self.on_change is not None and not self._closed:
            self.on_change(ChatEvent(kind, scroll_to_bottom))

    async def _current(self, generation: int, call: Awaitable[Any]) -> Any:
        result = await call
        if generation != self._generation:
            raise RequestAborted()
        return result

    # --- lifecycle ---

    async def open(self) -> QueryResult:
        """
        Subscribe to the order's inserts, then load the newest page.

        Subscribing first means a message stored during the initial load
        arrives over realtime and is deduplicated instead of being missed.
        """
        generation = self._generation
        self._subscription = await self.realtime.subscribe_inserts(
            "messages", "order_id", self.order_id, self.handle_insert, on_lost=self._live_updates_lost
        )
        if self._closed:
            await self._subscription.unsubscribe()
            return QueryResult(error=ABORTED)

        self._initial_loading = True
        result = await safe_query(self._current(
            generation,
            fetch_page(self.gateway, self.order_id, 0, self.page_size)
        ))
        if result.aborted:
            return result
        self._initial_loading = False
        if result.error:
            self.error = result.error
            logger.error("Failed to load order chat", extra={
                "order_id": self.order_id,
                "error": result.error
            })
        else:
            rows: List[Message] = result.data
            history = [Confirmed(m) for m in reversed(rows) if m.id not in self._known_ids]
            self._known_ids.update(m.id for m in rows)
            # anything already here arrived over realtime and is newer
            self.entries = history + self.entries
            self.has_more = len(rows) == self.page_size
        self._notify("loaded", scroll_to_bottom=True)
        return result

    async def close(self) -> None:
        """Tear down the subscription; later responses are dropped."""
        self._closed = True
        self._generation += 1
        if self._subscription is not None:
            subscription, self._subscription = self._subscription, None
            await subscription.unsubscribe()

    # --- history ---

    async def load_older(self) -> QueryResult:
        """Prepend the next page of older messages."""
        if self._closed or self._initial_loading or self._loading_older or not self.has_more:
            return QueryResult(data=[])

        generation = self._generation
        offset = self.confirmed_count
        self._loading_older = True
        try:
            result = await safe_query(self._current(
                generation,
                fetch_page(self.gateway, self.order_id, offset, self.page_size)
            ))
        finally:
            self._loading_older = False
        if result.aborted:
            return result
        if result.error:
            self.error = result.error
            self._notify("error")
            return result

        rows: List[Message] = result.data
        older = [Confirmed(m) for m in reversed(rows) if m.id not in self._known_ids]
        self._known_ids.update(m.id for m in rows)
        self.entries = older + self.entries
        self.has_more = len(rows) == self.page_size
        self._notify("history")
        return result

    # --- realtime ---

    def handle_insert(self, row: Dict[str, Any]) -> None:
        """Append an inbound message unless its durable id is already shown."""
        if self._closed:
            return
        try:
            message = Message.model_validate(row)
        except ValidationError:
            logger.warning("Dropping malformed realtime message", extra={"order_id": self.order_id})
            realtime_events_counter.add(1, {"disposition": "malformed"})
            return
        if message.order_id != self.order_id:
            return
        if message.id in self._known_ids:
            realtime_events_counter.add(1, {"disposition": "duplicate"})
            return

        stick_to_bottom = self.viewport.near_bottom
        self._known_ids.add(message.id)
        self.entries.append(Confirmed(message))
        realtime_events_counter.add(1, {"disposition": "delivered"})
        self._notify("message", scroll_to_bottom=stick_to_bottom)

    # --- sending ---

    async def send(self, content: str) -> Optional[Message]:
        """
        Optimistically append a message, then persist it.

        Returns:
            The stored message, or None if it failed or the view closed

        Raises:
            ValueError: If the content is blank
        """
        content = content.strip()
        if not content:
            raise ValueError("Message content is required")
        local_id = f"temp-{uuid.uuid4().hex}"
        pending = Pending(local_id, content, _now())
        self.entries.append(pending)
        return await self._deliver(pending)

    async def retry(self, local_id: str) -> Optional[Message]:
        """
        Resend a failed message in place.

        Raises:
            LookupError: If no failed entry has that id
        """
        position = self._position(local_id)
        entry = self.entries[position] if position is not None else None
        if not isinstance(entry, Failed):
            raise LookupError("No failed message with that id")
        pending = Pending(entry.local_id, entry.content, entry.created_at)
        self.entries[position] = pending
        return await self._deliver(pending)

    async def _deliver(self, pending: Pending) -> Optional[Message]:
        generation = self._generation
        self._sending += 1
        self._notify("sending", scroll_to_bottom=True)
        try:
            result = await safe_query(self._current(
                generation,
                post_message(self.gateway, self.realtime, self.order_id, self.viewer_id, pending.content)
            ))
        finally:
            self._sending -= 1
        if result.aborted:
            return None

        if result.error:
            position = self._position(pending.local_id)
            if position is not None:
                self.entries[position] = Failed(
                    pending.local_id, pending.content, pending.created_at, result.error
                )
            self.error = "Message could not be sent."
            logger.warning("Order chat send failed", extra={
                "order_id": self.order_id,
                "sender_id": self.viewer_id,
                "error": result.error
            })
            self._notify("failed")
            return None

        message: Message = result.data
        self._confirm(pending.local_id, message)
        self._notify("sent")
        return message

    def _confirm(self, local_id: str, message: Message) -> None:
        if message.id in self._known_ids:
            # the realtime echo beat the insert response; drop the echo
            self.entries = [
                entry for entry in self.entries
                if not (isinstance(entry, Confirmed) and entry.message.id == message.id)
            ]
        self._known_ids.add(message.id)
        position = self._position(local_id)
        if position is None:
            self.entries.append(Confirmed(message))
        else:
            self.entries[position] = Confirmed(message)

    def _position(self, local_id: str) -> Optional[int]:
        for position, entry in enumerate(self.entries):
            if isinstance(entry, (Pending, Failed)) and entry.local_id == local_id:
                return position
        return None

    # --- view ---

    def snapshot(self) -> List[Dict[str, Any]]:
        """Entries as JSON-ready dicts, oldest first."""
        view = []
        for entry in self.entries:
            if isinstance(entry, Confirmed):
                item = entry.message.model_dump(mode="json")
                item["status"] = "sent"
            else:
                item = {
                    "id": entry.local_id,
                    "order_id": self.order_id,
                    "sender_id": self.viewer_id,
                    "content": entry.content,
                    "created_at": entry.created_at.isoformat(),
                    "status": "sending" if isinstance(entry, Pending) else "failed"
                }
                if isinstance(entry, Failed):
                    item["error"] = entry.error
            view.append(item)
        return view
