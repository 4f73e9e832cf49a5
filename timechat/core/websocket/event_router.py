import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from timechat.schemas.websocket import DeliveryScope, WebSocketMessageType

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ConnectionHandle:
    """
    One live client connection.

    Events are queued on ``outbox`` and written to the transport by a
    separate writer task, so publishing never waits on network I/O.
    """
    user_id: str
    display_name: str
    connection: Any = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    rooms: Set[str] = field(default_factory=set)

    def deliver(self, event: dict) -> None:
        self.outbox.put_nowait(event)

    async def next_event(self) -> dict:
        return await self.outbox.get()

    def pending(self) -> List[dict]:
        """Take every queued event without waiting."""
        events = []
        while not self.outbox.empty():
            events.append(self.outbox.get_nowait())
        return events


class EventRouter:
    """
    In-memory fan-out of chat events to live connections.

    Connections are indexed three ways: by handle id, by room topic and by
    user (the personal topic). One lock covers every read and write of these
    maps, so a publish never iterates a topic set while a join, leave or
    disconnect is changing it.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._connections: Dict[str, ConnectionHandle] = {}
        self._by_transport: Dict[int, ConnectionHandle] = {}
        self._topics: Dict[str, Set[str]] = defaultdict(set)
        self._by_user: Dict[str, Set[str]] = defaultdict(set)

    async def register_connection(
        self, user_id: str, display_name: str, connection: Any = None
    ) -> ConnectionHandle:
        """
        Record a live connection for a user.

        Registering the same transport twice returns the handle created the
        first time.
        """
        async with self._lock:
            if connection is not None:
                existing = self._by_transport.get(id(connection))
                if existing is not None and existing.user_id == user_id:
                    existing.display_name = display_name
                    return existing

            handle = ConnectionHandle(user_id=user_id, display_name=display_name, connection=connection)
            self._connections[handle.id] = handle
            self._by_user[user_id].add(handle.id)
            if connection is not None:
                self._by_transport[id(connection)] = handle

        logger.info(f"Registered connection {handle.id} for user {user_id}")
        return handle

    async def join_room(self, handle: ConnectionHandle, room_id: str) -> None:
        async with self._lock:
            if handle.id not in self._connections:
                logger.warning(f"Ignoring join of {room_id} from unregistered connection {handle.id}")
                return
            self._topics[room_id].add(handle.id)
            handle.rooms.add(room_id)
        logger.debug(f"Connection {handle.id} joined room {room_id}")

    async def leave_room(self, handle: ConnectionHandle, room_id: str) -> None:
        async with self._lock:
            self._unsubscribe(handle, room_id)

    async def evict(self, user_id: str, room_id: str) -> int:
        """
        Unsubscribe every connection of a user from a room topic.

        Called once the user is no longer a member, so room events stop
        reaching their open windows.

        Returns:
            int: Number of connections unsubscribed
        """
        evicted = 0
        async with self._lock:
            for handle_id in list(self._by_user.get(user_id, ())):
                handle = self._connections[handle_id]
                if room_id in handle.rooms:
                    self._unsubscribe(handle, room_id)
                    evicted += 1
        if evicted:
            logger.info(f"Evicted {evicted} connections of user {user_id} from room {room_id}")
        return evicted

    async def close_room(self, room_id: str) -> int:
        """Drop a deleted room's topic along with all of its subscriptions."""
        async with self._lock:
            handle_ids = list(self._topics.get(room_id, ()))
            for handle_id in handle_ids:
                self._unsubscribe(self._connections[handle_id], room_id)
        if handle_ids:
            logger.info(f"Closed room topic {room_id}, {len(handle_ids)} connections unsubscribed")
        return len(handle_ids)

    def _unsubscribe(self, handle: ConnectionHandle, room_id: str) -> None:
        subscribers = self._topics.get(room_id)
        if subscribers is not None:
            subscribers.discard(handle.id)
            if not subscribers:
                del self._topics[room_id]
        handle.rooms.discard(room_id)

    async def publish_message(
        self,
        room_id: str,
        message: dict,
        member_ids: Iterable[str] = (),
        exclude_user_id: Optional[str] = None,
    ) -> int:
        """
        Deliver a ``message received`` event for a room.

        Every connection subscribed to the room topic gets a ``room``-scoped
        copy, except the connections of ``exclude_user_id``. Every connection
        of every member additionally gets a ``user``-scoped copy on its
        personal topic, sender included; clients dedupe by message id.

        Returns:
            int: Number of events queued
        """
        delivered = 0
        async with self._lock:
            for handle_id in self._topics.get(room_id, ()):
                handle = self._connections[handle_id]
                if exclude_user_id is not None and handle.user_id == exclude_user_id:
                    continue
                handle.deliver(self._message_event(room_id, message, DeliveryScope.ROOM))
                delivered += 1

            for user_id in dict.fromkeys(member_ids):
                for handle_id in self._by_user.get(user_id, ()):
                    self._connections[handle_id].deliver(
                        self._message_event(room_id, message, DeliveryScope.USER)
                    )
                    delivered += 1
        return delivered

    @staticmethod
    def _message_event(room_id: str, message: dict, scope: DeliveryScope) -> dict:
        return {
            "type": WebSocketMessageType.MESSAGE_RECEIVED.value,
            "scope": scope.value,
            "chat_id": room_id,
            "message": message,
        }

    async def publish_typing(self, room_id: str, user_id: str, display_name: str, starting: bool) -> int:
        """Broadcast a typing indicator to the room topic, skipping the typist's own connections."""
        if starting:
            event = {
                "type": WebSocketMessageType.TYPING.value,
                "chat_id": room_id,
                "user_id": user_id,
                "user_name": display_name,
            }
        else:
            event = {
                "type": WebSocketMessageType.STOP_TYPING.value,
                "chat_id": room_id,
                "user_id": user_id,
            }

        delivered = 0
        async with self._lock:
            for handle_id in self._topics.get(room_id, ()):
                handle = self._connections[handle_id]
                if handle.user_id == user_id:
                    continue
                handle.deliver(dict(event))
                delivered += 1
        return delivered

    async def publish_presence(self, user_id: str, is_online: bool) -> int:
        async with self._lock:
            return self._broadcast_presence(user_id, is_online)

    def _broadcast_presence(self, user_id: str, is_online: bool) -> int:
        event = {
            "type": WebSocketMessageType.USER_STATUS.value,
            "user_id": user_id,
            "is_online": is_online,
        }
        delivered = 0
        for handle in self._connections.values():
            if handle.user_id == user_id:
                continue
            handle.deliver(dict(event))
            delivered += 1
        return delivered

    async def on_disconnect(self, handle: ConnectionHandle) -> bool:
        """
        Forget a connection.

        Returns:
            bool: True when this was the user's last connection, in which
                case every other connection has been sent ``user status`` offline
        """
        async with self._lock:
            if self._connections.pop(handle.id, None) is None:
                return False
            if handle.connection is not None:
                self._by_transport.pop(id(handle.connection), None)
            for room_id in list(handle.rooms):
                self._unsubscribe(handle, room_id)

            user_handles = self._by_user.get(handle.user_id)
            if user_handles is not None:
                user_handles.discard(handle.id)
            last = not user_handles
            if last:
                self._by_user.pop(handle.user_id, None)
                self._broadcast_presence(handle.user_id, False)

        logger.info(f"Connection {handle.id} for user {handle.user_id} closed (last={last})")
        return last

    def is_online(self, user_id: str) -> bool:
        return bool(self._by_user.get(user_id))

    def room_subscribers(self, room_id: str) -> Set[str]:
        return {self._connections[h].user_id for h in self._topics.get(room_id, ())}

    def connection_count(self) -> int:
        return len(self._connections)


event_router = EventRouter()
