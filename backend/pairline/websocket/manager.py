import json
import logging
from collections import defaultdict

from fastapi import WebSocket

from pairline.core import events

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks live WebSocket connections, all keyed by session id.

    Relay channels are stored as {channel: {session_id: WebSocket}}; a relay
    broadcast reaches every *other* current subscriber and nobody else (no
    store-and-forward).  Match watchers hold one socket per session.  Room
    sockets carry the text relay for one room.

    In-memory singleton, assumes a single-process deployment.
    """

    def __init__(self) -> None:
        # channel -> {session_id: WebSocket}
        self._channels: dict[str, dict[str, WebSocket]] = defaultdict(dict)
        # session_id -> WebSocket
        self._watchers: dict[str, WebSocket] = {}
        # room_id -> {session_id: WebSocket}
        self._rooms: dict[str, dict[str, WebSocket]] = defaultdict(dict)

    # ------------------------------------------------------------------
    # Signaling relay channels
    # ------------------------------------------------------------------

    def join_channel(self, channel: str, session_id: str, websocket: WebSocket) -> None:
        self._channels[channel][session_id] = websocket
        logger.info("Relay channel %s: %s subscribed", channel, session_id)

    def leave_channel(self, channel: str, session_id: str, websocket: WebSocket) -> None:
        members = self._channels.get(channel)
        # A reconnect may already have replaced this socket
        if members is None or members.get(session_id) is not websocket:
            return
        members.pop(session_id, None)
        if not members:
            self._channels.pop(channel, None)
        logger.info("Relay channel %s: %s left", channel, session_id)

    def channel_members(self, channel: str) -> list[str]:
        return list(self._channels.get(channel, {}).keys())

    async def relay(self, channel: str, payload: dict, exclude_session_id: str) -> int:
        """Send payload to the other subscribers of channel.  Returns deliveries."""
        data = json.dumps(payload)
        delivered = 0
        dead: list[tuple[str, WebSocket]] = []
        for sid, ws in list(self._channels.get(channel, {}).items()):
            if sid == exclude_session_id:
                continue
            try:
                await ws.send_text(data)
                delivered += 1
            except Exception:
                dead.append((sid, ws))
        for sid, ws in dead:
            self.leave_channel(channel, sid, ws)
        return delivered

    # ------------------------------------------------------------------
    # Match watchers
    # ------------------------------------------------------------------

    async def watch(self, session_id: str, websocket: WebSocket) -> None:
        # Close any stale watcher for this session before replacing it
        old = self._watchers.get(session_id)
        if old is not None and old is not websocket:
            try:
                await old.close()
            except Exception:
                logger.debug("Stale watcher for %s already closed", session_id)
        self._watchers[session_id] = websocket

    def unwatch(self, session_id: str, websocket: WebSocket) -> None:
        if self._watchers.get(session_id) is websocket:
            self._watchers.pop(session_id, None)

    async def notify_session(self, session_id: str, payload: dict) -> bool:
        """Push to a session's watcher.  False if it isn't connected."""
        ws = self._watchers.get(session_id)
        if ws is None:
            return False
        try:
            await ws.send_text(json.dumps(payload))
            return True
        except Exception:
            self.unwatch(session_id, ws)
            return False

    # ------------------------------------------------------------------
    # Room text relay
    # ------------------------------------------------------------------

    def join_room(self, room_id: str, session_id: str, websocket: WebSocket) -> None:
        self._rooms[room_id][session_id] = websocket

    def leave_room(self, room_id: str, session_id: str, websocket: WebSocket) -> None:
        members = self._rooms.get(room_id)
        if members is None or members.get(session_id) is not websocket:
            return
        members.pop(session_id, None)
        if not members:
            self._rooms.pop(room_id, None)

    async def broadcast_room(self, room_id: str, payload: dict) -> None:
        data = json.dumps(payload, default=str)
        dead: list[tuple[str, WebSocket]] = []
        for sid, ws in list(self._rooms.get(room_id, {}).items()):
            try:
                await ws.send_text(data)
            except Exception:
                dead.append((sid, ws))
        for sid, ws in dead:
            self.leave_room(room_id, sid, ws)

    async def announce_room_ended(self, room_id: str) -> None:
        await self.broadcast_room(
            room_id,
            {"type": events.ROOM_ENDED, "room_id": room_id, "content": events.DISCONNECT_NOTICE},
        )


manager = ConnectionManager()
