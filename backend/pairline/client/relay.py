"""
Signaling relay: a broadcast channel per room carrying negotiation messages.

  relay.open(name) -> RelayChannel
  channel.on(event, callback)   callback(payload) once per delivered event
  await channel.subscribe()     returns once the channel is receiving
  await channel.send(event, payload)
                                reaches every *other* current subscriber
  await channel.close()

Nothing is stored for subscribers that join later, and there is no ordering
across senders.  Callbacks run synchronously on the event loop; they are
expected to hand work off (the peer state machine queues it).

Implementations:
  LocalRelay       in-process hub, for participants sharing one event loop
  WebSocketRelay   the server's /ws/relay/{channel} endpoint
  HttpSignalRelay  polls the stored signal fallback (/api/chat/signal)
"""

import asyncio
import contextlib
import copy
import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from pairline.core import events

logger = logging.getLogger(__name__)

EventCallback = Callable[[Any], None]


class RelayError(ConnectionError):
    """The relay could not subscribe or deliver."""


class RelayChannel(ABC):
    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: dict[str, list[EventCallback]] = defaultdict(list)
        self._subscribed = False
        self._closed = False

    @property
    def subscribed(self) -> bool:
        return self._subscribed

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, event: str, callback: EventCallback) -> Callable[[], None]:
        self._handlers[event].append(callback)

        def off() -> None:
            with contextlib.suppress(ValueError):
                self._handlers[event].remove(callback)

        return off

    def _dispatch(self, event: str, payload: Any) -> None:
        if self._closed:
            return
        for callback in list(self._handlers.get(event, ())):
            try:
                callback(payload)
            except Exception:
                logger.exception("Relay handler for %s on %s raised", event, self.name)

    @abstractmethod
    async def subscribe(self) -> None:
        """Return once the channel is receiving."""

    @abstractmethod
    async def send(self, event: str, payload: Any) -> None:
        """Deliver to every other current subscriber."""

    async def close(self) -> None:
        self._closed = True
        self._subscribed = False
        self._handlers.clear()


class Relay(ABC):
    @abstractmethod
    def open(self, name: str) -> RelayChannel:
        ...


# ---------------------------------------------------------------------------
# In-process hub
# ---------------------------------------------------------------------------


class LocalRelay(Relay):
    """Channels that deliver through the running loop, one call_soon per
    receiver, so a sender never re-enters a receiver's handler."""

    def __init__(self) -> None:
        self._members: dict[str, list[_LocalChannel]] = defaultdict(list)
        self.sent: list[tuple[str, str, Any]] = []

    def open(self, name: str) -> RelayChannel:
        return _LocalChannel(self, name)

    def subscribers(self, name: str) -> int:
        return len(self._members.get(name, ()))

    def _join(self, channel: "_LocalChannel") -> None:
        if channel not in self._members[channel.name]:
            self._members[channel.name].append(channel)

    def _leave(self, channel: "_LocalChannel") -> None:
        members = self._members.get(channel.name)
        if members is None:
            return
        with contextlib.suppress(ValueError):
            members.remove(channel)
        if not members:
            self._members.pop(channel.name, None)

    def _broadcast(self, sender: "_LocalChannel", event: str, payload: Any) -> int:
        self.sent.append((sender.name, event, payload))
        loop = asyncio.get_running_loop()
        delivered = 0
        for member in list(self._members.get(sender.name, ())):
            if member is sender:
                continue
            loop.call_soon(member._dispatch, event, copy.deepcopy(payload))
            delivered += 1
        return delivered


class _LocalChannel(RelayChannel):
    def __init__(self, hub: LocalRelay, name: str) -> None:
        super().__init__(name)
        self._hub = hub

    async def subscribe(self) -> None:
        if self._closed:
            raise RelayError(f"channel {self.name} is closed")
        self._hub._join(self)
        self._subscribed = True

    async def send(self, event: str, payload: Any) -> None:
        if not self._subscribed:
            raise RelayError(f"channel {self.name} is not subscribed")
        self._hub._broadcast(self, event, payload)

    async def close(self) -> None:
        self._hub._leave(self)
        await super().close()


# ---------------------------------------------------------------------------
# WebSocket relay (server /ws/relay/{channel})
# ---------------------------------------------------------------------------


class WebSocketRelay(Relay):
    def __init__(self, ws_url: str, session_id: str, subscribe_timeout: float = 10.0) -> None:
        self.ws_url = ws_url.rstrip("/")
        self.session_id = session_id
        self.subscribe_timeout = subscribe_timeout

    def open(self, name: str) -> RelayChannel:
        return _WebSocketChannel(self, name)


class _WebSocketChannel(RelayChannel):
    def __init__(self, relay: WebSocketRelay, name: str) -> None:
        super().__init__(name)
        self._relay = relay
        self._ws = None
        self._reader: asyncio.Task | None = None

    async def subscribe(self) -> None:
        uri = f"{self._relay.ws_url}/ws/relay/{self.name}"
        try:
            self._ws = await websockets.connect(uri)
            await self._ws.send(json.dumps({"type": events.AUTH, "session_id": self._relay.session_id}))
            await asyncio.wait_for(self._await_subscribed(), timeout=self._relay.subscribe_timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            await self._drop_socket()
            raise RelayError(f"relay subscribe failed for {self.name}: {exc}") from exc

        self._subscribed = True
        self._reader = asyncio.create_task(self._read())
        logger.info("Relay channel %s subscribed", self.name)

    async def _await_subscribed(self) -> None:
        while True:
            msg = _decode(await self._ws.recv())
            if msg is not None and msg.get("type") == events.RELAY_SUBSCRIBED:
                return

    async def _read(self) -> None:
        try:
            async for raw in self._ws:
                msg = _decode(raw)
                if msg is None or msg.get("type") != events.RELAY_BROADCAST:
                    continue
                event = msg.get("event")
                if isinstance(event, str):
                    self._dispatch(event, msg.get("payload"))
        except ConnectionClosed:
            logger.info("Relay channel %s closed by server", self.name)
        finally:
            self._subscribed = False

    async def send(self, event: str, payload: Any) -> None:
        if self._ws is None or not self._subscribed:
            raise RelayError(f"channel {self.name} is not subscribed")
        try:
            await self._ws.send(json.dumps({"type": events.RELAY_BROADCAST, "event": event, "payload": payload}))
        except ConnectionClosed as exc:
            raise RelayError(f"relay send failed on {self.name}") from exc

    async def _drop_socket(self) -> None:
        if self._ws is not None:
            with contextlib.suppress(Exception):
                await self._ws.close()
            self._ws = None

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader
            self._reader = None
        await self._drop_socket()
        await super().close()


def _decode(raw: str | bytes) -> dict | None:
    try:
        msg = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return msg if isinstance(msg, dict) else None


# ---------------------------------------------------------------------------
# Stored-signal fallback (server /api/chat/signal)
# ---------------------------------------------------------------------------


class HttpSignalRelay(Relay):
    """
    Delivery over the signal store.  The channel name is the room id.  Unlike
    the push relays it hands over everything the partner stored in the room, so
    it also covers messages a push subscriber missed.
    """

    def __init__(self, api, session_id: str, poll_interval: float = 1.0) -> None:
        self.api = api
        self.session_id = session_id
        self.poll_interval = poll_interval

    def open(self, name: str) -> RelayChannel:
        return _HttpSignalChannel(self, name)


class _HttpSignalChannel(RelayChannel):
    def __init__(self, relay: HttpSignalRelay, name: str) -> None:
        super().__init__(name)
        self._relay = relay
        self._cursor: datetime | None = None
        self._seen: set[int] = set()
        self._poller: asyncio.Task | None = None

    async def subscribe(self) -> None:
        self._subscribed = True
        self._poller = asyncio.create_task(self._poll())

    async def _poll(self) -> None:
        while not self._closed:
            try:
                await self.poll_once()
            except Exception as exc:
                logger.warning("Signal poll on %s failed: %s", self.name, exc)
            await asyncio.sleep(self._relay.poll_interval)

    async def poll_once(self) -> int:
        signals = await self._relay.api.get_signals(self.name, self._relay.session_id, after=self._cursor)
        for signal in signals:
            if signal["id"] in self._seen:
                continue
            self._seen.add(signal["id"])
            self._cursor = datetime.fromisoformat(signal["createdAt"])
            if signal.get("type"):
                self._dispatch(signal["type"], signal.get("signal"))
        return len(signals)

    async def send(self, event: str, payload: Any) -> None:
        if not self._subscribed:
            raise RelayError(f"channel {self.name} is not subscribed")
        await self._relay.api.post_signal(self.name, self._relay.session_id, event, payload)

    async def close(self) -> None:
        if self._poller is not None:
            self._poller.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poller
            self._poller = None
        await super().close()
