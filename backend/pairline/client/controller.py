"""
Chat session controller: one participant's matchmaking lifecycle.

start():  request a match under the retry supervisor.  If nobody is waiting,
          watch for the match two ways at once, a /ws/matchmaking push and a
          poll every MATCH_POLL_INTERVAL seconds; whichever lands first records
          the match and the other becomes a no-op.
next():   cancel the queue entry, end the room, tear the peer down, search again.
stop():   the same without searching again.  Terminal.

While matched, the room is watched the same two ways (a /ws/rooms push and a
status poll).  When the partner ends it, the peer is stopped and the status
moves to ended with PARTNER_DISCONNECTED reported.

Polling pauses while the participant is in the background; coming back to
the foreground polls straight away.  Video matches are handed to the peer
connection; text matches are not.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from enum import Enum

from pairline.client.peer import PeerConnection
from pairline.client.retry import RetryConfig, RetrySupervisor
from pairline.client.state import Observable, StateObservable
from pairline.core import events
from pairline.core.errors import AppError, ErrorCode, create_error, log_error, parse_error
from pairline.core.pairing import room_id

logger = logging.getLogger(__name__)

WatcherFactory = Callable[[str], AsyncIterator[dict]]
RoomWatcherFactory = Callable[[str, str], AsyncIterator[dict]]

# Room status reported by GET /api/chat once either side has left
ROOM_STATUS_ENDED = "ended"


class SessionStatus(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    MATCHED = "matched"
    ENDED = "ended"
    STOPPED = "stopped"


@dataclass(frozen=True)
class Match:
    partner_id: str
    room_id: str
    chat_type: str


class ChatSessionController:
    def __init__(
        self,
        api,
        session_id: str,
        chat_type: str,
        *,
        peer: PeerConnection | None = None,
        watcher_factory: WatcherFactory | None = None,
        room_watcher_factory: RoomWatcherFactory | None = None,
        retry: RetrySupervisor | None = None,
        poll_interval: float = 2.0,
        heartbeat_interval: float | None = None,
    ) -> None:
        if chat_type not in ("text", "video"):
            raise ValueError("chat_type must be 'text' or 'video'")
        self.api = api
        self.session_id = session_id
        self.chat_type = chat_type
        self.peer = peer
        self.status = StateObservable(SessionStatus.IDLE)
        self.matches = Observable()
        self.errors = Observable()
        # message.new payloads from the room push, both sides included
        self.messages = Observable()
        self.match: Match | None = None
        self.last_error: AppError | None = None
        self._watcher_factory = watcher_factory
        self._room_watcher_factory = room_watcher_factory
        self._retry = retry or RetrySupervisor(RetryConfig())
        self._poll_interval = poll_interval
        # Session heartbeats get their own supervisor so next() cannot cancel them
        self.keepalive = RetrySupervisor(RetryConfig(heartbeat_interval=heartbeat_interval or 25.0))
        self._heartbeat_enabled = heartbeat_interval is not None
        self._heartbeat: asyncio.Task | None = None
        self._cycle = 0
        self._tasks: set[asyncio.Task] = set()
        self._matched = asyncio.Event()
        self._foreground = asyncio.Event()
        self._foreground.set()
        self._wake = asyncio.Event()
        self._stopped = False

    @property
    def foreground(self) -> bool:
        return self._foreground.is_set()

    @property
    def stopped(self) -> bool:
        return self._stopped

    async def start(self) -> Match | None:
        """Enqueue and return the match if one was made right away."""
        if self._stopped:
            raise RuntimeError("controller has been stopped")
        if self._heartbeat_enabled and self._heartbeat is None:
            self._heartbeat = self.keepalive.heartbeat(lambda: self.api.heartbeat(self.session_id))
        return await self._search()

    async def next(self) -> Match | None:
        if self._stopped:
            raise RuntimeError("controller has been stopped")
        await self._teardown()
        return await self._search()

    async def stop(self) -> None:
        if self._stopped:
            return
        await self._teardown()
        self._stopped = True
        self.keepalive.reset()
        self._heartbeat = None
        self._retry.reset()
        self.status.set(SessionStatus.STOPPED)
        self.status.mute()
        self.matches.mute()
        self.errors.mute()
        self.messages.mute()
        if self.peer is not None:
            await self.peer.dispose()

    async def wait_for_match(self, timeout: float | None = None) -> Match | None:
        try:
            await asyncio.wait_for(self._matched.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        return self.match

    def set_foreground(self, foreground: bool) -> None:
        if foreground:
            if not self._foreground.is_set():
                self._foreground.set()
                self._wake.set()
        else:
            self._foreground.clear()

    # ------------------------------------------------------------------

    async def _search(self) -> Match | None:
        self._cycle += 1
        cycle = self._cycle
        self.match = None
        self._matched.clear()
        self.status.set(SessionStatus.SEARCHING)

        result = await self._retry.execute(
            lambda: self.api.request_match(self.session_id, self.chat_type),
            on_retry=lambda attempt: logger.info("Matchmaking attempt %d failed, retrying", attempt),
            should_retry=lambda exc: parse_error(exc).recoverable,
        )
        if cycle != self._cycle:
            return None
        if not result.ok:
            if result.cancelled:
                return None
            error = parse_error(result.error)
            if error.code in (ErrorCode.NETWORK_ERROR, ErrorCode.CONNECTION_TIMEOUT):
                error = create_error(ErrorCode.MATCHMAKING_FAILED, error.message)
            self._report(error, "matchmaking")
            self.status.set(SessionStatus.IDLE)
            return None

        response = result.value
        if response.get("matched"):
            await self._on_match(cycle, response["partnerId"], response.get("roomId"))
            return self.match

        self._spawn(self._poll_loop(cycle))
        if self._watcher_factory is not None:
            self._spawn(self._watch(cycle))
        return None

    async def _on_match(self, cycle: int, partner_id: str, rid: str | None) -> None:
        if cycle != self._cycle or self.match is not None:
            return
        self.match = Match(
            partner_id=partner_id,
            room_id=rid or room_id(self.session_id, partner_id),
            chat_type=self.chat_type,
        )
        logger.info("Matched with %s in %s", partner_id, self.match.room_id)
        self._cancel_tasks()
        self._matched.set()
        self.status.set(SessionStatus.MATCHED)
        self.matches.emit(self.match)
        self._spawn(self._room_poll_loop(cycle, self.match))
        if self._room_watcher_factory is not None:
            self._spawn(self._watch_room(cycle, self.match))
        if self.chat_type == "video" and self.peer is not None:
            await self.peer.start(partner_id)

    async def _poll_loop(self, cycle: int) -> None:
        while cycle == self._cycle and self.match is None:
            await self._foreground.wait()
            if cycle != self._cycle:
                return
            try:
                response = await self.api.poll_match(self.session_id)
            except Exception as exc:
                log_error(parse_error(exc), "poll match")
            else:
                if response.get("matched"):
                    await self._on_match(cycle, response["partnerId"], response.get("roomId"))
                    return
            await self._pause()

    async def _pause(self) -> None:
        self._wake.clear()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._wake.wait(), timeout=self._poll_interval)

    async def _watch(self, cycle: int) -> None:
        try:
            async for event in self._watcher_factory(self.session_id):
                if cycle != self._cycle:
                    return
                if event.get("type") == events.MATCH_FOUND and event.get("partner_id"):
                    await self._on_match(cycle, event["partner_id"], event.get("room_id"))
                    return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Match push unavailable, relying on polling: %s", exc)

    async def _room_poll_loop(self, cycle: int, match: Match) -> None:
        while cycle == self._cycle and self.match is match:
            await self._pause()
            await self._foreground.wait()
            if cycle != self._cycle:
                return
            try:
                data = await self.api.get_messages(match.room_id, self.session_id, limit=1)
            except Exception as exc:
                log_error(parse_error(exc), "poll room")
                continue
            if data.get("status") == ROOM_STATUS_ENDED:
                await self._on_partner_left(cycle, match)
                return

    async def _watch_room(self, cycle: int, match: Match) -> None:
        try:
            async for event in self._room_watcher_factory(self.session_id, match.room_id):
                if cycle != self._cycle:
                    return
                kind = event.get("type")
                if kind == events.MESSAGE_NEW and event.get("message"):
                    self.messages.emit(event["message"])
                elif kind == events.ROOM_ENDED:
                    await self._on_partner_left(cycle, match)
                    return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Room push unavailable, relying on polling: %s", exc)

    async def _on_partner_left(self, cycle: int, match: Match) -> None:
        if cycle != self._cycle or self.match is not match or self.status.value == SessionStatus.ENDED:
            return
        logger.info("Partner %s left %s", match.partner_id, match.room_id)
        # The match is kept so next() and stop() still end the room on our side
        self.status.set(SessionStatus.ENDED)
        self._cancel_tasks()
        if self.peer is not None:
            await self.peer.stop()
        self._report(create_error(ErrorCode.PARTNER_DISCONNECTED), "room ended")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

    async def _teardown(self) -> None:
        self._cycle += 1
        self._retry.cancel()
        self._cancel_tasks()
        match, self.match = self.match, None
        self._matched.clear()

        try:
            await self.api.cancel_match(self.session_id)
        except Exception as exc:
            log_error(parse_error(exc), "cancel match")
        if match is not None:
            try:
                await self.api.end_chat(match.room_id, self.session_id)
            except Exception as exc:
                log_error(parse_error(exc), "end chat")
        if self.peer is not None:
            await self.peer.stop()
        self.status.set(SessionStatus.IDLE)

    def _report(self, error: AppError, context: str) -> None:
        self.last_error = error
        log_error(error, context)
        self.errors.emit(error)
