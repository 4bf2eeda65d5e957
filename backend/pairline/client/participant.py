"""
Assembles one participant process from ClientSettings: a registered session,
the chat session controller and, for video, a peer connection over the
WebSocket relay with aiortc media.
"""

import logging
from dataclasses import dataclass

from pairline.client.api import PairlineClient, watch_matches, watch_room
from pairline.client.config import ClientSettings, client_settings
from pairline.client.controller import ChatSessionController
from pairline.client.peer import PeerConnection, PeerTimings
from pairline.client.relay import Relay, WebSocketRelay
from pairline.client.retry import RetryConfig, RetrySupervisor
from pairline.client.transport import AiortcMediaSource, AiortcTransport, MediaSource, TransportFactory
from pairline.core.errors import log_error, parse_error

logger = logging.getLogger(__name__)


def retry_config(settings: ClientSettings) -> RetryConfig:
    return RetryConfig(
        max_attempts=settings.MATCH_MAX_ATTEMPTS,
        initial_delay=settings.MATCH_INITIAL_DELAY_SECONDS,
        backoff_multiplier=settings.MATCH_BACKOFF_MULTIPLIER,
        per_attempt_timeout=settings.REQUEST_TIMEOUT_SECONDS,
        heartbeat_interval=settings.HEARTBEAT_INTERVAL_SECONDS,
    )


@dataclass
class Participant:
    api: PairlineClient
    session_id: str
    controller: ChatSessionController
    peer: PeerConnection | None = None

    async def close(self) -> None:
        """Stop the controller, drop the session and close the HTTP client."""
        await self.controller.stop()
        try:
            await self.api.destroy_session(self.session_id)
        except Exception as exc:
            log_error(parse_error(exc), "destroy session")
        await self.api.aclose()


async def create_participant(
    chat_type: str,
    settings: ClientSettings = client_settings,
    *,
    api: PairlineClient | None = None,
    relay: Relay | None = None,
    transport_factory: TransportFactory | None = None,
    media: MediaSource | None = None,
    watch: bool = True,
) -> Participant:
    api = api or PairlineClient(settings.API_URL, timeout=settings.REQUEST_TIMEOUT_SECONDS)
    session_id = await api.create_session()
    logger.info("Registered session %s for %s chat", session_id, chat_type)

    peer = None
    if chat_type == "video":
        peer = PeerConnection(
            session_id,
            relay or WebSocketRelay(settings.WS_URL, session_id),
            transport_factory or (lambda: AiortcTransport(settings)),
            media or AiortcMediaSource(settings),
            PeerTimings.from_settings(settings),
        )

    watcher_factory = room_watcher_factory = None
    if watch:
        def watcher_factory(sid):
            return watch_matches(settings.WS_URL, sid)

        def room_watcher_factory(sid, rid):
            return watch_room(settings.WS_URL, sid, rid)

    controller = ChatSessionController(
        api,
        session_id,
        chat_type,
        peer=peer,
        watcher_factory=watcher_factory,
        room_watcher_factory=room_watcher_factory,
        retry=RetrySupervisor(retry_config(settings)),
        poll_interval=settings.MATCH_POLL_INTERVAL_SECONDS,
        heartbeat_interval=settings.HEARTBEAT_INTERVAL_SECONDS,
    )
    return Participant(api=api, session_id=session_id, controller=controller, peer=peer)
