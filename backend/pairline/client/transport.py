"""
Peer transport and media seams.

The state machine drives a PeerTransport; the concrete adapters here wrap
aiortc.  aiortc gathers ICE candidates during set_local_description and puts
them in the SDP, so AiortcTransport never calls on_ice_candidate.  It also
has no ICE restart or sender parameter API; both are logged and skipped.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.contrib.media import MediaPlayer
from aiortc.sdp import candidate_from_sdp

from pairline.client.config import ClientSettings, client_settings
from pairline.core.errors import MediaAccessDeniedError, MediaNotSupportedError
from pairline.core.signals import IceCandidate, SessionDescription

logger = logging.getLogger(__name__)


@dataclass
class LocalMedia:
    tracks: list[Any] = field(default_factory=list)
    handle: Any = None


class MediaSource(Protocol):
    async def acquire(self) -> LocalMedia: ...

    async def release(self) -> None: ...


class PeerTransport(Protocol):
    # Reports "new", "connecting", "connected", "disconnected", "failed", "closed"
    on_state_change: Callable[[str], None] | None
    on_ice_candidate: Callable[[IceCandidate], None] | None

    @property
    def signaling_state(self) -> str: ...

    @property
    def connection_state(self) -> str: ...

    @property
    def has_remote_description(self) -> bool: ...

    async def add_media(self, media: LocalMedia) -> None: ...

    async def create_offer(self, ice_restart: bool = False) -> SessionDescription: ...

    async def create_answer(self) -> SessionDescription: ...

    async def set_local_description(self, description: SessionDescription) -> None: ...

    async def set_remote_description(self, description: SessionDescription) -> None: ...

    async def add_ice_candidate(self, candidate: IceCandidate) -> None: ...

    async def restart_ice(self) -> None: ...

    async def apply_bandwidth_constraints(self, max_bitrate: int, scale_down: float) -> None: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[], PeerTransport]


def ice_servers(settings: ClientSettings = client_settings) -> list[RTCIceServer]:
    servers = [RTCIceServer(urls=url) for url in settings.ICE_SERVERS]
    if settings.TURN_URLS and settings.TURN_USERNAME:
        servers.append(
            RTCIceServer(
                urls=settings.TURN_URLS,
                username=settings.TURN_USERNAME,
                credential=settings.TURN_CREDENTIAL,
            )
        )
    return servers


class AiortcTransport:
    def __init__(self, settings: ClientSettings = client_settings) -> None:
        self._pc = RTCPeerConnection(configuration=RTCConfiguration(iceServers=ice_servers(settings)))
        self.on_state_change: Callable[[str], None] | None = None
        self.on_ice_candidate: Callable[[IceCandidate], None] | None = None
        self.remote_tracks: list[Any] = []

        @self._pc.on("connectionstatechange")
        def _connection_state_changed() -> None:
            logger.info("Peer connection state: %s", self._pc.connectionState)
            if self.on_state_change is not None:
                self.on_state_change(self._pc.connectionState)

        @self._pc.on("track")
        def _track(track) -> None:
            logger.info("Received remote %s track", track.kind)
            self.remote_tracks.append(track)

    @property
    def signaling_state(self) -> str:
        return self._pc.signalingState

    @property
    def connection_state(self) -> str:
        return self._pc.connectionState

    @property
    def has_remote_description(self) -> bool:
        return self._pc.remoteDescription is not None

    async def add_media(self, media: LocalMedia) -> None:
        for track in media.tracks:
            self._pc.addTrack(track)

    async def create_offer(self, ice_restart: bool = False) -> SessionDescription:
        if ice_restart:
            logger.warning("aiortc cannot restart ICE; sending a plain re-offer")
        offer = await self._pc.createOffer()
        return SessionDescription(type=offer.type, sdp=offer.sdp)

    async def create_answer(self) -> SessionDescription:
        answer = await self._pc.createAnswer()
        return SessionDescription(type=answer.type, sdp=answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> None:
        await self._pc.setLocalDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        sdp = candidate.candidate
        if sdp.startswith("candidate:"):
            sdp = sdp[len("candidate:"):]
        if not sdp:
            # End-of-candidates marker
            return
        parsed = candidate_from_sdp(sdp)
        parsed.sdpMid = candidate.sdp_mid
        parsed.sdpMLineIndex = candidate.sdp_mline_index
        await self._pc.addIceCandidate(parsed)

    async def restart_ice(self) -> None:
        logger.warning("ICE restart requested but not supported by aiortc")

    async def apply_bandwidth_constraints(self, max_bitrate: int, scale_down: float) -> None:
        video = [s for s in self._pc.getSenders() if s.track is not None and s.track.kind == "video"]
        if video:
            logger.info(
                "Bitrate cap %d bps / scale %.1f not supported by aiortc senders (%d video)",
                max_bitrate,
                scale_down,
                len(video),
            )

    async def close(self) -> None:
        await self._pc.close()


class AiortcMediaSource:
    """Camera + microphone through aiortc's MediaPlayer.  One capture is
    shared across every connection until release()."""

    def __init__(self, settings: ClientSettings = client_settings) -> None:
        self._device = settings.MEDIA_DEVICE
        self._format = settings.MEDIA_FORMAT
        self._media: LocalMedia | None = None

    async def acquire(self) -> LocalMedia:
        if self._media is not None:
            return self._media
        try:
            player = MediaPlayer(self._device, format=self._format, options={"framerate": "24", "video_size": "640x480"})
        except PermissionError as exc:
            raise MediaAccessDeniedError(str(exc)) from exc
        except Exception as exc:
            raise MediaNotSupportedError(f"{self._device}: {exc}") from exc

        tracks = [t for t in (player.audio, player.video) if t is not None]
        if not tracks:
            raise MediaNotSupportedError(f"{self._device} has no audio or video stream")
        self._media = LocalMedia(tracks=tracks, handle=player)
        return self._media

    async def release(self) -> None:
        media, self._media = self._media, None
        if media is None:
            return
        for track in media.tracks:
            track.stop()
