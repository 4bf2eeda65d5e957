"""
Peer connection state machine: negotiates one direct media connection with
the current partner over a relay channel.

  idle ─partner─▶ initializing ─media─▶ connecting ─transport up─▶ connected
  connecting/connected ─transport failed, attempts left─▶ reconnecting
  connected ─transport disconnected─▶ reconnecting
  any ─attempts exhausted / connection timeout─▶ failed
  any ─cleanup()─▶ idle

The side whose session id sorts first is the initiator and is the only side
that sends offers.  The channel name is the room id, so both sides derive it
independently.

Negotiation:
  1. once subscribed, both sides broadcast ``ready``
  2. the initiator offers on the partner's ``ready``, and again after
     OFFER_RETRY_DELAY / OFFER_SECOND_RETRY_DELAY if no offer went out
  3. an offer is applied only from signaling state "stable"; anything else
     is a glare offer and is dropped
  4. an answer is applied only in "have-local-offer"
  5. remote candidates that arrive before the remote description are
     buffered in arrival order and drained once, right after it is set
  6. on "connected" the bandwidth cap is applied once
  7. "disconnected" waits DISCONNECT_GRACE before an ICE restart; "failed"
     restarts ICE up to MAX_RECONNECT_ATTEMPTS times, then gives up
  8. no connection within CONNECTION_TIMEOUT of initializing ⇒ failed

Every relay envelope, transport report, local candidate and timer firing is
put on the context's inbox and handled by a single worker task, one at a
time.  Each context carries the generation it was created in; anything
posted for an older generation is dropped.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pairline.client.config import ClientSettings
from pairline.client.relay import Relay, RelayChannel
from pairline.client.state import ConnectionState, Observable, StateObservable
from pairline.client.transport import MediaSource, PeerTransport, TransportFactory
from pairline.core.errors import AppError, ErrorCode, create_error, log_error, parse_error
from pairline.core.pairing import channel_name, is_initiator
from pairline.core.signals import (
    AnswerEnvelope,
    EnvelopeError,
    IceCandidate,
    IceCandidateEnvelope,
    OfferEnvelope,
    ReadyEnvelope,
    ReadyPayload,
    SignalKind,
    decode_envelope,
    encode_envelope,
)

logger = logging.getLogger(__name__)

# Inbox item kinds
_SUBSCRIBED = "subscribed"
_SIGNAL = "signal"
_TRANSPORT = "transport"
_LOCAL_CANDIDATE = "local-candidate"
_TIMER = "timer"

# Timer names
OFFER_RETRY = "offer-retry"
OFFER_SECOND_RETRY = "offer-second-retry"
DISCONNECT_GRACE = "disconnect-grace"
CONNECTION_TIMEOUT = "connection-timeout"


@dataclass(frozen=True)
class PeerTimings:
    offer_retry_delay: float = 1.0
    offer_second_retry_delay: float = 3.0
    disconnect_grace: float = 3.0
    max_reconnect_attempts: int = 3
    connection_timeout: float = 20.0
    video_max_bitrate: int = 500_000
    video_scale_down: float = 1.5

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "PeerTimings":
        return cls(
            offer_retry_delay=settings.OFFER_RETRY_DELAY_SECONDS,
            offer_second_retry_delay=settings.OFFER_SECOND_RETRY_DELAY_SECONDS,
            disconnect_grace=settings.DISCONNECT_GRACE_SECONDS,
            max_reconnect_attempts=settings.MAX_RECONNECT_ATTEMPTS,
            connection_timeout=settings.CONNECTION_TIMEOUT_SECONDS,
            video_max_bitrate=settings.VIDEO_MAX_BITRATE,
            video_scale_down=settings.VIDEO_SCALE_DOWN,
        )


@dataclass
class NegotiationContext:
    """Everything one negotiation attempt with one partner owns."""

    generation: int
    partner_id: str
    channel_name: str
    is_initiator: bool
    channel: RelayChannel | None = None
    transport: PeerTransport | None = None
    offer_sent: bool = False
    partner_ready: bool = False
    ready_echoed: bool = False
    reconnect_attempts: int = 0
    failed: bool = False
    constraints_applied: bool = False
    pending_candidates: list[IceCandidate] = field(default_factory=list)
    timers: dict[str, asyncio.TimerHandle] = field(default_factory=dict)
    inbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    worker: asyncio.Task | None = None

    def take_pending_candidates(self) -> list[IceCandidate]:
        taken, self.pending_candidates = self.pending_candidates, []
        return taken

    def cancel_timer(self, name: str) -> None:
        handle = self.timers.pop(name, None)
        if handle is not None:
            handle.cancel()

    def cancel_timers(self) -> None:
        for handle in self.timers.values():
            handle.cancel()
        self.timers.clear()


class PeerConnection:
    def __init__(
        self,
        my_id: str,
        relay: Relay,
        transport_factory: TransportFactory,
        media: MediaSource,
        timings: PeerTimings | None = None,
    ) -> None:
        self.my_id = my_id
        self.timings = timings or PeerTimings()
        self.state = StateObservable(ConnectionState.IDLE)
        self.errors = Observable()
        self.last_error: AppError | None = None
        self._relay = relay
        self._transport_factory = transport_factory
        self._media = media
        self._generation = 0
        self._partner_id: str | None = None
        self._ctx: NegotiationContext | None = None
        self._stopped = False

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def connection_state(self) -> ConnectionState:
        return self.state.value

    @property
    def partner_id(self) -> str | None:
        return self._partner_id

    @property
    def context(self) -> NegotiationContext | None:
        return self._ctx

    def subscribe(self, listener: Callable[[ConnectionState], None]) -> Callable[[], None]:
        return self.state.subscribe(listener)

    async def start(self, partner_id: str) -> None:
        """Negotiate with partner_id, replacing any current negotiation."""
        if self._stopped:
            raise RuntimeError("peer connection has been disposed")
        if partner_id == self.my_id:
            raise ValueError("cannot connect to self")
        if self._ctx is not None and self._partner_id == partner_id:
            return
        await self.cleanup()
        self._partner_id = partner_id
        await self._begin()

    async def retry_connection(self) -> None:
        """Tear down and negotiate from scratch with the same partner."""
        partner_id = self._partner_id
        if partner_id is None or self._stopped:
            return
        await self.cleanup()
        self._partner_id = partner_id
        await self._begin()

    async def stop(self) -> None:
        """Forget the partner and tear down."""
        self._partner_id = None
        await self.cleanup()

    async def cleanup(self) -> None:
        """Release transport, channel, timers and buffers.  Idempotent."""
        ctx, self._ctx = self._ctx, None
        self._generation += 1
        if ctx is not None:
            ctx.cancel_timers()
            ctx.pending_candidates.clear()
            worker = ctx.worker
            if worker is not None and worker is not asyncio.current_task() and not worker.done():
                worker.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await worker
            if ctx.channel is not None:
                try:
                    await ctx.channel.close()
                except Exception as exc:
                    logger.warning("Closing relay channel %s failed: %s", ctx.channel_name, exc)
            if ctx.transport is not None:
                try:
                    await ctx.transport.close()
                except Exception as exc:
                    logger.warning("Closing peer transport failed: %s", exc)
            logger.info("Peer connection with %s cleaned up", ctx.partner_id)
        self._set_state(ConnectionState.IDLE)

    async def dispose(self) -> None:
        """Terminal: no further notifications, resources released."""
        self._stopped = True
        self.state.mute()
        self.errors.mute()
        self._partner_id = None
        await self.cleanup()
        await self._media.release()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def _begin(self) -> None:
        partner_id = self._partner_id
        self._generation += 1
        ctx = NegotiationContext(
            generation=self._generation,
            partner_id=partner_id,
            channel_name=channel_name(self.my_id, partner_id),
            is_initiator=is_initiator(self.my_id, partner_id),
        )
        self._ctx = ctx
        self.last_error = None
        self._set_state(ConnectionState.INITIALIZING)
        # The worker must exist before the first await so the connection
        # timeout is handled even while setup is stalled
        ctx.worker = asyncio.create_task(self._run(ctx))
        self._schedule(ctx, CONNECTION_TIMEOUT, self.timings.connection_timeout)
        logger.info(
            "Negotiating with %s on %s as %s",
            partner_id,
            ctx.channel_name,
            "initiator" if ctx.is_initiator else "responder",
        )

        try:
            media = await self._media.acquire()
        except Exception as exc:
            self._abort(ctx, exc, "media")
            return
        if not self._is_live(ctx):
            return

        try:
            transport = self._transport_factory()
            ctx.transport = transport
            transport.on_ice_candidate = lambda candidate: self._post(ctx, _LOCAL_CANDIDATE, candidate)
            transport.on_state_change = lambda state: self._post(ctx, _TRANSPORT, state)
            await transport.add_media(media)
        except Exception as exc:
            self._abort(ctx, exc, "transport setup")
            return
        if not self._is_live(ctx):
            return
        self._set_state(ConnectionState.CONNECTING)

        try:
            channel = self._relay.open(ctx.channel_name)
            ctx.channel = channel
            for kind in SignalKind:
                channel.on(kind.value, lambda payload: self._post(ctx, _SIGNAL, payload))
            await channel.subscribe()
        except Exception as exc:
            self._abort(ctx, exc, "relay subscribe")
            return
        if not self._is_live(ctx):
            return
        self._post(ctx, _SUBSCRIBED, None)

    def _abort(self, ctx: NegotiationContext, exc: Exception, context: str) -> None:
        if self._is_live(ctx):
            self._fail(ctx, parse_error(exc), context)

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    def _is_current(self, ctx: NegotiationContext) -> bool:
        return ctx is self._ctx and ctx.generation == self._generation

    def _is_live(self, ctx: NegotiationContext) -> bool:
        return self._is_current(ctx) and not ctx.failed

    def _post(self, ctx: NegotiationContext, kind: str, value: Any) -> None:
        if self._is_current(ctx):
            ctx.inbox.put_nowait((kind, value))

    def _schedule(self, ctx: NegotiationContext, name: str, delay: float) -> None:
        ctx.cancel_timer(name)
        loop = asyncio.get_running_loop()
        ctx.timers[name] = loop.call_later(delay, self._fire_timer, ctx, name)

    def _fire_timer(self, ctx: NegotiationContext, name: str) -> None:
        ctx.timers.pop(name, None)
        self._post(ctx, _TIMER, name)

    async def _run(self, ctx: NegotiationContext) -> None:
        while True:
            kind, value = await ctx.inbox.get()
            if not self._is_current(ctx):
                return
            if ctx.failed:
                # Terminal until retry_connection() starts a new context
                continue
            try:
                await self._handle(ctx, kind, value)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log_error(parse_error(exc), f"negotiation {kind}")

    async def _handle(self, ctx: NegotiationContext, kind: str, value: Any) -> None:
        if kind == _SUBSCRIBED:
            await self._on_subscribed(ctx)
        elif kind == _SIGNAL:
            await self._on_signal(ctx, value)
        elif kind == _TRANSPORT:
            await self._on_transport_state(ctx, value)
        elif kind == _LOCAL_CANDIDATE:
            await self._send(
                ctx,
                IceCandidateEnvelope(sender=self.my_id, recipient=ctx.partner_id, payload=value),
            )
        elif kind == _TIMER:
            await self._on_timer(ctx, value)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _on_subscribed(self, ctx: NegotiationContext) -> None:
        await self._send(ctx, ReadyEnvelope(sender=self.my_id, recipient=ctx.partner_id))
        if ctx.is_initiator:
            # The partner's ready may have been broadcast before we subscribed
            self._schedule(ctx, OFFER_RETRY, self.timings.offer_retry_delay)
            self._schedule(ctx, OFFER_SECOND_RETRY, self.timings.offer_second_retry_delay)

    async def _on_signal(self, ctx: NegotiationContext, payload: Any) -> None:
        try:
            envelope = decode_envelope(payload)
        except EnvelopeError as exc:
            logger.warning("Dropping malformed envelope on %s: %s", ctx.channel_name, exc)
            return
        if envelope.recipient != self.my_id or envelope.sender != ctx.partner_id:
            return

        if isinstance(envelope, ReadyEnvelope):
            await self._on_ready(ctx, envelope.payload)
        elif isinstance(envelope, OfferEnvelope):
            await self._on_offer(ctx, envelope)
        elif isinstance(envelope, AnswerEnvelope):
            await self._on_answer(ctx, envelope)
        elif isinstance(envelope, IceCandidateEnvelope):
            await self._on_remote_candidate(ctx, envelope.payload)

    async def _on_ready(self, ctx: NegotiationContext, payload: ReadyPayload) -> None:
        ctx.partner_ready = True
        if ctx.is_initiator:
            if payload.restart:
                logger.info("Partner %s asked for an ICE restart", ctx.partner_id)
                await self._send_offer(ctx, ice_restart=True)
            elif not ctx.offer_sent:
                await self._send_offer(ctx)
        elif not ctx.ready_echoed:
            # The initiator may have subscribed after our first ready went out
            ctx.ready_echoed = True
            await self._send(ctx, ReadyEnvelope(sender=self.my_id, recipient=ctx.partner_id))

    async def _on_offer(self, ctx: NegotiationContext, envelope: OfferEnvelope) -> None:
        transport = ctx.transport
        if transport.signaling_state != "stable":
            logger.info("Discarding offer from %s in state %s", ctx.partner_id, transport.signaling_state)
            return
        await transport.set_remote_description(envelope.payload)
        await self._drain_candidates(ctx)
        answer = await transport.create_answer()
        await transport.set_local_description(answer)
        await self._send(ctx, AnswerEnvelope(sender=self.my_id, recipient=ctx.partner_id, payload=answer))

    async def _on_answer(self, ctx: NegotiationContext, envelope: AnswerEnvelope) -> None:
        transport = ctx.transport
        if transport.signaling_state != "have-local-offer":
            logger.info("Ignoring answer from %s in state %s", ctx.partner_id, transport.signaling_state)
            return
        await transport.set_remote_description(envelope.payload)
        await self._drain_candidates(ctx)

    async def _on_remote_candidate(self, ctx: NegotiationContext, candidate: IceCandidate) -> None:
        if ctx.transport.has_remote_description:
            await ctx.transport.add_ice_candidate(candidate)
        else:
            ctx.pending_candidates.append(candidate)

    async def _drain_candidates(self, ctx: NegotiationContext) -> None:
        for candidate in ctx.take_pending_candidates():
            try:
                await ctx.transport.add_ice_candidate(candidate)
            except Exception as exc:
                logger.warning("Buffered candidate rejected: %s", exc)

    async def _on_transport_state(self, ctx: NegotiationContext, state: str) -> None:
        if state == "connected":
            ctx.cancel_timer(CONNECTION_TIMEOUT)
            ctx.cancel_timer(DISCONNECT_GRACE)
            ctx.reconnect_attempts = 0
            self._set_state(ConnectionState.CONNECTED)
            if not ctx.constraints_applied:
                ctx.constraints_applied = True
                try:
                    await ctx.transport.apply_bandwidth_constraints(
                        self.timings.video_max_bitrate, self.timings.video_scale_down
                    )
                except Exception as exc:
                    logger.info("Bandwidth constraints not applied: %s", exc)
        elif state == "disconnected":
            if self.connection_state == ConnectionState.CONNECTED:
                self._set_state(ConnectionState.RECONNECTING)
            if DISCONNECT_GRACE not in ctx.timers:
                self._schedule(ctx, DISCONNECT_GRACE, self.timings.disconnect_grace)
        elif state == "failed":
            await self._on_transport_failed(ctx)

    async def _on_transport_failed(self, ctx: NegotiationContext) -> None:
        ctx.cancel_timer(DISCONNECT_GRACE)
        if ctx.reconnect_attempts >= self.timings.max_reconnect_attempts:
            error = create_error(
                ErrorCode.WEBRTC_FAILED,
                f"gave up after {ctx.reconnect_attempts} ICE restart(s)",
                recoverable=False,
                action="Find New",
            )
            self._fail(ctx, error, "transport")
            return
        ctx.reconnect_attempts += 1
        logger.info(
            "Transport failed, ICE restart %d/%d",
            ctx.reconnect_attempts,
            self.timings.max_reconnect_attempts,
        )
        self._set_state(ConnectionState.RECONNECTING)
        await self._restart_ice(ctx)

    async def _restart_ice(self, ctx: NegotiationContext) -> None:
        await ctx.transport.restart_ice()
        if ctx.is_initiator:
            await self._send_offer(ctx, ice_restart=True)
        else:
            await self._send(
                ctx,
                ReadyEnvelope(sender=self.my_id, recipient=ctx.partner_id, payload=ReadyPayload(restart=True)),
            )

    async def _on_timer(self, ctx: NegotiationContext, name: str) -> None:
        if name == OFFER_RETRY:
            if not ctx.offer_sent:
                logger.info("Sending offer to %s (delayed)", ctx.partner_id)
                await self._send_offer(ctx)
        elif name == OFFER_SECOND_RETRY:
            if self.connection_state != ConnectionState.CONNECTED and not ctx.offer_sent:
                logger.info("Retrying offer to %s", ctx.partner_id)
                await self._send_offer(ctx)
        elif name == DISCONNECT_GRACE:
            if ctx.transport.connection_state == "disconnected":
                logger.info("Still disconnected from %s, restarting ICE", ctx.partner_id)
                await self._restart_ice(ctx)
        elif name == CONNECTION_TIMEOUT:
            if self.connection_state != ConnectionState.CONNECTED:
                error = create_error(
                    ErrorCode.CONNECTION_TIMEOUT,
                    f"no connection with {ctx.partner_id} after {self.timings.connection_timeout}s",
                )
                self._fail(ctx, error, "connection timeout")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _send_offer(self, ctx: NegotiationContext, ice_restart: bool = False) -> None:
        offer = await ctx.transport.create_offer(ice_restart=ice_restart)
        await ctx.transport.set_local_description(offer)
        if await self._send(ctx, OfferEnvelope(sender=self.my_id, recipient=ctx.partner_id, payload=offer)):
            ctx.offer_sent = True

    async def _send(self, ctx: NegotiationContext, envelope) -> bool:
        if ctx.channel is None or not self._is_current(ctx):
            return False
        try:
            await ctx.channel.send(envelope.kind, encode_envelope(envelope))
        except Exception as exc:
            log_error(parse_error(exc), f"relay send {envelope.kind}")
            return False
        return True

    def _fail(self, ctx: NegotiationContext, error: AppError, context: str) -> None:
        ctx.failed = True
        ctx.cancel_timers()
        self.last_error = error
        log_error(error, context)
        self._set_state(ConnectionState.FAILED)
        self.errors.emit(error)

    def _set_state(self, state: ConnectionState) -> None:
        if self.state.set(state):
            logger.debug("Peer state -> %s", state.value)
