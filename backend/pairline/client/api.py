"""
HTTP client for the server's wire contracts, plus the match and room push watchers.

Every failure leaves this module as an AppException carrying a taxonomy
entry: HTTP errors use the server's ``code`` field when it sends one and the
status code otherwise, and transport errors go through parse_error.
"""

import json
import logging
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

import httpx
import websockets

from pairline.core import events
from pairline.core.errors import AppError, AppException, ErrorCode, create_error, error_from_status, parse_error

logger = logging.getLogger(__name__)


def _error_from_response(response: httpx.Response) -> AppError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    detail = body.get("detail") if isinstance(body, dict) else None
    details = detail if isinstance(detail, str) else f"HTTP {response.status_code}"
    code = body.get("code") if isinstance(body, dict) else None
    if code in ErrorCode.__members__:
        return create_error(ErrorCode(code), details)
    return error_from_status(response.status_code, details)


class PairlineClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "PairlineClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise AppException(parse_error(exc)) from exc
        if response.is_error:
            error = _error_from_response(response)
            logger.debug("%s %s -> %d (%s)", method, path, response.status_code, error.code.value)
            raise AppException(error, response.status_code)
        return response.json()

    # Session registry

    async def create_session(self) -> str:
        data = await self._request("POST", "/api/session")
        return data["sessionId"]

    async def heartbeat(self, session_id: str) -> None:
        await self._request("PUT", "/api/session", json={"sessionId": session_id})

    async def destroy_session(self, session_id: str) -> None:
        await self._request("DELETE", "/api/session", params={"sessionId": session_id})

    # Matchmaking

    async def request_match(self, session_id: str, chat_type: str) -> dict:
        return await self._request("POST", "/api/matchmaking", json={"sessionId": session_id, "chatType": chat_type})

    async def poll_match(self, session_id: str) -> dict:
        return await self._request("GET", "/api/matchmaking", params={"sessionId": session_id})

    async def cancel_match(self, session_id: str) -> None:
        await self._request("DELETE", "/api/matchmaking", params={"sessionId": session_id})

    # Text relay

    async def get_messages(
        self,
        room_id: str,
        session_id: str,
        limit: int = 50,
        before: datetime | None = None,
    ) -> dict:
        params: dict[str, Any] = {"roomId": room_id, "sessionId": session_id, "limit": limit}
        if before is not None:
            params["before"] = before.isoformat()
        return await self._request("GET", "/api/chat", params=params)

    async def send_message(self, room_id: str, session_id: str, content: str) -> dict:
        data = await self._request(
            "POST", "/api/chat", json={"roomId": room_id, "sessionId": session_id, "content": content}
        )
        return data["message"]

    async def end_chat(self, room_id: str, session_id: str) -> None:
        await self._request("DELETE", "/api/chat", params={"roomId": room_id, "sessionId": session_id})

    # Signal fallback

    async def post_signal(self, room_id: str, session_id: str, signal_type: str, signal: Any) -> None:
        await self._request(
            "POST",
            "/api/chat/signal",
            json={"roomId": room_id, "sessionId": session_id, "type": signal_type, "signal": signal},
        )

    async def get_signals(self, room_id: str, session_id: str, after: datetime | None = None) -> list[dict]:
        params = {"roomId": room_id, "sessionId": session_id}
        if after is not None:
            params["after"] = after.isoformat()
        data = await self._request("GET", "/api/chat/signal", params=params)
        return data["signals"]

    # Moderation

    async def report(
        self,
        session_id: str,
        reported_session_id: str,
        reason: str,
        room_id: str | None = None,
        description: str | None = None,
    ) -> int:
        body = {"sessionId": session_id, "reportedSessionId": reported_session_id, "reason": reason}
        if room_id is not None:
            body["roomId"] = room_id
        if description is not None:
            body["description"] = description
        data = await self._request("POST", "/api/report", json=body)
        return data["reportId"]


async def watch_matches(ws_url: str, session_id: str) -> AsyncIterator[dict]:
    """Yield match.found pushes from /ws/matchmaking until the socket closes."""
    async with websockets.connect(f"{ws_url.rstrip('/')}/ws/matchmaking") as ws:
        await ws.send(json.dumps({"type": events.AUTH, "session_id": session_id}))
        async for raw in ws:
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if isinstance(msg, dict) and msg.get("type") == events.MATCH_FOUND:
                yield msg


async def watch_room(ws_url: str, session_id: str, room_id: str) -> AsyncIterator[dict]:
    """Yield message.new and room.ended pushes from /ws/rooms/{room_id}."""
    async with websockets.connect(f"{ws_url.rstrip('/')}/ws/rooms/{room_id}") as ws:
        await ws.send(json.dumps({"type": events.AUTH, "session_id": session_id}))
        async for raw in ws:
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if isinstance(msg, dict) and msg.get("type") in (events.MESSAGE_NEW, events.ROOM_ENDED):
                yield msg
