from fastapi import HTTPException, Request, status
from sqlalchemy.orm import Session

from pairline.models.chat_room import ChatRoom
from pairline.services import rooms


def get_client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


def require_room_participant(
    db: Session,
    room_id: str,
    session_id: str,
    *,
    require_active: bool = False,
) -> ChatRoom:
    """
    Load a room and verify session_id is one of its two participants.
    Raises 404 if the room doesn't exist (400 when require_active is set, so
    a missing and an ended room look the same to senders), 400 if
    require_active and the room has ended, 403 for anyone else.
    """
    room = rooms.get_room(db, room_id)
    if room is None:
        if require_active:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Room not active")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")

    if require_active and not room.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Room not active")

    if not room.has_participant(session_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    return room
