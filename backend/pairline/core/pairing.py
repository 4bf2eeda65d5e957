"""
Deterministic pairing helpers shared by the server and participant processes.

Both sides of a match compute the room id, the relay channel name and the
initiator role from the two session ids alone, with no extra round trip.
"""

ROOM_SEPARATOR = "-"


def room_id(a: str, b: str) -> str:
    """Return the sorted pair of session ids joined by ROOM_SEPARATOR."""
    if a == b:
        raise ValueError("a session cannot be paired with itself")
    first, second = sorted((a, b))
    return f"{first}{ROOM_SEPARATOR}{second}"


def channel_name(a: str, b: str) -> str:
    """Signaling relay channel for a pair.  Identical to the room id."""
    return room_id(a, b)


def is_initiator(my_id: str, partner_id: str) -> bool:
    """The side whose id sorts first sends the offer."""
    return my_id < partner_id
