# WebSocket event type definitions

# Connection handshake and keepalive
AUTH = "auth"
PING = "ping"
PONG = "pong"

# Matchmaking push notifications (/ws/matchmaking)
MATCH_FOUND = "match.found"

# Signaling relay (/ws/relay/{channel})
RELAY_SUBSCRIBED = "relay.subscribed"
RELAY_BROADCAST = "relay.broadcast"

# Room text relay (/ws/rooms/{room_id})
MESSAGE_NEW = "message.new"
ROOM_ENDED = "room.ended"

# Shown to the remaining participant when the other side leaves
DISCONNECT_NOTICE = "Stranger has disconnected."
