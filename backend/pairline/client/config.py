from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Participant-side settings, read from PAIRLINE_* environment variables."""

    API_URL: str = "http://localhost:8000"
    WS_URL: str = "ws://localhost:8000"
    REQUEST_TIMEOUT_SECONDS: float = 15.0

    # Matchmaking retry / backoff
    MATCH_MAX_ATTEMPTS: int = 3
    MATCH_INITIAL_DELAY_SECONDS: float = 1.0
    MATCH_BACKOFF_MULTIPLIER: float = 1.5
    MATCH_POLL_INTERVAL_SECONDS: float = 2.0
    HEARTBEAT_INTERVAL_SECONDS: float = 25.0

    # Peer negotiation timings
    OFFER_RETRY_DELAY_SECONDS: float = 1.0
    OFFER_SECOND_RETRY_DELAY_SECONDS: float = 3.0
    DISCONNECT_GRACE_SECONDS: float = 3.0
    MAX_RECONNECT_ATTEMPTS: int = 3
    CONNECTION_TIMEOUT_SECONDS: float = 20.0

    # Outbound video cap applied once a connection is established
    VIDEO_MAX_BITRATE: int = 500_000
    VIDEO_SCALE_DOWN: float = 1.5

    ICE_SERVERS: list[str] = ["stun:stun.l.google.com:19302", "stun:stun1.l.google.com:19302"]
    TURN_URLS: list[str] = []
    TURN_USERNAME: str | None = None
    TURN_CREDENTIAL: str | None = None

    # Capture device handed to aiortc's MediaPlayer, e.g. "/dev/video0" with
    # format "v4l2", or "default:default" with format "avfoundation"
    MEDIA_DEVICE: str = "/dev/video0"
    MEDIA_FORMAT: str | None = "v4l2"

    model_config = SettingsConfigDict(env_prefix="PAIRLINE_", env_file=".env", extra="ignore")


client_settings = ClientSettings()
