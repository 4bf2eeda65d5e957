from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str
    # Salt for hashing client IPs, never stored or logged in clear
    SECRET_KEY: str
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Redis: session presence fast path
    # Set to empty string to disable Redis (registry falls back to the database)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 20

    # Namespaces Redis keys so several deployments can share one Redis
    SERVER_DOMAIN: str = "localhost"

    # Session registry: a session expires after
    # HEARTBEAT_INTERVAL_SECONDS * SESSION_EXPIRY_FACTOR without a heartbeat
    HEARTBEAT_INTERVAL_SECONDS: int = 30
    SESSION_EXPIRY_FACTOR: int = 5
    SESSION_REAPER_ENABLED: bool = True

    # Signal fallback / text relay
    SIGNAL_PAGE_SIZE: int = 10
    MESSAGE_PAGE_LIMIT: int = 50
    MESSAGE_MAX_LENGTH: int = 5000

    model_config = {"env_file": ".env"}

    @property
    def session_expiry_seconds(self) -> int:
        return self.HEARTBEAT_INTERVAL_SECONDS * self.SESSION_EXPIRY_FACTOR


settings = Settings()
