import hashlib
import secrets

from pairline.config import settings


def generate_session_id() -> str:
    return secrets.token_hex(16)


def hash_ip(ip: str) -> str:
    """Salted, truncated sha256 of a client address: the ban key."""
    return hashlib.sha256((ip + settings.SECRET_KEY).encode()).hexdigest()[:32]
