"""
Namespaced Redis key helpers.

Every key is prefixed with SERVER_DOMAIN to avoid collisions when multiple
deployments share a Redis cluster.
"""

from pairline.config import settings


def presence_key(session_id: str) -> str:
    return f"{settings.SERVER_DOMAIN}:presence:{session_id}"
