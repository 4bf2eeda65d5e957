from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from pairline.database import get_db
from pairline.redis.client import redis_status

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(db: Session = Depends(get_db)) -> dict:
    redis_state = await redis_status()
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        return {"status": "unhealthy", "database": "disconnected", "redis": redis_state, "error": str(exc)}
    return {"status": "healthy", "database": "connected", "redis": redis_state}
