from datetime import datetime

from fastapi import APIRouter, Request
from sqlalchemy import text

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check(request: Request):
    """Liveness plus a shallow check of the database and job queue."""
    state = request.app.state

    database = "ok"
    try:
        with state.db.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        database = "unavailable"

    queue = "ok" if state.queue.ping() else "unavailable"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "database": database,
        "queue": queue,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }


@router.get("/ping")
def ping():
    return {"ping": "pong"}
