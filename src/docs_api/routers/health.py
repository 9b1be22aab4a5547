import logging
import os
import sqlite3

from fastapi import APIRouter, Request

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint for monitoring API status and component readiness.

    Reports whether the storage root is writable and the database answers.
    """
    settings = request.app.state.settings
    storage = request.app.state.storage

    health_status = {
        "status": "ok",
        "components": {
            "api": "ready",
            "storage": "ready",
            "database": "ready"
        },
        "ready": False
    }

    if not storage.root.is_dir() or not os.access(storage.root, os.W_OK):
        health_status["components"]["storage"] = "error: storage root is not writable"
        health_status["status"] = "degraded"

    try:
        conn = sqlite3.connect(settings.database_path)
        try:
            conn.execute("SELECT 1 FROM documents LIMIT 1")
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.warning(f"Database health check failed: {e}")
        health_status["components"]["database"] = f"error: {str(e)}"
        health_status["status"] = "degraded"

    health_status["ready"] = all(
        value == "ready" for value in health_status["components"].values()
    )
    return health_status
