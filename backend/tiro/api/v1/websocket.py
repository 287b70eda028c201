"""WebSocket endpoint for real-time project lifecycle events."""
from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from tiro.config import get_settings
from tiro.database import get_db
from tiro.exceptions import NotFoundError, PermissionDeniedError
from tiro.models import User
from tiro.services import project_service
from tiro.services.event_publisher import channel_for

router = APIRouter()
logger = logging.getLogger(__name__)

TERMINAL_STATUS = "STEP6"


@router.websocket("/ws/projects/{project_id}")
async def project_events_ws(
    websocket: WebSocket,
    project_id: str,
    user_id: str | None = None,
    db: Session = Depends(get_db),
):
    """Stream lifecycle events of one project.

    The caller is identified by the ``user_id`` query parameter (or the
    ``X-User-Id`` header) and must be able to see the project.

    Subscribes to the Redis pub/sub channel ``project:{project_id}`` and
    forwards messages to the connected WebSocket client. Closes after the
    project reaches its final step.
    """
    reason = _access_denied(db, project_id, user_id or websocket.headers.get("x-user-id"))
    db.close()
    if reason is not None:
        logger.info(f"WebSocket for project {project_id} rejected: {reason}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=reason)
        return

    await websocket.accept()

    settings = get_settings()
    channel = channel_for(project_id)
    try:
        import redis.asyncio as aioredis

        r = aioredis.from_url(settings.REDIS_URL)
        pubsub = r.pubsub()
        try:
            await pubsub.subscribe(channel)
        except Exception as e:
            logger.warning(f"Redis unavailable for project events ({e}); falling back to DB polling")
            await r.aclose()
            await _poll_db_fallback(websocket, project_id)
            return

        try:
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message["type"] == "message":
                    data = message["data"]
                    if isinstance(data, bytes):
                        data = data.decode("utf-8")
                    await websocket.send_text(data)

                    try:
                        parsed = json.loads(data)
                        if parsed.get("to_status") == TERMINAL_STATUS:
                            await asyncio.sleep(0.5)
                            break
                    except json.JSONDecodeError:
                        pass
                else:
                    # Heartbeat to detect disconnection
                    try:
                        await websocket.send_text(json.dumps({"heartbeat": True}))
                    except Exception:
                        break
                    await asyncio.sleep(1)

        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected for project {project_id}")
        finally:
            await pubsub.unsubscribe(channel)
            await r.aclose()

    except Exception as e:
        logger.error(f"WebSocket error for project {project_id}: {e}")
    finally:
        try:
            await websocket.close()
        except RuntimeError:
            pass


def _access_denied(db: Session, project_id: str, user_id: str | None) -> str | None:
    """Reason to refuse the connection, or None when the user may watch the project."""
    if not user_id:
        return "Missing user id"
    user = db.get(User, user_id)
    if user is None:
        return "Unknown user"
    try:
        project_service.get_visible_project(db, project_id, user)
    except (NotFoundError, PermissionDeniedError) as e:
        return str(e)
    return None


async def _poll_db_fallback(websocket: WebSocket, project_id: str):
    """Fallback: poll the project row and report status changes."""
    from tiro.database import SessionLocal
    from tiro.models import Project

    last_status: str | None = None
    try:
        while True:
            db = SessionLocal()
            try:
                project = db.get(Project, project_id)
                if not project:
                    await websocket.send_text(json.dumps({"error": "Project not found"}))
                    break

                if project.status != last_status:
                    payload = {
                        "project_id": project.id,
                        "from_status": last_status,
                        "to_status": project.status,
                        "timestamp": project.updated_at.isoformat() if project.updated_at else None,
                    }
                    await websocket.send_text(json.dumps(payload))
                    last_status = project.status

                if project.status == TERMINAL_STATUS:
                    break
            finally:
                db.close()

            await asyncio.sleep(2)
    except WebSocketDisconnect:
        pass
