"""Lifecycle event broadcast over Redis pub/sub.

Every applied transition is published on ``project:{project_id}`` so the
WebSocket endpoint can push it to connected clients. Publishing is best
effort: a Redis outage never affects the transition that triggered it.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

import redis

logger = logging.getLogger(__name__)


def channel_for(project_id: str) -> str:
    return f"project:{project_id}"


class LifecycleEventPublisher:
    """Publishes lifecycle events; lazy and tolerant of Redis failure."""

    def __init__(self, redis_url: str):
        self._redis: redis.Redis | None = None
        self._redis_url = redis_url

    @property
    def redis_client(self) -> redis.Redis | None:
        if self._redis is None:
            try:
                self._redis = redis.from_url(self._redis_url)
            except Exception:
                logger.warning("Could not connect to Redis for lifecycle events")
        return self._redis

    def publish(
        self,
        project_id: str,
        event: str,
        from_status: str,
        to_status: str,
        extra: dict | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "project_id": project_id,
            "event": event,
            "from_status": from_status,
            "to_status": to_status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if extra:
            payload.update(extra)
        try:
            rc = self.redis_client
            if rc:
                rc.publish(channel_for(project_id), json.dumps(payload))
        except Exception as exc:
            logger.warning("Lifecycle event publish failed for %s: %s", project_id[:8], exc)
