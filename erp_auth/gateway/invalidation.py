"""
ERP Access Core - Permission Cache Invalidation Bus

Every role/permission/grant mutation publishes a "permissions changed"
message. Each resolver instance subscribes and clears its local cache on
receipt, so instances behind a load balancer do not keep serving stale
decisions after an edit made through a different instance.

- LocalInvalidationBus: single process (default)
- RedisInvalidationBus: redis pub/sub fan-out across processes
"""

import json
import logging
from typing import Callable, List
from uuid import uuid4

import redis

from erp_auth.config import settings


logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class LocalInvalidationBus:
    """In-process bus: publish runs every subscriber synchronously."""

    def __init__(self):
        self._callbacks: List[Callback] = []

    def subscribe(self, callback: Callback) -> None:
        self._callbacks.append(callback)

    def publish(self, reason: str = "changed") -> None:
        logger.debug("Permission cache invalidated (%s)", reason)
        for callback in self._callbacks:
            callback()

    def start(self) -> None:
        pass

    def close(self) -> None:
        pass


class RedisInvalidationBus(LocalInvalidationBus):
    """
    Redis pub/sub bus.

    Local subscribers run immediately on publish; remote instances receive
    the message through a background listener started by `start()`.
    Messages carry the publishing instance ID so an instance ignores its
    own echo.
    """

    def __init__(self, url: str, channel: str):
        super().__init__()
        self.channel = channel
        self.instance_id = uuid4().hex
        self._client = redis.from_url(url, decode_responses=True)
        self._pubsub = None
        self._thread = None

    def publish(self, reason: str = "changed") -> None:
        super().publish(reason)
        message = json.dumps({"origin": self.instance_id, "reason": reason})
        try:
            self._client.publish(self.channel, message)
        except redis.RedisError:
            # Local cache is already clear; remote entries age out via the cache TTL
            logger.exception("Failed to broadcast permission invalidation on %s", self.channel)

    def handle_message(self, message: dict) -> None:
        """Listener callback for messages arriving on the channel."""
        try:
            data = json.loads(message.get("data") or "{}")
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed invalidation message on %s", self.channel)
            return

        if data.get("origin") == self.instance_id:
            return

        logger.info("Permission cache invalidated by peer %s (%s)", data.get("origin"), data.get("reason"))
        for callback in self._callbacks:
            callback()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.subscribe(**{self.channel: self.handle_message})
        self._thread = self._pubsub.run_in_thread(sleep_time=0.5, daemon=True)
        logger.info("Listening for permission invalidations on %s", self.channel)

    def close(self) -> None:
        if self._thread is not None:
            self._thread.stop()
            self._thread = None
        if self._pubsub is not None:
            self._pubsub.close()
            self._pubsub = None


def build_invalidation_bus():
    """Pick the bus implementation from settings."""
    if settings.REDIS_URL:
        return RedisInvalidationBus(settings.REDIS_URL, settings.RBAC_INVALIDATION_CHANNEL)
    return LocalInvalidationBus()
