"""
Push change feeds for leaderboard updates.

Defines the feed contract and a Redis pub/sub implementation. Delivery is
at-least-once and best effort: nothing survives a reconnect.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Mapping, Optional

from ranksync.config import Config
from ranksync.data_models.events import ChangeEvent
from ranksync.utils.redis_utils import RedisUtils
from ranksync.utils.sync_exceptions import FeedUnavailable

logger = logging.getLogger(__name__)

ChangePredicate = Callable[[ChangeEvent], bool]


def has_positive_points(event: ChangeEvent) -> bool:
    """Default feed filter: only participants that currently hold points."""
    new_points = event.new_points
    if new_points is None:
        # Score untouched (e.g. only gifts changed); let the coalescer decide
        return True
    return new_points > 0


def parse_change_payload(raw: Any) -> Optional[ChangeEvent]:
    """
    Turn a published row change into a ChangeEvent.

    Expected JSON: {"identity" | "telegram_id": ..., "old": {...}, "new": {...},
    "timestamp": <seconds>}. Returns None for anything malformed.
    """
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode('utf-8', errors='replace')
    try:
        payload = json.loads(raw) if isinstance(raw, str) else raw
    except json.JSONDecodeError:
        logger.warning(f"Skipping non-JSON change payload: {raw!r}")
        return None
    if not isinstance(payload, Mapping):
        logger.warning(f"Skipping change payload that is not an object: {payload!r}")
        return None

    old_row = payload.get('old')
    new_row = payload.get('new')
    if new_row is not None and not isinstance(new_row, Mapping):
        logger.warning("Skipping change payload with malformed 'new' row")
        return None
    if old_row is not None and not isinstance(old_row, Mapping):
        old_row = None

    identity = payload.get('identity') or payload.get('telegram_id')
    if identity is None and new_row is not None:
        identity = new_row.get('telegram_id')
    if identity is None:
        logger.warning("Skipping change payload without identity")
        return None

    try:
        timestamp = float(payload.get('timestamp') or 0.0)
    except (TypeError, ValueError):
        timestamp = 0.0

    return ChangeEvent.from_rows(identity, old_row, new_row, timestamp)


class ChangeFeed(ABC):
    """Source of change events pushed by the backing store."""

    @abstractmethod
    async def connect(self):
        """Establish the channel; raises FeedUnavailable when it cannot."""

    @abstractmethod
    def subscribe(self, predicate: ChangePredicate = has_positive_points) -> AsyncIterator[ChangeEvent]:
        """Yield events accepted by ``predicate`` until the feed closes."""

    @abstractmethod
    async def close(self):
        """Release the channel."""


class RedisChangeFeed(ChangeFeed):
    """Change feed over a Redis pub/sub channel."""

    def __init__(self, channel: Optional[str] = None, redis_url: Optional[str] = None):
        self.channel = channel or Config.CHANGES_CHANNEL
        self.redis_url = redis_url
        self._client = None
        self._pubsub = None

    @property
    def is_connected(self) -> bool:
        return self._pubsub is not None

    async def connect(self):
        if self.is_connected:
            return
        self._client = await RedisUtils.create_redis_client(self.redis_url)
        try:
            self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
            await self._pubsub.subscribe(self.channel)
        except Exception as e:
            await self.close()
            raise FeedUnavailable(f"subscribe to {self.channel} failed: {e}") from e
        logger.info(f"Subscribed to change channel {self.channel}")

    async def subscribe(self, predicate: ChangePredicate = has_positive_points) -> AsyncIterator[ChangeEvent]:
        if not self.is_connected:
            raise FeedUnavailable("subscribe() called before connect()")

        async for message in self._pubsub.listen():
            if message.get('type') != 'message':
                continue
            event = parse_change_payload(message.get('data'))
            if event is None:
                continue
            if predicate(event):
                yield event

    async def close(self):
        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            except Exception as e:
                logger.warning(f"Error while closing change subscription: {e}")
            self._pubsub = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Change feed closed")
