"""
In-memory collaborators for exercising the synchronization core.
"""

import asyncio
import os
import sys
from typing import Dict, List, Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from ranksync.data_models.events import ChangeEvent, FieldChange
from ranksync.data_models.participant import Participant
from ranksync.data_models.position import RemotePosition
from ranksync.services.change_feed import ChangeFeed
from ranksync.services.participant_source import ParticipantSource
from ranksync.utils.sync_exceptions import FeedUnavailable


def make_participant(identity: str, points: int, gifts: int = 0) -> Participant:
    return Participant(identity=identity, display_name=identity.title(), points=points, gifts=gifts)


def score_event(identity: str, new_points: int, old_points: int = 0, timestamp: float = 0.0) -> ChangeEvent:
    return ChangeEvent(identity, {'points': FieldChange(old_points, new_points)}, timestamp)


class FakeSource(ParticipantSource):
    """Serves a configurable window; can block, fail or be slow."""

    def __init__(self, window: Optional[List[Participant]] = None, positions: Optional[Dict[str, RemotePosition]] = None):
        self.window = list(window or [])
        self.positions = positions or {}
        self.fail_with: Optional[Exception] = None
        self.delay = 0.0
        self.gate: Optional[asyncio.Event] = None
        self.window_calls = 0
        self.position_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_top_window(self, n: int) -> List[Participant]:
        self.window_calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        # Snapshot at call time, like a real query
        snapshot = list(self.window)[:n]
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_with is not None:
                raise self.fail_with
            return snapshot
        finally:
            self.in_flight -= 1

    async def fetch_exact_position(self, identity: str) -> Optional[RemotePosition]:
        self.position_calls += 1
        return self.positions.get(identity)


class FakeFeed(ChangeFeed):
    """Queue-backed feed; ``push`` delivers events, ``end`` closes the stream."""

    def __init__(self, available: bool = True):
        self.available = available
        self.connected = False
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()

    async def connect(self):
        if not self.available:
            raise FeedUnavailable("fake feed offline")
        self.connected = True

    async def subscribe(self, predicate=lambda event: True):
        while True:
            event = await self._queue.get()
            if event is None:
                return
            if predicate(event):
                yield event

    def push(self, event: ChangeEvent):
        self._queue.put_nowait(event)

    def end(self):
        self._queue.put_nowait(None)

    async def close(self):
        self.closed = True


async def settle(rounds: int = 5):
    """Let scheduled callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
