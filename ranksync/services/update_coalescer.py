"""
Update coalescing for the push change feed.

Classifies incoming change events and collapses bursts into at most one
refresh signal per debounce window, using an in-memory timer table in the
same spirit as the command rate limiter: one timestamp per identity plus one
global timestamp.
"""

import logging
from collections import Counter
from enum import Enum
from typing import Dict, Optional

from ranksync.data_models.events import ChangeEvent
from ranksync.services.ranked_registry import RankedRegistry
from ranksync.utils.clock import MonotonicClock

logger = logging.getLogger(__name__)


class SignalDecision(Enum):
    SUPPRESSED = "suppressed"
    EMIT = "emit"


class UpdateCoalescer:
    """Significance filter plus per-identity and global debounce.

    Holds no participant data, only the time each identity last produced a
    signal and the time any identity last did, plus the deadline of the
    catch-up owed to significant changes that were debounced. Safe to reset
    at any time.
    """

    def __init__(self, identity_debounce_ms: int, global_debounce_ms: int, clock=None):
        self.identity_debounce = identity_debounce_ms / 1000
        self.global_debounce = global_debounce_ms / 1000
        self.clock = clock or MonotonicClock()
        self._identity_timers: Dict[str, float] = {}
        self._global_timer: Optional[float] = None
        self._deferred_until: Optional[float] = None
        self._stats = Counter()

    def is_significant(self, event: ChangeEvent, registry: RankedRegistry) -> bool:
        """Whether the event could change what the window shows."""
        if not event.touches_score:
            return False
        if registry.contains(event.identity):
            return True
        # A short window can be entered by anyone with a score change
        if not registry.is_full:
            return True
        new_points = event.new_points
        if new_points is None:
            return False
        lowest = registry.lowest_score()
        return lowest is None or new_points > lowest[0]

    def on_event(self, event: ChangeEvent, registry: RankedRegistry) -> SignalDecision:
        self._stats['received'] += 1

        if not self.is_significant(event, registry):
            self._stats['suppressed_irrelevant'] += 1
            return SignalDecision.SUPPRESSED

        now = self.clock.now()

        last_for_identity = self._identity_timers.get(event.identity)
        if last_for_identity is not None and now - last_for_identity < self.identity_debounce:
            self._stats['suppressed_identity'] += 1
            self._defer(event.identity)
            logger.debug(f"Debounced event for {event.identity}")
            return SignalDecision.SUPPRESSED

        if self._global_timer is not None and now - self._global_timer < self.global_debounce:
            self._stats['suppressed_global'] += 1
            self._defer(event.identity)
            logger.debug(f"Event for {event.identity} merged into current refresh window")
            return SignalDecision.SUPPRESSED

        self._identity_timers[event.identity] = now
        self._global_timer = now
        # The refresh this signal starts reads everything deferred so far
        self._deferred_until = None
        self._stats['emitted'] += 1
        return SignalDecision.EMIT

    def _defer(self, identity: str):
        """Remember a suppressed significant change until its windows close."""
        window_end = 0.0
        if self._global_timer is not None:
            window_end = self._global_timer + self.global_debounce
        last_for_identity = self._identity_timers.get(identity)
        if last_for_identity is not None:
            window_end = max(window_end, last_for_identity + self.identity_debounce)
        if self._deferred_until is None or window_end > self._deferred_until:
            self._deferred_until = window_end

    @property
    def has_deferred(self) -> bool:
        return self._deferred_until is not None

    def catch_up_delay(self) -> Optional[float]:
        """Seconds until a deferred change may be refreshed; None when nothing is deferred."""
        if self._deferred_until is None:
            return None
        return max(0.0, self._deferred_until - self.clock.now())

    def take_deferred(self) -> bool:
        """
        Claim the catch-up signal for changes suppressed during earlier windows.

        Succeeds at most once per deferral, and only after every window that
        suppressed them has closed. Claiming opens a new global window, so a
        catch-up counts against the one-signal-per-window limit like an emit.
        """
        if self._deferred_until is None:
            return False
        now = self.clock.now()
        if now < self._deferred_until:
            return False
        self._deferred_until = None
        self._global_timer = now
        self._stats['catch_up'] += 1
        return True

    def prune(self, max_age_ms: int) -> int:
        """Drop identity timers older than ``max_age_ms``; returns how many were removed."""
        cutoff = self.clock.now() - max_age_ms / 1000
        stale = [identity for identity, stamp in self._identity_timers.items() if stamp < cutoff]
        for identity in stale:
            del self._identity_timers[identity]
        if stale:
            logger.debug(f"Pruned {len(stale)} identity timers")
        return len(stale)

    def reset(self):
        self._identity_timers.clear()
        self._global_timer = None
        self._deferred_until = None

    def tracked_identities(self) -> int:
        return len(self._identity_timers)

    def stats(self) -> Dict[str, int]:
        keys = ('received', 'suppressed_irrelevant', 'suppressed_identity', 'suppressed_global', 'emitted', 'catch_up')
        return {key: self._stats[key] for key in keys}
