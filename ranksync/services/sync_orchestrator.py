"""
Synchronization orchestrator for the live leaderboard.

Owns the ranked registry and the tracked participant's score, drives
authoritative refresh cycles with a single-flight discipline, applies
optimistic local mutations, and publishes immutable view models.

Failures never escape this class: they are logged and surfaced through the
view model's ``has_error`` / ``last_error_at`` fields.
"""

import asyncio
import inspect
import logging
import time
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from ranksync.config import SyncSettings
from ranksync.constants import TimingConstants
from ranksync.data_models.events import ChangeEvent, ScoreDelta
from ranksync.data_models.participant import Participant, outranks_or_ties
from ranksync.data_models.position import PositionResult, RemotePosition
from ranksync.data_models.view_model import SyncState, ViewEntry, ViewModel
from ranksync.services.change_feed import ChangeFeed, has_positive_points
from ranksync.services.participant_source import ParticipantSource
from ranksync.services.position_tracker import PositionTracker
from ranksync.services.ranked_registry import RankedRegistry
from ranksync.services.update_coalescer import SignalDecision, UpdateCoalescer
from ranksync.utils.clock import MonotonicClock
from ranksync.utils.sync_exceptions import FeedUnavailable, FetchFailure, IdentityNotFound, InvariantViolation

logger = logging.getLogger(__name__)

ViewModelHandler = Callable[[ViewModel], Union[None, Awaitable[None]]]
Snapshot = Tuple[List[Participant], Optional[RemotePosition]]


class SyncOrchestrator:
    """Keeps the ranked window consistent with the backing store."""

    def __init__(
        self,
        source: ParticipantSource,
        feed: Optional[ChangeFeed] = None,
        settings: Optional[SyncSettings] = None,
        tracked_identity: Optional[str] = None,
        tracked_participant: Optional[Participant] = None,
        clock=None,
    ):
        self.source = source
        self.feed = feed
        self.settings = settings or SyncSettings()
        self.clock = clock or MonotonicClock()

        self.registry = RankedRegistry(self.settings.window_size)
        self.tracker = PositionTracker(self.registry)
        self.coalescer = UpdateCoalescer(
            self.settings.identity_debounce_ms,
            self.settings.global_debounce_ms,
            clock=self.clock,
        )

        if tracked_identity is None and tracked_participant is not None:
            tracked_identity = tracked_participant.identity
        self.tracked_identity = str(tracked_identity) if tracked_identity is not None else None

        # Last score confirmed by the store vs. the score currently shown
        self._confirmed: Optional[Participant] = tracked_participant
        self._tracked: Optional[Participant] = tracked_participant
        self._position = self.tracker.resolve(self.tracked_identity, self._known_score())
        self._provisional = False
        # Best rank still possible after a full window came back without the tracked participant
        self._rank_floor: Optional[int] = None

        self._state = SyncState.IDLE
        self._cycle = 0
        self._pending_refresh = False
        self._refresh_task: Optional[asyncio.Task] = None
        self._fetch_task: Optional[asyncio.Future] = None
        self._feed_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._catch_up_task: Optional[asyncio.Task] = None
        self._background_tasks: set = set()
        self._feed_mode = 'stopped'

        self._accepting_events = False
        self._stopped = False
        self._has_error = False
        self._last_error_at: Optional[float] = None
        self._updated_at: Optional[float] = None

        self._listeners: List[ViewModelHandler] = []
        self._view_model = self._build_view_model()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Initial authoritative fetch, then live updates (push or polling)."""
        if self._accepting_events:
            return
        self._stopped = False
        logger.info("Starting leaderboard synchronization")

        self._begin_refresh()
        await self.wait_idle()
        if self._has_error:
            logger.warning("Initial leaderboard fetch failed; starting with empty window")

        self._accepting_events = True
        await self._start_feed()

    async def stop(self):
        """Stop live updates and cancel any in-flight work."""
        self._stopped = True
        self._accepting_events = False
        self._pending_refresh = False

        tasks = [
            task for task in (self._feed_task, self._poll_task, self._refresh_task, self._fetch_task)
            if task is not None and not task.done()
        ]
        tasks.extend(task for task in self._background_tasks if not task.done())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background_tasks.clear()
        self._feed_task = self._poll_task = self._refresh_task = self._fetch_task = None
        self._catch_up_task = None

        if self.feed is not None:
            try:
                await self.feed.close()
            except Exception as e:
                logger.warning(f"Error while closing change feed: {e}")

        self._feed_mode = 'stopped'
        self._state = SyncState.IDLE
        self._publish()
        logger.info("Leaderboard synchronization stopped")

    async def wait_idle(self):
        """Wait until no refresh is in flight or queued."""
        while self._refresh_task is not None and not self._refresh_task.done():
            await asyncio.gather(self._refresh_task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Change events and refresh requests
    # ------------------------------------------------------------------

    def on_change_event(self, event: ChangeEvent) -> SignalDecision:
        """Feed one change event through the coalescer and refresh when it emits."""
        if not self._accepting_events:
            logger.debug(f"Ignoring change for {event.identity} before start")
            return SignalDecision.SUPPRESSED

        self._absorb_tracked_change(event)

        decision = self.coalescer.on_event(event, self.registry)
        if decision is SignalDecision.EMIT:
            self._request_refresh(f"change for {event.identity}")
        elif self.coalescer.has_deferred:
            self._schedule_catch_up()
        return decision

    def _schedule_catch_up(self):
        if self._catch_up_task is not None and not self._catch_up_task.done():
            return
        self._catch_up_task = asyncio.create_task(self._catch_up())
        self._track(self._catch_up_task)

    async def _catch_up(self):
        """Refresh once after the debounce windows that swallowed changes have closed."""
        while not self._stopped:
            delay = self.coalescer.catch_up_delay()
            if delay is None:
                return
            if delay > 0:
                await self.clock.sleep(delay)
                continue
            if self.coalescer.take_deferred():
                self._request_refresh("debounced catch-up")
            return

    def request_refresh(self) -> bool:
        """Manual refresh (retry affordance). Returns False once stopped."""
        if self._stopped:
            return False
        self._request_refresh("manual request")
        return True

    def _request_refresh(self, reason: str):
        if self._state is SyncState.REFRESHING:
            if not self._pending_refresh:
                logger.debug(f"Refresh in flight; queued follow-up ({reason})")
            self._pending_refresh = True
            return
        logger.debug(f"Starting refresh ({reason})")
        self._begin_refresh()

    def _begin_refresh(self):
        self._cycle += 1
        self._state = SyncState.REFRESHING
        self._pending_refresh = False
        self._refresh_task = asyncio.create_task(self._run_refresh(self._cycle))
        self._publish()

    async def _run_refresh(self, cycle: int):
        timeout = self.settings.fetch_timeout
        fetch = asyncio.ensure_future(self._fetch_snapshot())
        self._fetch_task = fetch

        done, _ = await asyncio.wait({fetch}, timeout=timeout)
        if not done:
            # The call itself is left running; its answer is checked against the cycle later
            self._background_tasks.add(fetch)
            fetch.add_done_callback(self._background_tasks.discard)
            fetch.add_done_callback(partial(self._on_late_fetch, cycle))
            self._record_failure(cycle, FetchFailure("refresh", f"timed out after {timeout:g}s"))
        elif fetch.cancelled():
            self._record_failure(cycle, FetchFailure("refresh", "fetch cancelled"))
        elif fetch.exception() is not None:
            error = fetch.exception()
            if not isinstance(error, FetchFailure):
                error = FetchFailure("refresh", f"{type(error).__name__}: {error}")
            self._record_failure(cycle, error)
        else:
            self._apply_snapshot(cycle, *fetch.result())

        self._finish_cycle(cycle)

    async def _fetch_snapshot(self) -> Snapshot:
        raw_window = await self.source.fetch_top_window(self.settings.window_size)
        window = self._validated_window(raw_window)

        remote = None
        if self.tracked_identity is not None and not any(p.identity == self.tracked_identity for p in window):
            try:
                remote = await self.source.fetch_exact_position(self.tracked_identity)
            except Exception as e:
                logger.warning(f"Exact position lookup failed, falling back to estimate: {e}")
        return window, remote

    def _validated_window(self, raw_window: Sequence[Any]) -> List[Participant]:
        """Normalize fetched rows and repair ordering problems."""
        participants = []
        for item in raw_window or ():
            if isinstance(item, Participant):
                participants.append(item)
                continue
            try:
                participants.append(Participant.from_record(item))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Dropping malformed leaderboard row: {e}")

        if not RankedRegistry.is_ordered(participants):
            violation = InvariantViolation(f"fetched window of {len(participants)} entries is not strictly ordered")
            logger.warning(f"{violation}; re-sorting")
            participants = RankedRegistry.sort_window(participants)

        return participants[:self.settings.window_size]

    def _apply_snapshot(self, cycle: int, window: List[Participant], remote: Optional[RemotePosition]) -> bool:
        if cycle != self._cycle:
            logger.info(f"Discarding stale leaderboard response from cycle {cycle} (current {self._cycle})")
            return False

        self.registry.replace(window)

        self._rank_floor = None
        if self.tracked_identity is not None:
            found = self.registry.lookup(self.tracked_identity)
            if found is not None:
                self._confirmed = found[0]
            elif remote is not None:
                self._confirmed = remote.participant
            elif self.registry.is_full:
                # The remembered score may be stale, but the store just ranked N others first
                self._rank_floor = len(self.registry) + 1
            # Provisional scores never outlive an authoritative answer
            self._tracked = self._confirmed

        self._position = self.tracker.resolve_remote(
            self.tracked_identity,
            self._known_score(),
            remote.rank if remote is not None else None,
            self._rank_floor,
        )
        if self._position.is_unknown and self.tracked_identity is not None:
            logger.debug(str(IdentityNotFound(self.tracked_identity)))

        self._provisional = False
        self._has_error = False
        self._updated_at = time.time()
        logger.info(f"Leaderboard refreshed (cycle {cycle}, {len(window)} entries)")
        return True

    def _on_late_fetch(self, cycle: int, fetch: asyncio.Future):
        if fetch.cancelled():
            return
        error = fetch.exception()
        if error is not None:
            logger.debug(f"Timed-out fetch from cycle {cycle} failed late: {error}")
            return
        if self._stopped:
            return
        if cycle != self._cycle or self._state is not SyncState.IDLE:
            logger.info(f"Discarding late leaderboard response from cycle {cycle} (current {self._cycle})")
            return
        if self._apply_snapshot(cycle, *fetch.result()):
            self._publish()

    def _record_failure(self, cycle: int, error: FetchFailure):
        if cycle != self._cycle:
            return
        self._state = SyncState.FAILED
        self._has_error = True
        self._last_error_at = time.time()
        logger.error(f"Leaderboard refresh failed (cycle {cycle}): {error}")

    def _finish_cycle(self, cycle: int):
        if cycle != self._cycle:
            return
        self._state = SyncState.IDLE
        self._fetch_task = None
        self.coalescer.prune(TimingConstants.TIMER_PRUNE_AFTER_MS)
        self._publish()

        if self._pending_refresh and not self._stopped:
            logger.debug("Running queued follow-up refresh")
            self._begin_refresh()

    # ------------------------------------------------------------------
    # Tracked participant and optimistic mutation
    # ------------------------------------------------------------------

    def _known_score(self):
        return self._tracked.score if self._tracked is not None else None

    def _absorb_tracked_change(self, event: ChangeEvent):
        """Keep the tracked score current from the feed while it sits outside the window."""
        if event.identity != self.tracked_identity or self._provisional or self._tracked is None:
            return
        if self.registry.contains(event.identity):
            return
        new_points, new_gifts = event.new_points, event.new_gifts
        if new_points is None and new_gifts is None:
            return

        updated = self._tracked.with_score(
            new_points if new_points is not None else self._tracked.points,
            new_gifts if new_gifts is not None else self._tracked.gifts,
        )
        self._confirmed = self._tracked = updated
        lowest = self.registry.lowest_score()
        if lowest is not None and outranks_or_ties(updated.score, lowest):
            # Could have climbed into the window since the last fetch
            self._rank_floor = None
        self._position = self.tracker.resolve(self.tracked_identity, updated.score, self._rank_floor)
        self._publish()

    def apply_optimistic_mutation(self, identity: str, points_delta: int, gifts_delta: int) -> PositionResult:
        """
        Reflect a local action immediately, before the store confirms it.

        The new score is provisional: the next successful authoritative
        refresh replaces it unconditionally.
        """
        identity = str(identity)
        if identity != self.tracked_identity:
            logger.warning(f"Ignoring optimistic mutation for untracked participant {identity}")
            return self._position

        if self._tracked is None:
            logger.info(f"{IdentityNotFound(identity)}; optimistic mutation skipped")
            return self._position

        updated = self._tracked.with_score(
            self._tracked.points + points_delta,
            self._tracked.gifts + gifts_delta,
        ).with_rank(None)
        self._tracked = updated

        self.registry.replace(self.registry.overlay(updated))
        self._provisional = True
        self._position = self.tracker.resolve(identity, updated.score, self._rank_floor).as_provisional()

        logger.debug(
            f"Optimistic update for {identity}: points {points_delta:+d}, gifts {gifts_delta:+d} "
            f"-> ({updated.points}, {updated.gifts})"
        )
        self._publish()
        return self._position

    def on_local_action_committed(self, identity: str, delta: ScoreDelta) -> PositionResult:
        """Hook for flows such as a gift purchase once the local commit succeeded."""
        return self.apply_optimistic_mutation(identity, delta.points, delta.gifts)

    # ------------------------------------------------------------------
    # Change feed / polling fallback
    # ------------------------------------------------------------------

    async def _start_feed(self):
        if self.feed is None:
            self._start_polling("no change feed configured")
            return
        try:
            await self.feed.connect()
        except FeedUnavailable as e:
            logger.warning(f"{e}; falling back to periodic refresh")
            self._start_polling(e.reason)
            return

        self._feed_mode = 'push'
        self._feed_task = asyncio.create_task(self._consume_feed())

    async def _consume_feed(self):
        try:
            async for event in self.feed.subscribe(has_positive_points):
                self.on_change_event(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Change feed failed: {e}", exc_info=True)

        if not self._stopped:
            self._start_polling("change feed ended")

    def _start_polling(self, reason: str):
        if self._poll_task is not None and not self._poll_task.done():
            return
        logger.info(f"Periodic leaderboard refresh every {self.settings.fallback_interval:g}s ({reason})")
        self._feed_mode = 'polling'
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def _poll_loop(self):
        while not self._stopped:
            await asyncio.sleep(self.settings.fallback_interval)
            if self._stopped:
                break
            self._request_refresh("periodic fallback")

    # ------------------------------------------------------------------
    # View model
    # ------------------------------------------------------------------

    def get_view_model(self) -> ViewModel:
        return self._view_model

    def subscribe_to_view_model_changes(self, handler: ViewModelHandler) -> Callable[[], None]:
        """Register a handler called with each new view model; returns an unsubscribe callable."""
        self._listeners.append(handler)

        def unsubscribe():
            if handler in self._listeners:
                self._listeners.remove(handler)

        return unsubscribe

    def _build_view_model(self) -> ViewModel:
        entries = tuple(
            ViewEntry(
                rank=participant.rank,
                participant=participant,
                is_tracked=participant.identity == self.tracked_identity,
            )
            for participant in self.registry.entries
        )
        in_window = any(entry.is_tracked for entry in entries)
        tracked_position = None
        if self.tracked_identity is not None and not in_window:
            tracked_position = self._position

        return ViewModel(
            entries=entries,
            tracked_position=tracked_position,
            tracked_participant=self._tracked,
            state=self._state,
            cycle=self._cycle,
            is_provisional=self._provisional,
            has_error=self._has_error,
            last_error_at=self._last_error_at,
            updated_at=self._updated_at,
        )

    def _publish(self):
        self._view_model = self._build_view_model()
        for handler in list(self._listeners):
            try:
                result = handler(self._view_model)
                if inspect.isawaitable(result):
                    self._track(asyncio.ensure_future(result))
            except Exception as e:
                logger.error(f"View model handler {handler!r} failed: {e}", exc_info=True)

    def _track(self, task: asyncio.Future):
        self._background_tasks.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Future):
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {task.exception()}")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def cycle(self) -> int:
        return self._cycle

    @property
    def pending_refresh(self) -> bool:
        return self._pending_refresh

    @property
    def position(self) -> PositionResult:
        return self._position

    def get_status(self) -> Dict[str, Any]:
        return {
            'state': self._state.value,
            'cycle': self._cycle,
            'pending_refresh': self._pending_refresh,
            'feed_mode': self._feed_mode,
            'window_size': len(self.registry),
            'provisional': self._provisional,
            'has_error': self._has_error,
            'coalescer': self.coalescer.stats(),
        }
