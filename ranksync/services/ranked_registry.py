"""
Ranked registry for the tracked top-N leaderboard window.

Holds the ordered window in memory. Window sizes are small (at most 50), so
lookups are plain linear scans.
"""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from ranksync.data_models.participant import Participant, ScoreKey, ranking_key

logger = logging.getLogger(__name__)


class RankedRegistry:
    """Ordered, immutable-snapshot window of the best participants."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._window: Tuple[Participant, ...] = ()

    @staticmethod
    def is_ordered(window: Sequence[Participant]) -> bool:
        """Check the strict ordering invariant for adjacent pairs."""
        return all(
            ranking_key(window[i]) < ranking_key(window[i + 1])
            for i in range(len(window) - 1)
        )

    @staticmethod
    def sort_window(participants: Iterable[Participant]) -> List[Participant]:
        """Sort into window order, keeping the first occurrence of a duplicated identity."""
        seen = set()
        unique = []
        for participant in participants:
            if participant.identity in seen:
                continue
            seen.add(participant.identity)
            unique.append(participant)
        return sorted(unique, key=ranking_key)

    @property
    def entries(self) -> Tuple[Participant, ...]:
        return self._window

    def __len__(self) -> int:
        return len(self._window)

    @property
    def is_full(self) -> bool:
        return len(self._window) >= self.capacity

    def replace(self, window: Sequence[Participant]):
        """
        Swap in a newly fetched window.

        The caller is responsible for ordering; a misordered window is a
        defect, caught here in debug runs.
        """
        assert self.is_ordered(window), "window is not in ranking order"
        ranked = tuple(
            participant.with_rank(position)
            for position, participant in enumerate(window[:self.capacity], start=1)
        )
        # Single rebinding keeps the swap atomic for readers
        self._window = ranked
        logger.debug(f"Registry replaced with {len(ranked)} entries")

    def lookup(self, identity: str) -> Optional[Tuple[Participant, int]]:
        for position, participant in enumerate(self._window, start=1):
            if participant.identity == identity:
                return participant, position
        return None

    def contains(self, identity: str) -> bool:
        return self.lookup(identity) is not None

    def lowest_score(self) -> Optional[ScoreKey]:
        if not self._window:
            return None
        return self._window[-1].score

    def overlay(self, participant: Participant) -> List[Participant]:
        """
        Return the window re-sorted with one participant's score substituted.

        The registry itself is not modified. A participant that is not yet in
        the window is inserted when it sorts ahead of the last entry (or the
        window has room). When a full window's member drops to the last slot
        it is left out, since an unseen participant may now outrank it.
        """
        previous = self.lookup(participant.identity)
        others = [p for p in self._window if p.identity != participant.identity]
        merged = sorted(others + [participant.with_rank(None)], key=ranking_key)

        if previous is not None and self.is_full and merged[-1].identity == participant.identity:
            if ranking_key(participant) > ranking_key(previous[0]):
                merged.pop()

        return merged[:self.capacity]
