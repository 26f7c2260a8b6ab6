"""
View model handed to the presentation layer.

Provides immutable snapshots of the leaderboard so renderers never observe a
half-updated window.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from ranksync.data_models.participant import Participant
from ranksync.data_models.position import PositionResult


class SyncState(Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"
    FAILED = "failed"


@dataclass(frozen=True)
class ViewEntry:
    """Single leaderboard row."""
    rank: int
    participant: Participant
    is_tracked: bool = False


@dataclass(frozen=True)
class ViewModel:
    """Leaderboard snapshot for rendering."""
    entries: Tuple[ViewEntry, ...]
    # Only set when the tracked participant is not shown in entries
    tracked_position: Optional[PositionResult]
    tracked_participant: Optional[Participant]
    state: SyncState
    cycle: int
    is_provisional: bool = False
    has_error: bool = False
    last_error_at: Optional[float] = None
    updated_at: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def tracked_rank(self) -> Optional[int]:
        for entry in self.entries:
            if entry.is_tracked:
                return entry.rank
        if self.tracked_position is not None:
            return self.tracked_position.rank
        return None
