"""
Position data models for the tracked participant's rank.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from ranksync.data_models.participant import Participant


class PositionKind(Enum):
    EXACT = "exact"
    ESTIMATED = "estimated"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PositionResult:
    """Rank of a participant, tagged with how it was obtained.

    ESTIMATED ranks are lower bounds: unseen participants outside the window
    may also outrank the tracked one, so the true rank can only be worse.
    """
    kind: PositionKind
    rank: Optional[int] = None
    is_provisional: bool = False

    @classmethod
    def exact(cls, rank: int) -> 'PositionResult':
        return cls(PositionKind.EXACT, rank)

    @classmethod
    def estimated(cls, rank: int) -> 'PositionResult':
        return cls(PositionKind.ESTIMATED, rank)

    @classmethod
    def unknown(cls) -> 'PositionResult':
        return cls(PositionKind.UNKNOWN)

    @property
    def is_exact(self) -> bool:
        return self.kind is PositionKind.EXACT

    @property
    def is_estimated(self) -> bool:
        return self.kind is PositionKind.ESTIMATED

    @property
    def is_unknown(self) -> bool:
        return self.kind is PositionKind.UNKNOWN

    def as_provisional(self) -> 'PositionResult':
        return replace(self, is_provisional=True)


@dataclass(frozen=True)
class RemotePosition:
    """Direct rank lookup answered by the participant source."""
    rank: int
    participant: Participant
