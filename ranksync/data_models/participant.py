"""
Participant data models for the ranked leaderboard window.

Provides the immutable participant record plus the single normalization step
that turns loosely typed store rows into validated participants.
"""

from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional, Tuple

from ranksync.constants import WindowConstants

# (points, gifts)
ScoreKey = Tuple[int, int]


def _coerce_score(value: Any) -> int:
    """Scores are non-negative integers; anything else counts as 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        score = int(value)
    except (TypeError, ValueError):
        return 0
    return max(score, 0)


@dataclass(frozen=True)
class Participant:
    """Single competitor with primary (points) and secondary (gifts) scores."""
    identity: str
    display_name: str
    points: int = 0
    gifts: int = 0
    rank: Optional[int] = None

    @property
    def score(self) -> ScoreKey:
        return (self.points, self.gifts)

    def with_rank(self, rank: Optional[int]) -> 'Participant':
        return replace(self, rank=rank)

    def with_score(self, points: int, gifts: int) -> 'Participant':
        return replace(self, points=_coerce_score(points), gifts=_coerce_score(gifts))

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> 'Participant':
        """
        Build a participant from a store row or feed payload.

        Accepts the column names used by the users table (telegram_id,
        username, points, total_gifts) as well as the field names of this
        class. Missing or malformed scores fall back to 0.

        Raises:
            ValueError: if the row carries no identity at all
        """
        identity = None
        for key in ('identity', 'telegram_id', 'id'):
            if record.get(key) is not None:
                identity = str(record[key])
                break
        if not identity:
            raise ValueError(f"participant record has no identity: {dict(record)!r}")

        display_name = record.get('display_name') or record.get('username') or WindowConstants.ANONYMOUS_LABEL
        gifts = record.get('gifts', record.get('total_gifts'))

        return cls(
            identity=identity,
            display_name=str(display_name),
            points=_coerce_score(record.get('points')),
            gifts=_coerce_score(gifts),
        )


def ranking_key(participant: Participant) -> Tuple[int, int, str]:
    """Ascending sort on this key yields window order: best first, identity breaks ties."""
    return (-participant.points, -participant.gifts, participant.identity)


def outranks_or_ties(score: ScoreKey, other: ScoreKey) -> bool:
    """True when ``score`` is at least as good as ``other`` under (points, gifts)."""
    return score[0] > other[0] or (score[0] == other[0] and score[1] >= other[1])
