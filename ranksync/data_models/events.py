"""
Change event data models for the push feed and local actions.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from ranksync.constants import FeedConstants


@dataclass(frozen=True)
class FieldChange:
    old: Any
    new: Any


@dataclass(frozen=True)
class ChangeEvent:
    """A mutation of one participant reported by the backing store.

    Events may repeat, skip, or arrive out of order across identities.
    """
    identity: str
    changes: Dict[str, FieldChange] = field(default_factory=dict)
    timestamp: float = 0.0

    @classmethod
    def from_rows(
        cls,
        identity: str,
        old_row: Optional[Mapping[str, Any]],
        new_row: Optional[Mapping[str, Any]],
        timestamp: float = 0.0,
    ) -> 'ChangeEvent':
        """Diff two versions of a row into the changed-field map."""
        changes = {}
        if old_row is not None and new_row is not None:
            for key, new_value in new_row.items():
                old_value = old_row.get(key)
                if old_value != new_value:
                    changes[key] = FieldChange(old_value, new_value)
        elif new_row is not None:
            # Inserted row: every field is new
            changes = {key: FieldChange(None, value) for key, value in new_row.items()}
        return cls(identity=str(identity), changes=changes, timestamp=timestamp)

    @property
    def touches_score(self) -> bool:
        return any(name in self.changes for name in FeedConstants.SCORE_FIELDS + FeedConstants.GIFT_FIELD_ALIASES)

    @property
    def new_points(self) -> Optional[int]:
        change = self.changes.get('points')
        if change is None or change.new is None:
            return None
        try:
            return int(change.new)
        except (TypeError, ValueError):
            return None

    @property
    def new_gifts(self) -> Optional[int]:
        for name in FeedConstants.GIFT_FIELD_ALIASES:
            change = self.changes.get(name)
            if change is not None and change.new is not None:
                try:
                    return int(change.new)
                except (TypeError, ValueError):
                    return None
        return None


@dataclass(frozen=True)
class ScoreDelta:
    """Deterministic local effect of an action committed by the tracked participant."""
    points: int = 0
    gifts: int = 0

    @classmethod
    def for_purchase(cls, price_points: int) -> 'ScoreDelta':
        """A gift purchase spends its price and adds one gift to the collection."""
        if price_points < 0:
            raise ValueError("price_points must not be negative")
        return cls(points=-price_points, gifts=1)
