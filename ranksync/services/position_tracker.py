"""
Position tracker for the current participant.

Answers "what is this participant's rank": exact when they are inside the
window, otherwise a conservative estimate from the window and their own score.
"""

from typing import Optional

from ranksync.data_models.participant import ScoreKey, outranks_or_ties
from ranksync.data_models.position import PositionResult
from ranksync.services.ranked_registry import RankedRegistry


class PositionTracker:
    """Resolves a participant's rank against the ranked registry."""

    def __init__(self, registry: RankedRegistry):
        self.registry = registry

    def resolve(self, identity: Optional[str], known_score: Optional[ScoreKey], floor: Optional[int] = None) -> PositionResult:
        """
        Resolve the rank of ``identity``.

        Args:
            identity: Participant identity (None when nobody is tracked)
            known_score: (points, gifts) held locally for the participant, if any
            floor: best rank the participant can still hold, when an
                authoritative fetch has already ruled out better ones

        Returns:
            EXACT inside the window, ESTIMATED lower bound outside it,
            UNKNOWN when no score is available
        """
        if identity is not None:
            found = self.registry.lookup(identity)
            if found is not None:
                return PositionResult.exact(found[1])

        if known_score is None:
            return PositionResult.unknown()

        # Entries at least as good as the participant all sit above them
        ahead = sum(
            1 for participant in self.registry.entries
            if outranks_or_ties(participant.score, known_score)
        )
        rank = ahead + 1
        if floor is not None:
            rank = max(rank, floor)
        return PositionResult.estimated(rank)

    def resolve_remote(
        self,
        identity: str,
        known_score: Optional[ScoreKey],
        remote_rank: Optional[int],
        floor: Optional[int] = None,
    ) -> PositionResult:
        """Prefer a rank reported by a direct lookup when the participant is outside the window."""
        local = self.resolve(identity, known_score, floor)
        if local.is_exact or remote_rank is None:
            return local
        # A direct lookup can never be better than what the window proves
        if local.is_estimated and remote_rank < local.rank:
            return local
        return PositionResult.exact(remote_rank)
