"""
Services package for the RankSync leaderboard core.

Ranking window, rank resolution, update coalescing and synchronization.
"""

from .ranked_registry import RankedRegistry
from .position_tracker import PositionTracker
from .update_coalescer import UpdateCoalescer, SignalDecision
from .sync_orchestrator import SyncOrchestrator

__all__ = ['RankedRegistry', 'PositionTracker', 'UpdateCoalescer', 'SignalDecision', 'SyncOrchestrator']
