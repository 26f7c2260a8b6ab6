"""
Custom exceptions for the ranking synchronization core with user-friendly messages.

None of these ever reach the presentation layer as a raised error: the
orchestrator absorbs them and exposes a flag on the view model instead.
"""

class RankSyncException(Exception):
    """Base exception for ranking synchronization errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class FetchFailure(RankSyncException):
    """Raised when an authoritative fetch fails or times out."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Fetch failed during {operation}: {details}",
            "⚠️ Could not refresh the leaderboard. Tap refresh to try again."
        )
        self.operation = operation
        self.details = details

class FeedUnavailable(RankSyncException):
    """Raised when the push change feed cannot be established."""
    def __init__(self, reason: str):
        super().__init__(
            f"Change feed unavailable: {reason}",
            "Live updates are paused; the leaderboard refreshes periodically."
        )
        self.reason = reason

class IdentityNotFound(RankSyncException):
    """Raised when the tracked participant has no known score yet."""
    def __init__(self, identity: str):
        super().__init__(
            f"No score known for participant '{identity}'",
            "Your rank is not available yet."
        )
        self.identity = identity

class InvariantViolation(RankSyncException):
    """Raised when a fetched window is not properly ordered."""
    def __init__(self, details: str):
        super().__init__(
            f"Ranking invariant violated: {details}",
            "Leaderboard order was corrected."
        )
        self.details = details
