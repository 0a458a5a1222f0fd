"""
Leaderboard Service Layer
"""

from app.services.leaderboard.models import (
    InviterTally,
    Leaderboard,
    MemberStats,
    PeriodStats,
    RankedEntry,
)
from app.services.leaderboard.service import (
    LeaderboardService,
    NameCache,
    build_leaderboard,
    fallback_name,
    rank_by_invites,
    rank_by_qualified,
    stats_of,
    tally_events,
)

__all__ = [
    "InviterTally",
    "Leaderboard",
    "MemberStats",
    "PeriodStats",
    "RankedEntry",
    "LeaderboardService",
    "NameCache",
    "build_leaderboard",
    "fallback_name",
    "rank_by_invites",
    "rank_by_qualified",
    "stats_of",
    "tally_events",
]
