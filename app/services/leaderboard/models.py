"""
Leaderboard result types.
"""
from dataclasses import dataclass, field
from typing import List


@dataclass(frozen=True)
class InviterTally:
    """Raw per-inviter counts for one period."""
    inviter_id: str
    invites: int
    qualified: int


@dataclass(frozen=True)
class RankedEntry:
    rank: int
    inviter_id: str
    display_name: str
    invites: int
    qualified: int
    earnings: int


@dataclass(frozen=True)
class Leaderboard:
    period: str
    entries: List[RankedEntry] = field(default_factory=list)
    earners: List[RankedEntry] = field(default_factory=list)  # ranked by qualified referrals
    total_invites: int = 0
    total_qualified: int = 0
    currency: str = "€"

    @property
    def is_empty(self) -> bool:
        return not self.entries


@dataclass(frozen=True)
class PeriodStats:
    invites: int = 0
    qualified: int = 0
    earnings: int = 0


@dataclass(frozen=True)
class MemberStats:
    member_id: str
    current_period: str
    previous_period: str
    current: PeriodStats
    previous: PeriodStats
    all_time: PeriodStats
    currency: str = "€"
