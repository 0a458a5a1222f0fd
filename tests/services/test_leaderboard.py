"""
Unit tests for leaderboard aggregation.

Tests focus on:
- counting from the event log only
- stable tie order (first seen in the log)
- top-N truncation and clamping
- earnings and display name resolution
"""
from datetime import datetime, timezone

import pytest

from app.services.leaderboard import (
    InviterTally,
    build_leaderboard,
    fallback_name,
    rank_by_invites,
    rank_by_qualified,
    stats_of,
    tally_events,
)
from app.services.models import AttributionEvent, DirectoryMember


def utc(year, month, day, hour=12):
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def event(invitee, inviter, day=1, qualified=False, period="2024-01"):
    return AttributionEvent(
        invitee_id=invitee,
        inviter_id=inviter,
        invite_code=f"c-{inviter}",
        period=period,
        joined_at=utc(2024, 1, day),
        qualified=qualified,
    )


class TestTallyEvents:
    def test_counts_per_inviter(self):
        tallies = tally_events([
            event("u1", "alice"),
            event("u2", "bob", qualified=True),
            event("u3", "alice", qualified=True),
        ])
        assert tallies == [
            InviterTally("alice", invites=2, qualified=1),
            InviterTally("bob", invites=1, qualified=1),
        ]

    def test_empty(self):
        assert tally_events([]) == []


class TestRanking:
    def test_sorted_by_invites_descending(self):
        tallies = [InviterTally("a", 1, 0), InviterTally("b", 3, 0), InviterTally("c", 2, 0)]
        assert [t.inviter_id for t in rank_by_invites(tallies)] == ["b", "c", "a"]

    def test_ties_keep_first_seen_order(self):
        tallies = tally_events([
            event("u1", "zoe", day=1),
            event("u2", "adam", day=2),
            event("u3", "mia", day=3),
        ])
        assert [t.inviter_id for t in rank_by_invites(tallies)] == ["zoe", "adam", "mia"]

    def test_qualified_ranking_skips_zero(self):
        tallies = [InviterTally("a", 5, 0), InviterTally("b", 1, 1), InviterTally("c", 3, 2)]
        assert [t.inviter_id for t in rank_by_qualified(tallies)] == ["c", "b"]


class TestBuildLeaderboard:
    def test_ranks_names_and_earnings(self):
        tallies = [InviterTally("111", 2, 1), InviterTally("222", 3, 0)]
        board = build_leaderboard("2024-01", tallies, {"111": "Alice"}, top_n=10, payout_amount=5)

        assert [(e.rank, e.inviter_id, e.invites) for e in board.entries] == [(1, "222", 3), (2, "111", 2)]
        assert board.entries[0].display_name == "User 222"
        assert board.entries[1].display_name == "Alice"
        assert board.entries[1].earnings == 5
        assert [e.inviter_id for e in board.earners] == ["111"]
        assert board.total_invites == 5
        assert board.total_qualified == 1

    def test_truncated_to_top_n(self):
        tallies = [InviterTally(str(i), 100 - i, 0) for i in range(10)]
        board = build_leaderboard("2024-01", tallies, {}, top_n=5, payout_amount=5)
        assert [e.inviter_id for e in board.entries] == ["0", "1", "2", "3", "4"]
        assert board.total_invites == sum(100 - i for i in range(10))

    @pytest.mark.parametrize("top_n,expected", [(1, 3), (100, 25), (None, 10)])
    def test_top_n_clamped(self, top_n, expected):
        tallies = [InviterTally(str(i), 1, 0) for i in range(30)]
        board = build_leaderboard("2024-01", tallies, {}, top_n=top_n, payout_amount=5)
        assert len(board.entries) == expected

    def test_empty_period(self):
        board = build_leaderboard("2024-01", [], {}, top_n=10, payout_amount=5)
        assert board.is_empty
        assert board.earners == []

    def test_fallback_name(self):
        assert fallback_name("123456789") == "User 6789"
        assert fallback_name("12") == "User 12"


class TestStatsOf:
    def test_counts_and_earnings(self):
        stats = stats_of([event("u1", "a", qualified=True), event("u2", "a")], payout_amount=5)
        assert (stats.invites, stats.qualified, stats.earnings) == (2, 1, 5)


class TestLeaderboardService:
    """LeaderboardService against the in-memory store"""

    @pytest.mark.asyncio
    async def test_build_from_event_log(self, engine, store):
        store.add_event("u1", "alice", "2024-01", utc(2024, 1, 2))
        store.add_event("u2", "bob", "2024-01", utc(2024, 1, 1), qualified=True)
        store.add_event("u3", "bob", "2024-01", utc(2024, 1, 3))
        store.add_event("u4", "alice", "2023-12", utc(2023, 12, 20))

        board = await engine.leaderboards.build("2024-01")

        assert [(e.inviter_id, e.invites) for e in board.entries] == [("bob", 2), ("alice", 1)]
        assert board.earners[0].earnings == 5

    @pytest.mark.asyncio
    async def test_tie_order_follows_join_time_not_insertion(self, engine, store):
        store.add_event("u1", "late", "2024-01", utc(2024, 1, 20))
        store.add_event("u2", "early", "2024-01", utc(2024, 1, 5))

        board = await engine.leaderboards.build("2024-01")

        assert [e.inviter_id for e in board.entries] == ["early", "late"]

    @pytest.mark.asyncio
    async def test_names_resolved_from_store_then_directory(self, engine, store, directory):
        await store.upsert_member("alice", {"display_name": "Alice"})
        directory.members["bob"] = DirectoryMember("bob", "Bobby")
        store.add_event("u1", "alice", "2024-01", utc(2024, 1, 1))
        store.add_event("u2", "bob", "2024-01", utc(2024, 1, 2))
        store.add_event("u3", "carl9999", "2024-01", utc(2024, 1, 3))

        board = await engine.leaderboards.build("2024-01")

        assert [e.display_name for e in board.entries] == ["Alice", "Bobby", "User 9999"]

    @pytest.mark.asyncio
    async def test_fallback_names_are_not_cached(self, engine, store, directory):
        store.add_event("u1", "carl", "2024-01", utc(2024, 1, 1))
        first = await engine.leaderboards.build("2024-01")

        directory.members["carl"] = DirectoryMember("carl", "Carl")
        second = await engine.leaderboards.build("2024-01")

        assert first.entries[0].display_name == "User carl"
        assert second.entries[0].display_name == "Carl"

    @pytest.mark.asyncio
    async def test_directory_failure_falls_back(self, engine, store, directory):
        directory.fail = True
        store.add_event("u1", "carl", "2024-01", utc(2024, 1, 1))

        board = await engine.leaderboards.build("2024-01")

        assert board.entries[0].display_name == "User carl"

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, engine, store):
        from app.core.exceptions import CollaboratorError

        store.fail_operations.add("query_by_period")
        with pytest.raises(CollaboratorError):
            await engine.leaderboards.build("2024-01")

    @pytest.mark.asyncio
    async def test_member_stats(self, engine, store):
        store.add_event("u1", "alice", "2024-02", utc(2024, 2, 3), qualified=True)
        store.add_event("u2", "alice", "2024-02", utc(2024, 2, 4))
        store.add_event("u3", "alice", "2024-01", utc(2024, 1, 4), qualified=True)
        store.add_event("u4", "alice", "2023-11", utc(2023, 11, 4))
        store.add_event("u5", "bob", "2024-02", utc(2024, 2, 4))

        stats = await engine.leaderboards.member_stats("alice", now=utc(2024, 2, 10))

        assert stats.current_period == "2024-02"
        assert stats.previous_period == "2024-01"
        assert (stats.current.invites, stats.current.qualified, stats.current.earnings) == (2, 1, 5)
        assert (stats.previous.invites, stats.previous.qualified) == (1, 1)
        assert (stats.all_time.invites, stats.all_time.earnings) == (4, 10)
