"""
Unit tests for the waitlist and the approve-and-grant-once poller.
"""
import pytest

from app.services.access import ApplicationNotFoundError, normalize_answers
from app.services.invites import InvalidMemberIdError
from app.services.models import ApplicationStatus, GrantResult, WaitlistEntry


async def approved(store, *member_ids):
    for member_id in member_ids:
        await store.save_application(WaitlistEntry(member_id=member_id, status=ApplicationStatus.APPROVED))


class TestNormalizeAnswers:
    def test_known_fields_only(self):
        result = normalize_answers({"country": " NL ", "website": "x.com", "password": "secret"})
        assert result == {"country": "NL", "website": "x.com", "note": ""}

    def test_capped(self):
        assert len(normalize_answers({"note": "n" * 2000})["note"]) == 500

    def test_none(self):
        assert normalize_answers(None) == {"country": "", "website": "", "note": ""}


class TestSubmitApplication:
    @pytest.mark.asyncio
    async def test_creates_pending_entry(self, engine, store):
        entry = await engine.access.submit_application("alice", "Alice", {"country": "NL"})

        assert entry.status == ApplicationStatus.PENDING
        assert store.applications["alice"].answers["country"] == "NL"
        assert store.applications["alice"].applied_at is not None

    @pytest.mark.asyncio
    async def test_reapply_replaces_answers(self, engine, store):
        await engine.access.submit_application("alice", "Alice", {"country": "NL"})
        await engine.access.submit_application("alice", "Alice", {"country": "DE"})

        assert len(store.applications) == 1
        assert store.applications["alice"].answers["country"] == "DE"

    @pytest.mark.asyncio
    async def test_reapply_after_grant_keeps_granted(self, engine, store):
        await approved(store, "alice")
        await engine.access.poll_once()

        entry = await engine.access.submit_application("alice", "Alice", {"note": "again"})

        assert entry.granted is True
        assert entry.status == ApplicationStatus.APPROVED
        assert (await engine.access.poll_once()).processed == 0


class TestApprove:
    @pytest.mark.asyncio
    async def test_approve(self, engine, store):
        await engine.access.submit_application("alice", "Alice")

        entry = await engine.access.approve("alice")

        assert entry.status == ApplicationStatus.APPROVED

    @pytest.mark.asyncio
    async def test_unknown_member(self, engine):
        with pytest.raises(ApplicationNotFoundError):
            await engine.access.approve("nobody")

    @pytest.mark.asyncio
    async def test_empty_id(self, engine):
        with pytest.raises(InvalidMemberIdError):
            await engine.access.approve("")


class TestOnMemberJoined:
    @pytest.mark.asyncio
    async def test_new_member_restricted(self, engine, granter):
        assert await engine.access.on_member_joined("alice") is True
        assert granter.restricted == ["alice"]

    @pytest.mark.asyncio
    async def test_granted_member_not_restricted(self, engine, store, granter):
        await approved(store, "alice")
        await engine.access.poll_once()

        assert await engine.access.on_member_joined("alice") is False
        assert granter.restricted == []

    @pytest.mark.asyncio
    async def test_granter_failure_swallowed(self, engine, granter):
        granter.raising.add("alice")
        assert await engine.access.on_member_joined("alice") is False


class TestPollOnce:
    """Tests for AccessService.poll_once"""

    @pytest.mark.asyncio
    async def test_grants_and_marks(self, engine, store, granter):
        await approved(store, "alice", "bob")

        summary = await engine.access.poll_once()

        assert summary.granted == ["alice", "bob"]
        assert granter.granted == ["alice", "bob"]
        assert store.applications["alice"].granted is True
        assert store.applications["alice"].granted_at is not None

    @pytest.mark.asyncio
    async def test_grant_happens_once(self, engine, store, granter):
        await approved(store, "alice")

        await engine.access.poll_once()
        second = await engine.access.poll_once()

        assert second.processed == 0
        assert granter.granted == ["alice"]

    @pytest.mark.asyncio
    async def test_pending_applications_ignored(self, engine, store, granter):
        await engine.access.submit_application("alice", "Alice")

        summary = await engine.access.poll_once()

        assert summary.processed == 0

    @pytest.mark.asyncio
    async def test_not_a_member_retried_later(self, engine, store, granter):
        """Approved before joining: granted on the first poll after the join"""
        await approved(store, "alice")
        granter.results["alice"] = GrantResult.NOT_A_MEMBER

        first = await engine.access.poll_once()
        assert first.not_member == ["alice"]
        assert store.applications["alice"].granted is False

        del granter.results["alice"]
        second = await engine.access.poll_once()
        assert second.granted == ["alice"]

    @pytest.mark.asyncio
    async def test_failed_grant_not_marked(self, engine, store, granter):
        await approved(store, "alice", "bob")
        granter.results["alice"] = GrantResult.FAILED

        summary = await engine.access.poll_once()

        assert summary.failed == ["alice"]
        assert summary.granted == ["bob"]
        assert store.applications["alice"].granted is False

    @pytest.mark.asyncio
    async def test_granter_exception_isolated(self, engine, store, granter):
        await approved(store, "alice", "bob")
        granter.raising.add("alice")

        summary = await engine.access.poll_once()

        assert summary.failed == ["alice"]
        assert summary.granted == ["bob"]

    @pytest.mark.asyncio
    async def test_mark_failure_counted_as_failed(self, engine, store, granter):
        await approved(store, "alice")
        store.fail_operations.add("mark_granted")

        summary = await engine.access.poll_once()

        assert summary.failed == ["alice"]
        assert store.applications["alice"].granted is False

    @pytest.mark.asyncio
    async def test_batch_size(self, engine, store, granter):
        await approved(store, *[f"m{i}" for i in range(30)])

        summary = await engine.access.poll_once()

        assert len(summary.granted) == engine.settings.access_grant_batch_size

    @pytest.mark.asyncio
    async def test_absent_applicants_do_not_block_later_ones(self, engine, store, granter):
        """A full batch of approved applicants who never joined"""
        waiting = [f"w{i}" for i in range(engine.settings.access_grant_batch_size)]
        await approved(store, *waiting)
        await approved(store, "joined")
        for member_id in waiting:
            granter.results[member_id] = GrantResult.NOT_A_MEMBER

        summary = await engine.access.poll_once()

        assert summary.granted == ["joined"]
        assert store.applications["joined"].granted is True
        assert len(summary.not_member) == len(waiting)

    @pytest.mark.asyncio
    async def test_failed_grants_use_up_batch(self, engine, store, granter):
        batch = engine.settings.access_grant_batch_size
        failing = [f"f{i}" for i in range(batch)]
        await approved(store, *failing)
        await approved(store, "later")
        for member_id in failing:
            granter.results[member_id] = GrantResult.FAILED

        summary = await engine.access.poll_once()

        assert len(summary.failed) == batch
        assert summary.granted == []

    @pytest.mark.asyncio
    async def test_scan_window_wider_than_batch(self, engine):
        assert engine.access.scan_window >= 200
        assert engine.access.scan_window > engine.access.batch_size

    @pytest.mark.asyncio
    async def test_query_failure(self, engine, store):
        store.fail_operations.add("query_approved_ungranted")
        summary = await engine.access.poll_once()
        assert summary.processed == 0
