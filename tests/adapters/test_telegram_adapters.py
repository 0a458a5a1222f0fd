"""
Tests for the Telegram and PostgreSQL adapters with the bot and the
database module mocked.
"""
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiogram.enums import ChatMemberStatus
from aiogram.exceptions import TelegramBadRequest

from app.adapters.record_store import PostgresRecordStore
from app.adapters.telegram import (
    MEMBER_PERMISSIONS,
    PENDING_PERMISSIONS,
    TelegramAccessGranter,
    TelegramMembershipDirectory,
    TelegramPublicationSink,
    invite_code_from_url,
)
from app.adapters.rendering import LIVE_TITLE_PREFIX, final_title
from app.services.leaderboard import Leaderboard
from app.services.models import ApplicationStatus, GrantResult


def bad_request(message):
    return TelegramBadRequest(method=MagicMock(), message=message)


class TestInviteCodeFromUrl:
    @pytest.mark.parametrize("url,code", [
        ("https://t.me/+AbCdEf", "AbCdEf"),
        ("https://t.me/joinchat/AbCdEf", "AbCdEf"),
        ("https://t.me/+AbCdEf/", "AbCdEf"),
        ("", ""),
    ])
    def test_codes(self, url, code):
        assert invite_code_from_url(url) == code


class TestMembershipDirectory:
    @pytest.mark.asyncio
    async def test_record_invite_use(self):
        directory = TelegramMembershipDirectory(MagicMock())
        with patch("database.increment_invite_use", AsyncMock(return_value=4)) as increment:
            uses = await directory.record_invite_use("-100", "https://t.me/+Xyz")
        assert uses == 4
        increment.assert_awaited_once_with("-100", "Xyz")

    @pytest.mark.asyncio
    async def test_create_invite(self):
        bot = MagicMock()
        bot.create_chat_invite_link = AsyncMock(return_value=SimpleNamespace(invite_link="https://t.me/+Q1"))
        directory = TelegramMembershipDirectory(bot)

        code, url = await directory.create_invite("-100", "42", "invite:" + "a" * 50)

        assert (code, url) == ("Q1", "https://t.me/+Q1")
        assert len(bot.create_chat_invite_link.call_args.kwargs["name"]) == 32

    @pytest.mark.asyncio
    async def test_fetch_member_left(self):
        bot = MagicMock()
        bot.get_chat_member = AsyncMock(return_value=SimpleNamespace(status=ChatMemberStatus.LEFT))
        assert await TelegramMembershipDirectory(bot).fetch_member("-100", "42") is None

    @pytest.mark.asyncio
    async def test_fetch_member_name(self):
        user = SimpleNamespace(id=42, full_name="Alice A", username="alice", is_bot=False)
        bot = MagicMock()
        bot.get_chat_member = AsyncMock(return_value=SimpleNamespace(status=ChatMemberStatus.MEMBER, user=user))

        member = await TelegramMembershipDirectory(bot).fetch_member("-100", "42")

        assert member.display_name == "Alice A"
        assert member.member_id == "42"


class TestPublicationSink:
    """Upsert-by-title publishing"""

    @staticmethod
    def make_bot(message_id=77):
        bot = MagicMock()
        bot.send_message = AsyncMock(return_value=SimpleNamespace(message_id=message_id))
        bot.edit_message_text = AsyncMock()
        bot.pin_chat_message = AsyncMock()
        return bot

    @pytest.mark.asyncio
    async def test_live_first_publish_sends_and_pins(self):
        bot = self.make_bot()
        sink = TelegramPublicationSink(bot, leaderboard_chat_id=-1, winners_chat_id=-2)
        with patch("database.get_publication", AsyncMock(return_value=None)), \
                patch("database.save_publication", AsyncMock()) as save:
            await sink.publish_live("2024-01", Leaderboard(period="2024-01"))

        bot.send_message.assert_awaited_once()
        save.assert_awaited_once_with(LIVE_TITLE_PREFIX, -1, 77)
        bot.pin_chat_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_live_edits_existing_message(self):
        bot = self.make_bot()
        sink = TelegramPublicationSink(bot, leaderboard_chat_id=-1, winners_chat_id=-2)
        existing = {"title": LIVE_TITLE_PREFIX, "chat_id": -1, "message_id": 5}
        with patch("database.get_publication", AsyncMock(return_value=existing)), \
                patch("database.save_publication", AsyncMock()) as save:
            await sink.publish_live("2024-02", Leaderboard(period="2024-02"))

        bot.edit_message_text.assert_awaited_once()
        assert bot.edit_message_text.call_args.kwargs["message_id"] == 5
        bot.send_message.assert_not_awaited()
        save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_modified_is_ignored(self):
        bot = self.make_bot()
        bot.edit_message_text = AsyncMock(side_effect=bad_request("Bad Request: message is not modified"))
        sink = TelegramPublicationSink(bot, leaderboard_chat_id=-1, winners_chat_id=-2)
        existing = {"title": final_title("2024-01"), "chat_id": -2, "message_id": 5}
        with patch("database.get_publication", AsyncMock(return_value=existing)), \
                patch("database.save_publication", AsyncMock()):
            await sink.publish_final("2024-01", Leaderboard(period="2024-01"))

        bot.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deleted_message_is_replaced(self):
        bot = self.make_bot(message_id=90)
        bot.edit_message_text = AsyncMock(side_effect=bad_request("Bad Request: message to edit not found"))
        sink = TelegramPublicationSink(bot, leaderboard_chat_id=-1, winners_chat_id=-2)
        existing = {"title": final_title("2024-01"), "chat_id": -2, "message_id": 5}
        with patch("database.get_publication", AsyncMock(return_value=existing)), \
                patch("database.save_publication", AsyncMock()) as save:
            await sink.publish_final("2024-01", Leaderboard(period="2024-01"))

        save.assert_awaited_once_with(final_title("2024-01"), -2, 90)
        bot.pin_chat_message.assert_not_awaited()


class TestAccessGranter:
    @pytest.mark.asyncio
    async def test_restricted_member_lifted(self):
        bot = MagicMock()
        bot.get_chat_member = AsyncMock(return_value=SimpleNamespace(status=ChatMemberStatus.RESTRICTED, is_member=True))
        bot.restrict_chat_member = AsyncMock()

        result = await TelegramAccessGranter(bot).grant("-100", "42")

        assert result == GrantResult.GRANTED
        assert bot.restrict_chat_member.call_args.kwargs["permissions"] == MEMBER_PERMISSIONS

    @pytest.mark.asyncio
    async def test_absent_member(self):
        bot = MagicMock()
        bot.get_chat_member = AsyncMock(side_effect=bad_request("Bad Request: user not found"))

        assert await TelegramAccessGranter(bot).grant("-100", "42") == GrantResult.NOT_A_MEMBER

    @pytest.mark.asyncio
    async def test_restrict(self):
        bot = MagicMock()
        bot.restrict_chat_member = AsyncMock()

        assert await TelegramAccessGranter(bot).restrict("-100", "42") is True
        assert bot.restrict_chat_member.call_args.kwargs["permissions"] == PENDING_PERMISSIONS

    @pytest.mark.asyncio
    async def test_restrict_admin_rejected(self):
        bot = MagicMock()
        bot.restrict_chat_member = AsyncMock(side_effect=bad_request("Bad Request: can't restrict self"))

        assert await TelegramAccessGranter(bot).restrict("-100", "42") is False


class TestPostgresRecordStore:
    @pytest.mark.asyncio
    async def test_member_row_converted(self):
        row = {
            "member_id": "42",
            "display_name": None,
            "invite_code": "abc",
            "invite_url": "https://t.me/+abc",
            "invite_created_at": datetime(2024, 1, 1),
            "inviter_id": "7",
            "invite_code_used": "xyz",
            "joined_at": None,
            "last_notified_period": "2024-01",
        }
        with patch("database.get_member", AsyncMock(return_value=row)):
            record = await PostgresRecordStore().find_member("42")

        assert record.display_name == ""
        assert record.inviter_id == "7"
        assert record.last_notified_period == "2024-01"

    @pytest.mark.asyncio
    async def test_missing_member(self):
        with patch("database.get_member", AsyncMock(return_value=None)):
            assert await PostgresRecordStore().find_member("42") is None

    @pytest.mark.asyncio
    async def test_application_row_converted(self):
        row = {
            "member_id": "42",
            "display_name": "Alice",
            "status": "approved",
            "country": "NL",
            "website": None,
            "note": "",
            "applied_at": datetime(2024, 1, 1),
            "granted": False,
            "granted_at": None,
        }
        with patch("database.get_approved_ungranted", AsyncMock(return_value=[row])):
            entries = await PostgresRecordStore().query_approved_ungranted(10)

        assert entries[0].status == ApplicationStatus.APPROVED
        assert entries[0].answers == {"country": "NL", "website": "", "note": ""}
        assert entries[0].granted is False
