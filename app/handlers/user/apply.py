"""
User command: /apply (waitlist application)

Three questions (country, website, note), then the application is saved as
pending. /cancel leaves the form.
"""
import logging

from aiogram import Router
from aiogram.filters import Command, StateFilter
from aiogram.fsm.context import FSMContext
from aiogram.types import Message

from app.core.exceptions import CollaboratorError
from app.core.feature_flags import get_feature_flags
from app.engine import InviteEngine
from app.handlers.common.guards import ensure_db_ready_message, is_private
from app.handlers.common.states import WaitlistApplication
from app.handlers.common.utils import resolve_display_name

user_router = Router()
logger = logging.getLogger(__name__)

SKIP_WORDS = {"-", "skip"}


def _answer_text(message: Message) -> str:
    text = (message.text or "").strip()
    return "" if text.lower() in SKIP_WORDS else text


@user_router.message(Command("apply"))
async def cmd_apply(message: Message, state: FSMContext):
    if not is_private(message):
        return
    if not get_feature_flags().access_grants_enabled:
        await message.answer("Applications are currently closed.")
        return
    if not await ensure_db_ready_message(message):
        return

    await state.clear()
    await state.set_state(WaitlistApplication.waiting_for_country)
    await message.answer("📝 <b>Join the waitlist</b>\n\nWhich country are you based in?", parse_mode="HTML")


@user_router.message(Command("cancel"), StateFilter(WaitlistApplication))
async def cmd_cancel(message: Message, state: FSMContext):
    await state.clear()
    await message.answer("Application cancelled.")


@user_router.message(WaitlistApplication.waiting_for_country)
async def process_country(message: Message, state: FSMContext):
    country = _answer_text(message)
    if not country:
        await message.answer("Please tell us your country.")
        return
    await state.update_data(country=country)
    await state.set_state(WaitlistApplication.waiting_for_website)
    await message.answer("Your Instagram or website? (send - to skip)")


@user_router.message(WaitlistApplication.waiting_for_website)
async def process_website(message: Message, state: FSMContext):
    await state.update_data(website=_answer_text(message))
    await state.set_state(WaitlistApplication.waiting_for_note)
    await message.answer("Anything else we should know? (send - to skip)")


@user_router.message(WaitlistApplication.waiting_for_note)
async def process_note(message: Message, state: FSMContext, engine: InviteEngine):
    data = await state.get_data()
    await state.clear()

    if not await ensure_db_ready_message(message):
        return

    answers = {
        "country": data.get("country", ""),
        "website": data.get("website", ""),
        "note": _answer_text(message),
    }
    try:
        entry = await engine.access.submit_application(
            str(message.from_user.id),
            resolve_display_name(message.from_user),
            answers,
        )
    except CollaboratorError as e:
        logger.error(f"WAITLIST_SUBMIT_FAILED [user={message.from_user.id}, error={e}]")
        await message.answer("⚠️ Could not save your request. Please try again in 1 minute.")
        return

    if entry.granted:
        await message.answer("✅ Your details were updated. You already have access.")
        return

    await message.answer(
        "✅ <b>You’re on the waitlist</b>\n\n"
        "Know other serious buyers? Get your personal invite link with /invite. "
        "Invite activity is taken into account during approval.",
        parse_mode="HTML",
    )
