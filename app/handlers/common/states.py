"""
FSM state groups for handlers.
"""
from aiogram.fsm.state import State, StatesGroup


class WaitlistApplication(StatesGroup):
    waiting_for_country = State()
    waiting_for_website = State()
    waiting_for_note = State()
