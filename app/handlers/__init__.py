"""
Handlers module - Telegram bot surface.

Root aggregation: community (chat_member joins), user commands, admin commands.
"""
from aiogram import Router

from .community import router as community_router
from .user import router as user_router
from .admin import router as admin_router

router = Router()

router.include_router(community_router)
router.include_router(user_router)
router.include_router(admin_router)
