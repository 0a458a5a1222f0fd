from aiogram import Router

from .members import community_router as members_router

router = Router()

router.include_router(members_router)
