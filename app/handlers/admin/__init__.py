from aiogram import Router

from .access import admin_access_router

router = Router()

router.include_router(admin_access_router)
