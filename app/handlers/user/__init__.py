from aiogram import Router

from .invite import user_router as invite_router
from .stats import user_router as stats_router
from .apply import user_router as apply_router

router = Router()

router.include_router(invite_router)
router.include_router(stats_router)
router.include_router(apply_router)
