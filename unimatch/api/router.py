"""
UniMatch — Main API Router

Aggregates all sub-routers under a single prefix so that ``unimatch.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from unimatch.api import chat, matching, users

router = APIRouter()

router.include_router(users.router, prefix="/users", tags=["Users"])
router.include_router(matching.router, prefix="/match", tags=["Matching"])
router.include_router(chat.router, prefix="/chat", tags=["Chat"])
