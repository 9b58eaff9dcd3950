"""
Router principal de l'API.
"""
from fastapi import APIRouter

from .routes import (
    admin,
    chat,
    gemini,
    health,
    messages,
    models,
)

# Router principal
api_router = APIRouter()

# Surfaces client
api_router.include_router(chat.router, prefix="", tags=["openai"])
api_router.include_router(messages.router, prefix="", tags=["claude"])
api_router.include_router(gemini.router, prefix="", tags=["gemini"])
api_router.include_router(models.router, prefix="", tags=["models"])

# Exploitation
api_router.include_router(health.router, prefix="", tags=["health"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
