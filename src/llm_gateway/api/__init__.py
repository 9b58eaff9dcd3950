"""
Couche API: surfaces client (OpenAI, Claude, Gemini), modèles, santé, admin.
"""

from .router import api_router

__all__ = ["api_router"]
