"""
LLM Gateway - passerelle multi-providers (Antigravity, Kiro, Codex).

Expose les formats OpenAI, Claude et Gemini derrière une seule API,
avec rotation des comptes, quotas par route et streaming SSE.
"""

__version__ = "1.0.0"
