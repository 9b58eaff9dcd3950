"""
Credential stores: un par provider, contrat commun dans base.py.
"""

from .base import CredentialStore
from .antigravity import AntigravityCredentialStore
from .kiro import KiroCredentialStore
from .codex import (
    CodexCredentialStore,
    decode_jwt_payload,
    extract_email,
    extract_account_id,
    generate_pkce,
    build_authorize_url,
)

__all__ = [
    "CredentialStore",
    "AntigravityCredentialStore",
    "KiroCredentialStore",
    "CodexCredentialStore",
    "decode_jwt_payload",
    "extract_email",
    "extract_account_id",
    "generate_pkce",
    "build_authorize_url",
]
