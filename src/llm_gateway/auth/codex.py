"""
Credential store Codex (OpenAI): comptes OAuth ChatGPT ou clés API platform.

Format disque (snake_case):
    {id, email, auth_type, access_token, refresh_token, api_key,
     chatgpt_account_id, expires_at (ms), enable, timestamp, last_refresh}
"""
import base64
import hashlib
import json
import logging
import secrets
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

from ..core.constants import (
    CODEX_AUTH_API_KEY,
    CODEX_AUTH_OAUTH,
    CODEX_CLIENT_ID,
    CODEX_JWT_AUTH_CLAIM,
    CODEX_REDIRECT_URI,
    CODEX_TOKEN_URL,
    PROVIDER_CODEX,
    REFRESH_BUFFERS_MS,
)
from ..core.exceptions import RefreshError
from ..core.models import Account
from ..core.timing import now_ms, parse_instant_ms
from .base import CredentialStore

logger = logging.getLogger(__name__)

CODEX_AUTHORIZE_URL = "https://auth.openai.com/oauth/authorize"
CODEX_SCOPES = "openid profile email offline_access"


# ============================================================================
# JWT
# ============================================================================

def decode_jwt_payload(token: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Décode le payload d'un JWT sans vérifier la signature.

    Returns:
        Claims du token, ou None si le token n'est pas un JWT lisible
    """
    if not token:
        return None
    parts = token.split(".")
    if len(parts) != 3:
        return None
    padded = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded.encode("ascii"))
        claims = json.loads(decoded.decode("utf-8"))
    except (ValueError, UnicodeError):
        return None
    return claims if isinstance(claims, dict) else None


def extract_email(token: Optional[str]) -> Optional[str]:
    """Email depuis les claims (email, profil OpenAI, preferred_username)."""
    claims = decode_jwt_payload(token)
    if not claims:
        return None
    profile = claims.get("https://api.openai.com/profile") or {}
    return claims.get("email") or profile.get("email") or claims.get("preferred_username")


def extract_account_id(token: Optional[str]) -> Optional[str]:
    """chatgpt_account_id depuis le claim d'authentification OpenAI."""
    claims = decode_jwt_payload(token)
    if not claims:
        return None
    return (claims.get(CODEX_JWT_AUTH_CLAIM) or {}).get("chatgpt_account_id")


# ============================================================================
# PKCE
# ============================================================================

def generate_pkce() -> Tuple[str, str]:
    """
    Génère une paire PKCE (S256).

    Returns:
        (code_verifier, code_challenge)
    """
    verifier = base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def build_authorize_url(code_challenge: str, state: str, redirect_uri: str = CODEX_REDIRECT_URI) -> str:
    """URL d'autorisation OAuth à ouvrir dans le navigateur."""
    params = {
        "response_type": "code",
        "client_id": CODEX_CLIENT_ID,
        "redirect_uri": redirect_uri,
        "scope": CODEX_SCOPES,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "state": state,
    }
    return f"{CODEX_AUTHORIZE_URL}?{urlencode(params)}"


class CodexCredentialStore(CredentialStore):
    """Comptes Codex: OAuth (refresh via auth.openai.com) ou clé API statique."""

    provider_name = PROVIDER_CODEX
    refresh_buffer_ms = REFRESH_BUFFERS_MS[PROVIDER_CODEX]

    def account_from_record(self, record: Dict[str, Any]) -> Account:
        auth_type = record.get("auth_type") or (
            CODEX_AUTH_OAUTH if record.get("refresh_token") else CODEX_AUTH_API_KEY
        )
        return Account(
            id=str(record.get("id") or self.new_account_id()),
            access_token=record.get("access_token") or None,
            refresh_token=record.get("refresh_token") or None,
            api_key=record.get("api_key") or None,
            expires_at=parse_instant_ms(record.get("expires_at")),
            enabled=record.get("enable", True) is not False,
            email=record.get("email") or None,
            auth_type=auth_type,
            created_at=parse_instant_ms(record.get("timestamp")),
            last_refresh=parse_instant_ms(record.get("last_refresh")),
            metadata={
                "chatgpt_account_id": record.get("chatgpt_account_id") or None,
                "name": record.get("name") or None,
            },
        )

    def account_to_record(self, account: Account) -> Dict[str, Any]:
        return {
            "id": account.id,
            "name": account.metadata.get("name"),
            "email": account.email,
            "auth_type": account.auth_type,
            "access_token": account.access_token,
            "refresh_token": account.refresh_token,
            "api_key": account.api_key,
            "chatgpt_account_id": account.metadata.get("chatgpt_account_id"),
            "expires_at": account.expires_at,
            "enable": account.enabled,
            "timestamp": account.created_at,
            "last_refresh": account.last_refresh,
        }

    def is_expired(self, account: Account, now: Optional[int] = None) -> bool:
        if account.auth_type == CODEX_AUTH_API_KEY:
            return False
        return super().is_expired(account, now)

    def _prepare_new_record(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(data)
        record.setdefault("id", self.new_account_id())
        record.setdefault("timestamp", now_ms())
        token = record.get("access_token")
        if token:
            record.setdefault("chatgpt_account_id", extract_account_id(token))
            if not record.get("email"):
                record["email"] = extract_email(token)
        return record

    def _is_duplicate(self, existing: Account, candidate: Account) -> bool:
        if existing.id == candidate.id:
            return True
        if candidate.access_token and existing.access_token == candidate.access_token:
            return True
        if candidate.api_key and existing.api_key == candidate.api_key:
            return True
        account_id = candidate.metadata.get("chatgpt_account_id")
        return bool(account_id) and existing.metadata.get("chatgpt_account_id") == account_id

    def _apply_token_response(self, account: Account, payload: Dict[str, Any]):
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_in = payload.get("expires_in")
        if not access_token or not refresh_token or not isinstance(expires_in, (int, float)) \
                or isinstance(expires_in, bool):
            raise RefreshError("Invalid token response: missing required fields", account_id=account.id)

        account.access_token = access_token
        account.refresh_token = refresh_token
        account.expires_at = now_ms() + int(expires_in * 1000)
        account.auth_type = CODEX_AUTH_OAUTH

        chatgpt_account_id = extract_account_id(access_token)
        if chatgpt_account_id:
            account.metadata["chatgpt_account_id"] = chatgpt_account_id
        if not account.email:
            account.email = extract_email(access_token)

    async def _request_refresh(self, account: Account):
        payload = await self._post_refresh(
            CODEX_TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": account.refresh_token,
                "client_id": CODEX_CLIENT_ID,
            },
            account=account,
        )
        self._apply_token_response(account, payload)

    async def exchange_authorization_code(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: str = CODEX_REDIRECT_URI
    ) -> Dict[str, Any]:
        """
        Échange un code d'autorisation OAuth (PKCE) et enregistre le compte obtenu.

        Args:
            code: Code reçu sur le callback
            code_verifier: Verifier PKCE utilisé pour le challenge
            redirect_uri: URI de callback déclarée

        Returns:
            Résultat de add_account

        Raises:
            RefreshError: Échange refusé ou réponse incomplète
        """
        logger.info("🔑 [CODEX] Échange du code d'autorisation...")
        payload = await self._post_refresh(
            CODEX_TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "client_id": CODEX_CLIENT_ID,
                "code": code,
                "code_verifier": code_verifier,
                "redirect_uri": redirect_uri,
            },
        )
        account = Account(id=self.new_account_id(), created_at=now_ms())
        self._apply_token_response(account, payload)
        return await self.add_account(self.account_to_record(account))
