"""
Credential store Antigravity (Google OAuth, API cloudcode).

Format disque:
    {id, email, access_token, refresh_token, expires_in (s), timestamp (ms),
     projectId, enable}

L'expiration n'est pas stockée: elle vaut timestamp + expires_in.
"""
import hashlib
import os
import random
import uuid
from typing import Any, Dict, Optional

from ..core.constants import (
    GOOGLE_TOKEN_URL,
    PROJECT_ID_ADJECTIVES,
    PROJECT_ID_NOUNS,
    PROVIDER_ANTIGRAVITY,
    REFRESH_BUFFERS_MS,
)
from ..core.exceptions import RefreshError
from ..core.models import Account
from ..core.timing import now_ms, parse_instant_ms
from .base import CredentialStore

# Identifiants OAuth du client desktop, fournis par l'environnement
CLIENT_ID_ENV = "ANTIGRAVITY_OAUTH_CLIENT_ID"
CLIENT_SECRET_ENV = "ANTIGRAVITY_OAUTH_CLIENT_SECRET"


def generate_project_id() -> str:
    """Project id de repli: {adjectif}-{nom}-{hex5}."""
    return f"{random.choice(PROJECT_ID_ADJECTIVES)}-{random.choice(PROJECT_ID_NOUNS)}-{uuid.uuid4().hex[:5]}"


def _stable_id(refresh_token: Optional[str]) -> str:
    if refresh_token:
        return "ag_" + hashlib.sha256(refresh_token.encode("utf-8")).hexdigest()[:12]
    return f"ag_{uuid.uuid4().hex[:12]}"


class AntigravityCredentialStore(CredentialStore):
    """Comptes Google OAuth pour l'API v1internal."""

    provider_name = PROVIDER_ANTIGRAVITY
    refresh_buffer_ms = REFRESH_BUFFERS_MS[PROVIDER_ANTIGRAVITY]

    def account_from_record(self, record: Dict[str, Any]) -> Account:
        timestamp = parse_instant_ms(record.get("timestamp"))
        expires_in = record.get("expires_in")
        expires_at = None
        if timestamp is not None and isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
            expires_at = timestamp + int(expires_in * 1000)

        return Account(
            id=str(record.get("id") or _stable_id(record.get("refresh_token"))),
            access_token=record.get("access_token") or None,
            refresh_token=record.get("refresh_token") or None,
            expires_at=expires_at,
            enabled=record.get("enable", True) is not False,
            email=record.get("email") or None,
            auth_type="oauth",
            created_at=timestamp,
            metadata={
                "project_id": record.get("projectId") or generate_project_id(),
                "expires_in": expires_in,
            },
        )

    def account_to_record(self, account: Account) -> Dict[str, Any]:
        expires_in = account.metadata.get("expires_in")
        timestamp = account.created_at
        if account.expires_at is not None and isinstance(expires_in, (int, float)):
            timestamp = account.expires_at - int(expires_in * 1000)
        return {
            "id": account.id,
            "email": account.email,
            "access_token": account.access_token,
            "refresh_token": account.refresh_token,
            "expires_in": expires_in,
            "timestamp": timestamp,
            "projectId": account.metadata.get("project_id"),
            "enable": account.enabled,
        }

    def _prepare_new_record(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(data)
        record.setdefault("id", _stable_id(record.get("refresh_token")))
        record.setdefault("timestamp", now_ms())
        return record

    def new_account_id(self) -> str:
        return _stable_id(None)

    def _needs_backfill(self, record: Dict[str, Any], account: Account) -> bool:
        return super()._needs_backfill(record, account) or not record.get("projectId")

    def _is_duplicate(self, existing: Account, candidate: Account) -> bool:
        if existing.id == candidate.id:
            return True
        return bool(candidate.refresh_token) and existing.refresh_token == candidate.refresh_token

    async def _request_refresh(self, account: Account):
        client_id = os.environ.get(CLIENT_ID_ENV)
        client_secret = os.environ.get(CLIENT_SECRET_ENV)
        if not client_id or not client_secret:
            raise RefreshError(
                f"{CLIENT_ID_ENV} / {CLIENT_SECRET_ENV} not configured",
                account_id=account.id
            )

        payload = await self._post_refresh(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "grant_type": "refresh_token",
                "refresh_token": account.refresh_token,
            },
            account=account,
        )
        if not payload.get("access_token"):
            raise RefreshError("Invalid refresh response: missing access_token", account_id=account.id)

        refreshed_at = now_ms()
        expires_in = int(payload.get("expires_in") or 3599)
        account.access_token = payload["access_token"]
        account.refresh_token = payload.get("refresh_token") or account.refresh_token
        account.expires_at = refreshed_at + expires_in * 1000
        account.metadata["expires_in"] = expires_in
