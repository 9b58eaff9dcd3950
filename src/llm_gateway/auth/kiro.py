"""
Credential store Kiro (AWS CodeWhisperer).

Format disque (camelCase):
    {id, email, accessToken, refreshToken, profileArn, clientId, clientSecret,
     authMethod (social|idc), region, expiresAt (ISO-8601), enable, timestamp}
"""
from typing import Any, Dict

from ..core.constants import (
    KIRO_AUTH_SOCIAL,
    KIRO_DEFAULT_EXPIRES_IN,
    KIRO_DEFAULT_REGION,
    KIRO_IDC_REFRESH_URL,
    KIRO_SOCIAL_REFRESH_URL,
    PROVIDER_KIRO,
    REFRESH_BUFFERS_MS,
)
from ..core.exceptions import RefreshError
from ..core.models import Account
from ..core.timing import iso_from_ms, now_ms, parse_instant_ms
from .base import CredentialStore


class KiroCredentialStore(CredentialStore):
    """Comptes Kiro: refresh "social" (desktop auth) ou IdC (AWS OIDC)."""

    provider_name = PROVIDER_KIRO
    refresh_buffer_ms = REFRESH_BUFFERS_MS[PROVIDER_KIRO]

    def account_from_record(self, record: Dict[str, Any]) -> Account:
        return Account(
            id=str(record.get("id") or self.new_account_id()),
            access_token=record.get("accessToken") or None,
            refresh_token=record.get("refreshToken") or None,
            expires_at=parse_instant_ms(record.get("expiresAt")),
            enabled=record.get("enable", True) is not False,
            email=record.get("email") or None,
            auth_type=record.get("authMethod") or KIRO_AUTH_SOCIAL,
            region=record.get("region") or KIRO_DEFAULT_REGION,
            created_at=parse_instant_ms(record.get("timestamp")),
            last_refresh=parse_instant_ms(record.get("lastRefresh")),
            metadata={
                "profileArn": record.get("profileArn") or None,
                "clientId": record.get("clientId") or None,
                "clientSecret": record.get("clientSecret") or None,
            },
        )

    def account_to_record(self, account: Account) -> Dict[str, Any]:
        return {
            "id": account.id,
            "email": account.email,
            "accessToken": account.access_token,
            "refreshToken": account.refresh_token,
            "profileArn": account.metadata.get("profileArn"),
            "clientId": account.metadata.get("clientId"),
            "clientSecret": account.metadata.get("clientSecret"),
            "authMethod": account.auth_type,
            "region": account.region,
            "expiresAt": iso_from_ms(account.expires_at) if account.expires_at else None,
            "enable": account.enabled,
            "timestamp": account.created_at,
            "lastRefresh": account.last_refresh,
        }

    def _prepare_new_record(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(data)
        record.setdefault("id", self.new_account_id())
        record.setdefault("timestamp", now_ms())
        return record

    def _is_duplicate(self, existing: Account, candidate: Account) -> bool:
        if existing.id == candidate.id:
            return True
        return bool(candidate.email) and existing.email == candidate.email

    async def _request_refresh(self, account: Account):
        region = account.region or KIRO_DEFAULT_REGION
        body = {"refreshToken": account.refresh_token}

        if account.auth_type == KIRO_AUTH_SOCIAL:
            url = KIRO_SOCIAL_REFRESH_URL.format(region=region)
        else:
            url = KIRO_IDC_REFRESH_URL.format(region=region)
            body.update({
                "clientId": account.metadata.get("clientId"),
                "clientSecret": account.metadata.get("clientSecret"),
                "grantType": "refresh_token",
            })

        payload = await self._post_refresh(url, json_body=body, account=account)
        if not payload.get("accessToken"):
            raise RefreshError("Invalid refresh response: missing accessToken", account_id=account.id)

        account.access_token = payload["accessToken"]
        account.refresh_token = payload.get("refreshToken") or account.refresh_token
        if payload.get("profileArn"):
            account.metadata["profileArn"] = payload["profileArn"]

        expires_in = payload.get("expiresIn") or KIRO_DEFAULT_EXPIRES_IN
        account.expires_at = now_ms() + int(expires_in) * 1000
