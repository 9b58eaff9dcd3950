"""
Routes d'administration (clé maître uniquement).

Comptes par provider, rechargement, état de rate limit Codex et
onboarding OAuth Codex (PKCE).
"""
import secrets
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Request

from ...auth.codex import CodexCredentialStore, build_authorize_url, generate_pkce
from ...core.constants import CODEX_REDIRECT_URI
from ...core.exceptions import AuthenticationError, RefreshError
from ...providers.base import BaseProvider
from ..dependencies import get_registry, require_master

router = APIRouter()


def admin_guard(request: Request):
    try:
        return require_master(request)
    except AuthenticationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e


def _provider(request: Request, name: str) -> BaseProvider:
    provider = get_registry(request).get(name)
    if provider is None:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {name}")
    return provider


def _check(result: Dict[str, Any]) -> Dict[str, Any]:
    if not result.get("success"):
        status = 404 if result.get("message") == "Account not found" else 500
        raise HTTPException(status_code=status, detail=result.get("message"))
    return result


@router.get("/providers", dependencies=[Depends(admin_guard)])
async def list_providers(request: Request):
    """Providers enregistrés, avec état et statistiques."""
    return {"providers": get_registry(request).get_all_stats()}


@router.post("/reload", dependencies=[Depends(admin_guard)])
async def reload_all(request: Request):
    return await get_registry(request).reload_all()


# ============================================================================
# COMPTES
# ============================================================================

@router.get("/{provider_name}/accounts", dependencies=[Depends(admin_guard)])
async def list_accounts(provider_name: str, request: Request):
    provider = _provider(request, provider_name)
    return {"provider": provider.name, "accounts": provider.store.get_account_list()}


@router.post("/{provider_name}/accounts", dependencies=[Depends(admin_guard)])
async def add_account(provider_name: str, request: Request, data: Dict[str, Any] = Body(...)):
    """Ajoute un compte (ou met à jour son doublon)."""
    provider = _provider(request, provider_name)
    return _check(await provider.store.add_account(data))


@router.patch("/{provider_name}/accounts/{account_id}", dependencies=[Depends(admin_guard)])
async def update_account(provider_name: str, account_id: str, request: Request,
                         updates: Dict[str, Any] = Body(...)):
    provider = _provider(request, provider_name)
    return _check(await provider.store.update_account(account_id, updates))


@router.delete("/{provider_name}/accounts/{account_id}", dependencies=[Depends(admin_guard)])
async def delete_account(provider_name: str, account_id: str, request: Request):
    provider = _provider(request, provider_name)
    return _check(await provider.store.delete_account(account_id))


@router.post("/{provider_name}/accounts/{account_id}/refresh", dependencies=[Depends(admin_guard)])
async def refresh_account(provider_name: str, account_id: str, request: Request):
    """Force le rafraîchissement d'un compte."""
    provider = _provider(request, provider_name)
    account = provider.store.find_account(account_id)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    try:
        account = await provider.refresh_token(account)
    except RefreshError as e:
        raise HTTPException(status_code=502, detail=e.message) from e
    return {"success": True, "account": account.to_dict()}


@router.post("/{provider_name}/reload", dependencies=[Depends(admin_guard)])
async def reload_provider(provider_name: str, request: Request):
    provider = _provider(request, provider_name)
    result = await provider.reload()
    get_registry(request).build_model_mapping()
    return result


# ============================================================================
# CODEX
# ============================================================================

@router.get("/codex/rate-limits/{account_id}", dependencies=[Depends(admin_guard)])
async def codex_rate_limit(account_id: str, request: Request):
    """État de rate limit d'un compte Codex (indicatif)."""
    provider = _provider(request, "codex")
    status = provider.get_rate_limit_status(account_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return status


@router.get("/codex/oauth/authorize", dependencies=[Depends(admin_guard)])
async def codex_oauth_authorize(redirect_uri: str = CODEX_REDIRECT_URI):
    """
    URL d'autorisation OAuth Codex.

    Le code_verifier renvoyé doit être repassé à /codex/oauth/exchange.
    """
    verifier, challenge = generate_pkce()
    state = secrets.token_urlsafe(16)
    return {
        "authorize_url": build_authorize_url(challenge, state, redirect_uri),
        "state": state,
        "code_verifier": verifier,
        "redirect_uri": redirect_uri,
    }


@router.post("/codex/oauth/exchange", dependencies=[Depends(admin_guard)])
async def codex_oauth_exchange(request: Request, data: Dict[str, Any] = Body(...)):
    """Échange code + code_verifier contre un compte Codex enregistré."""
    provider = _provider(request, "codex")
    store = provider.store
    if not isinstance(store, CodexCredentialStore):
        raise HTTPException(status_code=400, detail="Codex OAuth is not available")

    code = data.get("code")
    verifier = data.get("code_verifier")
    if not code or not verifier:
        raise HTTPException(status_code=400, detail="code and code_verifier are required")

    try:
        result = await store.exchange_authorization_code(
            code, verifier, data.get("redirect_uri") or CODEX_REDIRECT_URI
        )
    except RefreshError as e:
        raise HTTPException(status_code=502, detail=e.message) from e
    return _check(result)
