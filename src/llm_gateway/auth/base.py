"""
Credential store: contrat commun aux trois providers.

Pourquoi une classe de base:
- La rotation round-robin, la détection d'expiration et la persistance sont
  identiques pour tous les providers
- Seuls le format disque des comptes et l'appel de refresh diffèrent
  (méthodes à surcharger: account_from_record, account_to_record, _request_refresh)
"""
import asyncio
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles

from ..core.exceptions import ConfigurationError, PersistenceError, RefreshError, UpstreamAuthError
from ..core.models import Account
from ..core.timing import now_ms
from ..proxy.client import UpstreamClient, create_upstream_client

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Liste de comptes d'un provider avec rotation et refresh proactif.

    Args:
        accounts_file: Chemin du document JSON des comptes
        client: Client HTTP pour les appels de refresh
    """

    provider_name = "base"
    refresh_buffer_ms = 10 * 60 * 1000

    def __init__(self, accounts_file: str, client: UpstreamClient = None):
        self.accounts_file = accounts_file
        self.client = client or create_upstream_client(timeout=30.0, max_retries=1)
        self.accounts: List[Account] = []
        self.current_index = 0
        self._index_lock = asyncio.Lock()
        self._save_lock = asyncio.Lock()
        self._refresh_locks: Dict[str, asyncio.Lock] = {}

    # ========================================================================
    # FORMAT DISQUE (à surcharger)
    # ========================================================================

    def account_from_record(self, record: Dict[str, Any]) -> Account:
        """Convertit un enregistrement persisté en Account normalisé."""
        raise NotImplementedError

    def account_to_record(self, account: Account) -> Dict[str, Any]:
        """Convertit un Account vers le format persisté."""
        raise NotImplementedError

    async def _request_refresh(self, account: Account):
        """
        Appelle l'endpoint de refresh du provider et met à jour `account` en place.

        Raises:
            RefreshError: Réponse invalide ou erreur réseau
        """
        raise NotImplementedError

    def _prepare_new_record(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Complète un enregistrement fourni par l'admin (id, valeurs par défaut)."""
        return dict(data)

    def new_account_id(self) -> str:
        """Identifiant unique pour un compte qui n'en a pas."""
        return f"{self.provider_name}_{uuid.uuid4().hex[:12]}"

    def _needs_backfill(self, record: Dict[str, Any], account: Account) -> bool:
        """Indique si le chargement a complété des champs absents du document."""
        return account.id != record.get("id")

    def _is_duplicate(self, existing: Account, candidate: Account) -> bool:
        return existing.id == candidate.id

    # ========================================================================
    # PERSISTANCE
    # ========================================================================

    async def load(self) -> List[Account]:
        """
        Charge les comptes depuis le disque (crée un document vide si absent).

        Raises:
            ConfigurationError: Document illisible
        """
        path = Path(self.accounts_file)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write("[]")
            self.accounts = []
            logger.info("📁 [%s] Fichier de comptes créé: %s", self.provider_name.upper(), path)
            return self.accounts

        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()

        try:
            records = json.loads(content) if content.strip() else []
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                message=f"Fichier de comptes invalide ({path}): {e}",
                config_key=f"providers.{self.provider_name}.accounts_file"
            ) from e

        if isinstance(records, dict):
            records = records.get("accounts", [])

        accounts: List[Account] = []
        seen_ids = set()
        backfilled = False
        for record in records:
            if not isinstance(record, dict):
                continue
            account = self.account_from_record(record)
            if account.id in seen_ids:
                account.id = self.new_account_id()
            seen_ids.add(account.id)
            backfilled = backfilled or self._needs_backfill(record, account)
            accounts.append(account)
        self.accounts = accounts

        if backfilled:
            # Ids et champs générés écrits une fois pour rester stables
            await self._persist()
        logger.info(
            "✅ [%s] %d compte(s) chargé(s), %d actif(s)",
            self.provider_name.upper(), len(self.accounts), len(self.enabled_accounts())
        )
        return self.accounts

    async def save(self):
        """
        Écrit la liste complète des comptes (écriture atomique via fichier temporaire).

        Raises:
            PersistenceError: Échec d'écriture
        """
        path = Path(self.accounts_file)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        payload = json.dumps(
            [self.account_to_record(account) for account in self.accounts],
            ensure_ascii=False,
            indent=2
        )
        async with self._save_lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                    await f.write(payload)
                os.replace(tmp_path, path)
            except OSError as e:
                raise PersistenceError(
                    message=f"Impossible d'écrire les comptes: {e}",
                    path=str(path)
                ) from e

    async def _persist(self):
        """Sauvegarde best-effort: un échec est loggé, jamais propagé."""
        try:
            await self.save()
        except PersistenceError as e:
            logger.error("🔴 [%s] %s", self.provider_name.upper(), e)

    # ========================================================================
    # SÉLECTION & REFRESH
    # ========================================================================

    def enabled_accounts(self) -> List[Account]:
        return [account for account in self.accounts if account.enabled]

    def get_account_count(self) -> int:
        return len(self.enabled_accounts())

    def is_expired(self, account: Account, now: Optional[int] = None) -> bool:
        """
        Indique si le compte doit être rafraîchi avant usage.

        Un compte sans refresh token (clé API statique) n'expire jamais;
        un compte sans date d'expiration non plus.
        """
        if not account.refresh_token:
            return False
        if account.expires_at is None:
            return False
        current = now if now is not None else now_ms()
        return current >= account.expires_at - self.refresh_buffer_ms

    async def _next_account(self, enabled: List[Account]) -> Account:
        async with self._index_lock:
            account = enabled[self.current_index % len(enabled)]
            self.current_index += 1
            return account

    def _refresh_lock(self, account_id: str) -> asyncio.Lock:
        lock = self._refresh_locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._refresh_locks[account_id] = lock
        return lock

    async def get_token(self) -> Optional[Account]:
        """
        Sélectionne le prochain compte actif (round-robin), rafraîchi si besoin.

        Un refresh en échec passe au compte suivant; le nombre de tentatives est
        borné au nombre de comptes actifs.

        Returns:
            Account prêt à l'emploi, ou None si aucun compte actif

        Raises:
            UpstreamAuthError: Tous les refresh ont échoué
        """
        enabled = self.enabled_accounts()
        if not enabled:
            return None

        visited = set()
        last_error = None
        for _ in range(len(enabled)):
            account = await self._next_account(enabled)
            if id(account) in visited:
                continue
            visited.add(id(account))

            if not self.is_expired(account):
                return account

            try:
                async with self._refresh_lock(account.id):
                    # Un autre appel a pu rafraîchir le compte pendant l'attente
                    if self.is_expired(account):
                        await self._refresh_locked(account)
                return account
            except RefreshError as e:
                last_error = e
                logger.error(
                    "🔴 [%s] Refresh échoué pour %s: %s",
                    self.provider_name.upper(), account.email or account.id, e.message
                )

        raise UpstreamAuthError(
            message=f"No usable {self.provider_name} credential: refresh failed for every account",
            provider=self.provider_name
        ) from last_error

    async def refresh_token(self, account: Account) -> Account:
        """
        Force le refresh d'un compte et persiste la liste.

        Raises:
            RefreshError: Compte sans refresh token ou refresh refusé
        """
        async with self._refresh_lock(account.id):
            await self._refresh_locked(account)
        return account

    async def _refresh_locked(self, account: Account):
        if not account.refresh_token:
            raise RefreshError("No refresh token available", account_id=account.id)

        logger.info(
            "🔑 [%s] Refresh du token pour %s (%s)",
            self.provider_name.upper(), account.email or account.id, account.token_suffix
        )
        await self._request_refresh(account)
        account.last_refresh = now_ms()
        await self._persist()
        logger.info("✅ [%s] Token rafraîchi pour %s", self.provider_name.upper(), account.email or account.id)

    async def _post_refresh(self, url: str, json_body: Any = None, data: Dict[str, str] = None,
                            account: Account = None) -> Dict[str, Any]:
        """POST de refresh commun: erreurs réseau/HTTP/JSON converties en RefreshError."""
        account_id = account.id if account else None
        headers = {"Accept": "application/json"}
        try:
            response = await self.client.post(
                url, headers=headers, json_body=json_body, data=data, tag=self.provider_name
            )
        except Exception as e:
            raise RefreshError(f"Refresh request failed: {type(e).__name__}", account_id=account_id) from e

        if response.status_code >= 400:
            raise RefreshError(
                f"Refresh rejected with HTTP {response.status_code}",
                account_id=account_id,
                status=response.status_code
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise RefreshError("Invalid refresh response: not JSON", account_id=account_id) from e
        if not isinstance(payload, dict):
            raise RefreshError("Invalid refresh response: not an object", account_id=account_id)
        return payload

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def find_account(self, account_id: str) -> Optional[Account]:
        return next((a for a in self.accounts if a.id == account_id), None)

    def get_account_list(self) -> List[Dict[str, Any]]:
        """Liste des comptes pour l'admin (secrets masqués)."""
        return [account.to_dict() for account in self.accounts]

    async def _save_for_admin(self) -> Optional[str]:
        try:
            await self.save()
        except PersistenceError as e:
            logger.error("🔴 [%s] %s", self.provider_name.upper(), e)
            return e.message
        return None

    async def add_account(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Ajoute un compte, ou met à jour un compte existant équivalent.

        Returns:
            {"success", "message", "id"}
        """
        candidate = self.account_from_record(self._prepare_new_record(data))
        existing = next((a for a in self.accounts if self._is_duplicate(a, candidate)), None)

        if existing is not None:
            merged = self.account_to_record(existing)
            merged.update({k: v for k, v in data.items() if v is not None})
            merged["id"] = existing.id
            self.accounts[self.accounts.index(existing)] = self.account_from_record(merged)
            message = "Account updated"
            account_id = existing.id
        else:
            self.accounts.append(candidate)
            message = "Account added"
            account_id = candidate.id

        error = await self._save_for_admin()
        if error:
            return {"success": False, "message": error, "id": account_id}
        logger.info("➕ [%s] %s: %s", self.provider_name.upper(), message, account_id)
        return {"success": True, "message": message, "id": account_id}

    async def update_account(self, account_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Met à jour les champs persistés d'un compte (format disque)."""
        account = self.find_account(account_id)
        if account is None:
            return {"success": False, "message": "Account not found"}

        record = self.account_to_record(account)
        record.update(updates)
        record["id"] = account.id
        self.accounts[self.accounts.index(account)] = self.account_from_record(record)

        error = await self._save_for_admin()
        if error:
            return {"success": False, "message": error}
        return {"success": True, "message": "Account updated"}

    async def delete_account(self, account_id: str) -> Dict[str, Any]:
        account = self.find_account(account_id)
        if account is None:
            return {"success": False, "message": "Account not found"}

        self.accounts.remove(account)
        self._refresh_locks.pop(account_id, None)

        error = await self._save_for_admin()
        if error:
            return {"success": False, "message": error}
        return {"success": True, "message": "Account deleted"}

    async def reload(self) -> Dict[str, Any]:
        """Recharge les comptes depuis le disque."""
        await self.load()
        return {"success": True, "message": f"Reloaded {len(self.accounts)} account(s)"}
