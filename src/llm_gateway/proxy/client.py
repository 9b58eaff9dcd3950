"""
Client HTTPX vers les providers amont avec timeouts configurables et retry réseau.

Pourquoi cette complexité:
- Les streams des modèles "thinking" peuvent durer plusieurs minutes
- Une connexion peut tomber avant le premier octet (retry utile)
- Les 4xx/5xx sont rendus tels quels: c'est l'adapter qui les interprète
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

# Erreurs réseau qui justifient une nouvelle tentative
RETRYABLE_ERRORS = (httpx.ReadError, httpx.ConnectError, httpx.TimeoutException)


class UpstreamClient:
    """
    Client HTTP partagé par les adapters et les credential stores.

    Gère:
    - Timeout global + timeout de connexion court
    - Retry avec backoff exponentiel sur erreurs réseau uniquement
    - Proxy sortant optionnel
    - Transport injectable (tests: httpx.MockTransport)
    """

    def __init__(
        self,
        timeout: float = 300.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        proxy: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.proxy = proxy
        self.transport = transport

    def _new_client(self) -> httpx.AsyncClient:
        """Nouveau client à chaque requête (évite une connexion corrompue)."""
        kwargs: Dict[str, Any] = {
            "timeout": httpx.Timeout(self.timeout, connect=10.0),
            "limits": httpx.Limits(max_keepalive_connections=20, max_connections=50),
        }
        if self.transport is not None:
            kwargs["transport"] = self.transport
        elif self.proxy:
            kwargs["proxy"] = self.proxy
        return httpx.AsyncClient(**kwargs)

    async def _backoff(self, attempt: int, error: Exception, tag: str):
        delay = self.retry_delay * (2 ** attempt)
        logger.warning(
            "⚠️  [CLIENT] %s retry %d/%d après %.1fs: %s",
            tag, attempt + 1, self.max_retries, delay, error
        )
        await asyncio.sleep(delay)

    async def post(
        self,
        url: str,
        headers: Dict[str, str],
        json_body: Any = None,
        data: Optional[Dict[str, str]] = None,
        tag: str = "upstream"
    ) -> httpx.Response:
        """
        Envoie un POST et retourne la réponse complète (corps lu).

        Args:
            url: URL cible
            headers: Headers HTTP
            json_body: Corps JSON (exclusif avec data)
            data: Corps formulaire url-encodé
            tag: Nom du provider pour les logs

        Raises:
            httpx.HTTPError: Erreur réseau après épuisement des retries
        """
        for attempt in range(self.max_retries + 1):
            try:
                async with self._new_client() as client:
                    return await client.post(url, headers=headers, json=json_body, data=data)
            except RETRYABLE_ERRORS as e:
                if attempt < self.max_retries:
                    await self._backoff(attempt, e, tag)
                    continue
                raise
        raise httpx.ConnectError("Échec après retries")

    @asynccontextmanager
    async def stream(
        self,
        url: str,
        headers: Dict[str, str],
        json_body: Any = None,
        tag: str = "upstream"
    ) -> AsyncIterator[httpx.Response]:
        """
        Ouvre une requête POST en streaming.

        Le retry ne couvre que l'ouverture: une fois la réponse reçue, le corps
        est consommé par l'appelant et ne peut pas être rejoué.

        Yields:
            httpx.Response non lue (aiter_bytes / aiter_lines)
        """
        client = self._new_client()
        response = None
        try:
            for attempt in range(self.max_retries + 1):
                try:
                    request = client.build_request("POST", url, headers=headers, json=json_body)
                    response = await client.send(request, stream=True)
                    break
                except RETRYABLE_ERRORS as e:
                    if attempt < self.max_retries:
                        await self._backoff(attempt, e, tag)
                        continue
                    raise
            yield response
        finally:
            if response is not None:
                await response.aclose()
            await client.aclose()


def create_upstream_client(
    timeout: float = 300.0,
    max_retries: int = 2,
    retry_delay: float = 1.0,
    proxy: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> UpstreamClient:
    """
    Crée un client amont.

    Args:
        timeout: Timeout en secondes
        max_retries: Nombre de retries sur erreur réseau
        retry_delay: Délai initial entre retries (backoff exponentiel)
        proxy: URL du proxy sortant (optionnel)
        transport: Transport HTTPX personnalisé (optionnel)

    Returns:
        Instance de UpstreamClient
    """
    return UpstreamClient(
        timeout=timeout,
        max_retries=max_retries,
        retry_delay=retry_delay,
        proxy=proxy,
        transport=transport
    )
