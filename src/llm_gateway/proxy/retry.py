"""
Retry borné sur rate-limit amont (HTTP 429).

Seul UpstreamRateLimitError déclenche une nouvelle tentative; toute autre
erreur remonte immédiatement.
"""
import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from ..core.exceptions import UpstreamRateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def safe_retry_count(retries) -> int:
    """Normalise le nombre de retries configuré (entier >= 0)."""
    try:
        count = int(retries or 0)
    except (TypeError, ValueError):
        return 0
    return count if count > 0 else 0


async def _wait_before_retry(attempt: int, retries: int, delay: float, error: Exception, tag: str):
    wait = delay * (2 ** attempt) if delay > 0 else 0
    logger.warning(
        "🔄 [RETRY] %s 429, tentative %d/%d dans %.1fs: %s",
        tag, attempt + 1, retries, wait, error.message
    )
    if wait:
        await asyncio.sleep(wait)


async def with_429_retry(
    operation: Callable[[], Awaitable[T]],
    retries: int = 0,
    delay: float = 0.0,
    tag: str = "upstream"
) -> T:
    """
    Exécute un appel unaire avec retry sur 429.

    Args:
        operation: Fabrique de coroutine (rappelée à chaque tentative)
        retries: Nombre de retries après le premier essai
        delay: Délai de base du backoff exponentiel (secondes)
        tag: Étiquette pour les logs

    Returns:
        Résultat de l'opération

    Raises:
        UpstreamRateLimitError: Si toutes les tentatives ont reçu un 429
    """
    retries = safe_retry_count(retries)
    for attempt in range(retries + 1):
        try:
            return await operation()
        except UpstreamRateLimitError as e:
            if attempt >= retries:
                raise
            await _wait_before_retry(attempt, retries, delay, e, tag)
    raise RuntimeError("unreachable")


async def stream_with_429_retry(
    factory: Callable[[], AsyncIterator[T]],
    retries: int = 0,
    delay: float = 0.0,
    tag: str = "upstream"
) -> AsyncIterator[T]:
    """
    Relaie un flux amont avec retry sur 429.

    Un flux ne peut être rejoué que tant qu'aucun élément n'a été transmis:
    après le premier élément, un 429 remonte tel quel.

    Args:
        factory: Fabrique de générateur asynchrone (rappelée à chaque tentative)
        retries: Nombre de retries après le premier essai
        delay: Délai de base du backoff exponentiel (secondes)
        tag: Étiquette pour les logs

    Yields:
        Éléments du flux amont
    """
    retries = safe_retry_count(retries)
    for attempt in range(retries + 1):
        emitted = False
        stream = factory()
        try:
            async for item in stream:
                emitted = True
                yield item
            return
        except UpstreamRateLimitError as e:
            if emitted or attempt >= retries:
                raise
            await _wait_before_retry(attempt, retries, delay, e, tag)
        finally:
            await stream.aclose()
