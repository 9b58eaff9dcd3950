"""
Horodatages en millisecondes epoch.

Tous les instants persistés (expiration des comptes, quotas) sont des entiers
ms epoch, convertis une seule fois à la lecture des documents.
"""
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional


def now_ms() -> int:
    """Instant courant en millisecondes epoch."""
    return int(time.time() * 1000)


def period_start_ms(period: str, now: Optional[int] = None) -> Optional[int]:
    """
    Calcule le début de la période courante (heure locale).

    Args:
        period: "daily" (minuit), "weekly" (lundi minuit) ou "monthly" (1er du mois)
        now: Instant de référence en ms (défaut: maintenant)

    Returns:
        Début de période en ms, ou None si la période est inconnue
    """
    current = datetime.fromtimestamp((now if now is not None else now_ms()) / 1000)
    midnight = current.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == "daily":
        start = midnight
    elif period == "weekly":
        start = midnight - timedelta(days=midnight.weekday())
    elif period == "monthly":
        start = midnight.replace(day=1)
    else:
        return None

    return int(start.timestamp() * 1000)


def parse_instant_ms(value: Any) -> Optional[int]:
    """
    Normalise un instant persisté (ms epoch, secondes epoch ou ISO-8601) en ms.

    Returns:
        Instant en ms, ou None si la valeur est absente ou illisible
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Heuristique: < 1e11 = secondes epoch
        return int(value * 1000) if value < 1e11 else int(value)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return parse_instant_ms(int(text))
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    return None


def iso_from_ms(value: int) -> str:
    """Formate un instant ms en ISO-8601 UTC (suffixe Z)."""
    instant = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return instant.isoformat(timespec="milliseconds").replace("+00:00", "Z")
