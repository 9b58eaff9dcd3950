"""
Quotas par (route, modèle).

Contrôle et consommation se font dans le même appel, sous verrou: deux
requêtes concurrentes sur la même route ne peuvent pas perdre un incrément.
"""
import asyncio
import logging
from dataclasses import replace
from typing import Optional

from ..core.constants import QUOTA_REASON_EXPIRED, QUOTA_REASON_PERIOD, QUOTA_REASON_TOTAL
from ..core.exceptions import PersistenceError
from ..core.models import QuotaDecision, UsageEntry
from ..core.timing import now_ms, period_start_ms
from .route_store import RouteStore

logger = logging.getLogger(__name__)


class QuotaEnforcer:
    """
    Applique les modelLimits d'une route et tient son modelUsage.

    Args:
        route_store: Document des routes (source et destination des compteurs)
    """

    def __init__(self, route_store: RouteStore):
        self.route_store = route_store
        self._lock = asyncio.Lock()

    async def check(self, route_id: str, model: str, now: Optional[int] = None) -> QuotaDecision:
        """
        Vérifie puis consomme une unité de quota.

        Ordre d'évaluation:
        1. Pas de limite -> autorisé
        2. expireAt dépassé -> refus "expired"
        3. Période configurée: remise à zéro de periodUsed si lastReset précède la période courante
        4. totalUsed >= total -> refus "total_exceeded"
        5. periodUsed >= periodLimit -> refus "period_exceeded"
        6. Incrément, sauvegarde, autorisé

        Args:
            route_id: Identifiant de la route
            model: Modèle réel (alias déjà résolu)
            now: Instant de référence en ms (défaut: maintenant)

        Returns:
            QuotaDecision (compteurs après consommation si autorisé)
        """
        current = now if now is not None else now_ms()

        async with self._lock:
            route = self.route_store.get(route_id)
            if route is None:
                return QuotaDecision(allowed=True)

            limit = route.model_limits.get(model)
            if limit is None or limit.is_unlimited:
                return QuotaDecision(allowed=True)

            usage = route.model_usage.get(model) or UsageEntry()

            if limit.expire_at is not None and current > limit.expire_at:
                return QuotaDecision(allowed=False, reason=QUOTA_REASON_EXPIRED, limit=limit, usage=usage)

            if limit.period:
                start = period_start_ms(limit.period, current)
                if start is not None and usage.last_reset < start:
                    usage = replace(usage, period_used=0, last_reset=start)

            if limit.total is not None and usage.total_used >= limit.total:
                return QuotaDecision(allowed=False, reason=QUOTA_REASON_TOTAL, limit=limit, usage=usage)

            if limit.period and limit.period_limit is not None and usage.period_used >= limit.period_limit:
                return QuotaDecision(allowed=False, reason=QUOTA_REASON_PERIOD, limit=limit, usage=usage)

            usage = replace(
                usage,
                total_used=usage.total_used + 1,
                period_used=usage.period_used + 1 if limit.period else usage.period_used,
            )
            route.model_usage[model] = usage

            try:
                await self.route_store.save()
            except PersistenceError as e:
                logger.error("🔴 [QUOTA] Usage non sauvegardé (%s/%s): %s", route_id, model, e)

            logger.debug(
                "[QUOTA] %s/%s total=%d period=%d",
                route_id, model, usage.total_used, usage.period_used
            )
            return QuotaDecision(allowed=True, limit=limit, usage=usage)
