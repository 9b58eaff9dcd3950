"""
Admission d'une requête de chat: résolution d'alias, liste blanche, quota.

Point d'entrée unique pour les trois formats clients (OpenAI, Claude, Gemini):
tous débitent le même état de route avec le même algorithme.
"""
import logging

from ..core.constants import QUOTA_REASON_EXPIRED, QUOTA_REASON_PERIOD, QUOTA_REASON_TOTAL
from ..core.exceptions import QuotaExceededError, ValidationError
from ..core.models import QuotaDecision, ResolvedRoute
from ..core.timing import iso_from_ms
from .quota import QuotaEnforcer

logger = logging.getLogger(__name__)


def resolve_model(route: ResolvedRoute, requested_model: str) -> str:
    """
    Modèle réel demandé via une route.

    Raises:
        ValidationError: Alias invalide ou modèle hors liste blanche
    """
    if route.is_master:
        return requested_model

    if requested_model in route.model_aliases:
        target = route.model_aliases[requested_model]
        if not target or not isinstance(target, str):
            raise ValidationError(f"Invalid alias mapping for model: {requested_model}", field="model")
        return target

    if requested_model in route.models:
        return requested_model

    allowed = sorted({m for m in list(route.models) + list(route.model_aliases) if m})
    raise ValidationError(
        f"Model '{requested_model}' is not allowed for this API key. Allowed models: {', '.join(allowed)}",
        field="model"
    )


def quota_message(requested_model: str, decision: QuotaDecision) -> str:
    """Message client d'un refus de quota."""
    limit = decision.limit
    usage = decision.usage
    if decision.reason == QUOTA_REASON_TOTAL:
        return f"Model '{requested_model}' total quota exceeded. Limit: {limit.total}, used: {usage.total_used}"
    if decision.reason == QUOTA_REASON_PERIOD:
        return (
            f"Model '{requested_model}' {limit.period} quota exceeded. "
            f"Limit: {limit.period_limit}, used: {usage.period_used}"
        )
    if decision.reason == QUOTA_REASON_EXPIRED:
        return f"Model '{requested_model}' routing key expired at {iso_from_ms(limit.expire_at)}"
    return f"Model '{requested_model}' quota exceeded."


async def admit(route: ResolvedRoute, requested_model: str, enforcer: QuotaEnforcer) -> str:
    """
    Admet une requête et consomme son quota.

    Args:
        route: Route résolue par l'authentification
        requested_model: Modèle demandé par le client (éventuellement un alias)
        enforcer: QuotaEnforcer partagé

    Returns:
        Modèle réel à dispatcher

    Raises:
        ValidationError: Modèle non autorisé
        QuotaExceededError: Quota épuisé ou route expirée
    """
    actual_model = resolve_model(route, requested_model)
    if route.is_master:
        return actual_model

    decision = await enforcer.check(route.id, actual_model)
    if not decision.allowed:
        message = quota_message(requested_model, decision)
        logger.warning("⚠️  [QUOTA] Route %s refusée: %s", route.id, message)
        raise QuotaExceededError(
            message=message,
            reason=decision.reason,
            counters=decision.to_dict(),
        )
    return actual_model
