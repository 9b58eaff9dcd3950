"""
Suivi des rate-limits (429) par compte.

Le statut est purement informatif: il est exposé à l'admin mais ne filtre
pas la sélection des comptes dans get_token.
"""
import json
import logging
import re
import threading
from typing import Any, Dict, Optional

from ..core.constants import DEFAULT_RATE_LIMIT_WINDOW_MS
from ..core.models import RateLimitStatus
from ..core.timing import now_ms

logger = logging.getLogger(__name__)

_DURATION_PATTERN = re.compile(r"([\d.]+)\s*(ms|s|m|h)", re.IGNORECASE)
_MESSAGE_DELAY_PATTERN = re.compile(r"(?:in|after)\s+([\d.]+\s*(?:ms|s|m|h)[\d.smh\s]*)", re.IGNORECASE)

_UNIT_MS = {"ms": 1, "s": 1000, "m": 60 * 1000, "h": 60 * 60 * 1000}


def parse_duration_ms(text: Any) -> Optional[int]:
    """
    Convertit une durée texte en millisecondes.

    Toutes les composantes sont additionnées: "2m30s" -> 150000, "1h" -> 3600000.

    Returns:
        Durée en ms, ou None si aucune composante reconnue
    """
    if not text or not isinstance(text, str):
        return None

    total = 0.0
    matched = False
    for value, unit in _DURATION_PATTERN.findall(text):
        try:
            number = float(value)
        except ValueError:
            continue
        matched = True
        total += number * _UNIT_MS[unit.lower()]

    return round(total) if matched else None


def parse_retry_delay(error_data: Any) -> Optional[int]:
    """
    Extrait le délai de retry d'un corps d'erreur 429.

    Ordre de priorité:
    1. error.details[] de type RetryInfo (retryDelay)
    2. error.details[].metadata.quotaResetDelay
    3. Durée dans le message ("try again in 2m30s", "retry after 1h")
    4. retryAfter numérique (secondes)

    Args:
        error_data: Corps d'erreur (dict ou texte JSON)

    Returns:
        Délai en ms, ou None si rien n'est exploitable
    """
    data = error_data
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except (ValueError, UnicodeDecodeError):
            return None
    if not isinstance(data, dict):
        return None

    error = data.get("error") if isinstance(data.get("error"), dict) else {}

    details = error.get("details")
    if isinstance(details, list):
        for detail in details:
            if not isinstance(detail, dict):
                continue
            if "RetryInfo" in str(detail.get("@type", "")) and detail.get("retryDelay"):
                delay = parse_duration_ms(detail["retryDelay"])
                if delay:
                    return delay
            metadata = detail.get("metadata")
            if isinstance(metadata, dict) and metadata.get("quotaResetDelay"):
                delay = parse_duration_ms(metadata["quotaResetDelay"])
                if delay:
                    return delay

    message = error.get("message") or data.get("message") or ""
    if isinstance(message, str):
        match = _MESSAGE_DELAY_PATTERN.search(message)
        if match:
            delay = parse_duration_ms(match.group(1))
            if delay:
                return delay

    retry_after = data.get("retryAfter")
    if retry_after:
        try:
            return int(float(retry_after)) * 1000
        except (TypeError, ValueError):
            return None

    return None


def extract_error_message(error_data: Any) -> str:
    """Message d'erreur lisible d'un corps 429."""
    data = error_data
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except (ValueError, UnicodeDecodeError):
            return "Rate limit exceeded"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if data.get("message"):
            return str(data["message"])
    return "Rate limit exceeded"


class RateLimitTracker:
    """
    Statut 429 par compte, nettoyé paresseusement après resetTime.

    Args:
        default_window_ms: Fenêtre appliquée quand le délai est introuvable
    """

    def __init__(self, default_window_ms: int = DEFAULT_RATE_LIMIT_WINDOW_MS):
        self.default_window_ms = default_window_ms
        self._status: Dict[str, RateLimitStatus] = {}
        self._lock = threading.Lock()

    def record(self, account_id: str, error_data: Any, now: Optional[int] = None) -> RateLimitStatus:
        """
        Enregistre un 429 pour un compte.

        Returns:
            Statut enregistré
        """
        delay = parse_retry_delay(error_data) or self.default_window_ms
        current = now if now is not None else now_ms()
        status = RateLimitStatus(
            account_id=account_id,
            reset_time=current + delay,
            last_error=extract_error_message(error_data),
        )
        with self._lock:
            self._status[account_id] = status
        logger.warning(
            "⏳ [RATE_LIMIT] Compte %s limité pendant %d min: %s",
            account_id, delay // 60000, status.last_error
        )
        return status

    def clear(self, account_id: str):
        with self._lock:
            self._status.pop(account_id, None)

    def get(self, account_id: str, now: Optional[int] = None) -> Optional[RateLimitStatus]:
        """Statut courant, None si absent ou expiré (l'entrée expirée est supprimée)."""
        current = now if now is not None else now_ms()
        with self._lock:
            status = self._status.get(account_id)
            if status is None:
                return None
            if current >= status.reset_time:
                del self._status[account_id]
                return None
            return status

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Tous les statuts encore actifs."""
        current = now_ms()
        with self._lock:
            return {
                account_id: status.to_dict()
                for account_id, status in self._status.items()
                if current < status.reset_time
            }
