"""
Modèles de données (dataclasses) pour LLM Gateway.

Les formes "nombre ou objet" des documents persistés (limites, usages) sont
normalisées ici, une seule fois, à la lecture.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .constants import MASTER_ROUTE_ID, QUOTA_PERIODS


def _non_negative_int(value: Any) -> Optional[int]:
    """Convertit en entier >= 0, None si absent ou invalide."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


def mask_secret(value: Optional[str]) -> Optional[str]:
    """Ne garde que les 8 derniers caractères d'un secret."""
    if not value:
        return None
    return f"...{value[-8:]}"


# ============================================================================
# COMPTES
# ============================================================================

@dataclass
class Account:
    """Credential d'un provider (paire de tokens ou clé API statique)."""
    id: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    api_key: Optional[str] = None
    expires_at: Optional[int] = None  # ms epoch
    enabled: bool = True
    email: Optional[str] = None
    auth_type: Optional[str] = None
    region: Optional[str] = None
    created_at: Optional[int] = None
    last_refresh: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def secret(self) -> Optional[str]:
        """Matériel d'authentification envoyé en Bearer."""
        return self.api_key or self.access_token

    @property
    def token_suffix(self) -> Optional[str]:
        return mask_secret(self.secret)

    def to_dict(self) -> Dict[str, Any]:
        """Vue publique (aucun secret en clair)."""
        return {
            "id": self.id,
            "email": self.email,
            "enabled": self.enabled,
            "auth_type": self.auth_type,
            "region": self.region,
            "expires_at": self.expires_at,
            "token": self.token_suffix,
            "has_refresh_token": bool(self.refresh_token),
            "created_at": self.created_at,
            "last_refresh": self.last_refresh,
        }


@dataclass
class RateLimitStatus:
    """Statut 429 d'un compte Codex (télémétrie, non bloquant)."""
    account_id: str
    reset_time: int  # ms epoch
    last_error: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "reset_time": self.reset_time,
            "last_error": self.last_error,
        }


# ============================================================================
# ROUTES & QUOTAS
# ============================================================================

@dataclass
class ModelLimit:
    """Limites d'un modèle sur une route; tous les champs None = illimité."""
    total: Optional[int] = None
    period: Optional[str] = None
    period_limit: Optional[int] = None
    expire_at: Optional[int] = None  # ms epoch

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["ModelLimit"]:
        """
        Normalise une limite persistée.

        Un nombre nu vaut {total: n} (format historique).

        Returns:
            ModelLimit, ou None si aucune contrainte n'est exploitable
        """
        if raw is None:
            return None
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            total = _non_negative_int(raw)
            return cls(total=total) if total is not None else None
        if not isinstance(raw, dict):
            return None

        period = raw.get("period")
        period = period if period in QUOTA_PERIODS else None
        period_limit = _non_negative_int(raw.get("periodLimit")) if period else None
        limit = cls(
            total=_non_negative_int(raw.get("total")),
            period=period,
            period_limit=period_limit,
            expire_at=_non_negative_int(raw.get("expireAt")),
        )
        if limit.is_unlimited:
            return None
        return limit

    @property
    def is_unlimited(self) -> bool:
        return (
            self.total is None
            and self.period_limit is None
            and self.expire_at is None
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "period": self.period,
            "periodLimit": self.period_limit,
            "expireAt": self.expire_at,
        }


@dataclass
class UsageEntry:
    """Compteurs d'usage d'un modèle sur une route."""
    total_used: int = 0
    period_used: int = 0
    last_reset: int = 0  # ms epoch

    @classmethod
    def from_raw(cls, raw: Any) -> "UsageEntry":
        """Normalise un usage persisté; un nombre nu vaut {totalUsed: n}."""
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return cls(total_used=_non_negative_int(raw) or 0)
        if not isinstance(raw, dict):
            return cls()
        return cls(
            total_used=_non_negative_int(raw.get("totalUsed")) or 0,
            period_used=_non_negative_int(raw.get("periodUsed")) or 0,
            last_reset=_non_negative_int(raw.get("lastReset")) or 0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalUsed": self.total_used,
            "periodUsed": self.period_used,
            "lastReset": self.last_reset,
        }


@dataclass
class Route:
    """Groupe d'accès: modèles autorisés, alias, clés hashées, quotas."""
    id: str
    name: str = ""
    models: List[str] = field(default_factory=list)
    aliases: Dict[str, str] = field(default_factory=dict)
    api_keys: List[str] = field(default_factory=list)
    api_key_hashes: List[str] = field(default_factory=list)
    model_limits: Dict[str, ModelLimit] = field(default_factory=dict)
    model_usage: Dict[str, UsageEntry] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = (
        "id", "name", "models", "aliases", "apiKeys",
        "apiKeyHashes", "modelLimits", "modelUsage",
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Route":
        """Construit une route depuis le document JSON (limites/usages normalisés)."""
        limits = {}
        for model, raw in (data.get("modelLimits") or {}).items():
            limit = ModelLimit.from_raw(raw)
            if limit is not None:
                limits[model] = limit

        usage = {
            model: UsageEntry.from_raw(raw)
            for model, raw in (data.get("modelUsage") or {}).items()
        }

        return cls(
            id=str(data.get("id", "")),
            name=data.get("name") or "",
            models=list(data.get("models") or []),
            aliases=dict(data.get("aliases") or {}),
            api_keys=list(data.get("apiKeys") or []),
            api_key_hashes=list(data.get("apiKeyHashes") or []),
            model_limits=limits,
            model_usage=usage,
            extra={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            "id": self.id,
            "name": self.name,
            "models": list(self.models),
            "aliases": dict(self.aliases),
            "apiKeys": list(self.api_keys),
            "apiKeyHashes": list(self.api_key_hashes),
            "modelLimits": {m: limit.to_dict() for m, limit in self.model_limits.items()},
            "modelUsage": {m: usage.to_dict() for m, usage in self.model_usage.items()},
        })
        return data


@dataclass
class ResolvedRoute:
    """Route résolue pour une requête (fournie par la couche d'authentification)."""
    id: str
    is_master: bool = False
    name: str = ""
    models: List[str] = field(default_factory=list)
    model_aliases: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def master(cls) -> "ResolvedRoute":
        return cls(id=MASTER_ROUTE_ID, is_master=True, name="master")


@dataclass
class QuotaDecision:
    """Résultat d'un contrôle de quota."""
    allowed: bool
    reason: Optional[str] = None
    limit: Optional[ModelLimit] = None
    usage: Optional[UsageEntry] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "limit": self.limit.to_dict() if self.limit else None,
            "usage": self.usage.to_dict() if self.usage else None,
        }


# ============================================================================
# REQUÊTES & RÉPONSES NORMALISÉES
# ============================================================================

@dataclass
class ToolSpec:
    """Déclaration d'outil indépendante du format client."""
    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolCall:
    """Appel d'outil émis par le modèle (arguments = JSON sérialisé)."""
    id: str
    name: str
    arguments: str = "{}"
    signature: Optional[str] = None


@dataclass
class ChatMessage:
    """Message normalisé: role in system | user | assistant | tool."""
    role: str
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    images: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class GenerationParams:
    """Jeu de paramètres commun aux trois formats clients."""
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    max_tokens: Optional[int] = None
    thinking_budget: Optional[int] = None
    stop: List[str] = field(default_factory=list)


@dataclass
class ChatRequest:
    """Requête de chat indépendante du format client et du provider."""
    model: str
    messages: List[ChatMessage]
    system: Optional[str] = None
    tools: List[ToolSpec] = field(default_factory=list)
    params: GenerationParams = field(default_factory=GenerationParams)
    stream: bool = False
    requested_model: Optional[str] = None


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens or self.prompt_tokens + self.completion_tokens,
        }


@dataclass
class ChatResult:
    """Réponse unaire normalisée."""
    content: str = ""
    reasoning_content: str = ""
    reasoning_signature: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: Optional[Usage] = None
    stop_reason: Optional[str] = None


# ============================================================================
# ÉVÉNEMENTS DE STREAMING
# ============================================================================

class EventType:
    MESSAGE_START = "message_start"
    BLOCK_START = "content_block_start"
    BLOCK_DELTA = "content_block_delta"
    BLOCK_STOP = "content_block_stop"
    MESSAGE_DELTA = "message_delta"
    MESSAGE_STOP = "message_stop"
    USAGE = "usage"


class BlockType:
    TEXT = "text"
    THINKING = "thinking"
    TOOL_USE = "tool_use"


@dataclass
class StreamEvent:
    """
    Événement intermédiaire produit par les adapters, consommé par les traducteurs.

    Un delta de bloc porte son type (text, thinking, tool_use); un appel d'outil
    arrive complet dans `tool_call`.
    """
    type: str
    block_type: Optional[str] = None
    text: str = ""
    signature: Optional[str] = None
    tool_call: Optional[ToolCall] = None
    stop_reason: Optional[str] = None
    usage: Optional[Usage] = None

    @classmethod
    def text_delta(cls, text: str) -> "StreamEvent":
        return cls(type=EventType.BLOCK_DELTA, block_type=BlockType.TEXT, text=text)

    @classmethod
    def thinking_delta(cls, text: str, signature: Optional[str] = None) -> "StreamEvent":
        return cls(
            type=EventType.BLOCK_DELTA,
            block_type=BlockType.THINKING,
            text=text,
            signature=signature,
        )

    @classmethod
    def tool_use(cls, tool_call: ToolCall) -> "StreamEvent":
        return cls(type=EventType.BLOCK_DELTA, block_type=BlockType.TOOL_USE, tool_call=tool_call)

    @classmethod
    def usage_event(cls, usage: Usage) -> "StreamEvent":
        return cls(type=EventType.USAGE, usage=usage)
