"""
Dataclasses pour la configuration.

Chaque getter borne les valeurs: une valeur invalide retombe sur le défaut
plutôt que de faire échouer le démarrage.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_TIMEOUT,
    DEFAULT_RETRY_TIMES,
    DEFAULT_RETRY_DELAY,
    DEFAULT_ROUTES_FILE,
    DEFAULT_GENERATION_PARAMS,
    DEFAULT_PROVIDER_PRIORITIES,
    DEFAULT_ACCOUNTS_FILES,
    PROVIDER_ANTIGRAVITY,
    PROVIDER_KIRO,
    PROVIDER_CODEX,
    KIRO_DEFAULT_REGION,
    ANTIGRAVITY_API_URL,
    ANTIGRAVITY_NO_STREAM_URL,
    ANTIGRAVITY_HOST,
    ANTIGRAVITY_USER_AGENT,
)


def _as_float(value: Any, default: float, minimum: float = 0.0) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if number >= minimum else default


def _as_int(value: Any, default: int, minimum: int = 0) -> int:
    if isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number >= minimum else default


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return default


@dataclass
class ServerConfig:
    """Configuration du serveur HTTP et du relais streaming."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    timeout: float = DEFAULT_TIMEOUT
    retry_times: int = DEFAULT_RETRY_TIMES
    retry_delay: float = DEFAULT_RETRY_DELAY
    proxy: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerConfig":
        """Crée une instance depuis un dictionnaire."""
        return cls(
            host=data.get("host") or DEFAULT_HOST,
            port=_as_int(data.get("port"), DEFAULT_PORT, minimum=1),
            heartbeat_interval=_as_float(
                data.get("heartbeat_interval"), DEFAULT_HEARTBEAT_INTERVAL, minimum=0.01
            ),
            timeout=_as_float(data.get("timeout"), DEFAULT_TIMEOUT, minimum=1.0),
            retry_times=_as_int(data.get("retry_times"), DEFAULT_RETRY_TIMES),
            retry_delay=_as_float(data.get("retry_delay"), DEFAULT_RETRY_DELAY),
            proxy=data.get("proxy") or None,
        )


@dataclass
class GenerationDefaults:
    """Paramètres de génération appliqués quand le client ne les fournit pas."""
    temperature: float = DEFAULT_GENERATION_PARAMS["temperature"]
    top_p: float = DEFAULT_GENERATION_PARAMS["top_p"]
    top_k: int = DEFAULT_GENERATION_PARAMS["top_k"]
    max_tokens: int = DEFAULT_GENERATION_PARAMS["max_tokens"]
    thinking_budget: int = DEFAULT_GENERATION_PARAMS["thinking_budget"]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationDefaults":
        """Crée une instance depuis un dictionnaire."""
        defaults = DEFAULT_GENERATION_PARAMS
        return cls(
            temperature=_as_float(data.get("temperature"), defaults["temperature"]),
            top_p=_as_float(data.get("top_p"), defaults["top_p"]),
            top_k=_as_int(data.get("top_k"), defaults["top_k"]),
            max_tokens=_as_int(data.get("max_tokens"), defaults["max_tokens"], minimum=1),
            thinking_budget=_as_int(data.get("thinking_budget"), defaults["thinking_budget"]),
        )


@dataclass
class ProviderConfig:
    """Configuration d'un provider amont."""
    name: str
    enabled: bool = True
    priority: int = 100
    accounts_file: str = ""
    region: str = KIRO_DEFAULT_REGION
    models: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "ProviderConfig":
        """Crée une instance depuis un dictionnaire."""
        models = data.get("models") or []
        return cls(
            name=name,
            enabled=_as_bool(data.get("enabled"), True),
            priority=_as_int(data.get("priority"), DEFAULT_PROVIDER_PRIORITIES.get(name, 100)),
            accounts_file=data.get("accounts_file") or DEFAULT_ACCOUNTS_FILES.get(name, f"data/{name}.json"),
            region=data.get("region") or KIRO_DEFAULT_REGION,
            models=[str(m) for m in models if m],
        )


@dataclass
class AntigravityApiConfig:
    """Endpoints de l'API cloudcode v1internal."""
    url: str = ANTIGRAVITY_API_URL
    no_stream_url: str = ANTIGRAVITY_NO_STREAM_URL
    host: str = ANTIGRAVITY_HOST
    user_agent: str = ANTIGRAVITY_USER_AGENT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AntigravityApiConfig":
        """Crée une instance depuis un dictionnaire."""
        return cls(
            url=data.get("url") or ANTIGRAVITY_API_URL,
            no_stream_url=data.get("no_stream_url") or ANTIGRAVITY_NO_STREAM_URL,
            host=data.get("host") or ANTIGRAVITY_HOST,
            user_agent=data.get("user_agent") or ANTIGRAVITY_USER_AGENT,
        )


@dataclass
class Settings:
    """Configuration globale de l'application."""
    server: ServerConfig = field(default_factory=ServerConfig)
    api_key: Optional[str] = None
    pass_signature_to_client: bool = False
    defaults: GenerationDefaults = field(default_factory=GenerationDefaults)
    providers: Dict[str, ProviderConfig] = field(default_factory=dict)
    routes_file: str = DEFAULT_ROUTES_FILE
    model_provider_mapping: Dict[str, List[str]] = field(default_factory=dict)
    antigravity: AntigravityApiConfig = field(default_factory=AntigravityApiConfig)

    def __post_init__(self):
        for name in (PROVIDER_ANTIGRAVITY, PROVIDER_KIRO, PROVIDER_CODEX):
            if name not in self.providers:
                self.providers[name] = ProviderConfig.from_dict(name, {})

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "Settings":
        """Crée une instance depuis la configuration chargée."""
        security = config.get("security", {})
        other = config.get("other", {})
        routing = config.get("routing", {})

        api_key = security.get("api_key") or None
        # Une référence ${VAR} non résolue équivaut à une clé absente
        if api_key and api_key.startswith("${"):
            api_key = None

        providers = {
            name: ProviderConfig.from_dict(name, data or {})
            for name, data in config.get("providers", {}).items()
        }

        return cls(
            server=ServerConfig.from_dict(config.get("server", {})),
            api_key=api_key,
            pass_signature_to_client=_as_bool(other.get("pass_signature_to_client"), False),
            defaults=GenerationDefaults.from_dict(config.get("defaults", {})),
            providers=providers,
            routes_file=routing.get("routes_file") or DEFAULT_ROUTES_FILE,
            model_provider_mapping=_normalize_mapping(routing.get("model_provider_mapping", {})),
            antigravity=AntigravityApiConfig.from_dict(config.get("antigravity", {})),
        )

    def get_provider(self, name: str) -> Optional[ProviderConfig]:
        """Récupère la configuration d'un provider par son nom."""
        return self.providers.get(name)


def _normalize_mapping(raw: Dict[str, Any]) -> Dict[str, List[str]]:
    """Accepte "provider" ou ["p1", "p2"] pour chaque modèle."""
    mapping = {}
    for model, providers in (raw or {}).items():
        if isinstance(providers, str):
            mapping[model] = [providers]
        elif isinstance(providers, list):
            mapping[model] = [str(p) for p in providers if p]
    return mapping
