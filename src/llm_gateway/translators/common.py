"""
Utilitaires partagés par les traducteurs de protocole.

- Normalisation des paramètres de génération (OpenAI, Claude, Gemini)
- Normalisation des déclarations d'outils
- Dégradation tolérante des arguments d'outils invalides
"""
import json
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from ..core.exceptions import ValidationError
from ..core.tokens import count_tokens_messages, count_tokens_text
from ..core.models import (
    BlockType,
    ChatMessage,
    ChatResult,
    EventType,
    GenerationParams,
    StreamEvent,
    ToolSpec,
    Usage,
)

logger = logging.getLogger(__name__)

# Budgets de réflexion associés à reasoning_effort (format OpenAI)
REASONING_EFFORT_BUDGETS = {
    "minimal": 1024,
    "low": 4096,
    "medium": 8192,
    "high": 24576,
}


def new_message_id() -> str:
    """Identifiant de message `msg_<ms>`."""
    return f"msg_{int(time.time() * 1000)}"


def new_tool_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def _optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


def _stop_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, list):
        return [str(item) for item in value if item]
    return []


# ============================================================================
# PARAMÈTRES
# ============================================================================

def normalize_openai_parameters(body: Dict[str, Any]) -> GenerationParams:
    """Paramètres d'une requête chat OpenAI."""
    thinking_budget = _optional_int(body.get("thinking_budget"))
    effort = body.get("reasoning_effort")
    if thinking_budget is None and isinstance(effort, str):
        thinking_budget = REASONING_EFFORT_BUDGETS.get(effort.strip().lower())

    return GenerationParams(
        temperature=_optional_float(body.get("temperature")),
        top_p=_optional_float(body.get("top_p")),
        top_k=_optional_int(body.get("top_k")),
        max_tokens=_optional_int(body.get("max_completion_tokens") or body.get("max_tokens")),
        thinking_budget=thinking_budget,
        stop=_stop_list(body.get("stop")),
    )


def normalize_claude_parameters(body: Dict[str, Any]) -> GenerationParams:
    """
    Paramètres d'une requête messages Claude.

    `thinking: {type: "enabled", budget_tokens}` devient thinking_budget;
    `thinking: {type: "disabled"}` force un budget nul.
    """
    thinking_budget = None
    thinking = body.get("thinking")
    if isinstance(thinking, dict):
        if thinking.get("type") == "enabled":
            thinking_budget = _optional_int(thinking.get("budget_tokens"))
        elif thinking.get("type") == "disabled":
            thinking_budget = 0

    return GenerationParams(
        temperature=_optional_float(body.get("temperature")),
        top_p=_optional_float(body.get("top_p")),
        top_k=_optional_int(body.get("top_k")),
        max_tokens=_optional_int(body.get("max_tokens")),
        thinking_budget=thinking_budget,
        stop=_stop_list(body.get("stop_sequences")),
    )


def normalize_gemini_parameters(config: Dict[str, Any]) -> GenerationParams:
    """Paramètres d'un generationConfig Gemini."""
    thinking = config.get("thinkingConfig") or {}
    return GenerationParams(
        temperature=_optional_float(config.get("temperature")),
        top_p=_optional_float(config.get("topP")),
        top_k=_optional_int(config.get("topK")),
        max_tokens=_optional_int(config.get("maxOutputTokens")),
        thinking_budget=_optional_int(thinking.get("thinkingBudget")),
        stop=_stop_list(config.get("stopSequences")),
    )


# ============================================================================
# OUTILS
# ============================================================================

def normalize_tools(tools: Any) -> List[ToolSpec]:
    """
    Convertit des déclarations d'outils (OpenAI `function` ou Claude `input_schema`).

    Les entrées sans nom sont ignorées.
    """
    if not isinstance(tools, list):
        return []

    specs = []
    for tool in tools:
        if not isinstance(tool, dict):
            continue
        function = tool.get("function") if isinstance(tool.get("function"), dict) else {}
        name = tool.get("name") or function.get("name")
        if not name:
            continue
        specs.append(ToolSpec(
            name=name,
            description=tool.get("description") or function.get("description") or "",
            parameters=tool.get("input_schema") or function.get("parameters") or {},
        ))
    return specs


def parse_tool_arguments(arguments: Any) -> Dict[str, Any]:
    """
    Décode les arguments JSON d'un appel d'outil.

    Un JSON invalide dégrade en {} sans faire échouer la réponse.
    """
    if isinstance(arguments, dict):
        return arguments
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except (TypeError, ValueError):
        logger.warning("⚠️  [TRANSLATE] Arguments d'outil invalides, remplacés par {}: %s", str(arguments)[:100])
        return {}
    return parsed if isinstance(parsed, dict) else {}


# ============================================================================
# CONTENU
# ============================================================================

def content_to_text(content: Any) -> str:
    """Texte brut d'un contenu string ou liste de parts (type text)."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for part in content:
            if isinstance(part, str):
                texts.append(part)
            elif isinstance(part, dict) and part.get("type") in ("text", "input_text", "output_text"):
                texts.append(part.get("text") or "")
        return "".join(texts)
    return str(content)


def extract_images(content: Any) -> List[Dict[str, str]]:
    """Images inline (data URL OpenAI ou source base64 Claude) -> [{mime_type, data}]."""
    images = []
    if not isinstance(content, list):
        return images
    for part in content:
        if not isinstance(part, dict):
            continue
        if part.get("type") == "image_url":
            url = (part.get("image_url") or {}).get("url", "")
            if url.startswith("data:") and ";base64," in url:
                header, data = url.split(";base64,", 1)
                images.append({"mime_type": header[5:], "data": data})
        elif part.get("type") == "image":
            source = part.get("source") or {}
            if source.get("type") == "base64" and source.get("data"):
                images.append({"mime_type": source.get("media_type", "image/png"), "data": source["data"]})
    return images


def split_system(messages: List[ChatMessage], system: Optional[str] = None):
    """
    Sépare les messages system du reste de la conversation.

    Returns:
        (texte system fusionné ou None, messages sans system)
    """
    parts = [system] if system else []
    conversation = []
    for message in messages:
        if message.role == "system":
            if message.content:
                parts.append(message.content)
        else:
            conversation.append(message)
    return ("\n\n".join(parts) if parts else None), conversation


def require_fields(body: Any, *fields: str):
    """
    Vérifie la présence des champs obligatoires d'une requête client.

    Raises:
        ValidationError: Corps non JSON-objet ou champ manquant/vide
    """
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    for name in fields:
        if not body.get(name):
            raise ValidationError(f"{name} is required", field=name)


def fold_events(events: List[StreamEvent]) -> ChatResult:
    """
    Agrège une séquence d'événements en réponse unaire.

    Utilisé par les adapters dont l'endpoint unaire renvoie le même format
    que le flux.
    """
    result = ChatResult()
    text_parts: List[str] = []
    reasoning_parts: List[str] = []
    for event in events:
        if event.type == EventType.BLOCK_DELTA:
            if event.block_type == BlockType.TEXT:
                text_parts.append(event.text)
            elif event.block_type == BlockType.THINKING:
                reasoning_parts.append(event.text)
                if event.signature:
                    result.reasoning_signature = event.signature
            elif event.block_type == BlockType.TOOL_USE and event.tool_call:
                result.tool_calls.append(event.tool_call)
        elif event.type == EventType.USAGE and event.usage:
            result.usage = event.usage
        elif event.type == EventType.MESSAGE_DELTA:
            result.stop_reason = event.stop_reason
            if event.usage:
                result.usage = event.usage
    result.content = "".join(text_parts)
    result.reasoning_content = "".join(reasoning_parts)
    return result


def estimate_usage(request_messages: List[ChatMessage], output_text: str) -> Usage:
    """Usage estimé (tiktoken) quand le provider n'en renvoie pas."""
    prompt = count_tokens_messages([{"content": m.content} for m in request_messages])
    completion = count_tokens_text(output_text)
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)
