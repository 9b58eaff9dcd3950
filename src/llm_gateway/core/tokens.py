"""
Tokenization avec Tiktoken - estimation de l'usage quand le provider ne le renvoie pas.
"""
import json
from functools import lru_cache
from typing import List, Union

import tiktoken


@lru_cache(maxsize=1)
def get_encoding():
    """Encodage cl100k_base, chargé au premier usage."""
    return tiktoken.get_encoding("cl100k_base")


def count_tokens_text(text: str) -> int:
    """
    Compte les tokens d'un texte simple.

    Args:
        text: Texte à analyser

    Returns:
        Nombre de tokens
    """
    if not text:
        return 0
    return len(get_encoding().encode(text))


def count_tokens_messages(messages: List[dict]) -> int:
    """
    Estime les tokens d'entrée d'une liste de messages normalisés.

    Compte 3 tokens de structure par message, comme le format chat OpenAI.
    """
    if not messages:
        return 0

    token_count = 0
    for message in messages:
        token_count += 3
        content = message.get("content", "")
        if isinstance(content, str):
            token_count += count_tokens_text(content)
        elif isinstance(content, list):
            token_count += estimate_tokens_json(content)
    return token_count + 3


def estimate_tokens_json(data: Union[dict, list]) -> int:
    """
    Estime les tokens d'une structure JSON.

    Returns:
        Nombre de tokens estimé (0 si non sérialisable)
    """
    try:
        json_str = json.dumps(data, ensure_ascii=False)
        return count_tokens_text(json_str)
    except (TypeError, ValueError):
        return 0
