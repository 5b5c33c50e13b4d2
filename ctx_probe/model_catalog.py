# model_catalog.py
"""
Límites de contexto DOCUMENTADOS por modelo. Son orientativos (un proxy o gateway
puede imponer otros): sirven para sembrar el techo por defecto y para comparar
con lo que detecta el probe, nunca como resultado.
"""
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .llm_probe_config import DOCUMENTED_LIMIT_HEADROOM


@dataclass(frozen=True)
class ModelSpec:
    name: str
    provider: str
    documented_limit: int


DEFAULT_MODEL_CATALOG: Dict[str, ModelSpec] = {
    "gpt-4.1": ModelSpec("GPT-4.1", "OpenAI", 128000),
    "gpt-4o": ModelSpec("GPT-4o", "OpenAI", 128000),
    "gpt-5-mini": ModelSpec("GPT-5 mini", "OpenAI", 64000),
    "gpt-5": ModelSpec("GPT-5", "OpenAI", 200000),
    "o3-mini": ModelSpec("o3-mini", "OpenAI", 64000),
    "o4-mini": ModelSpec("o4-mini", "OpenAI", 64000),
    "gpt-4": ModelSpec("GPT-4", "OpenAI", 8192),
    "gpt-3.5-turbo": ModelSpec("GPT-3.5 Turbo", "OpenAI", 4096),
    "claude-sonnet-3.5": ModelSpec("Claude Sonnet 3.5", "Anthropic", 200000),
    "claude-sonnet-3.7": ModelSpec("Claude Sonnet 3.7", "Anthropic", 200000),
    "claude-sonnet-4": ModelSpec("Claude Sonnet 4", "Anthropic", 300000),
    "claude-3-sonnet": ModelSpec("Claude 3 Sonnet", "Anthropic", 200000),
    "claude-3-haiku": ModelSpec("Claude 3 Haiku", "Anthropic", 200000),
    "gemini-2.5-pro": ModelSpec("Gemini 2.5 Pro", "Google", 1000000),
}


class ModelCatalog:
    """Catálogo de solo lectura; compartible entre ejecuciones concurrentes."""

    def __init__(self, entries: Optional[Mapping[str, ModelSpec]] = None):
        self._entries = dict(DEFAULT_MODEL_CATALOG if entries is None else entries)

    def get(self, model_id: str) -> Optional[ModelSpec]:
        return self._entries.get((model_id or "").strip())

    def documented_limit(self, model_id: str) -> Optional[int]:
        spec = self.get(model_id)
        return spec.documented_limit if spec else None

    def default_ceiling(self, model_id: str, min_test_length: int) -> Optional[int]:
        """Techo sugerido: límite documentado con margen. None si no hay dato útil."""
        limit = self.documented_limit(model_id)
        if limit is None:
            return None
        ceiling = int(limit * DOCUMENTED_LIMIT_HEADROOM)
        return ceiling if ceiling > min_test_length else None


DEFAULT_CATALOG = ModelCatalog()
