# outcome_classifier.py
"""
Clasificación de una llamada cruda al modelo.

Tabla de reglas ordenada (la primera que encaja gana). Para soportar una nueva
frase de un proveedor basta con añadir un patrón aquí; la lógica de búsqueda no cambia.
Los errores que no encajan en ninguna regla quedan como UNKNOWN (el executor los
reintenta una vez); nunca se asumen como límite de tokens.
"""
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

from .probe_models import Classification, RawCallResult
from .utils_text import strip_html_tags


@dataclass(frozen=True)
class ClassificationRule:
    classification: Classification
    patterns: Tuple[str, ...] = ()
    status_codes: Tuple[int, ...] = ()
    match_timeout: bool = False

    def matches(self, raw: RawCallResult, text_lower: str) -> bool:
        if self.match_timeout and raw.timed_out:
            return True
        if raw.status_code is not None and raw.status_code in self.status_codes:
            return True
        return any(p in text_lower for p in self.patterns)


DEFAULT_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule(
        Classification.TOKEN_LIMIT_EXCEEDED,
        patterns=(
            "context_length_exceeded",
            "maximum context length",
            "context length exceeded",
            "too many tokens",
            "token limit exceeded",
            "tokens_limit_reached",
            "max_tokens_exceeded",
            "request too large",
            "input too long",
            "prompt is too long",
            "exceeds the context window",
        ),
        status_codes=(413,),
    ),
    ClassificationRule(
        Classification.AUTH_ERROR,
        patterns=(
            "unauthorized",
            "forbidden",
            "invalid api key",
            "invalid_api_key",
            "invalid key",
            "incorrect api key",
            "authentication failed",
            "permission denied",
        ),
        status_codes=(401, 403),
    ),
    ClassificationRule(
        Classification.TRANSIENT,
        patterns=(
            "timeout",
            "timed out",
            "connection reset",
            "connection refused",
            "connection aborted",
            "network",
            "service unavailable",
            "bad gateway",
            "temporarily unavailable",
            "econnreset",
        ),
        status_codes=(408, 500, 502, 503, 504),
        match_timeout=True,
    ),
    ClassificationRule(
        Classification.RATE_LIMITED,
        patterns=(
            "rate limit",
            "ratelimitreached",
            "too many requests",
            "quota",
        ),
        status_codes=(429,),
    ),
)


def _error_text(raw: RawCallResult) -> str:
    parts = [raw.error or ""]
    if raw.is_error and raw.text:
        parts.append(raw.text)
    return strip_html_tags(" ".join(p for p in parts if p)).lower()


class OutcomeClassifier:
    def __init__(self, rules: Optional[Iterable[ClassificationRule]] = None):
        self.rules: Sequence[ClassificationRule] = tuple(DEFAULT_RULES if rules is None else rules)

    def classify(self, raw: RawCallResult) -> Classification:
        if not raw.is_error:
            return Classification.SUCCESS
        # Llamada abandonada por cancelación: no dice nada del límite.
        if raw.cancelled:
            return Classification.TRANSIENT

        text_lower = _error_text(raw)
        for rule in self.rules:
            if rule.matches(raw, text_lower):
                return rule.classification
        return Classification.UNKNOWN

    def with_rule(self, rule: ClassificationRule, first: bool = False) -> "OutcomeClassifier":
        """Devuelve un clasificador nuevo con la regla añadida (al principio o al final)."""
        rules = (rule,) + tuple(self.rules) if first else tuple(self.rules) + (rule,)
        return OutcomeClassifier(rules)


_DEFAULT_CLASSIFIER = OutcomeClassifier()


def classify(raw: RawCallResult) -> Classification:
    return _DEFAULT_CLASSIFIER.classify(raw)


def resolve_token_counts(raw: RawCallResult, requested_input: int, requested_output: int) -> Tuple[int, int]:
    """
    Conteos reales de la respuesta; si el proveedor no los devuelve, los pedidos.
    En errores no hay salida generada.
    """
    if raw.is_error:
        return (raw.input_tokens if raw.input_tokens is not None else requested_input,
                raw.output_tokens or 0)
    input_tokens = raw.input_tokens if raw.input_tokens is not None else requested_input
    output_tokens = raw.output_tokens if raw.output_tokens is not None else requested_output
    return input_tokens, output_tokens
