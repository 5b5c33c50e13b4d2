# sample_generator.py
from typing import Callable, Optional

from .llm_budget import approx_tokens_from_chars, chars_for_tokens, clip_text
from .probe_models import Sample


PROBE_HEADER = (
    "### PRUEBA DE LÍMITE DE CONTEXTO\n"
    "Esto es una prueba automática del tamaño máximo de entrada aceptado.\n"
    "NO analices ni resumas el contenido. Responde únicamente: OK\n\n"
    "### CONTENIDO DE RELLENO\n"
)

PADDING_PATTERNS = [
    "Este párrafo es contenido de relleno para medir la ventana de contexto.",
    "The quick brown fox jumps over the lazy dog while the probe keeps counting.",
    "Cada bloque añade longitud de forma predecible para acercarnos al objetivo.",
    "Binary search narrows the accepted range one request at a time.",
    "Los modelos difieren en su límite real aunque la documentación diga otra cosa.",
]


class PaddingSampleGenerator:
    """
    Genera un payload de ~N tokens: cabecera fija + frases de relleno rotativas.
    El conteo devuelto es el MEDIDO sobre el texto final (token_counter si se inyecta,
    aproximación chars→tokens si no), nunca el objetivo pedido.
    """

    def __init__(self, token_counter: Optional[Callable[[str], int]] = None):
        self._count = token_counter or (lambda text: approx_tokens_from_chars(len(text)))

    def _padding(self, size: int) -> str:
        parts = []
        total = 0
        i = 0
        while total < size:
            line = PADDING_PATTERNS[i % len(PADDING_PATTERNS)] + "\n"
            parts.append(line)
            total += len(line)
            i += 1
        return "".join(parts)[:size]

    def generate(self, target_token_count: int) -> Sample:
        target_chars = chars_for_tokens(target_token_count)
        if target_chars <= len(PROBE_HEADER):
            text = clip_text("header", PROBE_HEADER, target_chars)
        else:
            text = PROBE_HEADER + self._padding(target_chars - len(PROBE_HEADER))
        return Sample(text=text, actual_token_count=self._count(text))
