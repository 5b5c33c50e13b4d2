# llm_budget.py
import re

from .llm_probe_config import CHARS_PER_TOKEN


def approx_tokens_from_chars(chars: int) -> int:
    # CHARS_PER_TOKEN típico ~4. Ajustable por config.
    if CHARS_PER_TOKEN <= 0:
        return chars  # fallback seguro
    return int(chars / CHARS_PER_TOKEN)


def chars_for_tokens(tokens: int) -> int:
    if CHARS_PER_TOKEN <= 0:
        return max(0, tokens)
    return max(0, int(tokens * CHARS_PER_TOKEN))


def clip_text(label: str, text: str, max_chars: int) -> str:
    """Recorta por el final dejando una marca; el probe necesita tamaños exactos, no head/tail."""
    if not text:
        return ""
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    marker = f"\n[... RECORTADO ({label}) ...]"
    if len(marker) >= max_chars:
        return text[:max_chars]
    return text[: max_chars - len(marker)] + marker


def is_rate_limit_daily_error(text: str) -> bool:
    """
    Detecta el caso de cuota diaria agotada:
    - 'UserByModelByDay'
    - 'per 86400s'
    En estos casos, NO tiene sentido reintentar en loop con sleeps cortos.
    """
    if not text:
        return False
    # Mensaje típico: "Rate limit of 100 per 86400s exceeded ..."
    t = text.lower()
    return ("per 86400s" in t) or ("userbymodelbyday" in t) or ("per day" in t)


def extract_wait_seconds_from_rate_limit(text: str) -> int | None:
    """
    Extrae "Please wait XXXXX seconds" del error, si existe.
    OJO: el body NO siempre es fiable, por eso se usa como último recurso.
    """
    if not text:
        return None
    m = re.search(r"Please wait\s+(\d+)\s+seconds", text, re.IGNORECASE)
    if not m:
        return None
    return int(m.group(1))
