import os

# Soporte para carga de variables de entorno locales
from dotenv import load_dotenv

from .utils_text import clean_token
from .llm_probe_config import (
    DEFAULT_MIN_TEST_LENGTH,
    DEFAULT_MAX_TEST_LENGTH,
    DEFAULT_STEP_SIZE,
    DEFAULT_PRECISION_THRESHOLD,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_TOTAL_TIMEOUT_MS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_BACKOFF_BASE_MS,
    DEFAULT_MAX_BACKOFF_MS,
    DEFAULT_OUTPUT_LENGTH,
    DEFAULT_STRATEGY,
)
from .model_catalog import DEFAULT_CATALOG
from .probe_models import ProbeConfigError, ProbeRunConfig

_env_loaded = load_dotenv()

# --- 1. CONFIGURACIÓN DE ENTORNO ---
PROBE_API_URL = os.getenv(
    "PROBE_API_URL", "https://models.inference.ai.azure.com/chat/completions"
).strip()
GITHUB_TOKEN = clean_token(os.getenv("GITHUB_TOKEN", ""))
PROBE_MODEL = os.getenv("PROBE_MODEL", "gpt-4o").strip()

# Fail-fast rate limit: si el backend pide esperar > umbral, no seguimos reintentando ese probe.
# (Por defecto 15 min; configurable por env)
FAIL_FAST_RATE_LIMIT_SECONDS = int(os.getenv("FAIL_FAST_RATE_LIMIT_SECONDS", "900"))


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ProbeConfigError(f"{name} debe ser un entero (recibido: {raw!r})")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ["true", "yes", "1", "si", "sí"]


def build_run_config(**overrides) -> ProbeRunConfig:
    """
    Construye la configuración de una ejecución: defaults → variables de entorno → overrides
    (los overrides a None se ignoran, así el CLI puede pasar todo sin pisar el entorno).

    Si ni el entorno ni los overrides fijan el techo, se toma del catálogo de modelos
    (límite documentado con margen); el límite documentado se guarda para compararlo.
    """
    values = {
        "model": PROBE_MODEL,
        "min_test_length": _env_int("PROBE_MIN_TOKENS", DEFAULT_MIN_TEST_LENGTH),
        "max_test_length": _env_int("PROBE_MAX_TOKENS", DEFAULT_MAX_TEST_LENGTH),
        "step_size": _env_int("PROBE_STEP_SIZE", DEFAULT_STEP_SIZE),
        "max_attempts": _env_int("PROBE_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
        "timeout_ms": _env_int("PROBE_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
        "total_timeout_ms": _env_int("PROBE_TOTAL_TIMEOUT_MS", DEFAULT_TOTAL_TIMEOUT_MS),
        "max_retries": _env_int("PROBE_MAX_RETRIES", DEFAULT_MAX_RETRIES),
        "precision_threshold": _env_int("PROBE_PRECISION", DEFAULT_PRECISION_THRESHOLD),
        "strategy": os.getenv("PROBE_STRATEGY", DEFAULT_STRATEGY).strip().lower(),
        "include_output_budget": _env_bool("PROBE_INCLUDE_OUTPUT_BUDGET", True),
        "output_length": _env_int("PROBE_OUTPUT_LENGTH", DEFAULT_OUTPUT_LENGTH),
        "backoff_base_ms": _env_int("PROBE_BACKOFF_BASE_MS", DEFAULT_BACKOFF_BASE_MS),
        "max_backoff_ms": _env_int("PROBE_MAX_BACKOFF_MS", DEFAULT_MAX_BACKOFF_MS),
        "documented_limit": None,
    }
    ceiling_is_explicit = bool(os.getenv("PROBE_MAX_TOKENS", "").strip())

    for k, v in overrides.items():
        if v is None:
            continue
        if k not in values:
            raise ProbeConfigError(f"Opción de configuración desconocida: {k}")
        values[k] = v
        if k == "max_test_length":
            ceiling_is_explicit = True

    if values["documented_limit"] is None:
        values["documented_limit"] = DEFAULT_CATALOG.documented_limit(values["model"])

    if not ceiling_is_explicit:
        ceiling = DEFAULT_CATALOG.default_ceiling(values["model"], values["min_test_length"])
        if ceiling is not None:
            values["max_test_length"] = ceiling

    return ProbeRunConfig(**values).validate()
