# llm_probe_config.py

# Rango de búsqueda por defecto (tokens)
DEFAULT_MIN_TEST_LENGTH = 1000
DEFAULT_MAX_TEST_LENGTH = 200000

# Solo para estrategia lineal
DEFAULT_STEP_SIZE = 2000

# Ancho del intervalo a partir del cual damos la búsqueda por convergida
DEFAULT_PRECISION_THRESHOLD = 500

# Límites de ejecución
DEFAULT_MAX_ATTEMPTS = 25
DEFAULT_TIMEOUT_MS = 60000
DEFAULT_TOTAL_TIMEOUT_MS = 30 * 60 * 1000
DEFAULT_MAX_RETRIES = 3

# Backoff entre reintentos del mismo probe
DEFAULT_BACKOFF_BASE_MS = 2000
DEFAULT_MAX_BACKOFF_MS = 90000
BACKOFF_JITTER_RATIO = 0.15

# Salida reservada cuando include_output_budget=True; si no, pedimos una respuesta mínima
DEFAULT_OUTPUT_LENGTH = 1000
MIN_OUTPUT_TOKENS = 16

DEFAULT_STRATEGY = "binary"

# Aproximación conservadora chars → tokens
CHARS_PER_TOKEN = 4

# Si no hay fallo observado y la estimación ya toca el techo, el intervalo se ensancha x2
CEILING_UNKNOWN_WIDEN_FACTOR = 2

# Techo por defecto = límite documentado x margen, para detectar también límites MAYORES
DOCUMENTED_LIMIT_HEADROOM = 1.25

# Cada cuánto se revisa la cancelación mientras una llamada está en vuelo
CALL_POLL_INTERVAL_S = 0.1

# Márgenes recomendados sobre el máximo detectado
SAFE_USAGE_RATIO = 0.8
CONSERVATIVE_USAGE_RATIO = 0.6

# Logging
LOG_PROBE_DECISIONS = True
