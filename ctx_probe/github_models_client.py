import time

import requests

from .config import GITHUB_TOKEN, PROBE_API_URL
from .llm_budget import extract_wait_seconds_from_rate_limit
from .probe_models import RawCallResult
from .utils_text import clean_token, preview


# ----------------------------
# Rate limit parsing helpers
# ----------------------------

def _safe_int(x: str | None) -> int | None:
    if x is None:
        return None
    try:
        return int(str(x).strip())
    except ValueError:
        return None


def _header(h, *names):
    for n in names:
        if n in h:
            return h.get(n)
        low = n.lower()
        for k, v in h.items():
            if k.lower() == low:
                return v
    return None


def compute_wait_from_headers(headers) -> int | None:
    """
    Intenta obtener el wait (en segundos) a partir de headers estándar.
    Priorización:
      1) Retry-After (segundos)
      2) X-RateLimit-Reset / x-ratelimit-reset (epoch o segundos)
    """
    h = headers or {}

    retry_after = _safe_int(_header(h, "Retry-After"))
    if retry_after is not None and retry_after >= 0:
        return retry_after

    reset = _safe_int(_header(h, "x-ratelimit-reset", "ratelimit-reset"))
    if reset is None:
        return None

    now = int(time.time())

    # Heurística:
    # - Si reset es muy grande (>= now), asumimos epoch timestamp.
    # - Si reset es pequeño (< now), asumimos "segundos hasta reset".
    if reset >= now:
        return max(0, reset - now)
    return max(0, reset)


def _log_429_details(res: requests.Response, err_text: str):
    """Logging diagnóstico: headers relevantes para rate limit."""
    h = res.headers or {}
    retry_after = _header(h, "Retry-After")
    reset = _header(h, "x-ratelimit-reset", "ratelimit-reset")
    remaining = _header(h, "x-ratelimit-remaining", "ratelimit-remaining")
    limit = _header(h, "x-ratelimit-limit", "ratelimit-limit")

    print(
        "INFO PROBE: 429 details | "
        f"Retry-After={retry_after} | Reset={reset} | Remaining={remaining} | Limit={limit} | "
        f"now_epoch={int(time.time())} | body_preview={preview(err_text)}",
        flush=True,
    )


def _usage_counts(data: dict) -> tuple[int | None, int | None]:
    usage = (data or {}).get("usage") or {}
    return (
        _safe_int(usage.get("prompt_tokens")),
        _safe_int(usage.get("completion_tokens")),
    )


# ----------------------------
# Main client
# ----------------------------

class GitHubModelsClient:
    """
    Cliente de chat completions (GitHub Models / endpoint compatible OpenAI).
    - Una llamada = una petición HTTP. Aquí NO se reintenta: los reintentos los decide el executor.
    - Nunca lanza excepciones de red hacia el motor: todo vuelve como RawCallResult.
    """

    def __init__(self, model: str, url: str | None = None, token: str | None = None,
                 temperature: float = 0.0, session: requests.Session | None = None):
        self.model = model
        self.url = (url or PROBE_API_URL).strip()
        self.token = clean_token(token if token is not None else GITHUB_TOKEN)
        self.temperature = temperature
        self._http = session or requests

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def complete(self, text: str, max_output_tokens: int, timeout_s: float) -> RawCallResult:
        if not self.token:
            print("ERROR: El token de GitHub está vacío.", flush=True)
            return RawCallResult(error="unauthorized: empty token", status_code=401)

        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": text}],
            "temperature": self.temperature,
            "max_tokens": max_output_tokens,
        }

        try:
            res = self._http.post(self.url, json=payload, headers=self._headers(), timeout=timeout_s)
        except requests.exceptions.Timeout as e:
            return RawCallResult(error=f"timeout: {e}", timed_out=True)
        except requests.exceptions.RequestException as e:
            return RawCallResult(error=f"network error: {e}")

        if res.status_code == 200:
            try:
                data = res.json()
                content = data["choices"][0]["message"]["content"] or ""
            except (ValueError, KeyError, IndexError, TypeError) as e:
                return RawCallResult(
                    error=f"respuesta 200 no parseable: {e}",
                    status_code=res.status_code,
                    text=preview(res.text),
                )
            input_tokens, output_tokens = _usage_counts(data)
            return RawCallResult(
                text=content,
                status_code=200,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            )

        err_text = res.text or ""
        retry_after_s = None
        if res.status_code == 429:
            _log_429_details(res, err_text)
            retry_after_s = compute_wait_from_headers(res.headers)
            if retry_after_s is None:
                retry_after_s = extract_wait_seconds_from_rate_limit(err_text)

        if res.status_code == 413:
            print(f"DEBUG PROBE 413: Request Too Large. {preview(err_text, 200)}", flush=True)

        return RawCallResult(
            error=err_text or f"HTTP {res.status_code}",
            status_code=res.status_code,
            retry_after_s=retry_after_s,
        )
