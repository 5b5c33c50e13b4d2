# probe_executor.py
"""
Probe Executor: convierte UN objetivo de tokens en UN ProbeOutcome.

- El conteo que manda es el MEDIDO por el generador, no el pedido.
- Una llamada acotada por timeout_ms; un timeout se sintetiza como TRANSIENT.
- Mientras la llamada está en vuelo se vigila la cancelación: si llega, la llamada
  se abandona y el probe termina como TRANSIENT (no decisivo).
- TRANSIENT / RATE_LIMITED se reintentan (mismo tamaño) mientras llamadas < max_retries.
- UNKNOWN se reintenta una sola vez; si sigue UNKNOWN, el orquestador lo escala a fatal.
- AUTH_ERROR corta en seco: sin reintentos.
- Si el orquestador pasa el tiempo que le queda a la ejecución, ni las llamadas ni
  los backoffs lo sobrepasan.
- Coste y latencia se registran siempre, también en fallos (hay proveedores que cobran los rechazos).
"""
import random
import time
from concurrent.futures import ThreadPoolExecutor, wait

from .cancellation import CancellationSignal
from .config import FAIL_FAST_RATE_LIMIT_SECONDS
from .llm_budget import is_rate_limit_daily_error
from .llm_probe_config import BACKOFF_JITTER_RATIO, CALL_POLL_INTERVAL_S
from .outcome_classifier import OutcomeClassifier, resolve_token_counts
from .pricing import PricingTable
from .probe_models import Classification, ProbeOutcome, ProbeRunConfig, RawCallResult
from .usage_ledger import UsageLedger, UsageRecord
from .utils_text import preview

RATE_LIMIT_MIN_BACKOFF_MS = 1000


class ProbeExecutor:
    def __init__(
        self,
        config: ProbeRunConfig,
        client,
        generator,
        pricing: PricingTable,
        ledger: UsageLedger | None = None,
        classifier: OutcomeClassifier | None = None,
        cancel: CancellationSignal | None = None,
        rng: random.Random | None = None,
    ):
        self.config = config
        self.client = client
        self.generator = generator
        self.pricing = pricing
        self.ledger = ledger
        self.classifier = classifier or OutcomeClassifier()
        self.cancel = cancel or CancellationSignal()
        self._rng = rng or random.Random()

    # ----------------------------
    # Llamada individual
    # ----------------------------

    def _call_model(self, text: str, max_output_tokens: int, timeout_ms: float) -> tuple[RawCallResult, float]:
        timeout_s = timeout_ms / 1000
        started = time.monotonic()
        deadline = started + timeout_s
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(self.client.complete, text, max_output_tokens, timeout_s)
            while True:
                remaining = deadline - time.monotonic()
                done, _ = wait([future], timeout=max(0.0, min(CALL_POLL_INTERVAL_S, remaining)))
                if done:
                    raw = future.result()
                    break
                if self.cancel.is_cancelled:
                    raw = RawCallResult(error="cancelado durante la llamada", cancelled=True)
                    break
                if time.monotonic() >= deadline:
                    raw = RawCallResult(error=f"timeout: sin respuesta en {timeout_ms:.0f}ms", timed_out=True)
                    break
        except Exception as e:
            # Un cliente que lanza en vez de devolver error: se clasifica por el texto.
            raw = RawCallResult(error=f"{type(e).__name__}: {e}")
        finally:
            # No esperamos a una llamada colgada o abandonada: el resultado ya está sintetizado.
            pool.shutdown(wait=False)
        latency_ms = (time.monotonic() - started) * 1000
        return raw, latency_ms

    def backoff_seconds(self, call_number: int, raw: RawCallResult, classification: Classification) -> float:
        """
        Espera antes del reintento `call_number + 1`.
        - Si el backend da señal (Retry-After / "Please wait"), se respeta (+1s de margen).
        - Si no, backoff exponencial sobre backoff_base_ms.
        Aplica jitter + CAP.
        """
        wait_ms = self.config.backoff_base_ms * (2 ** (call_number - 1))
        if classification == Classification.RATE_LIMITED:
            if raw.retry_after_s is not None:
                wait_ms = (raw.retry_after_s + 1) * 1000
            wait_ms = max(RATE_LIMIT_MIN_BACKOFF_MS, wait_ms)

        # jitter para evitar sincronización entre ejecuciones concurrentes
        jitter = int(wait_ms * BACKOFF_JITTER_RATIO)
        if jitter > 0:
            wait_ms += self._rng.randint(-jitter, jitter)

        wait_ms = max(0, min(self.config.max_backoff_ms, wait_ms))
        return wait_ms / 1000

    def _rate_limit_fail_fast(self, raw: RawCallResult) -> str | None:
        err = raw.error or ""
        if is_rate_limit_daily_error(err):
            return "cuota diaria agotada (UserByModelByDay)"
        if raw.retry_after_s is not None and raw.retry_after_s > FAIL_FAST_RATE_LIMIT_SECONDS:
            return f"Retry-After={raw.retry_after_s}s supera FAIL_FAST_RATE_LIMIT_SECONDS={FAIL_FAST_RATE_LIMIT_SECONDS}"
        return None

    # ----------------------------
    # Probe completo (con reintentos)
    # ----------------------------

    def probe(self, token_count: int, attempt_index: int = 1, time_budget_ms: float | None = None) -> ProbeOutcome:
        """
        time_budget_ms: tiempo que le queda a la ejecución (None = sin límite). Acota el
        timeout de cada llamada y corta los reintentos cuyo backoff no cabe.
        """
        cfg = self.config
        probe_started = time.monotonic()
        sample = self.generator.generate(token_count)
        requested = sample.actual_token_count
        output_budget = cfg.requested_output_tokens
        max_calls = max(1, cfg.max_retries)

        def elapsed_ms() -> float:
            return (time.monotonic() - probe_started) * 1000

        calls = 0
        total_cost = 0.0
        unknown_retried = False
        note = None

        while True:
            calls += 1
            call_timeout_ms = cfg.timeout_ms
            if time_budget_ms is not None:
                call_timeout_ms = max(1.0, min(call_timeout_ms, time_budget_ms - elapsed_ms()))

            raw, latency_ms = self._call_model(sample.text, output_budget, call_timeout_ms)
            classification = self.classifier.classify(raw)
            input_tokens, output_tokens = resolve_token_counts(raw, requested, output_budget)
            cost = self.pricing.estimate_cost(cfg.model, input_tokens, output_tokens)
            total_cost += cost

            if self.ledger is not None:
                self.ledger.record(
                    UsageRecord(
                        model=cfg.model,
                        input_tokens=input_tokens,
                        output_tokens=output_tokens,
                        cost=cost,
                        latency_ms=latency_ms,
                        classification=classification,
                        error=raw.error,
                    )
                )

            if raw.cancelled:
                print(f"WARN PROBE: Llamada abandonada por cancelación (tokens={requested}).", flush=True)
                break

            if classification == Classification.AUTH_ERROR:
                print(f"ERROR PROBE: Error de autenticación ({cfg.model}). Sin reintentos.", flush=True)
                break

            retry = classification.is_retryable or (
                classification == Classification.UNKNOWN and not unknown_retried
            )
            if not retry or calls >= max_calls:
                break

            if classification == Classification.RATE_LIMITED:
                reason = self._rate_limit_fail_fast(raw)
                if reason:
                    note = f"fail-fast rate limit: {reason}"
                    print(f"ERROR PROBE: {note}. Abortando reintentos de este probe.", flush=True)
                    break

            if classification == Classification.UNKNOWN:
                unknown_retried = True

            sleep_s = self.backoff_seconds(calls, raw, classification)
            if time_budget_ms is not None and elapsed_ms() + sleep_s * 1000 >= time_budget_ms:
                note = "presupuesto de tiempo de la ejecución agotado"
                print(f"WARN PROBE: {note}; no se reintenta tokens={requested}.", flush=True)
                break

            print(
                f"DEBUG WARN PROBE: {classification.value} en tokens={requested} "
                f"[llamada {calls}/{max_calls}]. Reintentando tras {sleep_s:.1f}s. "
                f"detalle={preview(raw.error or '', 200)}",
                flush=True,
            )
            if self.cancel.wait(sleep_s):
                note = "cancelado durante backoff"
                break

        error_detail = None
        if classification != Classification.SUCCESS:
            error_detail = preview(raw.error or f"HTTP {raw.status_code}", 500)
            if note:
                error_detail = f"{error_detail} ({note})"

        return ProbeOutcome(
            attempt_index=attempt_index,
            target_tokens=token_count,
            requested_tokens=requested,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            classification=classification,
            latency_ms=latency_ms,
            estimated_cost=total_cost,
            error_detail=error_detail,
            call_attempts=calls,
            probe_elapsed_ms=elapsed_ms(),
        )
