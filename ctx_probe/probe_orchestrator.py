# probe_orchestrator.py
"""
Orquestador de una ejecución: Strategy ⇄ Executor hasta converger o hasta una parada definida.

Paradas:
- la estrategia converge (o no encuentra frontera)
- attempts >= max_attempts
- tiempo transcurrido >= total_timeout_ms (el tiempo restante se pasa al executor,
  que no reintenta más allá)
- cancelación cooperativa (también interrumpe la llamada en vuelo)
- AUTH_ERROR (o UNKNOWN que nunca se resolvió) → ProbeRunFailure, sin estimación

Ejecución estrictamente secuencial: cada decisión depende del outcome anterior.
"""
import time
from typing import Callable, List, Optional

from .cancellation import CancellationSignal
from .probe_executor import ProbeExecutor
from .probe_models import (
    Classification,
    ProbeOutcome,
    ProbeRunConfig,
    ProbeRunFailure,
    ProbeRunResult,
    ProgressEvent,
    StopCondition,
    freeze_history,
)
from .result_aggregator import aggregate
from .search_strategies import Converged, SearchStrategy, create_strategy
from .utils_logging import log_probe_outcome, log_probe_start

ProgressListener = Callable[[ProgressEvent], None]

FATAL_CLASSIFICATIONS = (Classification.AUTH_ERROR, Classification.UNKNOWN)


class ProbeOrchestrator:
    def __init__(
        self,
        config: ProbeRunConfig,
        executor: ProbeExecutor,
        strategy: Optional[SearchStrategy] = None,
        cancel: Optional[CancellationSignal] = None,
        listeners: Optional[List[ProgressListener]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config.validate()
        self.executor = executor
        self.strategy = strategy or create_strategy(self.config)
        self.cancel = cancel or executor.cancel
        self.listeners: List[ProgressListener] = list(listeners or [])
        self._clock = clock

    def add_listener(self, listener: ProgressListener) -> None:
        self.listeners.append(listener)

    def _emit(self, event: ProgressEvent) -> None:
        # Fire-and-forget: un listener roto no puede parar el probing.
        for listener in self.listeners:
            try:
                listener(event)
            except Exception as e:
                print(f"DEBUG WARN: Listener de progreso falló: {e}", flush=True)

    def run(self) -> ProbeRunResult | ProbeRunFailure:
        cfg = self.config
        history: List[ProbeOutcome] = []
        started = self._clock()
        converged: Optional[Converged] = None
        stop: Optional[StopCondition] = None

        log_probe_start(cfg)

        while True:
            if self.cancel.is_cancelled:
                stop = StopCondition.CANCELLED
                break

            decision = self.strategy.next_probe(history)
            if isinstance(decision, Converged):
                converged = decision
                stop = decision.stop_condition
                break

            if len(history) >= cfg.max_attempts:
                stop = StopCondition.ATTEMPT_BUDGET_EXHAUSTED
                print(f"WARN: Presupuesto de intentos agotado ({cfg.max_attempts}).", flush=True)
                break

            elapsed_ms = (self._clock() - started) * 1000
            if elapsed_ms >= cfg.total_timeout_ms:
                stop = StopCondition.WALL_CLOCK_TIMEOUT
                print(f"WARN: Timeout global alcanzado ({cfg.total_timeout_ms}ms).", flush=True)
                break

            outcome = self.executor.probe(
                decision.token_count,
                attempt_index=len(history) + 1,
                time_budget_ms=cfg.total_timeout_ms - elapsed_ms,
            )
            history.append(outcome)
            log_probe_outcome(outcome)

            if outcome.classification in FATAL_CLASSIFICATIONS:
                reason = (
                    "error de autenticación"
                    if outcome.classification == Classification.AUTH_ERROR
                    else "error no reconocido que no se resolvió tras reintentar"
                )
                print(f"ERROR: Ejecución abortada para {cfg.model}: {reason}. {outcome.error_detail or ''}", flush=True)
                self._emit(ProgressEvent(outcome.attempt_index, outcome.requested_tokens, outcome.classification, None))
                return ProbeRunFailure(
                    model=cfg.model,
                    history=freeze_history(history),
                    reason=f"{reason}: {outcome.error_detail or ''}".strip(),
                    classification=outcome.classification,
                )

            self._emit(
                ProgressEvent(
                    attempt_index=outcome.attempt_index,
                    token_count_tried=outcome.requested_tokens,
                    classification=outcome.classification,
                    running_estimate=self.strategy.running_estimate(),
                )
            )

        if converged is not None and converged.reason:
            print(f"INFO PROBE: {converged.reason}", flush=True)

        return aggregate(
            freeze_history(history),
            stop,
            cfg,
            ceiling_unknown_hint=bool(converged and converged.ceiling_unknown),
        )
