# search_strategies.py
"""
Estrategias de búsqueda del límite de contexto.

Interfaz común: next_probe(history) -> ProbeTarget | Converged.
Cada instancia es dueña exclusiva de su estado para UNA ejecución.

Reglas compartidas:
- conteos enteros, puntos medios redondeados hacia abajo;
- toda propuesta se ajusta a [min_test_length, max_test_length];
- si el ajuste cae sobre un tamaño ya resuelto, es un error de configuración;
- TRANSIENT / RATE_LIMITED / UNKNOWN no mueven los límites: se vuelve a proponer el mismo tamaño.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set, Tuple

from .probe_models import Classification, ProbeConfigError, ProbeOutcome, ProbeRunConfig, StopCondition


@dataclass(frozen=True)
class ProbeTarget:
    token_count: int


@dataclass(frozen=True)
class Converged:
    stop_condition: StopCondition
    low: Optional[int] = None
    high: Optional[int] = None
    ceiling_unknown: bool = False
    reason: str = ""


class SearchStrategy(ABC):
    name = ""

    def __init__(self, config: ProbeRunConfig):
        self.config = config
        self._seen = 0
        self._resolved: Set[int] = set()

    def next_probe(self, history: Sequence[ProbeOutcome]):
        for outcome in history[self._seen:]:
            if outcome.classification.is_decisive:
                self._resolved.add(outcome.target_tokens)
                self._resolved.add(outcome.requested_tokens)
            self._observe(outcome)
        self._seen = len(history)
        return self._decide()

    def _clamp(self, value: int) -> int:
        value = int(value)
        clamped = min(max(value, self.config.min_test_length), self.config.max_test_length)
        if clamped != value and clamped in self._resolved:
            raise ProbeConfigError(
                f"Colisión de clamp: {value} se ajusta a {clamped}, que ya está resuelto "
                f"(rango [{self.config.min_test_length}, {self.config.max_test_length}])."
            )
        return clamped

    @abstractmethod
    def _observe(self, outcome: ProbeOutcome) -> None:
        ...

    @abstractmethod
    def _decide(self):
        ...

    @abstractmethod
    def running_estimate(self) -> Optional[int]:
        ...


def _warn_inconsistent(outcome: ProbeOutcome, low: int, high: int) -> None:
    print(
        f"WARN: Outcome inconsistente ignorado: {outcome.classification.value} en "
        f"tokens={outcome.requested_tokens} con límites actuales [{low}, {high}].",
        flush=True,
    )


class BinarySearchStrategy(SearchStrategy):
    """
    [low, high] empieza en [min, max].
    - Primer probe: sanity en low. Si falla → BOUNDARY_NOT_FOUND.
    - SUCCESS@x ⇒ low=x ; TOKEN_LIMIT_EXCEEDED@x ⇒ high=x ; siguiente = floor((low+high)/2).
    - Converge con high-low <= precision_threshold.
    - Si al converger nunca se vio un fallo, sanity en high: si también pasa, el techo
      configurado era bajo y el resultado es una cota inferior (ceiling_unknown).
    """
    name = "binary"

    def __init__(self, config: ProbeRunConfig, low: Optional[int] = None, high: Optional[int] = None,
                 low_confirmed: bool = False, high_confirmed: bool = False):
        super().__init__(config)
        self.low = config.min_test_length if low is None else low
        self.high = config.max_test_length if high is None else high
        self.low_confirmed = low_confirmed
        self.high_confirmed = high_confirmed
        self.floor_failed = False
        self.ceiling_succeeded = False
        self.bounds_trace: List[Tuple[int, int]] = [(self.low, self.high)]

    def _observe(self, outcome: ProbeOutcome) -> None:
        x = outcome.requested_tokens
        if outcome.classification == Classification.SUCCESS:
            if x >= self.high:
                if self.high_confirmed:
                    _warn_inconsistent(outcome, self.low, self.high)
                else:
                    self.ceiling_succeeded = True
                    self.low = self.high
            elif x > self.low:
                self.low = x
            self.low_confirmed = True
        elif outcome.classification == Classification.TOKEN_LIMIT_EXCEEDED:
            if x <= self.low:
                if self.low_confirmed:
                    _warn_inconsistent(outcome, self.low, self.high)
                else:
                    self.floor_failed = True
            else:
                self.high = min(self.high, x)
                self.high_confirmed = True
        self.bounds_trace.append((self.low, self.high))

    def _decide(self):
        if self.floor_failed:
            return Converged(
                StopCondition.BOUNDARY_NOT_FOUND, low=None, high=self.low,
                reason=f"el suelo ({self.low} tokens) ya excede el límite",
            )
        if not self.low_confirmed:
            return ProbeTarget(self._clamp(self.low))
        if self.ceiling_succeeded:
            return Converged(
                StopCondition.CONVERGED_WITHIN_PRECISION, low=self.low, high=self.high,
                ceiling_unknown=True,
                reason=f"el techo configurado ({self.high}) fue aceptado; el límite real es mayor",
            )
        if self.high - self.low <= self.config.precision_threshold:
            if self.high_confirmed:
                return Converged(StopCondition.CONVERGED_WITHIN_PRECISION, low=self.low, high=self.high)
            return ProbeTarget(self._clamp(self.high))
        return ProbeTarget(self._clamp((self.low + self.high) // 2))

    def running_estimate(self) -> Optional[int]:
        if self.low_confirmed and not self.floor_failed:
            return self.low
        return None


class LinearSweepStrategy(SearchStrategy):
    """
    current=min; SUCCESS ⇒ current += step_size; primer fallo ⇒ converge con
    [current-step, current]. Cobertura determinista a costa de más probes.
    """
    name = "linear"

    def __init__(self, config: ProbeRunConfig):
        super().__init__(config)
        self.current = config.min_test_length
        self.last_success: Optional[int] = None
        self.failure: Optional[int] = None
        self.ceiling_succeeded = False

    def _observe(self, outcome: ProbeOutcome) -> None:
        if self.failure is not None:
            return
        if outcome.classification == Classification.SUCCESS:
            self.last_success = max(self.last_success or 0, outcome.requested_tokens)
            if outcome.target_tokens >= self.config.max_test_length:
                self.ceiling_succeeded = True
            else:
                self.current = outcome.target_tokens + self.config.step_size
        elif outcome.classification == Classification.TOKEN_LIMIT_EXCEEDED:
            self.failure = outcome.requested_tokens

    def _decide(self):
        if self.failure is not None:
            if self.last_success is None:
                return Converged(
                    StopCondition.BOUNDARY_NOT_FOUND, high=self.failure,
                    reason=f"el primer probe ({self.failure} tokens) ya excede el límite",
                )
            return Converged(StopCondition.CONVERGED_WITHIN_PRECISION, low=self.last_success, high=self.failure)
        if self.ceiling_succeeded:
            return Converged(
                StopCondition.CONVERGED_WITHIN_PRECISION, low=self.last_success,
                high=self.config.max_test_length, ceiling_unknown=True,
                reason="barrido completo sin fallos",
            )
        return ProbeTarget(self._clamp(self.current))

    def running_estimate(self) -> Optional[int]:
        return self.last_success


class AdaptiveHybridStrategy(SearchStrategy):
    """
    Fase gruesa: min, x2, x2... hasta el primer fallo → [última OK, primer fallo].
    Fase fina: búsqueda binaria sobre ese rango hasta precision_threshold.
    No necesita un techo ajustado por el usuario.
    """
    name = "adaptive"

    def __init__(self, config: ProbeRunConfig):
        super().__init__(config)
        self.phase = "coarse"
        self.current = config.min_test_length
        self.last_success: Optional[int] = None
        self.first_failure: Optional[int] = None
        self.ceiling_succeeded = False
        self.fine: Optional[BinarySearchStrategy] = None

    def next_probe(self, history: Sequence[ProbeOutcome]):
        if self.fine is not None:
            return self.fine.next_probe(history)
        return super().next_probe(history)

    def _observe(self, outcome: ProbeOutcome) -> None:
        if self.first_failure is not None:
            return
        if outcome.classification == Classification.SUCCESS:
            self.last_success = max(self.last_success or 0, outcome.requested_tokens)
            if outcome.target_tokens >= self.config.max_test_length:
                self.ceiling_succeeded = True
            else:
                self.current = outcome.target_tokens * 2
        elif outcome.classification == Classification.TOKEN_LIMIT_EXCEEDED:
            self.first_failure = outcome.requested_tokens

    def _start_fine_phase(self):
        fine = BinarySearchStrategy(
            self.config,
            low=self.last_success,
            high=self.first_failure,
            low_confirmed=True,
            high_confirmed=True,
        )
        fine._seen = self._seen
        fine._resolved = self._resolved
        self.fine = fine
        self.phase = "fine"
        print(
            f"INFO PROBE: Fase gruesa completada. Rango [{self.last_success}, {self.first_failure}] → fase fina.",
            flush=True,
        )
        return fine._decide()

    def _decide(self):
        if self.first_failure is not None:
            if self.last_success is None:
                return Converged(
                    StopCondition.BOUNDARY_NOT_FOUND, high=self.first_failure,
                    reason=f"la semilla ({self.first_failure} tokens) ya excede el límite",
                )
            return self._start_fine_phase()
        if self.ceiling_succeeded:
            return Converged(
                StopCondition.CONVERGED_WITHIN_PRECISION, low=self.last_success,
                high=self.config.max_test_length, ceiling_unknown=True,
                reason=f"el techo configurado ({self.config.max_test_length}) fue aceptado",
            )
        return ProbeTarget(self._clamp(self.current))

    def running_estimate(self) -> Optional[int]:
        if self.fine is not None:
            return self.fine.running_estimate()
        return self.last_success


STRATEGY_CLASSES = {
    BinarySearchStrategy.name: BinarySearchStrategy,
    LinearSweepStrategy.name: LinearSweepStrategy,
    AdaptiveHybridStrategy.name: AdaptiveHybridStrategy,
}


def create_strategy(config: ProbeRunConfig) -> SearchStrategy:
    cls = STRATEGY_CLASSES.get(config.strategy)
    if cls is None:
        raise ProbeConfigError(f"strategy desconocida: {config.strategy!r}")
    return cls(config)
