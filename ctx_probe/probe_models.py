# probe_models.py
"""
Tipos compartidos por el motor de probing: clasificaciones, condiciones de parada,
configuración de una ejecución, outcomes y resultado final.
"""
import json
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

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
    MIN_OUTPUT_TOKENS,
)


class ProbeConfigError(ValueError):
    """Configuración inválida (rangos, estrategia, colisión de clamp...)."""


class Classification(Enum):
    SUCCESS = "success"
    TOKEN_LIMIT_EXCEEDED = "token_limit_exceeded"
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    AUTH_ERROR = "auth_error"
    UNKNOWN = "unknown"

    @property
    def is_decisive(self) -> bool:
        return self in (Classification.SUCCESS, Classification.TOKEN_LIMIT_EXCEEDED)

    @property
    def is_retryable(self) -> bool:
        return self in (Classification.TRANSIENT, Classification.RATE_LIMITED)


class StopCondition(Enum):
    CONVERGED_WITHIN_PRECISION = "converged_within_precision"
    ATTEMPT_BUDGET_EXHAUSTED = "attempt_budget_exhausted"
    WALL_CLOCK_TIMEOUT = "wall_clock_timeout"
    CANCELLED = "cancelled"
    BOUNDARY_NOT_FOUND = "boundary_not_found"
    FATAL_ERROR = "fatal_error"


STRATEGIES = ("binary", "linear", "adaptive")


@dataclass(frozen=True)
class ProbeRunConfig:
    model: str
    min_test_length: int = DEFAULT_MIN_TEST_LENGTH
    max_test_length: int = DEFAULT_MAX_TEST_LENGTH
    step_size: int = DEFAULT_STEP_SIZE
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    total_timeout_ms: int = DEFAULT_TOTAL_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    precision_threshold: int = DEFAULT_PRECISION_THRESHOLD
    strategy: str = DEFAULT_STRATEGY
    include_output_budget: bool = True
    output_length: int = DEFAULT_OUTPUT_LENGTH
    backoff_base_ms: int = DEFAULT_BACKOFF_BASE_MS
    max_backoff_ms: int = DEFAULT_MAX_BACKOFF_MS
    # Límite publicado por el proveedor (catálogo); solo para comparar con lo detectado.
    documented_limit: Optional[int] = None

    @property
    def requested_output_tokens(self) -> int:
        return self.output_length if self.include_output_budget else MIN_OUTPUT_TOKENS

    def validate(self) -> "ProbeRunConfig":
        if not (self.model or "").strip():
            raise ProbeConfigError("model vacío")
        if self.strategy not in STRATEGIES:
            raise ProbeConfigError(f"strategy desconocida: {self.strategy!r} (usa {', '.join(STRATEGIES)})")
        if self.min_test_length < 1:
            raise ProbeConfigError("min_test_length debe ser >= 1")
        if self.max_test_length <= self.min_test_length:
            raise ProbeConfigError(
                f"max_test_length ({self.max_test_length}) debe ser > min_test_length ({self.min_test_length})"
            )
        if self.precision_threshold < 1:
            raise ProbeConfigError("precision_threshold debe ser >= 1")
        if self.strategy == "linear" and self.step_size < 1:
            raise ProbeConfigError("step_size debe ser >= 1")
        if self.max_attempts < 1:
            raise ProbeConfigError("max_attempts debe ser >= 1")
        if self.timeout_ms <= 0 or self.total_timeout_ms <= 0:
            raise ProbeConfigError("timeout_ms y total_timeout_ms deben ser > 0")
        if self.max_retries < 0:
            raise ProbeConfigError("max_retries no puede ser negativo")
        if self.include_output_budget and self.output_length < 1:
            raise ProbeConfigError("output_length debe ser >= 1")
        if self.documented_limit is not None and self.documented_limit < 1:
            raise ProbeConfigError("documented_limit debe ser >= 1")
        return self


@dataclass(frozen=True)
class RawCallResult:
    """Resultado crudo de una llamada al modelo (respuesta o error), sin interpretar."""
    text: str = ""
    error: Optional[str] = None
    status_code: Optional[int] = None
    timed_out: bool = False
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    retry_after_s: Optional[int] = None
    cancelled: bool = False

    @property
    def is_error(self) -> bool:
        return self.timed_out or self.cancelled or self.error is not None or (
            self.status_code is not None and self.status_code >= 400
        )


@dataclass(frozen=True)
class Sample:
    text: str
    actual_token_count: int


@dataclass(frozen=True)
class ProbeOutcome:
    """
    Resultado final de UN probe (tras sus reintentos).

    - requested_tokens: conteo medido por el generador; es la escala de la búsqueda.
    - input_tokens: conteo que reporta el proveedor (incluye overhead de plantilla).
    - latency_ms: latencia de la ÚLTIMA llamada.
    - probe_elapsed_ms: tiempo total del probe (todas las llamadas + backoffs).
    """
    attempt_index: int
    target_tokens: int
    requested_tokens: int
    input_tokens: int
    output_tokens: int
    classification: Classification
    latency_ms: float
    estimated_cost: float
    error_detail: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    call_attempts: int = 1
    probe_elapsed_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["classification"] = self.classification.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProbeOutcome":
        d = dict(data)
        d["classification"] = Classification(d["classification"])
        return cls(**d)


@dataclass(frozen=True)
class ConfidenceInterval:
    min: int
    max: int

    @property
    def width(self) -> int:
        return self.max - self.min


@dataclass(frozen=True)
class ProgressEvent:
    attempt_index: int
    token_count_tried: int
    classification: Classification
    running_estimate: Optional[int]


@dataclass(frozen=True)
class ProbeRunResult:
    model: str
    history: Tuple[ProbeOutcome, ...]
    stop_condition: StopCondition
    point_estimate_max_tokens: Optional[int]
    confidence_interval: ConfidenceInterval
    interval_width_tokens: int
    precision_percentage: float
    ceiling_unknown: bool
    success_rate: float
    total_cost: float
    average_latency_ms: float
    latency_percentiles: Dict[str, float]
    throughput_tokens_per_sec: float
    recommended_safe_tokens: Optional[int] = None
    recommended_conservative_tokens: Optional[int] = None
    # Máximo input REPORTADO por el proveedor en los éxitos (otra escala: incluye overhead).
    max_reported_input_tokens: Optional[int] = None
    documented_limit: Optional[int] = None
    documented_deviation_tokens: Optional[int] = None
    documented_deviation_percentage: Optional[float] = None

    @property
    def attempts(self) -> int:
        return len(self.history)

    @property
    def boundary_found(self) -> bool:
        return self.point_estimate_max_tokens is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "history": [o.to_dict() for o in self.history],
            "stop_condition": self.stop_condition.value,
            "point_estimate_max_tokens": self.point_estimate_max_tokens,
            "confidence_interval": {"min": self.confidence_interval.min, "max": self.confidence_interval.max},
            "interval_width_tokens": self.interval_width_tokens,
            "precision_percentage": self.precision_percentage,
            "ceiling_unknown": self.ceiling_unknown,
            "success_rate": self.success_rate,
            "total_cost": self.total_cost,
            "average_latency_ms": self.average_latency_ms,
            "latency_percentiles": dict(self.latency_percentiles),
            "throughput_tokens_per_sec": self.throughput_tokens_per_sec,
            "recommended_safe_tokens": self.recommended_safe_tokens,
            "recommended_conservative_tokens": self.recommended_conservative_tokens,
            "max_reported_input_tokens": self.max_reported_input_tokens,
            "documented_limit": self.documented_limit,
            "documented_deviation_tokens": self.documented_deviation_tokens,
            "documented_deviation_percentage": self.documented_deviation_percentage,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProbeRunResult":
        ci = data["confidence_interval"]
        return cls(
            model=data["model"],
            history=tuple(ProbeOutcome.from_dict(o) for o in data["history"]),
            stop_condition=StopCondition(data["stop_condition"]),
            point_estimate_max_tokens=data["point_estimate_max_tokens"],
            confidence_interval=ConfidenceInterval(min=ci["min"], max=ci["max"]),
            interval_width_tokens=data["interval_width_tokens"],
            precision_percentage=data["precision_percentage"],
            ceiling_unknown=data["ceiling_unknown"],
            success_rate=data["success_rate"],
            total_cost=data["total_cost"],
            average_latency_ms=data["average_latency_ms"],
            latency_percentiles=dict(data["latency_percentiles"]),
            throughput_tokens_per_sec=data["throughput_tokens_per_sec"],
            recommended_safe_tokens=data.get("recommended_safe_tokens"),
            recommended_conservative_tokens=data.get("recommended_conservative_tokens"),
            max_reported_input_tokens=data.get("max_reported_input_tokens"),
            documented_limit=data.get("documented_limit"),
            documented_deviation_tokens=data.get("documented_deviation_tokens"),
            documented_deviation_percentage=data.get("documented_deviation_percentage"),
        )

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    @classmethod
    def from_json(cls, text: str) -> "ProbeRunResult":
        return cls.from_dict(json.loads(text))


@dataclass(frozen=True)
class ProbeRunFailure:
    """
    Ejecución abortada por un error fatal (auth / unknown no resuelto).
    No lleva estimación: "no se pudo completar" no es "este es tu límite".
    """
    model: str
    history: Tuple[ProbeOutcome, ...]
    reason: str
    classification: Classification
    stop_condition: StopCondition = StopCondition.FATAL_ERROR

    @property
    def attempts(self) -> int:
        return len(self.history)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "history": [o.to_dict() for o in self.history],
            "reason": self.reason,
            "classification": self.classification.value,
            "stop_condition": self.stop_condition.value,
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)


def freeze_history(history: List[ProbeOutcome]) -> Tuple[ProbeOutcome, ...]:
    return tuple(history)
