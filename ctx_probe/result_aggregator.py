# result_aggregator.py
import math
from typing import Dict, Optional, Sequence

from .llm_probe_config import (
    CEILING_UNKNOWN_WIDEN_FACTOR,
    SAFE_USAGE_RATIO,
    CONSERVATIVE_USAGE_RATIO,
)
from .probe_models import (
    Classification,
    ConfidenceInterval,
    ProbeOutcome,
    ProbeRunConfig,
    ProbeRunResult,
    StopCondition,
)

PERCENTILES = (50, 90, 95, 99)


def nearest_rank(values: Sequence[float], pct: float) -> float:
    """Percentil por nearest-rank: el valor en la posición ceil(p/100 · N) del orden ascendente."""
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


def latency_percentiles(history: Sequence[ProbeOutcome]) -> Dict[str, float]:
    latencies = [o.latency_ms for o in history]
    return {f"p{p}": nearest_rank(latencies, p) for p in PERCENTILES}


def aggregate(
    history: Sequence[ProbeOutcome],
    stop_condition: StopCondition,
    config: ProbeRunConfig,
    ceiling_unknown_hint: bool = False,
) -> ProbeRunResult:
    """
    Convierte un historial congelado en el resultado final.

    Todo el intervalo vive en la escala de la búsqueda: requested_tokens, el conteo
    medido por el generador. El input que reporta el proveedor incluye overhead de
    plantilla y se publica aparte (max_reported_input_tokens); mezclar ambas escalas
    deja el límite real fuera del intervalo.

    - Estimación = máximo requested_tokens entre los SUCCESS (None si no hay ninguno).
    - Intervalo = [máx. éxito (0 si no hay), mín. fallo (max_test_length si no hay)].
      Sin fallos observados el techo es desconocido: se marca ceiling_unknown y, si la
      estimación ya alcanza max_test_length, el máximo se ensancha para no dar una
      precisión falsa.
    - precision_percentage es RELATIVA al máximo del intervalo; interval_width_tokens
      da el ancho absoluto.
    """
    successes = [o for o in history if o.classification == Classification.SUCCESS]
    failures = [o for o in history if o.classification == Classification.TOKEN_LIMIT_EXCEEDED]

    point: Optional[int] = max(o.requested_tokens for o in successes) if successes else None
    reported: Optional[int] = max(o.input_tokens for o in successes) if successes else None

    if point is None and stop_condition == StopCondition.CONVERGED_WITHIN_PRECISION:
        stop_condition = StopCondition.BOUNDARY_NOT_FOUND

    interval_min = point if point is not None else 0
    ceiling_unknown = ceiling_unknown_hint or not failures

    if failures:
        interval_max = min(o.requested_tokens for o in failures)
    else:
        interval_max = config.max_test_length

    if ceiling_unknown and point is not None and interval_max <= point:
        interval_max = interval_min * CEILING_UNKNOWN_WIDEN_FACTOR
    elif interval_max < interval_min:
        # Contradicción real en la misma escala: un fallo por debajo de un éxito.
        print(
            f"WARN: Intervalo inconsistente (éxito {interval_min} > fallo {interval_max}). "
            "Se colapsa al éxito máximo.",
            flush=True,
        )
        interval_max = interval_min

    interval = ConfidenceInterval(min=interval_min, max=interval_max)
    precision = 100 * (1 - interval.width / interval.max) if interval.max > 0 else 0.0

    total = len(history)
    success_rate = len(successes) / total if total else 0.0
    total_cost = sum(o.estimated_cost for o in history)
    average_latency = sum(o.latency_ms for o in history) / total if total else 0.0

    success_latency = sum(o.latency_ms for o in successes)
    throughput = (
        sum(o.input_tokens for o in successes) / success_latency * 1000 if success_latency > 0 else 0.0
    )

    documented = config.documented_limit
    deviation_tokens = None
    deviation_pct = None
    if documented and point is not None:
        deviation_tokens = point - documented
        deviation_pct = 100 * deviation_tokens / documented

    return ProbeRunResult(
        model=config.model,
        history=tuple(history),
        stop_condition=stop_condition,
        point_estimate_max_tokens=point,
        confidence_interval=interval,
        interval_width_tokens=interval.width,
        precision_percentage=precision,
        ceiling_unknown=ceiling_unknown,
        success_rate=success_rate,
        total_cost=total_cost,
        average_latency_ms=average_latency,
        latency_percentiles=latency_percentiles(history),
        throughput_tokens_per_sec=throughput,
        recommended_safe_tokens=int(point * SAFE_USAGE_RATIO) if point is not None else None,
        recommended_conservative_tokens=int(point * CONSERVATIVE_USAGE_RATIO) if point is not None else None,
        max_reported_input_tokens=reported,
        documented_limit=documented,
        documented_deviation_tokens=deviation_tokens,
        documented_deviation_percentage=deviation_pct,
    )
