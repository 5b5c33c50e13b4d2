# usage_ledger.py
"""
Registro append-only de llamadas al modelo. Se inyecta en cada ejecución;
varias ejecuciones concurrentes pueden compartir la misma instancia.
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .probe_models import Classification


@dataclass(frozen=True)
class UsageRecord:
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    latency_ms: float
    classification: Classification
    error: Optional[str] = None
    source: str = "token_probe"
    timestamp: float = field(default_factory=time.time)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def _summarize(records: List[UsageRecord]) -> Dict[str, Any]:
    n = len(records)
    return {
        "total_calls": n,
        "successful_calls": sum(1 for r in records if r.classification == Classification.SUCCESS),
        "failed_calls": sum(1 for r in records if r.classification != Classification.SUCCESS),
        "total_input_tokens": sum(r.input_tokens for r in records),
        "total_output_tokens": sum(r.output_tokens for r in records),
        "total_tokens": sum(r.total_tokens for r in records),
        "total_cost": sum(r.cost for r in records),
        "average_latency_ms": (sum(r.latency_ms for r in records) / n) if n else 0.0,
    }


class UsageLedger:
    def __init__(self):
        self._records: List[UsageRecord] = []
        self._lock = threading.Lock()

    def record(self, entry: UsageRecord) -> None:
        with self._lock:
            self._records.append(entry)

    def records(self) -> Tuple[UsageRecord, ...]:
        with self._lock:
            return tuple(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def stats(self, since_hours: Optional[float] = None) -> Dict[str, Any]:
        """
        Estadísticas globales y por modelo.
        - since_hours: limita a los registros de las últimas N horas (None = todos).
        """
        snapshot = list(self.records())
        if since_hours is not None:
            cutoff = time.time() - since_hours * 3600
            snapshot = [r for r in snapshot if r.timestamp >= cutoff]

        stats = _summarize(snapshot)
        by_model: Dict[str, List[UsageRecord]] = {}
        for r in snapshot:
            by_model.setdefault(r.model, []).append(r)
        stats["by_model"] = {m: _summarize(rs) for m, rs in by_model.items()}
        return stats
