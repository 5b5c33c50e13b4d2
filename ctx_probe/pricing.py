# pricing.py
import threading
from dataclasses import dataclass
from typing import Dict, Mapping, Optional


@dataclass(frozen=True)
class ModelPricing:
    input_price_per_1k: float
    output_price_per_1k: float


# USD por 1K tokens
DEFAULT_MODEL_PRICING: Dict[str, ModelPricing] = {
    "gpt-4": ModelPricing(0.03, 0.06),
    "gpt-4-32k": ModelPricing(0.06, 0.12),
    "gpt-4-turbo": ModelPricing(0.01, 0.03),
    "gpt-4o": ModelPricing(0.005, 0.015),
    "gpt-4.1": ModelPricing(0.005, 0.015),
    "gpt-3.5-turbo": ModelPricing(0.001, 0.002),
    "gpt-3.5-turbo-16k": ModelPricing(0.003, 0.004),
    "claude-3-sonnet": ModelPricing(0.003, 0.015),
    "claude-3-haiku": ModelPricing(0.00025, 0.00125),
    "claude-sonnet-3.5": ModelPricing(0.003, 0.015),
    "claude-sonnet-3.7": ModelPricing(0.003, 0.015),
    "claude-sonnet-4": ModelPricing(0.005, 0.025),
}


class PricingTable:
    """Tabla de precios de solo lectura; compartible entre ejecuciones concurrentes."""

    def __init__(self, prices: Optional[Mapping[str, ModelPricing]] = None):
        self._prices = dict(DEFAULT_MODEL_PRICING if prices is None else prices)
        self._warned = set()
        self._warn_lock = threading.Lock()

    def lookup(self, model_id: str) -> Optional[ModelPricing]:
        pricing = self._prices.get(model_id)
        if pricing is None:
            with self._warn_lock:
                first_time = model_id not in self._warned
                self._warned.add(model_id)
            if first_time:
                print(
                    f"WARN: Modelo sin precio conocido ({model_id}). El coste se reporta como 0.",
                    flush=True,
                )
        return pricing

    def estimate_cost(self, model_id: str, input_tokens: int, output_tokens: int) -> float:
        pricing = self.lookup(model_id)
        if pricing is None:
            return 0.0
        return (input_tokens / 1000) * pricing.input_price_per_1k + (
            output_tokens / 1000
        ) * pricing.output_price_per_1k
