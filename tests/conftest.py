"""
Fixtures para los tests del motor de probing.

Clientes falsos en memoria (sin red), generador de tamaño exacto y una señal
de cancelación que no duerme.
"""

import threading

import pytest

from ctx_probe.cancellation import CancellationSignal
from ctx_probe.pricing import ModelPricing, PricingTable
from ctx_probe.probe_models import ProbeRunConfig, RawCallResult, Sample
from ctx_probe.usage_ledger import UsageLedger

FAKE_MODEL = "fake-model"
CONTEXT_ERROR = "This model's maximum context length is exceeded (context_length_exceeded)"


class ExactSampleGenerator:
    """Un carácter = un token: el conteo medido coincide con el objetivo (o con un desfase fijo)."""

    def __init__(self, offset=0):
        self.offset = offset
        self.targets = []

    def generate(self, target_token_count):
        self.targets.append(target_token_count)
        return Sample(text="a" * target_token_count, actual_token_count=target_token_count + self.offset)


class BoundaryClient:
    """Acepta entradas por debajo de `boundary` tokens (len del texto) y rechaza el resto."""

    def __init__(self, boundary, output_tokens=5, reported_overhead=0):
        self.boundary = boundary
        self.output_tokens = output_tokens
        # Tokens extra que el proveedor suma al reportar el input (plantilla de chat).
        self.reported_overhead = reported_overhead
        self.calls = []

    def complete(self, text, max_output_tokens, timeout_s):
        tokens = len(text)
        self.calls.append(tokens)
        if tokens >= self.boundary:
            return RawCallResult(error=CONTEXT_ERROR, status_code=400)
        return RawCallResult(
            text="OK",
            status_code=200,
            input_tokens=tokens + self.reported_overhead,
            output_tokens=self.output_tokens,
        )


class ScriptedClient:
    """Devuelve las respuestas en orden; la última se repite indefinidamente."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def complete(self, text, max_output_tokens, timeout_s):
        self.calls.append(len(text))
        idx = min(len(self.calls), len(self.responses)) - 1
        response = self.responses[idx]
        if isinstance(response, Exception):
            raise response
        return response


class SlowClient:
    """Tarda `delay_s` en responder (o hasta que se libere); para probar la cancelación en vuelo."""

    def __init__(self, delay_s=3.0):
        self.delay_s = delay_s
        self.release = threading.Event()
        self.calls = []

    def complete(self, text, max_output_tokens, timeout_s):
        self.calls.append(len(text))
        self.release.wait(self.delay_s)
        return RawCallResult(text="OK", status_code=200, input_tokens=len(text), output_tokens=5)


class NoSleepSignal(CancellationSignal):
    """No duerme en los backoffs: solo apunta cuánto habría esperado."""

    def __init__(self):
        super().__init__()
        self.waits = []

    def wait(self, seconds):
        self.waits.append(seconds)
        return self.is_cancelled


def ok(tokens=None):
    return RawCallResult(text="OK", status_code=200, input_tokens=tokens, output_tokens=5)


def err(status, message=""):
    return RawCallResult(error=message or f"HTTP {status}", status_code=status)


@pytest.fixture
def make_config():
    def _make(**kwargs):
        values = {
            "model": FAKE_MODEL,
            "min_test_length": 1000,
            "max_test_length": 8000,
            "precision_threshold": 500,
            "backoff_base_ms": 0,
        }
        values.update(kwargs)
        return ProbeRunConfig(**values).validate()

    return _make


@pytest.fixture
def pricing():
    return PricingTable({FAKE_MODEL: ModelPricing(0.001, 0.002)})


@pytest.fixture
def ledger():
    return UsageLedger()


@pytest.fixture
def signal():
    return NoSleepSignal()


@pytest.fixture
def generator():
    return ExactSampleGenerator()
