import threading

import pytest

from conftest import BoundaryClient, ExactSampleGenerator, NoSleepSignal, ScriptedClient, SlowClient, err
from ctx_probe import prober
from ctx_probe.probe_executor import ProbeExecutor
from ctx_probe.probe_models import Classification, ProbeRunFailure, ProbeRunResult, StopCondition
from ctx_probe.probe_orchestrator import ProbeOrchestrator


@pytest.fixture
def run_probe(generator, pricing, ledger, signal):
    def _run(config, client, listeners=None):
        return prober.run(
            config,
            client=client,
            generator=generator,
            pricing=pricing,
            ledger=ledger,
            cancel=signal,
            listeners=listeners,
        )

    return _run


class FakeClock:
    def __init__(self, step_s):
        self.now = 0.0
        self.step_s = step_s

    def __call__(self):
        current = self.now
        self.now += self.step_s
        return current


def test_binary_run_brackets_the_limit(make_config, run_probe):
    result = run_probe(make_config(), BoundaryClient(boundary=4096))

    assert isinstance(result, ProbeRunResult)
    assert result.stop_condition == StopCondition.CONVERGED_WITHIN_PRECISION
    assert result.attempts <= 5
    assert result.point_estimate_max_tokens == 4062
    assert result.confidence_interval.min < 4096 <= result.confidence_interval.max
    assert result.interval_width_tokens <= 500
    assert prober.exit_code_for(result) == prober.EXIT_OK


def test_floor_failure_issues_no_further_probes(make_config, run_probe):
    client = BoundaryClient(boundary=500)
    result = run_probe(make_config(), client)

    assert result.stop_condition == StopCondition.BOUNDARY_NOT_FOUND
    assert result.attempts == 1
    assert result.point_estimate_max_tokens is None
    assert client.calls == [1000]
    assert prober.exit_code_for(result) == prober.EXIT_BOUNDARY_NOT_FOUND


def test_auth_error_halts_with_failure(make_config, run_probe):
    result = run_probe(make_config(), ScriptedClient(err(401, "Unauthorized")))

    assert isinstance(result, ProbeRunFailure)
    assert result.attempts == 1
    assert result.classification == Classification.AUTH_ERROR
    assert not hasattr(result, "point_estimate_max_tokens")
    assert prober.exit_code_for(result) == prober.EXIT_FATAL


def test_unresolved_unknown_is_fatal(make_config, run_probe):
    result = run_probe(make_config(), ScriptedClient(err(400, "the frobnicator is misaligned")))
    assert isinstance(result, ProbeRunFailure)
    assert result.classification == Classification.UNKNOWN


def test_transient_probe_is_not_treated_as_a_limit(make_config, run_probe):
    result = run_probe(make_config(max_attempts=2, max_retries=3), ScriptedClient(err(503)))

    assert result.stop_condition == StopCondition.ATTEMPT_BUDGET_EXHAUSTED
    assert [o.classification for o in result.history] == [Classification.TRANSIENT] * 2
    assert [o.target_tokens for o in result.history] == [1000, 1000]
    assert result.point_estimate_max_tokens is None
    assert prober.exit_code_for(result) == prober.EXIT_BUDGET_EXHAUSTED


def test_persistent_rate_limit_exit_code(make_config, run_probe):
    result = run_probe(make_config(max_attempts=1, max_retries=1), ScriptedClient(err(429, "Too Many Requests")))
    assert prober.exit_code_for(result) == prober.EXIT_RATE_LIMITED


def test_attempt_budget_keeps_partial_estimate(make_config, run_probe):
    result = run_probe(make_config(max_attempts=3), BoundaryClient(boundary=4096))

    assert result.stop_condition == StopCondition.ATTEMPT_BUDGET_EXHAUSTED
    assert result.attempts == 3
    assert result.point_estimate_max_tokens == 2750


def test_wall_clock_timeout(make_config, pricing, signal):
    cfg = make_config(total_timeout_ms=15000)
    executor = ProbeExecutor(cfg, BoundaryClient(boundary=4096), ExactSampleGenerator(), pricing, cancel=signal)
    result = ProbeOrchestrator(cfg, executor, clock=FakeClock(step_s=10)).run()

    assert result.stop_condition == StopCondition.WALL_CLOCK_TIMEOUT
    assert result.attempts == 1


def test_cancellation_between_probes(make_config, run_probe, signal):
    result = run_probe(make_config(), BoundaryClient(boundary=4096), listeners=[lambda event: signal.cancel()])

    assert result.stop_condition == StopCondition.CANCELLED
    assert result.attempts == 1
    assert prober.exit_code_for(result) == prober.EXIT_CANCELLED


def test_progress_events_and_broken_listener(make_config, run_probe, capsys):
    events = []

    def broken(event):
        raise RuntimeError("boom")

    result = run_probe(make_config(), BoundaryClient(boundary=4096), listeners=[broken, events.append])

    assert result.stop_condition == StopCondition.CONVERGED_WITHIN_PRECISION
    assert [e.attempt_index for e in events] == list(range(1, result.attempts + 1))
    estimates = [e.running_estimate for e in events]
    assert estimates == sorted(estimates)
    assert "Listener de progreso falló" in capsys.readouterr().out


def test_accepted_ceiling_reports_lower_bound(make_config, run_probe):
    result = run_probe(make_config(), BoundaryClient(boundary=10**9))

    assert result.ceiling_unknown
    assert result.point_estimate_max_tokens == 8000
    assert result.confidence_interval.max > result.confidence_interval.min


def test_run_batch_keeps_config_order(make_config, pricing, ledger):
    configs = [make_config(model="model-a"), make_config(model="model-b")]
    boundaries = {"model-a": 3000, "model-b": 6000}

    results = prober.run_batch(
        configs,
        max_workers=2,
        client_factory=lambda cfg: BoundaryClient(boundary=boundaries[cfg.model]),
        generator=ExactSampleGenerator(),
        pricing=pricing,
        ledger=ledger,
        cancel=NoSleepSignal(),
    )

    assert [r.model for r in results] == ["model-a", "model-b"]
    assert results[0].confidence_interval.min < 3000 <= results[0].confidence_interval.max
    assert results[1].confidence_interval.min < 6000 <= results[1].confidence_interval.max
    assert set(ledger.stats()["by_model"]) == {"model-a", "model-b"}


@pytest.mark.parametrize("overhead", [50, 500])
def test_vendor_overhead_keeps_limit_inside_interval(make_config, run_probe, overhead):
    client = BoundaryClient(boundary=4096, reported_overhead=overhead)
    result = run_probe(make_config(), client)

    assert result.stop_condition == StopCondition.CONVERGED_WITHIN_PRECISION
    assert result.point_estimate_max_tokens == 4062
    assert result.confidence_interval.min < 4096 <= result.confidence_interval.max
    assert result.interval_width_tokens <= 500
    assert result.precision_percentage < 100
    assert result.max_reported_input_tokens == 4062 + overhead


def test_cancellation_during_a_slow_call_stops_the_run(make_config, run_probe, signal):
    client = SlowClient(delay_s=3.0)
    timer = threading.Timer(0.1, signal.cancel)
    timer.start()
    try:
        result = run_probe(make_config(timeout_ms=10000), client)
    finally:
        client.release.set()
        timer.cancel()

    assert result.stop_condition == StopCondition.CANCELLED
    assert result.attempts == 1
    assert result.history[0].classification == Classification.TRANSIENT
    assert result.point_estimate_max_tokens is None
    assert prober.exit_code_for(result) == prober.EXIT_CANCELLED


def test_run_time_budget_bounds_retries(make_config, run_probe, signal):
    client = ScriptedClient(err(503, "Service Unavailable"))
    result = run_probe(make_config(total_timeout_ms=500, backoff_base_ms=1000, max_retries=5, max_attempts=3), client)

    # Ningún backoff de ~1s cabe en los 500ms de la ejecución: una llamada por intento.
    assert signal.waits == []
    assert [o.call_attempts for o in result.history] == [1] * result.attempts
    assert len(client.calls) == result.attempts


def test_documented_limit_is_filled_from_catalog(make_config, run_probe):
    result = run_probe(make_config(model="gpt-4"), BoundaryClient(boundary=4096))

    assert result.documented_limit == 8192
    assert result.documented_deviation_tokens == result.point_estimate_max_tokens - 8192
