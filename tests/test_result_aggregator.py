import pytest

from ctx_probe.probe_models import Classification, ProbeOutcome, ProbeRunResult, StopCondition
from ctx_probe.result_aggregator import aggregate, latency_percentiles, nearest_rank
from ctx_probe.utils_logging import log_run_summary

S = Classification.SUCCESS
F = Classification.TOKEN_LIMIT_EXCEEDED


def outcome(index, tokens, classification, latency_ms=100.0, cost=0.01, overhead=0):
    return ProbeOutcome(
        attempt_index=index,
        target_tokens=tokens,
        requested_tokens=tokens,
        input_tokens=tokens + overhead,
        output_tokens=5 if classification == S else 0,
        classification=classification,
        latency_ms=latency_ms,
        estimated_cost=cost,
        timestamp=1700000000.0 + index,
    )


@pytest.fixture
def history():
    return (
        outcome(1, 1000, S, latency_ms=200.0),
        outcome(2, 4500, F, latency_ms=900.0),
        outcome(3, 2750, S, latency_ms=400.0),
        outcome(4, 3625, S, latency_ms=500.0),
        outcome(5, 4062, S, latency_ms=600.0),
    )


def test_interval_brackets_boundary(make_config, history):
    result = aggregate(history, StopCondition.CONVERGED_WITHIN_PRECISION, make_config())

    assert result.point_estimate_max_tokens == 4062
    assert (result.confidence_interval.min, result.confidence_interval.max) == (4062, 4500)
    assert result.interval_width_tokens == 438
    assert result.precision_percentage == pytest.approx(100 * (1 - 438 / 4500))
    assert not result.ceiling_unknown


def test_aggregates(make_config, history):
    result = aggregate(history, StopCondition.CONVERGED_WITHIN_PRECISION, make_config())

    assert result.success_rate == pytest.approx(0.8)
    assert result.total_cost == pytest.approx(0.05)
    assert result.average_latency_ms == pytest.approx(520.0)
    assert result.throughput_tokens_per_sec == pytest.approx((1000 + 2750 + 3625 + 4062) / 1700 * 1000)
    assert result.recommended_safe_tokens == int(4062 * 0.8)
    assert result.recommended_conservative_tokens == int(4062 * 0.6)


def test_nearest_rank_percentiles():
    values = [100, 200, 300, 400, 500, 600, 700, 800, 900, 1000]
    assert nearest_rank(values, 50) == 500
    assert nearest_rank(values, 90) == 900
    assert nearest_rank(values, 95) == 1000
    assert nearest_rank(values, 99) == 1000
    assert nearest_rank([], 50) == 0.0


def test_latency_percentiles_keys(history):
    assert set(latency_percentiles(history)) == {"p50", "p90", "p95", "p99"}


def test_no_success_is_boundary_not_found(make_config):
    result = aggregate((outcome(1, 1000, F),), StopCondition.CONVERGED_WITHIN_PRECISION, make_config())

    assert result.stop_condition == StopCondition.BOUNDARY_NOT_FOUND
    assert result.point_estimate_max_tokens is None
    assert result.recommended_safe_tokens is None
    assert result.confidence_interval.min == 0


def test_no_failure_marks_ceiling_unknown(make_config):
    history = (outcome(1, 1000, S), outcome(2, 8000, S))
    result = aggregate(history, StopCondition.CONVERGED_WITHIN_PRECISION, make_config(max_test_length=8000))

    assert result.ceiling_unknown
    assert result.confidence_interval.min == 8000
    assert result.confidence_interval.max == 16000


def test_inconsistent_outcomes_collapse_interval(make_config, capsys):
    history = (outcome(1, 3000, S), outcome(2, 2000, F))
    result = aggregate(history, StopCondition.ATTEMPT_BUDGET_EXHAUSTED, make_config())

    assert result.confidence_interval.min <= result.confidence_interval.max
    assert "inconsistente" in capsys.readouterr().out


def test_json_round_trip_preserves_order_and_numbers(make_config, history):
    result = aggregate(history, StopCondition.CONVERGED_WITHIN_PRECISION, make_config())
    restored = ProbeRunResult.from_json(result.to_json())

    assert restored == result
    assert [o.attempt_index for o in restored.history] == [1, 2, 3, 4, 5]


def test_interval_stays_on_measured_scale_when_vendor_adds_overhead(make_config, capsys):
    # El proveedor cuenta 500 tokens más de los enviados (plantilla de chat).
    history = (
        outcome(1, 1000, S, overhead=500),
        outcome(2, 4500, F),
        outcome(3, 4062, S, overhead=500),
    )
    result = aggregate(history, StopCondition.CONVERGED_WITHIN_PRECISION, make_config())

    assert result.point_estimate_max_tokens == 4062
    assert (result.confidence_interval.min, result.confidence_interval.max) == (4062, 4500)
    assert result.interval_width_tokens == 438
    assert result.max_reported_input_tokens == 4562
    assert "inconsistente" not in capsys.readouterr().out


def test_small_overhead_does_not_collapse_interval(make_config):
    history = (outcome(1, 4062, S, overhead=50), outcome(2, 4100, F))
    result = aggregate(history, StopCondition.CONVERGED_WITHIN_PRECISION, make_config())

    assert (result.confidence_interval.min, result.confidence_interval.max) == (4062, 4100)
    assert result.max_reported_input_tokens == 4112


def test_deviation_from_documented_limit(make_config, history):
    result = aggregate(history, StopCondition.CONVERGED_WITHIN_PRECISION, make_config(documented_limit=4000))

    assert result.documented_limit == 4000
    assert result.documented_deviation_tokens == 62
    assert result.documented_deviation_percentage == pytest.approx(1.55)
    assert ProbeRunResult.from_json(result.to_json()) == result


def test_no_documented_limit_means_no_deviation(make_config, history):
    result = aggregate(history, StopCondition.CONVERGED_WITHIN_PRECISION, make_config())

    assert result.documented_limit is None
    assert result.documented_deviation_tokens is None
    assert result.documented_deviation_percentage is None


def test_summary_reports_documented_limit_and_vendor_count(make_config, capsys):
    history = (outcome(1, 4062, S, overhead=500), outcome(2, 4500, F))
    log_run_summary(aggregate(history, StopCondition.CONVERGED_WITHIN_PRECISION, make_config(documented_limit=4100)))
    out = capsys.readouterr().out

    assert "Límite documentado: 4,100 tokens" in out
    assert "desviación=-38 (-0.9%)" in out
    assert "Input reportado por el proveedor (con overhead): 4,562 tokens" in out
